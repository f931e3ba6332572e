"""Glue around live-build: per-desktop chroots, config overlays, ISO output."""

from __future__ import annotations

import datetime as _dt
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .build_config import BuildConfig
from .errors import ValidationError
from .lib.assets import copy_tree
from .lib.command import run_cmd, run_streaming
from .models import BuildRequest, Desktop, Loadout
from .policy import guarded

logger = logging.getLogger(__name__)

BUILD_LOG = "build.log"


def desktop_dir(cfg: BuildConfig, desktop: Desktop) -> Path:
    return cfg.build_dir / "desktop-choice" / desktop.value


def loadout_dir(cfg: BuildConfig, loadout: Loadout) -> Path:
    return cfg.build_dir / "package-loadouts" / loadout.value


def check_layout(cfg: BuildConfig, request: BuildRequest) -> None:
    for d in (desktop_dir(cfg, request.desktop), loadout_dir(cfg, request.loadout)):
        if not d.is_dir():
            raise ValidationError(f"Directory not found: {d}")


def setup_chroot_symlink(cfg: BuildConfig, desktop: Desktop) -> None:
    """Point live-build's `chroot` at the desktop's own tree.

    A real `chroot` directory is left alone (legacy layout) with a warning.
    """

    link = cfg.build_dir / "chroot"
    if link.is_symlink():
        link.unlink()

    if link.is_dir():
        logger.warning(
            "'chroot' exists as a directory, not a symlink; consider moving it to "
            "desktop-choice/<desktop>/chroot. Continuing with existing chroot..."
        )
        return

    target = cfg.chroot_dir(desktop.value)
    if target.is_dir():
        logger.info("Using existing chroot: %s", target)
        link.symlink_to(target.relative_to(cfg.build_dir))
    else:
        logger.info("Will create new chroot: %s", target)


def clean(cfg: BuildConfig, desktop: Desktop) -> None:
    logger.info("Cleaning previous build for %s...", desktop.value)
    link = cfg.build_dir / "chroot"
    if link.is_symlink():
        link.unlink()
    target = cfg.chroot_dir(desktop.value)
    if target.is_dir():
        shutil.rmtree(target)
    guarded("lb_clean", lambda: run_cmd(["lb", "clean", "--purge"], cwd=str(cfg.build_dir)))


def _copy_file(src: Path, dst: Path) -> None:
    if src.is_file():
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)


def apply_desktop(cfg: BuildConfig, desktop: Desktop) -> None:
    """Copy (never link) the desktop's lists, hook and overlays so they survive `lb clean`."""

    logger.info("Applying desktop choice: %s...", desktop.value)
    src = desktop_dir(cfg, desktop)
    config = cfg.build_dir / "config"

    _copy_file(src / "package-lists/desktop.list.chroot", config / "package-lists/desktop.list.chroot")
    _copy_file(
        src / f"hooks/live/0450-{desktop.value}-config.hook.chroot",
        config / "hooks/live/0450-desktop-config.hook.chroot",
    )
    for overlay in ("includes.chroot", "includes.chroot.image"):
        if (src / overlay).is_dir():
            copy_tree(src / overlay, config / overlay)


def apply_loadout(cfg: BuildConfig, loadout: Loadout) -> None:
    logger.info("Applying package loadout: %s...", loadout.value)
    _copy_file(
        loadout_dir(cfg, loadout) / "package-lists/loadout.list.chroot",
        cfg.build_dir / "config/package-lists/loadout.list.chroot",
    )


def lb_build(cfg: BuildConfig) -> None:
    run_streaming(["lb", "build"], log_file=str(cfg.build_dir / BUILD_LOG), cwd=str(cfg.build_dir))


def finalize_chroot(cfg: BuildConfig, desktop: Desktop) -> None:
    """Move a freshly built `chroot` directory under the desktop and relink it."""

    link = cfg.build_dir / "chroot"
    if link.is_dir() and not link.is_symlink():
        target = cfg.chroot_dir(desktop.value)
        logger.info("Moving chroot to %s...", target)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.rename(link, target)
        link.symlink_to(target.relative_to(cfg.build_dir))


def rename_iso(cfg: BuildConfig, request: BuildRequest, date: Optional[_dt.date] = None) -> Optional[Path]:
    final = cfg.output_dir / request.iso_name(date)
    candidates = sorted(p for p in cfg.build_dir.glob("sky1-linux-*.iso") if p.name != final.name)
    if not candidates:
        logger.warning("Expected ISO file not found in %s", cfg.build_dir)
        return None
    final.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(candidates[0]), final)
    logger.info("ISO: %s", final)
    return final


def build_iso(cfg: BuildConfig, request: BuildRequest) -> Optional[Path]:
    lb_build(cfg)
    finalize_chroot(cfg, request.desktop)
    return rename_iso(cfg, request)


def ensure_chroot(cfg: BuildConfig, desktop: Desktop) -> None:
    """Build the chroot with live-build if neither the desktop tree nor a legacy one exists."""

    link = cfg.build_dir / "chroot"
    target = cfg.chroot_dir(desktop.value)
    if not target.is_dir() and not link.is_dir():
        logger.info("No chroot found for %s. Building chroot first...", desktop.value)
        lb_build(cfg)
        finalize_chroot(cfg, desktop)

    if target.is_dir() and not link.is_symlink() and not link.exists():
        link.symlink_to(target.relative_to(cfg.build_dir))
