"""Refresh an existing desktop chroot from the apt repository.

Rebuilding a chroot with live-build takes a long time; this swaps kernel
tracks and pulls new packages in place instead. Switching tracks (for
example main -> rc) replaces the kernel meta packages so that exactly one
track's set is installed afterwards.
"""

from __future__ import annotations

import argparse
import logging
import re
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .build_config import BuildConfig, load_build_config
from .errors import BuildError, ResourceError, ValidationError
from .image import require_root
from .lib.chroot import chroot_cmd, copy_resolv_conf
from .lib.kernel import all_meta_packages, installed_kernels, meta_packages, select_kernel
from .lib.pkg import (
    apt_autoremove,
    apt_candidate_version,
    apt_clean,
    apt_dist_upgrade,
    apt_install,
    apt_purge,
    apt_remove,
    apt_update,
    dpkg_depends,
    dpkg_installed_packages,
    dpkg_version,
)
from .logging_utils import configure_logging
from .models import Desktop, Track, parse_choice
from .policy import guarded

logger = logging.getLogger(__name__)

FIRMWARE_HOOKS = (
    "etc/initramfs/post-update.d/z50-raspi-firmware",
    "etc/kernel/postinst.d/z50-raspi-firmware",
    "etc/kernel/postrm.d/z50-raspi-firmware",
)
SOURCES_LIST = "etc/apt/sources.list.d/sky1.list"
SIGNED_BY = "/usr/share/keyrings/sky1-linux.asc"
DEPRECATED_DKMS = ("r8126-dkms", "sky1-vpu-dkms", "sky1-npu-dkms")

CDN_RETRIES = 10
CDN_RETRY_DELAY_S = 15.0

_VERSIONED_KERNEL_RE = re.compile(r"^linux-(image|headers)-[0-9].*-sky1")


@dataclass(frozen=True)
class TrackSwitch:
    remove: Tuple[str, ...]
    install: Tuple[str, ...]


def plan_track_switch(installed: Iterable[str], track: Track) -> TrackSwitch:
    """Meta packages to remove (other tracks) and install (this track)."""

    wanted = meta_packages(track)
    present = set(installed)
    remove = tuple(p for p in all_meta_packages() if p not in wanted and p in present)
    return TrackSwitch(remove=remove, install=wanted)


def stale_kernel_packages(installed: Iterable[str], keep: Iterable[str]) -> List[str]:
    """Versioned sky1 kernel packages that no current meta package depends on.

    autoremove misses these when they were installed by hand.
    """

    keep_set = set(keep)
    return [p for p in installed if _VERSIONED_KERNEL_RE.match(p) and p not in keep_set]


def sources_line(apt_url: str, track: Track) -> str:
    components = ["main"]
    if track is not Track.MAIN:
        components.append(track.value)
    components.append("non-free-firmware")
    return f"deb [signed-by={SIGNED_BY}] {apt_url} sid {' '.join(components)}\n"


def remove_firmware_hooks(root: Path) -> None:
    """raspi-firmware hooks break initramfs updates on non-RPi boards."""

    for rel in FIRMWARE_HOOKS:
        (root / rel).unlink(missing_ok=True)


def write_sources(root: Path, apt_url: str, track: Track) -> None:
    path = root / SOURCES_LIST
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sources_line(apt_url, track), encoding="utf-8")
    logger.info("Updated apt sources for track %s", track.value)


def wait_for_candidate(
    root: Path,
    package: str,
    expected: str,
    *,
    retries: int = CDN_RETRIES,
    delay_s: float = CDN_RETRY_DELAY_S,
    sleep=time.sleep,
) -> None:
    """Poll apt until the repository serves `expected` (CDN propagation lags uploads)."""

    candidate: Optional[str] = None
    for attempt in range(1, retries + 1):
        candidate = apt_candidate_version(root, package)
        if candidate == expected:
            logger.info("apt sees %s %s", package, expected)
            return
        if attempt == retries:
            break
        logger.info("Waiting for %s (apt sees %s, retry %d/%d)...", expected, candidate, attempt, retries)
        sleep(delay_s)
        apt_update(root)

    raise ResourceError(
        f"apt still sees {package} {candidate} after {retries} retries; expected {expected}",
        hint="The CDN may not have propagated yet; try again later.",
    )


def switch_track(root: Path, track: Track) -> TrackSwitch:
    plan = plan_track_switch(dpkg_installed_packages(root), track)
    if plan.remove:
        logger.info("Removing old track packages: %s", " ".join(plan.remove))
        apt_remove(root, plan.remove)
    logger.info("Installing: %s", " ".join(plan.install))
    apt_install(root, plan.install, quiet=False)
    apt_dist_upgrade(root)
    return plan


def purge_stale_kernels(root: Path, track: Track) -> List[str]:
    keep: List[str] = []
    for meta in meta_packages(track):
        keep += dpkg_depends(root, meta)

    stale = stale_kernel_packages(dpkg_installed_packages(root), keep)
    if stale:
        logger.info("Purging stale kernels: %s", " ".join(stale))
        apt_purge(root, stale)
    else:
        logger.info("No stale kernel packages found")
    return stale


def remove_stale_dkms_modules(root: Path) -> None:
    for kdir in sorted((root / "lib/modules").glob("*/updates/dkms")):
        if kdir.is_dir():
            logger.info("Removing stale DKMS modules: %s", kdir)
            shutil.rmtree(kdir)


def update_chroot(
    cfg: BuildConfig,
    desktop: Desktop,
    track: Track,
    expected_version: Optional[str] = None,
) -> str:
    """Bring the desktop chroot to the newest packages of a track; returns the active kernel."""

    root = cfg.chroot_dir(desktop.value)
    if not root.is_dir():
        raise ValidationError(
            f"No chroot found at {root}",
            hint=f"Run 'sky1-build {desktop.value} desktop iso' first to create it.",
        )
    require_root("Chroot updates")

    logger.info("=== Updating %s chroot (track: %s) ===", desktop.value, track.value)

    copy_resolv_conf(root)
    guarded("remove_firmware_hooks", lambda: remove_firmware_hooks(root))
    write_sources(root, cfg.apt_url, track)
    apt_update(root)

    first_meta = meta_packages(track)[0]
    if expected_version:
        wait_for_candidate(root, first_meta, expected_version)
    else:
        logger.info(
            "No expected version given; installing whatever the repository serves (candidate %s %s)",
            first_meta,
            apt_candidate_version(root, first_meta),
        )

    switch_track(root, track)
    purge_stale_kernels(root, track)

    guarded("remove_deprecated_dkms", lambda: apt_remove(root, DEPRECATED_DKMS))
    remove_stale_dkms_modules(root)

    apt_autoremove(root)
    apt_clean(root)
    chroot_cmd(root, ["update-initramfs", "-u", "-k", "all"])

    kernels = installed_kernels(root / "boot")
    active = select_kernel(kernels, track) or (kernels[-1] if kernels else "")
    logger.info("Kernels in chroot: %s", ", ".join(kernels) or "none")
    logger.info("=== Update complete: active kernel %s ===", active or "none")

    if expected_version:
        installed = dpkg_version(root, first_meta)
        if installed != expected_version:
            raise BuildError(f"Expected {first_meta} {expected_version} but installed {installed}")

    return active


def main(argv: Optional[Sequence[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="sky1-update-chroot", description="Update a desktop chroot from apt")
    p.add_argument("desktop", nargs="?", default="gnome")
    p.add_argument("track", nargs="?", default="main")
    p.add_argument("expected_version", nargs="?", default=None)
    p.add_argument("--config", default=None, help="YAML build config")
    p.add_argument("--log", default=None)

    args = p.parse_args(argv)

    try:
        cfg = load_build_config(args.config)
        configure_logging(log_path=args.log or cfg.log_path)
        desktop = parse_choice(Desktop, args.desktop, what="desktop")
        track = parse_choice(Track, args.track, what="track")
        update_chroot(cfg, desktop, track, args.expected_version)
    except BuildError as e:
        logger.exception("Chroot update failed")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Next steps:")
    print(f"  sudo SKIP_COMPRESS=1 sky1-build-image {args.desktop} desktop {args.track}  # Build image")
    print(f"  sudo sky1-build-image {args.desktop} desktop {args.track}                  # Build + compress")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
