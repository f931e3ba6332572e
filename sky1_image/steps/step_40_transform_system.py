from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..context import ImageCtx
from ..lib.assets import BUILTIN_OVERLAY, apply_overlay, stage_package
from ..lib.chroot import chroot_binds, chroot_cmd, copy_resolv_conf
from ..lib.pkg import apt_autoremove, apt_clean, apt_install, apt_remove, apt_update
from ..models import Desktop
from ..policy import guarded

logger = logging.getLogger(__name__)

LIVE_PACKAGES = (
    "live-boot",
    "live-config",
    "live-config-systemd",
    "live-tools",
    "calamares",
    "calamares-settings-sky1",
)

# growpart + parted fill the disk on first boot, which itself runs under python3.
IMAGE_PACKAGES = ("cloud-guest-utils", "parted", "python3")

FIRSTBOOT_WIZARDS: Dict[Desktop, str] = {
    Desktop.GNOME: "gnome-initial-setup",
    Desktop.KDE: "plasma-setup",
}

# Markers left by the live build that would make the wizard think it already ran.
WIZARD_DONE_MARKERS: Dict[Desktop, Tuple[str, ...]] = {
    Desktop.GNOME: ("etc/skel/.config/gnome-initial-setup-done",),
    Desktop.KDE: ("etc/plasma-setup-done",),
}

LIVE_USER = "sky1"

LIVE_FILES = (
    "etc/skel/Desktop/install-sky1-linux.desktop",
    "etc/skel/Desktop/gparted.desktop",
    # "(live)" prompt prefix
    "etc/debian_chroot",
)
LIVE_DIRS = ("etc/calamares", "etc/live", "var/lib/live")

FIRSTBOOT_UNIT = "sky1-firstboot.service"


def firstboot_wizard(desktop: Desktop) -> Optional[str]:
    return FIRSTBOOT_WIZARDS.get(desktop)


def install_packages(root: Path, desktop: Desktop) -> None:
    guarded("remove_live_packages", lambda: apt_remove(root, LIVE_PACKAGES, purge=True))

    apt_update(root)
    guarded("install_image_packages", lambda: apt_install(root, IMAGE_PACKAGES))

    wizard = firstboot_wizard(desktop)
    if wizard:
        logger.info("Installing %s for %s first-boot...", wizard, desktop.value)
        guarded("install_firstboot_wizard", lambda: apt_install(root, [wizard]))
    else:
        logger.info("No first-boot user setup for desktop: %s", desktop.value)

    apt_autoremove(root)
    apt_clean(root)


def remove_live_user(root: Path) -> None:
    if chroot_cmd(root, ["id", LIVE_USER], check=False).ok:
        logger.info("Removing live user %r...", LIVE_USER)
        chroot_cmd(root, ["userdel", "-r", LIVE_USER])


def remove_live_artifacts(root: Path, desktop: Desktop) -> None:
    root = Path(root)
    for rel in LIVE_FILES:
        (root / rel).unlink(missing_ok=True)

    skel_desktop = root / "etc/skel/Desktop"
    if skel_desktop.is_dir() and not any(skel_desktop.iterdir()):
        skel_desktop.rmdir()

    for rel in LIVE_DIRS:
        shutil.rmtree(root / rel, ignore_errors=True)

    for rel in WIZARD_DONE_MARKERS.get(desktop, ()):
        (root / rel).unlink(missing_ok=True)

    logger.info("Removed live-system artifacts")


def apply_image_overlays(root: Path, overlay_dir: Path) -> None:
    """Built-in overlay first, then the repo's image overlay, which wins on conflicts."""

    apply_overlay(BUILTIN_OVERLAY, root)
    stage_package(root)
    if overlay_dir.is_dir():
        apply_overlay(overlay_dir, root)
    else:
        logger.info("No image overlay at %s", overlay_dir)


class TransformSystemStep:
    step_id = "40_transform_system"
    title = "Configuring for installed system"

    def run(self, ctx: ImageCtx) -> None:
        root = ctx.target_root
        desktop = ctx.request.desktop

        with chroot_binds(root, ctx.mounts):
            copy_resolv_conf(root)
            install_packages(root, desktop)

        guarded("remove_live_user", lambda: remove_live_user(root))
        remove_live_artifacts(root, desktop)

        apply_image_overlays(root, ctx.cfg.image_overlay_dir)

        # dconf caches are compiled; rebuild them after the overlay changed settings.
        with chroot_binds(root, ctx.mounts, sources=("/dev", "/proc")):
            guarded("dconf_update", lambda: chroot_cmd(root, ["dconf", "update"]))
            guarded("enable_firstboot_service", lambda: chroot_cmd(root, ["systemctl", "enable", FIRSTBOOT_UNIT]))

        ctx.decisions["firstboot_wizard"] = firstboot_wizard(desktop)
