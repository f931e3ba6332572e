"""Sky1 Linux first-boot configuration (stage 1).

Runs once on the target hardware, from ``sky1-firstboot.service``, before the
display manager and the desktop's account wizard:

- grow the root partition and filesystem to fill the disk
- regenerate machine-id and SSH host keys
- detect the board and drop GRUB entries for the other boards
- apply an optional pre-configuration file from the EFI partition

Every action is best-effort and logged; only the completion marker must be
written, since it is what keeps this from running again.

The ``trust-desktop`` command is separate and runs at every graphical login.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .boards import BOARDS, BoardVariant
from .lib import grubcfg
from .lib.bootloader import grub_cfg_path
from .lib.command import run_cmd
from .lib.hwdetect import detect_board
from .lib.identity import regenerate_machine_id, regenerate_ssh_host_keys
from .lib.preconfig import Preconfig, parse_preconfig, secure_erase
from .logging_utils import configure_logging
from .policy import guarded

logger = logging.getLogger(__name__)

FIRSTBOOT_MARKER = "var/lib/sky1/.firstboot-done"
WIZARD_DONE_MARKER = "var/lib/sky1/.wizard-done"
FIRSTBOOT_CONFIG = "boot/efi/sky1-config.txt"
DEFAULT_LOG_PATH = "/var/log/sky1-firstboot.log"

HOSTS_PLACEHOLDER = "Sky1-Desktop"
USER_GROUPS = "users,sudo,audio,video,netdev,plugdev,input,render"

# (config file, key, placeholder account) per display manager
AUTOLOGIN_CONFIGS: Tuple[Tuple[str, str, str], ...] = (
    ("etc/gdm3/custom.conf", "AutomaticLogin", "sky1"),
    ("etc/sddm.conf.d/10-wayland.conf", "User", "sky1"),
    ("etc/lightdm/lightdm.conf.d/50-autologin.conf", "autologin-user", "sky1"),
)


def _is_host(root: Path) -> bool:
    return Path(root) == Path("/")


def _root_args(root: Path) -> List[str]:
    return [] if _is_host(root) else ["-R", str(root)]


def expand_rootfs(root: Path = Path("/")) -> None:
    logger.info("Expanding root filesystem...")
    part = run_cmd(["findmnt", "-n", "-o", "SOURCE", "/"]).stdout.strip()
    disk = run_cmd(["lsblk", "-no", "PKNAME", part]).stdout.strip()
    partnum = (Path(root) / "sys/class/block" / os.path.basename(part) / "partition").read_text().strip()

    if shutil.which("growpart"):
        r = run_cmd(["growpart", f"/dev/{disk}", partnum], check=False)
        # growpart exits 1 with NOCHANGE when the partition already fills the disk.
        if not r.ok:
            logger.warning("growpart /dev/%s %s: %s", disk, partnum, (r.stdout + r.stderr).strip())
    else:
        logger.warning("growpart not available, skipping partition expansion")

    run_cmd(["resize2fs", part])
    df = run_cmd(["df", "-h", "/"], check=False).stdout.strip().splitlines()
    logger.info("Root filesystem expanded: %s", df[-1] if df else "?")


def prune_boot_menu(root: Path, board: BoardVariant, boards: Sequence[BoardVariant] = BOARDS) -> int:
    """Keep only this board's GRUB entries. Returns the number removed."""

    cfg = grub_cfg_path(Path(root) / "boot/efi")
    if not cfg.is_file():
        logger.warning("GRUB config not found at %s", cfg)
        return 0

    logger.info("Cleaning up GRUB entries for %s...", board.key)
    shutil.copy2(cfg, cfg.with_name(cfg.name + ".bak"))

    exclude = [b.dtb_ref for b in boards if b.key != board.key]
    # surrogateescape carries stray non-UTF-8 bytes through unchanged
    text, removed = grubcfg.prune(cfg.read_text(encoding="utf-8", errors="surrogateescape"), exclude)

    tmp = cfg.with_name(cfg.name + ".new")
    tmp.write_text(text, encoding="utf-8", errors="surrogateescape")
    os.replace(tmp, cfg)

    for entry in removed:
        logger.info("Removed GRUB entry %r", entry.title)
    return len(removed)


def detect_board_and_prune(root: Path = Path("/")) -> Optional[BoardVariant]:
    board = detect_board(root)
    if board is not None:
        prune_boot_menu(root, board)
    return board


def _edit_file(path: Path, edit: Callable[[str], str]) -> bool:
    if not path.is_file():
        return False
    text = path.read_text(encoding="utf-8")
    new = edit(text)
    if new != text:
        path.write_text(new, encoding="utf-8")
        return True
    return False


def set_hostname(root: Path, hostname: str) -> None:
    logger.info("Setting hostname to: %s", hostname)
    if _is_host(root):
        run_cmd(["hostnamectl", "set-hostname", hostname], check=False)
    etc = Path(root) / "etc"
    etc.mkdir(parents=True, exist_ok=True)
    (etc / "hostname").write_text(hostname + "\n", encoding="utf-8")
    _edit_file(etc / "hosts", lambda text: text.replace(HOSTS_PLACEHOLDER, hostname))


def retarget_autologin(root: Path, username: str) -> List[Path]:
    changed: List[Path] = []
    for rel, key, placeholder in AUTOLOGIN_CONFIGS:
        path = Path(root) / rel
        pattern = re.compile(rf"(?m)^(\s*{re.escape(key)}\s*=\s*){re.escape(placeholder)}[ \t]*$")
        if _edit_file(path, lambda text: pattern.sub(lambda m: m.group(1) + username, text)):
            changed.append(path)
    return changed


def create_user(root: Path, username: str, pre: Preconfig) -> None:
    logger.info("Creating user: %s", username)

    r = run_cmd(
        ["useradd", *_root_args(root), "-m", "-G", USER_GROUPS, "-s", "/bin/bash", username],
        check=False,
    )
    if not r.ok:
        logger.warning("useradd %s exited %s (user may already exist)", username, r.returncode)

    if pre.password_hash:
        run_cmd(["chpasswd", *_root_args(root), "-e"], input_text=f"{username}:{pre.password_hash}\n")
    elif pre.password:
        run_cmd(["chpasswd", *_root_args(root)], input_text=f"{username}:{pre.password}\n")

    for path in retarget_autologin(root, username):
        logger.info("Autologin now targets %s in %s", username, path)

    marker = Path(root) / WIZARD_DONE_MARKER
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.touch()
    logger.info("User %s created, wizard will be skipped", username)


def apply_preconfig(root: Path = Path("/")) -> Optional[Preconfig]:
    path = Path(root) / FIRSTBOOT_CONFIG
    if not path.is_file():
        logger.info("No pre-configuration file found at %s", path)
        return None

    logger.info("Applying pre-configuration from %s...", path)
    try:
        pre = Preconfig.from_values(parse_preconfig(path.read_text(encoding="utf-8", errors="replace")))
        if pre.hostname:
            set_hostname(root, pre.hostname)
        if pre.username:
            create_user(root, pre.username, pre)
    finally:
        logger.info("Removing pre-configuration file...")
        secure_erase(path)
    return pre


def write_marker(root: Path) -> Path:
    marker = Path(root) / FIRSTBOOT_MARKER
    marker.parent.mkdir(parents=True, exist_ok=True)
    marker.touch()
    return marker


def run_firstboot(root: Path = Path("/")) -> bool:
    """Run stage 1 unless the marker exists. Returns True if it ran."""

    root = Path(root)
    if (root / FIRSTBOOT_MARKER).exists():
        logger.info("First boot already completed (%s)", root / FIRSTBOOT_MARKER)
        return False

    logger.info("Starting first-boot configuration...")
    guarded("expand_rootfs", lambda: expand_rootfs(root))
    guarded("generate_machine_id", lambda: regenerate_machine_id(root))
    guarded("generate_ssh_keys", lambda: regenerate_ssh_host_keys(root))
    guarded("prune_boot_menu", lambda: detect_board_and_prune(root))
    guarded("apply_preconfig", lambda: apply_preconfig(root))

    # The desktop wizard (gnome-initial-setup / plasma-setup) runs after this unit.
    guarded("write_firstboot_marker", lambda: write_marker(root))
    logger.info("=== First boot stage 1 complete ===")
    return True


def trust_desktop_files(home: Optional[Path] = None) -> List[Path]:
    """Mark ~/Desktop/*.desktop as trusted so launchers start without a prompt."""

    desktop = Path(home or Path.home()) / "Desktop"
    if not desktop.is_dir() or not shutil.which("gio"):
        return []
    trusted: List[Path] = []
    for f in sorted(desktop.glob("*.desktop")):
        if f.is_file() and run_cmd(["gio", "set", str(f), "metadata::trusted", "true"], check=False).ok:
            trusted.append(f)
    return trusted


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="sky1-firstboot")
    sub = p.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run stage-1 first-boot provisioning")
    run_p.add_argument("--root", default="/", help="System root (for testing)")
    run_p.add_argument("--log", default=DEFAULT_LOG_PATH)

    trust_p = sub.add_parser("trust-desktop", help="Mark desktop launchers as trusted")
    trust_p.add_argument("--home", default=None)

    args = p.parse_args(argv)

    if args.command == "trust-desktop":
        trust_desktop_files(Path(args.home) if args.home else None)
        return 0

    configure_logging(log_path=args.log)
    logger.info("=== Sky1 First Boot ===")
    try:
        run_firstboot(Path(args.root))
    except OSError:
        logger.exception("Could not write first-boot marker; provisioning will run again next boot")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
