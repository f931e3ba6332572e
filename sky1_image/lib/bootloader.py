from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Sequence

from ..boards import BOARDS, BoardVariant

logger = logging.getLogger(__name__)

EFI_TARGETS = ("EFI/BOOT/BOOTAA64.EFI", "EFI/sky1/grubaa64.efi")
GRUB_CFG_REL = "GRUB/grub.cfg"
DTB_DIR_REL = "boot/dtbs"

CMDLINE = " ".join(
    [
        "loglevel=7 console=tty0 console=ttyAMA2,115200",
        "efi=noruntime earlycon=efifb earlycon=pl011,0x040d0000 acpi=off",
        "clk_ignore_unused linlon_dp.enable_fb=1 linlon_dp.enable_render=0",
        "fbcon=map:01111111 keep_bootcon panic=30",
    ]
)


def kernel_cmdline(root_uuid: str) -> str:
    return f"{CMDLINE} root=UUID={root_uuid} rootwait rw"


def install_grub_efi(*, efi_dir: Path, grub_binary: Path) -> List[Path]:
    """Copy the pre-built GRUB to the removable-media path and the vendor path."""

    efi_dir = Path(efi_dir)
    (efi_dir / "GRUB").mkdir(parents=True, exist_ok=True)
    installed: List[Path] = []
    if not Path(grub_binary).is_file():
        logger.warning("Patched GRUB not found at %s; image will not boot without one", grub_binary)
        for rel in EFI_TARGETS:
            (efi_dir / rel).parent.mkdir(parents=True, exist_ok=True)
        return installed

    for rel in EFI_TARGETS:
        dst = efi_dir / rel
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(grub_binary, dst)
        installed.append(dst)
    logger.info("GRUB installed: %s", ", ".join(str(p) for p in installed))
    return installed


def stage_dtbs(*, target_root: Path, kernel_version: str, boards: Sequence[BoardVariant] = BOARDS) -> List[BoardVariant]:
    """Copy the kernel's sky1 DTBs into /boot/dtbs; return boards whose DTB is missing.

    A missing DTB is only logged: the image still boots on the other boards,
    and first boot prunes the menu anyway.
    """

    target_root = Path(target_root)
    dtb_dir = target_root / DTB_DIR_REL
    dtb_dir.mkdir(parents=True, exist_ok=True)

    source = target_root / f"usr/lib/linux-image-{kernel_version}/cix"
    if source.is_dir():
        logger.info("Copying DTBs from %s", source)
        for dtb in sorted(source.glob("sky1-*.dtb")):
            shutil.copy2(dtb, dtb_dir / dtb.name)
    else:
        logger.warning("DTB source %s not found", source)

    missing = [b for b in boards if not (dtb_dir / b.dtb).is_file()]
    for b in missing:
        logger.warning("%s not found (board %s)", b.dtb, b.label)
    return missing


def render_grub_cfg(
    *,
    kernel_version: str,
    root_uuid: str,
    boards: Sequence[BoardVariant] = BOARDS,
) -> str:
    """GRUB config with one entry per board and no default.

    The real board is unknown at build time, so the menu waits forever until
    first boot prunes it down to one entry.
    """

    cmdline = kernel_cmdline(root_uuid)
    out = [
        "# Sky1 Linux GRUB Configuration",
        "# Generated by sky1-build-image",
        "# Subsequent updates managed by /usr/share/sky1/update-boot",
        "",
        "# No default - require user selection on first boot",
        "# First boot removes the entries for other boards",
        "set timeout=-1",
        "",
        "insmod part_gpt",
        "insmod fat",
        "insmod ext2",
        "",
        f"search.fs_uuid {root_uuid} root",
        "set prefix=($root)/boot/grub",
        "",
    ]
    for b in boards:
        out += [
            f"menuentry 'Sky1 Linux {kernel_version} - {b.label}' {{",
            f"    devicetree ($root)/{DTB_DIR_REL}/{b.dtb}",
            f"    linux ($root)/boot/vmlinuz-{kernel_version} \\",
            f"        {cmdline}",
            f"    initrd ($root)/boot/initrd.img-{kernel_version}",
            "}",
            "",
        ]
    return "\n".join(out)


def write_grub_cfg(*, efi_dir: Path, contents: str) -> Path:
    cfg = Path(efi_dir) / GRUB_CFG_REL
    cfg.parent.mkdir(parents=True, exist_ok=True)
    cfg.write_text(contents, encoding="utf-8")
    logger.info("Wrote GRUB config: %s", cfg)
    return cfg


def grub_cfg_path(efi_dir: Path) -> Path:
    return Path(efi_dir) / GRUB_CFG_REL
