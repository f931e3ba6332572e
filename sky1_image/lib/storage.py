from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import ResourceError
from .command import run_cmd

logger = logging.getLogger(__name__)

# Room needed next to the image for filesystem metadata; data blocks are allocated lazily.
MIN_FREE_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class PartitionPlan:
    image: Path
    size_gb: int
    esp_size_mib: int = 512
    esp_label: str = "SKY1EFI"
    root_label: str = "sky1root"


def part_path(disk: str, n: int) -> str:
    # loop/nvme/mmcblk devices use p suffix
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


def create_backing_file(path: Path, size_gb: int) -> Path:
    """Allocate a sparse file of size_gb GiB, replacing any stale image or its .xz."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    free = shutil.disk_usage(path.parent).free
    if free < MIN_FREE_BYTES:
        raise ResourceError(
            f"Not enough free space in {path.parent} for image metadata "
            f"({free // (1024 * 1024)} MiB free, need {MIN_FREE_BYTES // (1024 * 1024)} MiB)"
        )

    for stale in (path, path.with_name(path.name + ".xz")):
        if stale.exists():
            logger.info("Removing stale %s", stale)
            stale.unlink()

    with open(path, "wb") as fh:
        fh.truncate(size_gb * 1024 ** 3)

    logger.info("Created sparse image %s (%s GiB)", path, size_gb)
    return path


def partition(plan: PartitionPlan) -> None:
    """Write a GPT: 1 = ESP (FAT32, esp flag), 2 = root (rest of the disk, no gap).

    The ESP has to be partition 1 so firmware enumerates it first.
    """

    img = str(plan.image)
    esp_end = f"{plan.esp_size_mib}MiB"
    logger.info("Partitioning %s (ESP %s MiB + root)", img, plan.esp_size_mib)

    run_cmd(["parted", "-s", img, "mklabel", "gpt"])
    run_cmd(["parted", "-s", img, "mkpart", "ESP", "fat32", "1MiB", esp_end])
    run_cmd(["parted", "-s", img, "set", "1", "esp", "on"])
    run_cmd(["parted", "-s", img, "mkpart", "root", "ext4", esp_end, "100%"])


def format_partitions(*, esp_part: str, root_part: str, plan: PartitionPlan) -> None:
    # The bundled GRUB cannot read ext4 with metadata_csum.
    run_cmd(["mkfs.vfat", "-F", "32", "-n", plan.esp_label, esp_part])
    run_cmd(["mkfs.ext4", "-O", "^metadata_csum", "-L", plan.root_label, "-q", root_part])
    logger.info("Formatted %s (vfat %s) and %s (ext4 %s)", esp_part, plan.esp_label, root_part, plan.root_label)
