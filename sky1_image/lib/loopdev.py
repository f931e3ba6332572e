from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from ..errors import DeviceTimeoutError, ResourceError
from .command import run_cmd
from .retry import wait_until
from .storage import part_path

logger = logging.getLogger(__name__)

PARTITION_WAIT_S = 10.0


@dataclass(frozen=True)
class LoopBinding:
    loop: str
    esp_part: str
    root_part: str

    @property
    def partitions(self) -> Tuple[str, str]:
        return (self.esp_part, self.root_part)


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def is_attached(loop: str) -> bool:
    """True while the kernel still has a backing file for this loop device."""

    name = os.path.basename(loop)
    return Path(f"/sys/block/{name}/loop/backing_file").exists()


def attach(image: Path) -> LoopBinding:
    """Bind image to a free loop device with partition scanning.

    Partition nodes show up asynchronously; see wait_for_partitions().
    """

    r = run_cmd(["losetup", "--find", "--show", "--partscan", str(image)])
    loop = r.stdout.strip()
    if not loop:
        raise ResourceError(f"losetup returned no device for {image}")

    binding = LoopBinding(loop=loop, esp_part=part_path(loop, 1), root_part=part_path(loop, 2))
    logger.info("Loop device: %s (EFI %s, root %s)", binding.loop, binding.esp_part, binding.root_part)
    return binding


def wait_for_partitions(binding: LoopBinding, *, wait_s: float = PARTITION_WAIT_S, **retry_kw) -> None:
    def missing() -> List[str]:
        return [p for p in binding.partitions if not is_block_device(p)]

    try:
        elapsed = wait_until(lambda: not missing(), timeout_s=wait_s, **retry_kw)
    except TimeoutError as e:
        waited = float(e.args[0]) if e.args else wait_s
        gone = missing()
        raise DeviceTimeoutError(
            f"Partition devices not found after {waited:.1f}s: {', '.join(gone)}",
            waited_s=waited,
            missing=gone,
        ) from None
    logger.info("Partition devices ready after %.2fs", elapsed)


def detach(loop: str) -> bool:
    """Release a loop device. Returns False (and does nothing) if it is already gone."""

    if not loop or not is_attached(loop):
        logger.info("Loop device %s already detached", loop or "<none>")
        return False
    run_cmd(["losetup", "-d", loop])
    logger.info("Detached %s", loop)
    return True
