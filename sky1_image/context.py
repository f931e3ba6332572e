from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .build_config import BuildConfig
from .errors import CommandError
from .lib.loopdev import LoopBinding, detach
from .lib.mounts import MountSet, is_mounted
from .lib.storage import PartitionPlan
from .models import BuildRequest

logger = logging.getLogger(__name__)


@dataclass
class ImageCtx:
    """Everything one disk-image build holds: inputs, acquired resources, decisions.

    Components receive this handle rather than reaching for global paths, so
    the same code runs against a scratch directory in tests.
    """

    request: BuildRequest
    cfg: BuildConfig
    chroot_source: Path
    image_path: Path
    skip_compress: bool = False
    loop: Optional[LoopBinding] = None
    mount_dir: Optional[Path] = None
    mounts: MountSet = field(default_factory=MountSet)
    decisions: Dict[str, Any] = field(default_factory=dict)
    artifact: Optional[Path] = None

    @property
    def target_root(self) -> Path:
        if self.mount_dir is None:
            raise RuntimeError("Target root is not mounted yet")
        return self.mount_dir

    @property
    def efi_dir(self) -> Path:
        return self.target_root / "boot/efi"

    @property
    def partition_plan(self) -> PartitionPlan:
        return PartitionPlan(
            image=self.image_path,
            size_gb=self.request.image_size_gb,
            esp_size_mib=self.cfg.efi_size_mib,
        )


def release_resources(ctx: ImageCtx) -> None:
    """Unmount everything, detach the loop device, remove the mount dir.

    Idempotent: each resource is checked before it is released, so this is
    safe after a partial failure, after a clean unmount step, or twice.
    """

    logger.info("Cleaning up...")
    ctx.mounts.unmount_all()

    if ctx.loop is not None:
        loop = ctx.loop
        ctx.loop = None
        try:
            detach(loop.loop)
        except CommandError as e:
            logger.error("Could not detach %s: %s", loop.loop, e)

    if ctx.mount_dir is not None:
        mount_dir = ctx.mount_dir
        if mount_dir.is_dir() and not is_mounted(mount_dir):
            try:
                mount_dir.rmdir()
            except OSError as e:
                logger.warning("Could not remove %s: %s", mount_dir, e)
                return
        ctx.mount_dir = None
