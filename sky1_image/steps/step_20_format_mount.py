from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from ..context import ImageCtx
from ..lib.storage import format_partitions

logger = logging.getLogger(__name__)


class FormatMountStep:
    step_id = "20_format_mount"
    title = "Formatting and mounting partitions"

    def run(self, ctx: ImageCtx) -> None:
        if ctx.loop is None:
            raise RuntimeError("No loop device attached; run the create-image step first")

        format_partitions(esp_part=ctx.loop.esp_part, root_part=ctx.loop.root_part, plan=ctx.partition_plan)

        ctx.mount_dir = Path(tempfile.mkdtemp(prefix="sky1-image-"))
        ctx.mounts.mount(ctx.loop.root_part, ctx.mount_dir)
        ctx.mounts.mount(ctx.loop.esp_part, ctx.efi_dir)

        logger.info("Mounted %s at %s", ctx.loop.root_part, ctx.mount_dir)
