from __future__ import annotations

import logging
from pathlib import Path

from ..context import ImageCtx
from ..lib.command import run_streaming

logger = logging.getLogger(__name__)

XZ_ARGS = ("-T0", "-9", "-v")


def compressed_path(image: Path) -> Path:
    return image.with_name(image.name + ".xz")


class CompressStep:
    step_id = "80_compress"
    title = "Compressing image"

    def run(self, ctx: ImageCtx) -> None:
        if ctx.skip_compress:
            logger.info("Skipping compression (SKIP_COMPRESS=1)")
            ctx.artifact = ctx.image_path
        else:
            run_streaming(["xz", *XZ_ARGS, str(ctx.image_path)])
            ctx.artifact = compressed_path(ctx.image_path)

        size_mb = ctx.artifact.stat().st_size // (1024 * 1024)
        logger.info("Image: %s (%d MiB)", ctx.artifact, size_mb)
        ctx.decisions["artifact"] = str(ctx.artifact)
