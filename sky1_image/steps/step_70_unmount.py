from __future__ import annotations

import logging

from ..context import ImageCtx, release_resources
from ..lib.command import run_cmd

logger = logging.getLogger(__name__)


class UnmountStep:
    step_id = "70_unmount"
    title = "Unmounting image"

    def run(self, ctx: ImageCtx) -> None:
        run_cmd(["sync"])
        # Explicit unmounts propagate failures; the cleanup path would only warn.
        ctx.mounts.unmount_to(0)
        release_resources(ctx)
