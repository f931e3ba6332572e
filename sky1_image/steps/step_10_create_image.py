from __future__ import annotations

import logging

from ..context import ImageCtx
from ..lib.loopdev import attach, wait_for_partitions
from ..lib.storage import create_backing_file, partition

logger = logging.getLogger(__name__)


class CreateImageStep:
    step_id = "10_create_image"
    title = "Creating sparse image, GPT and loop device"

    def run(self, ctx: ImageCtx) -> None:
        plan = ctx.partition_plan
        create_backing_file(plan.image, plan.size_gb)
        partition(plan)

        # Record the binding before waiting so cleanup detaches it on timeout.
        ctx.loop = attach(plan.image)
        wait_for_partitions(ctx.loop)

        ctx.decisions["loop"] = ctx.loop.loop
