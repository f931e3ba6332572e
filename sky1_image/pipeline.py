from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence

from .context import ImageCtx

logger = logging.getLogger(__name__)


class Step(Protocol):
    """One stage of the image pipeline."""

    step_id: str
    title: str

    def run(self, ctx: ImageCtx) -> None:
        ...


@dataclass
class PipelineResult:
    ran_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None


def run_pipeline(
    *,
    ctx: ImageCtx,
    steps: Sequence[Step],
    on_step_done: Optional[Callable[[str], None]] = None,
    result: Optional[PipelineResult] = None,
) -> PipelineResult:
    """Run steps strictly in order; the first failure stops the run.

    There is no resume: loop devices and mounts do not outlive the process,
    so every build starts from step one.
    """

    result = result if result is not None else PipelineResult()
    total = len(steps)

    for n, step in enumerate(steps, start=1):
        logger.info("[%d/%d] %s", n, total, step.title)
        try:
            step.run(ctx)
        except BaseException:
            result.failed_step = step.step_id
            raise
        result.ran_steps.append(step.step_id)
        if on_step_done is not None:
            on_step_done(step.step_id)

    return result
