from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..context import ImageCtx
from ..lib.identity import scrub_identity

logger = logging.getLogger(__name__)

# Directory contents emptied before the image is sealed; the directories stay.
EMPTIED_DIRS = ("tmp", "var/lib/apt/lists")
REMOVED_FILES = ("root/.bash_history",)


def _empty_dir(path: Path) -> None:
    if not path.is_dir():
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def finalize_rootfs(root: Path) -> None:
    root = Path(root)
    for deb in (root / "var/cache/apt/archives").glob("*.deb"):
        deb.unlink()
    for rel in EMPTIED_DIRS:
        _empty_dir(root / rel)
    for rel in REMOVED_FILES:
        (root / rel).unlink(missing_ok=True)
    logger.info("Removed package caches and session leftovers")


class ScrubIdentityStep:
    step_id = "60_scrub_identity"
    title = "Clearing machine identity"

    def run(self, ctx: ImageCtx) -> None:
        scrub_identity(ctx.target_root)
        finalize_rootfs(ctx.target_root)
