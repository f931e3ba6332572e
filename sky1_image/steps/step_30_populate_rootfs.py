from __future__ import annotations

import logging

from ..context import ImageCtx
from ..lib.command import run_cmd

logger = logging.getLogger(__name__)

# Virtual filesystems, runtime state and caches never go into the image.
RSYNC_EXCLUDES = (
    "/proc/*",
    "/sys/*",
    "/dev/*",
    "/run/*",
    "/tmp/*",
    "/var/cache/apt/archives/*.deb",
    "/var/lib/apt/lists/*",
)


def rsync_argv(source: str, dest: str) -> list[str]:
    argv = ["rsync", "-aHAXq", "--numeric-ids"]
    argv += [f"--exclude={pattern}" for pattern in RSYNC_EXCLUDES]
    argv += [source.rstrip("/") + "/", dest.rstrip("/") + "/"]
    return argv


class PopulateRootfsStep:
    step_id = "30_populate_rootfs"
    title = "Copying rootfs from chroot"

    def run(self, ctx: ImageCtx) -> None:
        logger.info("Copying rootfs from %s (this may take a while)...", ctx.chroot_source)
        run_cmd(rsync_argv(str(ctx.chroot_source), str(ctx.target_root)))
