from __future__ import annotations

import contextlib
import logging
import shutil
from pathlib import Path
from typing import Iterator, Sequence

from .command import CmdResult, run_cmd
from .mounts import MountSet

logger = logging.getLogger(__name__)

HOST_BINDS = ("/dev", "/proc", "/sys")


def chroot_cmd(target_root: str | Path, argv: Sequence[str], *, check: bool = True) -> CmdResult:
    """Run a command inside target root."""

    return run_cmd(["chroot", str(target_root), *argv], check=check)


@contextlib.contextmanager
def chroot_binds(
    target_root: str | Path,
    mounts: MountSet,
    *,
    sources: Sequence[str] = HOST_BINDS,
) -> Iterator[None]:
    """Bind host /dev, /proc, /sys into target root for package tooling.

    The binds are registered in `mounts` so an outer cleanup can still remove
    them if this block never finishes; on a normal exit they are removed here,
    innermost first.
    """

    depth = len(mounts)
    try:
        for src in sources:
            mounts.mount(src, Path(target_root) / src.lstrip("/"), bind=True)
        yield
    finally:
        mounts.unmount_to(depth)


def copy_resolv_conf(target_root: str | Path) -> None:
    """Give the chroot the host's DNS so apt can reach the repository."""

    dst = Path(target_root) / "etc/resolv.conf"
    dst.parent.mkdir(parents=True, exist_ok=True)
    if dst.is_symlink():
        dst.unlink()
    shutil.copyfile("/etc/resolv.conf", dst)
