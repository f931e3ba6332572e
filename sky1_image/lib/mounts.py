from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .command import run_cmd

logger = logging.getLogger(__name__)


def is_mounted(path: str | Path) -> bool:
    r = run_cmd(["mountpoint", "-q", str(path)], check=False)
    return r.returncode == 0


class MountSet:
    """Mounts made by this process, torn down strictly in reverse order."""

    def __init__(self) -> None:
        self._mounts: List[str] = []

    def __len__(self) -> int:
        return len(self._mounts)

    @property
    def paths(self) -> List[str]:
        return list(self._mounts)

    def mount(self, source: str, target: str | Path, *, bind: bool = False, fstype: Optional[str] = None) -> None:
        target = str(target)
        Path(target).mkdir(parents=True, exist_ok=True)
        argv = ["mount"]
        if bind:
            argv.append("--bind")
        if fstype:
            argv += ["-t", fstype]
        run_cmd([*argv, source, target])
        self._mounts.append(target)

    def unmount(self, target: str | Path) -> None:
        """Unmount a single path; it must be the most recent mount still held."""

        target = str(target)
        if not self._mounts or self._mounts[-1] != target:
            raise ValueError(f"{target} is not the innermost mount (held: {self._mounts})")
        self._mounts.pop()
        if is_mounted(target):
            run_cmd(["umount", target])
        else:
            logger.info("%s already unmounted", target)

    def unmount_to(self, depth: int) -> None:
        """Unmount everything above the first `depth` entries, innermost first."""

        while len(self._mounts) > depth:
            self.unmount(self._mounts[-1])

    def unmount_all(self, *, lazy_fallback: bool = True) -> None:
        """Best-effort teardown for cleanup paths; safe to call repeatedly."""

        while self._mounts:
            target = self._mounts.pop()
            if not is_mounted(target):
                continue
            r = run_cmd(["umount", target], check=False)
            if r.returncode != 0 and lazy_fallback:
                logger.warning("umount %s failed (%s); retrying lazily", target, r.stderr.strip())
                run_cmd(["umount", "-l", target], check=False)
