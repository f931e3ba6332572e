from __future__ import annotations

import fnmatch
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from ..errors import IntegrityError
from ..models import Track

logger = logging.getLogger(__name__)

_CHUNK_RE = re.compile(r"(\d+)")


def version_key(version: str) -> Tuple[Union[str, int], ...]:
    """Sort key comparing digit runs numerically, like `sort -V`.

    re.split with a capture group alternates text/number, so keys line up
    position by position and never compare str against int.
    """

    return tuple(int(c) if i % 2 else c for i, c in enumerate(_CHUNK_RE.split(version)))


def kernel_patterns(track: Track) -> Tuple[str, ...]:
    """Glob patterns (over the version string) for kernels built for a track.

    The `.r*` form matches package revisions such as 6.18.8-sky1.r2.
    """

    if track is Track.MAIN:
        return ("*-sky1", "*-sky1.r*")
    return (f"*-sky1-{track.value}", f"*-sky1-{track.value}.r*")


def meta_packages(track: Track) -> Tuple[str, ...]:
    """Kernel meta packages selecting a track."""

    suffix = "" if track is Track.MAIN else f"-{track.value}"
    return (f"linux-image-sky1{suffix}", f"linux-headers-sky1{suffix}")


def all_meta_packages() -> Tuple[str, ...]:
    out: List[str] = []
    for t in Track:
        suffix = "" if t is Track.MAIN else f"-{t.value}"
        out += [f"linux-image-sky1{suffix}", f"linux-headers-sky1{suffix}", f"linux-sky1{suffix}"]
    return tuple(out)


def select_kernel(versions: Iterable[str], track: Track) -> Optional[str]:
    """Highest version matching the track's patterns, or None."""

    patterns = kernel_patterns(track)
    matches = [v for v in versions if any(fnmatch.fnmatchcase(v, p) for p in patterns)]
    if not matches:
        return None
    return max(matches, key=version_key)


def installed_kernels(boot_dir: Path) -> List[str]:
    return sorted(
        (p.name[len("vmlinuz-"):] for p in Path(boot_dir).glob("vmlinuz-*") if p.is_file()),
        key=version_key,
    )


def resolve_kernel(boot_dir: Path, track: Track) -> str:
    """Pick the kernel for this track from <root>/boot and check its initrd is there.

    No match is fatal: shipping some other track's kernel silently would be worse
    than no image.
    """

    available = installed_kernels(boot_dir)
    version = select_kernel(available, track)
    if version is None:
        raise IntegrityError(
            f"No kernel for track {track.value!r} in {boot_dir} "
            f"(patterns {', '.join(kernel_patterns(track))}; found: {', '.join(available) or 'none'})",
            hint=f"Run sky1-update-chroot <desktop> {track.value} to install the track's kernel.",
        )

    initrd = Path(boot_dir) / f"initrd.img-{version}"
    if not initrd.is_file():
        raise IntegrityError(
            f"initrd.img-{version} not found in {boot_dir}",
            hint="initramfs-tools probably failed to install; check the build log and do a clean rebuild.",
        )

    logger.info("Kernel version: %s", version)
    return version
