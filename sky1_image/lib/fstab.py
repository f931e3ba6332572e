from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..errors import ResourceError
from .command import run_cmd


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0


HEADER = (
    "# Sky1 Linux fstab (auto-generated for disk image)\n"
    "# <filesystem>   <mount>      <type>  <options>           <dump> <pass>\n"
)


def fs_uuid(dev: str) -> str:
    """Filesystem UUID of a freshly formatted partition, as blkid reports it."""

    uuid = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev]).stdout.strip()
    if not uuid:
        raise ResourceError(f"blkid reported no filesystem UUID for {dev}", hint="Was the partition formatted?")
    return uuid


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    lines = [HEADER.rstrip("\n")]
    for e in entries:
        lines.append(f"{e.spec:<16} {e.mountpoint:<12} {e.fstype:<7} {e.options:<19} {e.dump:<6} {e.passno}")
    return "\n".join(lines) + "\n"


def image_fstab(*, root_uuid: str, efi_uuid: str) -> str:
    return render_fstab(
        [
            FstabEntry(spec=f"UUID={root_uuid}", mountpoint="/", fstype="ext4", options="defaults,noatime", passno=1),
            FstabEntry(spec=f"UUID={efi_uuid}", mountpoint="/boot/efi", fstype="vfat", options="defaults,noatime", passno=2),
        ]
    )
