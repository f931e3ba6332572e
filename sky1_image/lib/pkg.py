from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .chroot import chroot_cmd

logger = logging.getLogger(__name__)

_NONINTERACTIVE = ["env", "DEBIAN_FRONTEND=noninteractive"]


def _apt(target_root: str | Path, args: Sequence[str], *, check: bool = True):
    return chroot_cmd(target_root, [*_NONINTERACTIVE, "apt-get", *args], check=check)


def apt_update(target_root: str | Path, *, quiet: bool = True) -> None:
    _apt(target_root, ["update", *(["-qq"] if quiet else [])])


def apt_install(target_root: str | Path, packages: Sequence[str], *, quiet: bool = True) -> None:
    if not packages:
        return
    _apt(target_root, ["install", "-y", *(["-qq"] if quiet else []), *packages])


def apt_remove(target_root: str | Path, packages: Sequence[str], *, purge: bool = False) -> None:
    if not packages:
        return
    _apt(target_root, ["remove", "-y", *(["--purge"] if purge else []), *packages])


def apt_purge(target_root: str | Path, packages: Sequence[str]) -> None:
    if not packages:
        return
    _apt(target_root, ["purge", "-y", *packages])


def apt_dist_upgrade(target_root: str | Path) -> None:
    _apt(target_root, ["dist-upgrade", "-y"])


def apt_autoremove(target_root: str | Path) -> None:
    _apt(target_root, ["autoremove", "-y", "-qq"])


def apt_clean(target_root: str | Path) -> None:
    _apt(target_root, ["clean"])


def dpkg_version(target_root: str | Path, package: str) -> Optional[str]:
    r = chroot_cmd(target_root, ["dpkg-query", "-W", "-f=${Version}", package], check=False)
    v = r.stdout.strip()
    return v if r.returncode == 0 and v else None


def parse_depends(raw: str) -> List[str]:
    """Package names from a dpkg Depends field, version constraints and alternatives dropped."""

    names: List[str] = []
    for clause in raw.split(","):
        for alt in clause.split("|"):
            name = alt.strip().split(" ", 1)[0].split(":", 1)[0]
            if name and name not in names:
                names.append(name)
    return names


def dpkg_depends(target_root: str | Path, package: str) -> List[str]:
    r = chroot_cmd(target_root, ["dpkg-query", "-W", "-f=${Depends}", package], check=False)
    if r.returncode != 0:
        return []
    return parse_depends(r.stdout)


def dpkg_installed_packages(target_root: str | Path) -> List[str]:
    r = chroot_cmd(
        target_root,
        ["dpkg-query", "-W", "-f=${Package} ${db:Status-Abbrev}\n"],
        check=False,
    )
    out: List[str] = []
    for line in r.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1].startswith("ii"):
            out.append(parts[0])
    return out


def parse_policy(text: str) -> Dict[str, Optional[str]]:
    """Installed/Candidate versions from `apt-cache policy <pkg>` output."""

    info: Dict[str, Optional[str]] = {"installed": None, "candidate": None}
    for line in text.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key in info:
            v = value.strip()
            info[key] = None if v in {"", "(none)"} else v
    return info


def apt_candidate_version(target_root: str | Path, package: str) -> Optional[str]:
    r = chroot_cmd(target_root, ["apt-cache", "policy", package], check=False)
    return parse_policy(r.stdout)["candidate"]
