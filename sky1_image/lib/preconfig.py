from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .command import run_cmd

logger = logging.getLogger(__name__)


def _unquote(value: str) -> str:
    v = value.strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
        return v[1:-1]
    return v


def parse_preconfig(text: str) -> Dict[str, str]:
    """Parse key=value lines; '#' comments, blank lines and lines without '=' are skipped."""

    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = _unquote(value)
    return values


@dataclass(frozen=True)
class Preconfig:
    hostname: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    password_hash: Optional[str] = None

    @classmethod
    def from_values(cls, values: Dict[str, str]) -> "Preconfig":
        def get(key: str) -> Optional[str]:
            return values.get(key) or None

        return cls(
            hostname=get("HOSTNAME"),
            username=get("USERNAME"),
            password=get("PASSWORD"),
            password_hash=get("PASSWORD_HASH"),
        )


def secure_erase(path: Path) -> None:
    """Overwrite then delete; the file may hold a credential."""

    path = Path(path)
    if not path.exists():
        return

    if shutil.which("shred"):
        r = run_cmd(["shred", "-u", str(path)], check=False)
        if r.ok and not path.exists():
            return
        logger.warning("shred failed on %s; overwriting manually", path)

    try:
        size = path.stat().st_size
        with open(path, "r+b") as fh:
            fh.write(b"\0" * size)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as e:
        logger.warning("Could not overwrite %s before removal: %s", path, e)
    path.unlink(missing_ok=True)
