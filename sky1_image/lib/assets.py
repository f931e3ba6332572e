from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
BUILTIN_OVERLAY = PACKAGE_ROOT / "data" / "overlay"
STAGED_PYTHON_REL = "usr/lib/sky1/python"


def copy_tree(src: str | Path, dst: str | Path, *, ignore: Iterable[str] = ()) -> int:
    """Copy src over dst, keeping modes and symlinks; files in src win. Returns files copied."""

    s = Path(src)
    d = Path(dst)
    if not s.exists():
        raise FileNotFoundError(str(src))

    skip = set(ignore)
    copied = 0
    d.mkdir(parents=True, exist_ok=True)
    for item in sorted(s.rglob("*")):
        rel = item.relative_to(s)
        if skip.intersection(rel.parts):
            continue
        out = d / rel
        if item.is_symlink():
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink() or out.exists():
                out.unlink()
            os.symlink(os.readlink(item), out)
            copied += 1
        elif item.is_dir():
            out.mkdir(parents=True, exist_ok=True)
            shutil.copystat(item, out)
        else:
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink():
                out.unlink()
            shutil.copy2(item, out)
            copied += 1
    return copied


def apply_overlay(src: str | Path, target_root: str | Path) -> int:
    n = copy_tree(src, target_root)
    logger.info("Applied overlay %s -> %s (%d files)", src, target_root, n)
    return n


def stage_package(target_root: str | Path) -> Path:
    """Install this package into the image so first-boot units can run it."""

    dst = Path(target_root) / STAGED_PYTHON_REL / PACKAGE_ROOT.name
    if dst.exists():
        shutil.rmtree(dst)
    copy_tree(PACKAGE_ROOT, dst, ignore=("__pycache__",))
    logger.info("Staged %s into %s", PACKAGE_ROOT.name, dst)
    return dst
