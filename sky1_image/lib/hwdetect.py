from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..boards import BOARDS, BoardVariant, match_board

logger = logging.getLogger(__name__)

COMPATIBLE_REL = "sys/firmware/devicetree/base/compatible"


def read_compatible(root: Path = Path("/")) -> Optional[str]:
    """First entry of the device-tree compatible list (NUL separated), or None."""

    p = Path(root) / COMPATIBLE_REL
    try:
        raw = p.read_bytes()
    except OSError:
        return None
    first = raw.split(b"\0", 1)[0].decode("utf-8", errors="ignore").strip()
    return first or None


def detect_board(root: Path = Path("/")) -> Optional[BoardVariant]:
    compatible = read_compatible(root)
    if compatible is None:
        logger.info("No device tree found, skipping board detection")
        return None

    board = match_board(compatible, BOARDS)
    if board is None:
        logger.warning("Unknown board: %s, keeping all GRUB entries", compatible)
        return None

    logger.info("Detected board: %s (compatible: %s)", board.key, compatible)
    return board
