"""Hardware variants the image boots on.

The build writes one GRUB entry per variant; first boot keeps only the one
matching the device tree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


@dataclass(frozen=True)
class BoardVariant:
    key: str
    label: str
    dtb: str
    # Substrings of the device-tree "compatible" string identifying the board.
    compatible: Tuple[str, ...]

    @property
    def dtb_ref(self) -> str:
        # Leading slash so "sky1-orion-o6.dtb" never matches inside "...-o6n.dtb" paths.
        return f"/{self.dtb}"


BOARDS: Tuple[BoardVariant, ...] = (
    BoardVariant(key="o6", label="O6", dtb="sky1-orion-o6.dtb", compatible=("orion-o6",)),
    BoardVariant(key="o6n", label="O6N", dtb="sky1-orion-o6n.dtb", compatible=("orion-o6n",)),
    BoardVariant(
        key="opi6plus",
        label="Orange Pi 6 Plus",
        dtb="sky1-orangepi-6-plus.dtb",
        compatible=("orangepi-6-plus",),
    ),
)


def match_board(compatible: str, boards: Sequence[BoardVariant] = BOARDS) -> Optional[BoardVariant]:
    """Classify a compatible string; longest identifier wins (o6n before o6)."""

    needle = compatible.strip().lower()
    if not needle:
        return None
    candidates = sorted(
        ((ident, b) for b in boards for ident in b.compatible),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    for ident, board in candidates:
        if ident in needle:
            return board
    return None
