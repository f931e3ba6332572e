from __future__ import annotations

import datetime as _dt
import enum
from dataclasses import dataclass
from typing import Optional, Type, TypeVar

from .errors import ValidationError

E = TypeVar("E", bound=enum.Enum)


class Desktop(str, enum.Enum):
    GNOME = "gnome"
    KDE = "kde"
    XFCE = "xfce"
    NONE = "none"


class Loadout(str, enum.Enum):
    MINIMAL = "minimal"
    DESKTOP = "desktop"
    SERVER = "server"
    DEVELOPER = "developer"


class Track(str, enum.Enum):
    MAIN = "main"
    LATEST = "latest"
    RC = "rc"
    NEXT = "next"


class OutputFormat(str, enum.Enum):
    ISO = "iso"
    IMAGE = "image"


def parse_choice(enum_cls: Type[E], value: str, *, what: str) -> E:
    """Map a CLI string onto an enum member; unknown values are an error, never a default."""

    try:
        return enum_cls(value)
    except ValueError:
        valid = " ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise ValidationError(f"Unknown {what} {value!r} (valid: {valid})") from None


@dataclass(frozen=True)
class BuildRequest:
    desktop: Desktop
    loadout: Loadout
    track: Track = Track.MAIN
    image_size_gb: int = 14

    @classmethod
    def from_strings(
        cls,
        desktop: str,
        loadout: str,
        track: str = "main",
        image_size_gb: int = 14,
    ) -> "BuildRequest":
        if image_size_gb <= 0:
            raise ValidationError(f"Image size must be positive, got {image_size_gb}")
        return cls(
            desktop=parse_choice(Desktop, desktop, what="desktop"),
            loadout=parse_choice(Loadout, loadout, what="loadout"),
            track=parse_choice(Track, track, what="track"),
            image_size_gb=image_size_gb,
        )

    def image_name(self, date: Optional[_dt.date] = None) -> str:
        """sky1-linux-<desktop>-<loadout>[-<track>]-YYYYMMDD.img"""

        stamp = (date or _dt.date.today()).strftime("%Y%m%d")
        parts = ["sky1-linux", self.desktop.value, self.loadout.value]
        if self.track is not Track.MAIN:
            parts.append(self.track.value)
        parts.append(stamp)
        return "-".join(parts) + ".img"

    def iso_name(self, date: Optional[_dt.date] = None) -> str:
        stamp = (date or _dt.date.today()).strftime("%Y%m%d")
        return f"sky1-linux-{self.desktop.value}-{self.loadout.value}-{stamp}.iso"
