from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_APT_URL = "https://sky1-linux.github.io/apt"


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def build_dir(self) -> Path:
        """Live-build tree holding config/, desktop-choice/, package-loadouts/."""
        return Path(self._section("paths").get("build_dir") or ".")

    @property
    def output_dir(self) -> Path:
        return Path(self._section("paths").get("output_dir") or self.build_dir)

    @property
    def log_path(self) -> str:
        return str(self._section("paths").get("log") or "logs/sky1-build.log")

    @property
    def state_path(self) -> str:
        return str(self._section("paths").get("state") or "build/build_state.json")

    @property
    def image_size_gb(self) -> int:
        return int(self._section("image").get("size_gb") or 14)

    @property
    def efi_size_mib(self) -> int:
        return int(self._section("image").get("efi_size_mib") or 512)

    @property
    def grub_efi_path(self) -> Path:
        p = self._section("image").get("grub_efi") or "config/includes.chroot/usr/share/sky1/grubaa64-install.efi"
        return self.build_dir / p

    @property
    def image_overlay_dir(self) -> Path:
        p = self._section("image").get("overlay_dir") or "config/includes.chroot.image"
        return self.build_dir / p

    @property
    def apt_url(self) -> str:
        return str(self._section("apt").get("url") or DEFAULT_APT_URL)

    def chroot_dir(self, desktop: str) -> Path:
        return self.build_dir / "desktop-choice" / desktop / "chroot"


def load_build_config(path: Optional[str]) -> BuildConfig:
    """Load the YAML build config; None means all defaults."""

    if path is None:
        return BuildConfig()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p.name} must contain a mapping/object")

    return BuildConfig(raw=raw)
