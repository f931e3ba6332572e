"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from sky1_image.build_config import BuildConfig
from sky1_image.context import ImageCtx
from sky1_image.models import BuildRequest


def _contains(argv: Sequence[str], words: Sequence[str]) -> bool:
    n = len(words)
    return any(list(argv[i : i + n]) == list(words) for i in range(len(argv) - n + 1))


@dataclass
class Rule:
    words: Tuple[str, ...]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    # Called with argv; may return a returncode overriding the rule's.
    effect: Optional[Callable[[List[str]], Optional[int]]] = None


@dataclass
class FakeRun:
    """Stands in for subprocess.run behind run_cmd.

    Rules match when their words appear contiguously in argv; the most
    recently added matching rule wins. Unmatched commands succeed silently.
    """

    calls: List[List[str]] = field(default_factory=list)
    inputs: List[Optional[str]] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)

    def on(self, *words: str, returncode: int = 0, stdout: str = "", stderr: str = "", effect=None) -> None:
        self.rules.append(Rule(tuple(words), returncode, stdout, stderr, effect))

    def __call__(self, argv, **kwargs: Any) -> subprocess.CompletedProcess:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.inputs.append(kwargs.get("input"))
        for rule in reversed(self.rules):
            if _contains(argv, rule.words):
                rc = rule.returncode
                if rule.effect is not None:
                    override = rule.effect(argv)
                    if override is not None:
                        rc = override
                return subprocess.CompletedProcess(argv, rc, rule.stdout, rule.stderr)
        return subprocess.CompletedProcess(argv, 0, "", "")

    def ran(self, *words: str) -> List[List[str]]:
        return [c for c in self.calls if _contains(c, words)]

    def index(self, *words: str) -> int:
        for i, c in enumerate(self.calls):
            if _contains(c, words):
                return i
        raise AssertionError(f"{' '.join(words)!r} never ran; calls: {self.calls}")


@pytest.fixture
def fake_run(monkeypatch: pytest.MonkeyPatch) -> FakeRun:
    fake = FakeRun()
    monkeypatch.setattr("sky1_image.lib.command.subprocess.run", fake)
    return fake


@pytest.fixture
def no_tools(monkeypatch: pytest.MonkeyPatch) -> Dict[str, str]:
    """shutil.which only finds the tools a test adds to the returned dict."""

    available: Dict[str, str] = {}
    monkeypatch.setattr("shutil.which", lambda name, *a, **kw: available.get(name))
    return available


@pytest.fixture
def image_ctx(tmp_path: Path) -> ImageCtx:
    root = tmp_path / "mnt"
    root.mkdir()
    return ImageCtx(
        request=BuildRequest.from_strings("gnome", "desktop"),
        cfg=BuildConfig(raw={"paths": {"build_dir": str(tmp_path / "build")}}),
        chroot_source=tmp_path / "chroot",
        image_path=tmp_path / "out.img",
        mount_dir=root,
    )
