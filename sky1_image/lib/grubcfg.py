"""Minimal grub.cfg block parser used to prune menu entries.

The config is split into an ordered list of blocks: ``MenuEntry`` for a
brace-balanced ``menuentry ... { ... }`` and ``Text`` for everything else.
Concatenating the blocks reproduces the input byte for byte, so filtering
entries and re-joining leaves untouched content exactly as it was.

An entry whose braces never balance (or that runs into the next
``menuentry``) is not treated as an entry: its header line is kept as text and
scanning resumes on the following line. A broken block therefore can never
swallow the entries after it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

_HEADER_RE = re.compile(r"^\s*menuentry[\s'\"]")
_TITLE_RE = re.compile(r"""^\s*menuentry\s+(?:'([^']*)'|"((?:[^"\\]|\\.)*)"|(\S+))""")


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class MenuEntry:
    text: str

    @property
    def title(self) -> str:
        m = _TITLE_RE.match(self.text)
        if not m:
            return ""
        return next(g for g in m.groups() if g is not None)

    def references(self, needle: str) -> bool:
        return needle in self.text


Block = Union[Text, MenuEntry]


def _is_header(line: str) -> bool:
    return bool(_HEADER_RE.match(line))


def _brace_delta(line: str, quote: Optional[str]) -> Tuple[int, int, Optional[str]]:
    """Scan one line; return (opens, closes, quote state carried to the next line)."""

    opens = closes = 0
    i = 0
    n = len(line)
    while i < n:
        c = line[i]
        if quote == "'":
            if c == "'":
                quote = None
        elif quote == '"':
            if c == "\\":
                i += 1
            elif c == '"':
                quote = None
        elif c == "\\":
            i += 1
        elif c in ("'", '"'):
            quote = c
        elif c == "#" and (i == 0 or line[i - 1].isspace()):
            break
        elif c == "{":
            opens += 1
        elif c == "}":
            closes += 1
        i += 1
    return opens, closes, quote


def _entry_end(lines: Sequence[str], start: int) -> Optional[int]:
    depth = 0
    opened = False
    quote: Optional[str] = None
    for idx in range(start, len(lines)):
        if idx > start and quote is None and _is_header(lines[idx]):
            return None
        opens, closes, quote = _brace_delta(lines[idx], quote)
        if opens:
            opened = True
        depth += opens - closes
        if depth < 0:
            return None
        if opened and depth == 0:
            return idx
    return None


def parse(text: str) -> List[Block]:
    lines = text.splitlines(keepends=True)
    blocks: List[Block] = []
    pending: List[str] = []

    def flush() -> None:
        if pending:
            blocks.append(Text("".join(pending)))
            pending.clear()

    i = 0
    while i < len(lines):
        if _is_header(lines[i]):
            end = _entry_end(lines, i)
            if end is not None:
                flush()
                blocks.append(MenuEntry("".join(lines[i : end + 1])))
                i = end + 1
                continue
        pending.append(lines[i])
        i += 1
    flush()
    return blocks


def render(blocks: Iterable[Block]) -> str:
    return "".join(b.text for b in blocks)


def entries(blocks: Iterable[Block]) -> List[MenuEntry]:
    return [b for b in blocks if isinstance(b, MenuEntry)]


def prune(text: str, exclude: Sequence[str]) -> Tuple[str, List[MenuEntry]]:
    """Drop every menu entry referencing any string in exclude.

    Returns the new config and the removed entries.
    """

    kept: List[Block] = []
    removed: List[MenuEntry] = []
    for block in parse(text):
        if isinstance(block, MenuEntry) and any(block.references(x) for x in exclude):
            removed.append(block)
        else:
            kept.append(block)
    return render(kept), removed
