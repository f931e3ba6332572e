from __future__ import annotations

import datetime as _dt
import json
import os
from pathlib import Path
from typing import Any, Dict


def load_build_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("build_state.json must contain an object")
    return data


def save_build_state(path: str, state: Dict[str, Any]) -> None:
    """Replace the state file atomically; it is also written from interrupted builds."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(tmp, p)


def ensure_build_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    state.setdefault("builds", {})
    return state


def start_build(state: Dict[str, Any], *, key: str, request: Dict[str, Any]) -> Dict[str, Any]:
    """Begin a fresh record for one image build; previous runs under the same key are replaced."""

    record: Dict[str, Any] = {
        "request": request,
        "started": _dt.datetime.now().isoformat(timespec="seconds"),
        "completed_steps": [],
        "decisions": {},
        "errors": [],
        "status": "running",
    }
    state.setdefault("builds", {})[key] = record
    return record


def mark_completed(record: Dict[str, Any], step_id: str) -> None:
    completed = record.setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def record_error(record: Dict[str, Any], *, step_id: str | None, error: str) -> None:
    record.setdefault("errors", []).append({"step": step_id, "error": error})
