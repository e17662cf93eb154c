from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from marksync.core.config import LAST_RUN_PATH, RUN_HISTORY_PATH


def record_run(summary: dict[str, Any], history_path: Path = RUN_HISTORY_PATH, last_path: Path = LAST_RUN_PATH) -> None:
    last_path.parent.mkdir(parents=True, exist_ok=True)
    last_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    history_path.parent.mkdir(parents=True, exist_ok=True)
    with history_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def read_run_history(limit: int = 50, history_path: Path = RUN_HISTORY_PATH) -> list[dict]:
    if not history_path.exists():
        return []
    lines = history_path.read_text(encoding="utf-8", errors="replace").splitlines()
    out: list[dict] = []
    for line in reversed(lines):
        if len(out) >= limit:
            break
        raw = line.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = {"raw": raw, "parse_error": True}
        if isinstance(payload, dict):
            out.append(payload)
    return out


def load_last_run(last_path: Path = LAST_RUN_PATH) -> dict | None:
    if not last_path.exists():
        return None
    try:
        payload = json.loads(last_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None
