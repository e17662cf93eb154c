"""Tail and filter the service log.

Lines follow ``LOG_FORMAT``; the message part is an event name followed by
``key=value`` details (``pull_completed created=3 removed=1``), which are
split out so callers can filter on the event.
"""

from __future__ import annotations

import re
from collections import deque
from pathlib import Path

LOG_LINE_RE = re.compile(
    r"^(?P<ts>\S+\s+\S+)\s+\[(?P<level>[A-Z]+)\]\s+\[(?P<module>[^\]]+)\]\s*(?P<message>.*)$"
)
EVENT_RE = re.compile(r"^(?P<event>[a-z][a-z0-9_]*)(?::|\s|$)")
FIELD_RE = re.compile(r"(?P<key>[a-z_][a-z0-9_]*)=(?P<value>'[^']*'|\"[^\"]*\"|\S*)")


def _tail_lines(path: str, n: int = 200) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    with p.open("r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=n)]


def parse_fields(message: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for match in FIELD_RE.finditer(message):
        value = match.group("value")
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        fields[match.group("key")] = value
    return fields


def _parse_line(line: str) -> dict:
    match = LOG_LINE_RE.match(line)
    if not match:
        return {"raw": line, "ts": "", "level": "", "module": "", "event": "", "message": line, "fields": {}}
    parsed = match.groupdict()
    message = parsed.get("message", "")
    event_match = EVENT_RE.match(message)
    return {
        "raw": line,
        "ts": parsed.get("ts", ""),
        "level": parsed.get("level", ""),
        "module": parsed.get("module", ""),
        "event": event_match.group("event") if event_match else "",
        "message": message,
        "fields": parse_fields(message),
    }


def build_log_tail_payload(
    path: str,
    n: int = 200,
    level: str | None = None,
    module: str | None = None,
    event: str | None = None,
) -> dict:
    level_wanted = (level or "").strip().upper() or None
    module_wanted = (module or "").strip().lower() or None
    event_wanted = (event or "").strip().lower() or None

    parsed_lines: list[dict] = []
    for line in _tail_lines(path, n=n):
        item = _parse_line(line)
        if level_wanted and item["level"].upper() != level_wanted:
            continue
        if module_wanted and item["module"].strip().lower() != module_wanted:
            continue
        if event_wanted and not item["event"].startswith(event_wanted):
            continue
        parsed_lines.append(item)

    return {
        "path": path,
        "n": n,
        "level": level_wanted,
        "module": module_wanted,
        "event": event_wanted,
        "count": len(parsed_lines),
        "tail": "\n".join(item["raw"] for item in parsed_lines),
        "items": parsed_lines,
    }
