"""Remote backup filename scheme.

``bookmarks_YYYYMMDD_HHMMSS_<replica>_<count>_v<revision>.json[.gz]``; the
timestamp is local wall-clock time with second resolution.
"""

from __future__ import annotations

import re
from datetime import datetime

from marksync.storage.records import BackupFileRecord

FILE_PREFIX = "bookmarks_"
JSON_SUFFIX = ".json"
GZIP_SUFFIX = ".gz"

FILENAME_RE = re.compile(
    r"^bookmarks_(\d{4})(\d{2})(\d{2})_(\d{2})(\d{2})(\d{2})_([a-z]+)_(\d+)_v(\d+)\.json$"
)


def slugify_label(label: str) -> str:
    slug = re.sub(r"[^a-z]", "", (label or "").lower())
    return slug or "unknown"


def generate_filename(record: BackupFileRecord) -> str:
    stamp = datetime.fromtimestamp(record.timestamp / 1000).strftime("%Y%m%d_%H%M%S")
    name = f"{FILE_PREFIX}{stamp}_{slugify_label(record.replica_label)}_{record.bookmark_count}_v{record.revision}{JSON_SUFFIX}"
    if record.compressed:
        name += GZIP_SUFFIX
    return name


def parse_filename(name: str) -> BackupFileRecord | None:
    compressed = name.endswith(GZIP_SUFFIX)
    base = name[: -len(GZIP_SUFFIX)] if compressed else name
    match = FILENAME_RE.match(base)
    if not match:
        return None
    year, month, day, hour, minute, second, label, count, revision = match.groups()
    try:
        stamp = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second))
    except ValueError:
        return None
    return BackupFileRecord(
        timestamp=int(stamp.timestamp() * 1000),
        replica_label=label,
        bookmark_count=int(count),
        revision=int(revision),
        compressed=compressed,
    )


def is_backup_file(name: str) -> bool:
    return name.startswith(FILE_PREFIX) and (name.endswith(JSON_SUFFIX + GZIP_SUFFIX) or name.endswith(JSON_SUFFIX))
