from __future__ import annotations

from pydantic import BaseModel


class RemoteFile(BaseModel):
    name: str
    path: str
    # Epoch milliseconds as reported by the server, when available.
    last_modified: int | None = None
    size: int | None = None
    is_dir: bool = False


class BackupFileRecord(BaseModel):
    timestamp: int
    replica_label: str
    bookmark_count: int
    revision: int = 1
    compressed: bool = True


class LastBackupFileInfo(BaseModel):
    file_name: str
    file_path: str
    created_at: int
    revision: int = 1
