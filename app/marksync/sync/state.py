from __future__ import annotations

import time
from typing import Callable, Literal

from pydantic import BaseModel

from marksync.storage.kv_store import KeyValueStore

SYNC_STATE_KEY = "sync_state"

SyncKind = Literal["upload", "download", "skip_identical", "restore"]


class SyncStateRecord(BaseModel):
    time: int
    endpoint_url: str
    kind: SyncKind


def normalize_endpoint(url: str) -> str:
    return (url or "").strip().rstrip("/")


class SyncStateStore:
    """Last successful sync, scoped to the configured endpoint.

    A record written for another endpoint reads as "never synced".
    """

    def __init__(self, kv: KeyValueStore, endpoint_url: str, clock: Callable[[], int] | None = None):
        self.kv = kv
        self.endpoint_url = normalize_endpoint(endpoint_url)
        self.clock = clock or (lambda: int(time.time() * 1000))

    def get(self) -> SyncStateRecord | None:
        raw = self.kv.get(SYNC_STATE_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            record = SyncStateRecord.model_validate(raw)
        except ValueError:
            return None
        if normalize_endpoint(record.endpoint_url) != self.endpoint_url:
            return None
        return record

    def last_sync_time(self) -> int:
        record = self.get()
        return record.time if record else 0

    def set(self, kind: SyncKind, at: int | None = None) -> SyncStateRecord:
        record = SyncStateRecord(time=at if at is not None else self.clock(), endpoint_url=self.endpoint_url, kind=kind)
        self.kv.set(SYNC_STATE_KEY, record.model_dump())
        return record
