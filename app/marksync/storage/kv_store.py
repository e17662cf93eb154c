"""Key-value collaborators.

``KeyValueStore`` is durable (lock, sync state, last backup info).
``SessionCache`` is ephemeral and optional; ``NullSessionCache`` stands in
when caching is disabled so callers never branch on availability.
"""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from marksync.storage.db import get_conn, init_db


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._data[key] = raw

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """JSON values in the ``settings`` table of the service database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def get(self, key: str) -> Any:
        conn = get_conn(self.db_path)
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None or row["value"] is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any) -> None:
        conn = get_conn(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO settings(key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value, ensure_ascii=False)),
            )
            conn.commit()
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        conn = get_conn(self.db_path)
        try:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()


class SessionCache(ABC):
    @abstractmethod
    def get(self, key: str) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemorySessionCache(SessionCache):
    def __init__(self):
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and time.monotonic() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        expires_at = time.monotonic() + ttl_sec if ttl_sec else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class NullSessionCache(SessionCache):
    def get(self, key: str) -> Any:
        return None

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        return None

    def remove(self, key: str) -> None:
        return None
