from __future__ import annotations

import logging
import time

from marksync.storage.kv_store import NullSessionCache, SessionCache
from marksync.storage.records import RemoteFile

logger = logging.getLogger("backups")

LISTING_CACHE_KEY = "backup_file_list"
DEFAULT_TTL_SEC = 300


class ListingCache:
    """TTL cache of the remote backup directory listing."""

    def __init__(self, session: SessionCache | None = None, ttl_sec: int = DEFAULT_TTL_SEC, clock=None):
        self.session = session or NullSessionCache()
        self.ttl_sec = ttl_sec
        self.clock = clock or (lambda: int(time.time() * 1000))

    def get(self, directory: str) -> list[RemoteFile] | None:
        entry = self.session.get(LISTING_CACHE_KEY)
        if not isinstance(entry, dict) or entry.get("directory") != directory:
            return None
        if self.clock() - int(entry.get("cached_at") or 0) >= self.ttl_sec * 1000:
            self.session.remove(LISTING_CACHE_KEY)
            return None
        return [RemoteFile.model_validate(item) for item in entry.get("files") or []]

    def put(self, directory: str, files: list[RemoteFile]) -> None:
        self.session.set(
            LISTING_CACHE_KEY,
            {
                "directory": directory,
                "cached_at": self.clock(),
                "files": [f.model_dump() for f in files],
            },
            ttl_sec=self.ttl_sec,
        )

    def clear(self) -> None:
        self.session.remove(LISTING_CACHE_KEY)
        logger.debug("listing_cache_cleared")
