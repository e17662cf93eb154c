"""Cooperative sync lock kept in the shared key-value store.

Not atomic: acquire writes a fresh lock id, waits briefly and re-reads to
detect a concurrent writer. A record older than the timeout is treated as
abandoned and may be taken over.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable

from pydantic import BaseModel

from marksync.storage.kv_store import KeyValueStore

logger = logging.getLogger("lock")

SYNC_LOCK_KEY = "sync_lock"
LOCK_TIMEOUT_SEC = 60
VERIFY_DELAY_SEC = 0.05

LOCK_HOLDER_MANUAL = "manual"
LOCK_HOLDER_AUTO = "auto_sync"


class SyncLockRecord(BaseModel):
    holder: str
    timestamp: int
    lock_id: str


class SyncLock:
    def __init__(
        self,
        kv: KeyValueStore,
        timeout_sec: float = LOCK_TIMEOUT_SEC,
        verify_delay_sec: float = VERIFY_DELAY_SEC,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.kv = kv
        self.timeout_ms = int(timeout_sec * 1000)
        self.verify_delay_sec = verify_delay_sec
        self.clock = clock or (lambda: int(time.time() * 1000))
        self.sleep = sleep

    def read(self) -> SyncLockRecord | None:
        raw = self.kv.get(SYNC_LOCK_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return SyncLockRecord.model_validate(raw)
        except ValueError:
            return None

    def _is_live(self, record: SyncLockRecord | None) -> bool:
        return record is not None and self.clock() - record.timestamp < self.timeout_ms

    def is_held(self) -> bool:
        return self._is_live(self.read())

    def acquire(self, holder: str) -> bool:
        current = self.read()
        if self._is_live(current):
            logger.info("lock_busy holder=%s requested_by=%s", current.holder, holder)
            return False
        if current is not None:
            logger.warning("lock_expired_takeover previous_holder=%s", current.holder)

        now = self.clock()
        lock_id = f"{holder}_{now}_{secrets.token_hex(4)}"
        self.kv.set(SYNC_LOCK_KEY, SyncLockRecord(holder=holder, timestamp=now, lock_id=lock_id).model_dump())

        self.sleep(self.verify_delay_sec)
        verify = self.read()
        if verify is None or verify.lock_id != lock_id:
            logger.warning("lock_race_lost holder=%s", holder)
            return False
        logger.debug("lock_acquired holder=%s lock_id=%s", holder, lock_id)
        return True

    def release(self, holder: str) -> bool:
        current = self.read()
        if current is None:
            return False
        if current.holder != holder:
            logger.warning("lock_release_skipped holder=%s owner=%s", holder, current.holder)
            return False
        self.kv.remove(SYNC_LOCK_KEY)
        logger.debug("lock_released holder=%s", holder)
        return True

    def force_release(self) -> None:
        self.kv.remove(SYNC_LOCK_KEY)
        logger.warning("lock_force_released")
