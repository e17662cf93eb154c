from __future__ import annotations

import logging
from typing import Any, Callable

from marksync.bookmarks.models import count_bookmarks
from marksync.bookmarks.repository import BookmarkRepository
from marksync.bookmarks.tree_store import SqliteTreeStore, TreeStore
from marksync.core.config import AppConfig, webdav_configured
from marksync.core.errors import MarkSyncError, error_code
from marksync.providers.webdav import BackupStore, WebDAVClient
from marksync.storage.download_queue import DownloadQueue
from marksync.storage.kv_store import (
    KeyValueStore,
    MemorySessionCache,
    NullSessionCache,
    SessionCache,
    SqliteKeyValueStore,
)
from marksync.storage.listing_cache import ListingCache
from marksync.storage.snapshots import SnapshotManager
from marksync.sync.lock import LOCK_HOLDER_MANUAL, SyncLock
from marksync.sync.state import SyncStateStore
from marksync.sync.strategies import (
    PullStrategy,
    PushStrategy,
    RestoreSnapshotStrategy,
    SmartSyncStrategy,
    SyncContext,
    SyncPhase,
    SyncResult,
)

logger = logging.getLogger("sync")


class SyncService:
    """All sync collaborators for one configuration, built explicitly.

    Anything not passed in is created from ``cfg``: SQLite-backed tree,
    key-value store and snapshots in ``cfg.database.path``, and a WebDAV
    client for ``cfg.webdav``.
    """

    def __init__(
        self,
        cfg: AppConfig,
        tree_store: TreeStore | None = None,
        kv: KeyValueStore | None = None,
        session: SessionCache | None = None,
        client: WebDAVClient | None = None,
        snapshots: SnapshotManager | None = None,
        is_online: Callable[[], bool] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.cfg = cfg
        db_path = cfg.database.path
        self.tree_store = tree_store or SqliteTreeStore(db_path)
        self.kv = kv or SqliteKeyValueStore(db_path)
        self.session = session or MemorySessionCache()
        self.client = client or WebDAVClient(
            base_url=cfg.webdav.url,
            username=cfg.webdav.username,
            password=cfg.webdav.password,
            timeout=int(cfg.webdav.timeout_sec),
        )
        self.snapshots = snapshots or SnapshotManager(db_path, max_snapshots=cfg.sync.max_snapshots)
        self.download_queue = DownloadQueue(timeout_sec=cfg.sync.download_timeout_sec)
        self.listing_cache = ListingCache(
            self.session if cfg.sync.listing_cache_enabled else NullSessionCache(),
            ttl_sec=cfg.sync.listing_cache_ttl_sec,
            clock=clock,
        )
        self.backups = BackupStore(
            self.client,
            self.kv,
            self.listing_cache,
            self.download_queue,
            backup_dir=cfg.webdav.backup_dir,
            replica_label=cfg.sync.replica_label,
            window_min=cfg.sync.backup_file_interval_min,
            retention_days=cfg.sync.retention_days,
            clock=clock,
        )
        self.lock = SyncLock(self.kv, timeout_sec=cfg.sync.lock_timeout_sec, clock=clock)
        self.state = SyncStateStore(self.kv, cfg.webdav.url, clock=clock)
        self.repository = BookmarkRepository(self.tree_store, clock=clock)
        self.context = SyncContext(
            repository=self.repository,
            backups=self.backups,
            lock=self.lock,
            state=self.state,
            snapshots=self.snapshots,
            session=self.session,
            is_online=is_online or self.client.is_reachable,
            is_configured=lambda: webdav_configured(self.cfg),
            replica_label=cfg.sync.replica_label,
            compare_ignore_order=cfg.sync.compare_ignore_order,
            restoring_guard_sec=cfg.sync.restoring_guard_sec,
        )
        self._push = PushStrategy(self.context)
        self._pull = PullStrategy(self.context)
        self._smart = SmartSyncStrategy(self.context)
        self._snapshot_restore = RestoreSnapshotStrategy(self.context)

    @property
    def phase(self) -> SyncPhase:
        return self.context.phase

    @property
    def last_result(self) -> SyncResult | None:
        return self.context.last_result

    def push(self, holder: str = LOCK_HOLDER_MANUAL) -> SyncResult:
        return self._push.run(holder)

    def pull(self, mode: str = "overwrite", holder: str = LOCK_HOLDER_MANUAL) -> SyncResult:
        return self._pull.run(holder, mode=mode)

    def smart_sync(self, holder: str = LOCK_HOLDER_MANUAL) -> SyncResult:
        return self._smart.run(holder)

    def restore_backup(self, path: str, holder: str = LOCK_HOLDER_MANUAL) -> SyncResult:
        return self._pull.run(holder, mode="overwrite", path=path)

    def restore_snapshot(self, snapshot_id: int | None = None, holder: str = LOCK_HOLDER_MANUAL) -> SyncResult:
        return self._snapshot_restore.run(holder, snapshot_id=snapshot_id)

    def cloud_info(self) -> dict[str, Any]:
        try:
            return self.backups.cloud_info()
        except MarkSyncError as e:
            logger.warning("cloud_info_failed code=%s error=%s", e.code, e)
            return {"exists": False, "error": str(e), "error_code": error_code(e)}

    def list_backups(self) -> list[dict[str, Any]]:
        return self.backups.backup_list()

    def test_connection(self) -> dict[str, Any]:
        try:
            self.client.test_connection()
            return {"ok": True, "url": self.cfg.webdav.url}
        except MarkSyncError as e:
            return {"ok": False, "url": self.cfg.webdav.url, "error": str(e), "error_code": error_code(e)}

    def status(self) -> dict[str, Any]:
        record = self.state.get()
        lock = self.lock.read()
        last = self.last_result
        return {
            "phase": self.phase.value,
            "local_bookmarks": count_bookmarks(self.repository.get_local_tree()),
            "last_sync": record.model_dump() if record else None,
            "lock": lock.model_dump() if lock and self.lock.is_held() else None,
            "restoring": self.context.is_restoring(),
            "snapshots": self.snapshots.count(),
            "last_result": last.model_dump() if last else None,
        }

    def close(self) -> None:
        self.download_queue.shutdown()
