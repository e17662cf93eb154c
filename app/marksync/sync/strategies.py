"""Push / pull / smart-sync decision protocol.

Every strategy runs under the cooperative ``SyncLock`` and returns a
``SyncResult`` instead of raising past ``run``. Smart sync decides while
holding the lock, releases it, then hands over to push or pull, which take
the lock again on their own.
"""

from __future__ import annotations

import contextlib
import logging
import time
from enum import Enum
from typing import Any, Callable, Literal

from pydantic import BaseModel

from marksync.bookmarks.comparator import compare_trees
from marksync.bookmarks.models import RemoteSnapshot, TreeNode, count_bookmarks
from marksync.bookmarks.repository import BookmarkRepository
from marksync.core.errors import (
    EmptyLocalTreeError,
    LockContentionError,
    MarkSyncError,
    OfflineError,
    RemoteNotFoundError,
    WebDAVUnconfiguredError,
    error_code,
)
from marksync.providers.webdav.backup_store import BackupStore
from marksync.storage.filenames import parse_filename, slugify_label
from marksync.storage.kv_store import MemorySessionCache, SessionCache
from marksync.storage.records import RemoteFile
from marksync.storage.snapshots import SnapshotManager
from marksync.sync.lock import LOCK_HOLDER_MANUAL, SyncLock
from marksync.sync.state import SyncStateStore

RESTORING_KEY = "restoring"
CONTENTION_HINT = "try again shortly"

SyncAction = Literal["uploaded", "downloaded", "restored", "skipped", "error", "needs_manual_choice"]


class SyncPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    NEEDS_MANUAL_CHOICE = "needs_manual_choice"


class SyncResult(BaseModel):
    success: bool
    action: SyncAction
    message: str = ""
    hint: str | None = None
    error_code: str | None = None
    cloud_info: dict[str, Any] | None = None
    stats: dict[str, Any] | None = None
    file: dict[str, Any] | None = None
    elapsed_ms: int = 0

    @classmethod
    def from_error(cls, exc: BaseException) -> SyncResult:
        return cls(success=False, action="error", message=str(exc) or error_code(exc), error_code=error_code(exc))

    @classmethod
    def contention(cls) -> SyncResult:
        result = cls.from_error(LockContentionError("sync_in_progress"))
        result.hint = CONTENTION_HINT
        return result


class SyncContext:
    """Collaborators shared by the strategies of one configured endpoint."""

    def __init__(
        self,
        repository: BookmarkRepository,
        backups: BackupStore,
        lock: SyncLock,
        state: SyncStateStore,
        snapshots: SnapshotManager | None = None,
        session: SessionCache | None = None,
        is_online: Callable[[], bool] | None = None,
        is_configured: Callable[[], bool] | None = None,
        replica_label: str = "python",
        compare_ignore_order: bool = False,
        restoring_guard_sec: float = 10,
    ):
        self.repository = repository
        self.backups = backups
        self.lock = lock
        self.state = state
        self.snapshots = snapshots
        self.session = session or MemorySessionCache()
        self.is_online = is_online or (lambda: True)
        self.is_configured = is_configured or (lambda: True)
        self.replica_label = replica_label
        self.compare_ignore_order = compare_ignore_order
        self.restoring_guard_sec = restoring_guard_sec
        self.phase = SyncPhase.IDLE
        self.last_result: SyncResult | None = None

    def take_snapshot(self, tree: list[TreeNode], reason: str) -> int | None:
        if self.snapshots is None:
            return None
        try:
            return self.snapshots.create(tree, reason)
        except Exception as e:
            logging.getLogger("snapshots").warning("snapshot_failed reason=%s error=%s", reason, e)
            return None

    def fetch_latest(self) -> tuple[RemoteFile, RemoteSnapshot] | None:
        latest = self.backups.latest_backup(use_cache=False)
        if latest is None:
            return None
        return latest, self.backups.download(latest.path)

    def compare(self, local_tree: list[TreeNode], snapshot: RemoteSnapshot) -> bool:
        return compare_trees(local_tree, snapshot.data, ignore_order=self.compare_ignore_order)

    def is_restoring(self) -> bool:
        return bool(self.session.get(RESTORING_KEY))

    @contextlib.contextmanager
    def restoring(self):
        # Left set after the restore so the resulting change events are ignored until it expires.
        if self.restoring_guard_sec:
            self.session.set(RESTORING_KEY, True, ttl_sec=self.restoring_guard_sec)
        yield

    def finish(self, result: SyncResult) -> SyncResult:
        if result.action == "needs_manual_choice":
            self.phase = SyncPhase.NEEDS_MANUAL_CHOICE
        elif result.success:
            self.phase = SyncPhase.SUCCESS
        else:
            self.phase = SyncPhase.ERROR
        self.last_result = result
        return result


class Delegation:
    def __init__(self, strategy: BaseStrategy, cloud_info: dict | None = None, **kwargs):
        self.strategy = strategy
        self.cloud_info = cloud_info
        self.kwargs = kwargs


class BaseStrategy:
    name = "sync"
    requires_online = True

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self.logger = logging.getLogger(self.name)

    def execute(self, holder: str, **kwargs) -> SyncResult | Delegation:
        raise NotImplementedError

    def run(self, holder: str = LOCK_HOLDER_MANUAL, **kwargs) -> SyncResult:
        ctx = self.ctx
        started = time.monotonic()
        ctx.phase = SyncPhase.CHECKING
        delegation: Delegation | None = None

        if self.requires_online and not ctx.is_configured():
            result = SyncResult.from_error(WebDAVUnconfiguredError("webdav_url_missing"))
        elif self.requires_online and not ctx.is_online():
            result = SyncResult.from_error(OfflineError("network_offline"))
        elif not ctx.lock.acquire(holder):
            result = SyncResult.contention()
        else:
            try:
                outcome = self.execute(holder, **kwargs)
                if isinstance(outcome, Delegation):
                    delegation = outcome
                    result = None
                else:
                    result = outcome
            except MarkSyncError as e:
                self.logger.warning("%s_failed code=%s error=%s", self.name, e.code, e)
                result = SyncResult.from_error(e)
            except Exception as e:
                self.logger.exception("%s_failed: %s", self.name, e)
                result = SyncResult.from_error(e)
            finally:
                ctx.lock.release(holder)

        if delegation is not None:
            self.logger.info("%s_delegated to=%s", self.name, delegation.strategy.name)
            result = delegation.strategy.run(holder, **delegation.kwargs)
            if result.cloud_info is None:
                result.cloud_info = delegation.cloud_info
            return result

        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            "%s_finished holder=%s success=%s action=%s message=%s elapsed_ms=%s",
            self.name,
            holder,
            result.success,
            result.action,
            result.message,
            result.elapsed_ms,
        )
        return ctx.finish(result)


class PushStrategy(BaseStrategy):
    name = "push"

    def execute(self, holder: str, **kwargs) -> SyncResult:
        ctx = self.ctx
        manual = holder == LOCK_HOLDER_MANUAL
        local_tree = ctx.repository.get_local_tree()
        local_count = count_bookmarks(local_tree)
        if local_count == 0:
            raise EmptyLocalTreeError("local_tree_empty_upload_refused")
        ctx.take_snapshot(local_tree, f"before_push:{holder}")

        try:
            remote = ctx.fetch_latest()
        except MarkSyncError as e:
            if not manual:
                raise
            self.logger.warning("cloud_check_failed_manual_override error=%s", e)
            remote = None

        if remote is not None:
            latest, snapshot = remote
            cloud_time = snapshot.metadata.timestamp
            last_sync = ctx.state.last_sync_time()
            if cloud_time > last_sync:
                if not manual:
                    self.logger.warning("push_blocked_cloud_newer cloud_time=%s last_sync=%s", cloud_time, last_sync)
                    return SyncResult(
                        success=False,
                        action="error",
                        message="cloud_newer_pull_first",
                        error_code="cloud_newer",
                        cloud_info=ctx.backups.describe(latest),
                    )
                self.logger.warning("push_cloud_newer_manual_override cloud_time=%s last_sync=%s", cloud_time, last_sync)

            if ctx.compare(local_tree, snapshot):
                record = parse_filename(latest.name)
                same_replica = record is not None and record.replica_label == slugify_label(ctx.replica_label)
                if manual and same_replica:
                    self.logger.info("push_identical_manual_resync file=%s", latest.name)
                else:
                    ctx.state.set("skip_identical")
                    return SyncResult(
                        success=True,
                        action="skipped",
                        message="already_in_sync",
                        cloud_info=ctx.backups.describe(latest),
                    )

        ctx.phase = SyncPhase.SYNCING
        snapshot = ctx.repository.create_snapshot_for_upload()
        upload = ctx.backups.upload(snapshot, count_bookmarks(snapshot.data))
        ctx.state.set("upload")
        return SyncResult(
            success=True,
            action="uploaded",
            message=f"uploaded {upload['file_name']}",
            file=upload,
            stats={"bookmarks": local_count},
        )


class PullStrategy(BaseStrategy):
    name = "pull"

    def execute(self, holder: str, mode: str = "overwrite", path: str | None = None, **kwargs) -> SyncResult:
        ctx = self.ctx
        ctx.take_snapshot(ctx.repository.get_local_tree(), f"before_{'restore' if path else 'pull'}:{mode}")

        if path:
            latest = RemoteFile(name=path.rsplit("/", 1)[-1], path=path)
            snapshot = ctx.backups.download(path)
        else:
            remote = ctx.fetch_latest()
            if remote is None:
                raise RemoteNotFoundError("no_cloud_backup")
            latest, snapshot = remote

        ctx.phase = SyncPhase.SYNCING
        with ctx.restoring():
            stats = ctx.repository.restore(snapshot, mode="merge" if mode == "merge" else "overwrite")
        ctx.state.set("restore" if path else "download")
        return SyncResult(
            success=True,
            action="downloaded",
            message=f"restored {latest.name} mode={mode}",
            stats=stats,
            cloud_info=ctx.backups.describe(latest),
        )


class SmartSyncStrategy(BaseStrategy):
    name = "smart_sync"

    def execute(self, holder: str, **kwargs) -> SyncResult | Delegation:
        ctx = self.ctx
        local_tree = ctx.repository.get_local_tree()
        remote = ctx.fetch_latest()
        if remote is None:
            return Delegation(PushStrategy(ctx))

        latest, snapshot = remote
        cloud_info = ctx.backups.describe(latest)
        if ctx.compare(local_tree, snapshot):
            ctx.state.set("skip_identical")
            return SyncResult(success=True, action="skipped", message="already_in_sync", cloud_info=cloud_info)

        last_sync = ctx.state.last_sync_time()
        cloud_time = snapshot.metadata.timestamp
        cloud_count = cloud_info.get("bookmark_count")
        if cloud_count is None:
            cloud_count = count_bookmarks(snapshot.data)
        if last_sync == 0 and cloud_count > 0:
            return SyncResult(
                success=False,
                action="needs_manual_choice",
                message="choose_sync_direction",
                cloud_info=cloud_info,
            )

        if cloud_time > last_sync:
            return Delegation(PullStrategy(ctx), cloud_info, mode="overwrite")
        return Delegation(PushStrategy(ctx), cloud_info)


class RestoreSnapshotStrategy(BaseStrategy):
    name = "snapshot_restore"
    requires_online = False

    def execute(self, holder: str, snapshot_id: int | None = None, **kwargs) -> SyncResult:
        ctx = self.ctx
        if ctx.snapshots is None:
            raise MarkSyncError("snapshots_unavailable")
        target = ctx.snapshots.get(int(snapshot_id)) if snapshot_id is not None else ctx.snapshots.latest()
        if target is None:
            raise MarkSyncError(f"snapshot_not_found: {snapshot_id}")

        ctx.take_snapshot(ctx.repository.get_local_tree(), f"before_snapshot_restore:{target.id}")
        ctx.phase = SyncPhase.SYNCING
        with ctx.restoring():
            stats = ctx.repository.restore_tree(target.tree, mode="overwrite")
        return SyncResult(
            success=True,
            action="restored",
            message=f"restored snapshot {target.id}",
            stats=stats,
        )
