from __future__ import annotations

import logging

from marksync.core.config import webdav_configured
from marksync.core.errors import MarkSyncError
from marksync.storage.filenames import parse_filename
from marksync.sync.lock import LOCK_HOLDER_AUTO
from marksync.sync.service import SyncService
from marksync.sync.strategies import SyncResult

logger = logging.getLogger("executor")


class AutoSyncExecutor:
    """Entry points fired by the scheduler.

    ``auto_upload`` follows a local change (after the debounce);
    ``auto_pull`` runs on the periodic tick.
    """

    def __init__(self, service: SyncService):
        self.service = service

    def _disabled_reason(self) -> str | None:
        cfg = self.service.cfg
        if not cfg.sync.auto_sync_enabled:
            return "auto_sync_disabled"
        if not webdav_configured(cfg):
            return "webdav_unconfigured"
        return None

    def _remote_newer(self) -> bool:
        latest = self.service.backups.latest_backup(use_cache=False)
        if latest is None:
            return False
        record = parse_filename(latest.name)
        remote_ts = record.timestamp if record else (latest.last_modified or 0)
        return remote_ts > self.service.state.last_sync_time()

    def auto_upload(self) -> SyncResult:
        reason = self._disabled_reason()
        if reason:
            return SyncResult(success=True, action="skipped", message=reason)
        if self.service.context.is_restoring():
            logger.info("auto_upload_skipped reason=restoring")
            return SyncResult(success=True, action="skipped", message="restoring")

        try:
            remote_newer = self._remote_newer()
        except MarkSyncError as e:
            logger.warning("auto_upload_cloud_check_failed code=%s error=%s", e.code, e)
            return SyncResult.from_error(e)

        if remote_newer:
            logger.info("auto_upload_merging_remote_first")
            merged = self.service.pull(mode="merge", holder=LOCK_HOLDER_AUTO)
            if not merged.success:
                return merged
        return self.service.push(holder=LOCK_HOLDER_AUTO)

    def auto_pull(self) -> SyncResult:
        reason = self._disabled_reason()
        if reason:
            return SyncResult(success=True, action="skipped", message=reason)

        try:
            remote_newer = self._remote_newer()
        except MarkSyncError as e:
            logger.warning("auto_pull_cloud_check_failed code=%s error=%s", e.code, e)
            return SyncResult.from_error(e)

        if not remote_newer:
            return SyncResult(success=True, action="skipped", message="no_remote_changes")
        return self.service.pull(mode="overwrite", holder=LOCK_HOLDER_AUTO)
