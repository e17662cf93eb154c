"""Versioned backup files in the remote WebDAV directory.

Uploads inside the replacement window delete the previous file and write
the next revision; genuinely new files trigger retention cleanup.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from marksync.bookmarks.models import RemoteSnapshot
from marksync.core.errors import RemoteError
from marksync.providers.webdav.webdav_client import WebDAVClient
from marksync.storage.codec import PAYLOAD_CONTENT_TYPE, encode_payload
from marksync.storage.download_queue import DownloadQueue
from marksync.storage.filenames import generate_filename, is_backup_file, parse_filename
from marksync.storage.kv_store import KeyValueStore
from marksync.storage.listing_cache import ListingCache
from marksync.storage.records import BackupFileRecord, LastBackupFileInfo, RemoteFile

logger = logging.getLogger("backups")

LAST_BACKUP_INFO_KEY = "last_backup_file_info"
DEFAULT_BACKUP_DIR = "BookmarkSyncer"
DAY_MS = 24 * 60 * 60 * 1000


def file_timestamp(item: RemoteFile) -> int:
    if item.last_modified:
        return item.last_modified
    record = parse_filename(item.name)
    return record.timestamp if record else 0


class BackupStore:
    def __init__(
        self,
        client: WebDAVClient,
        kv: KeyValueStore,
        listing_cache: ListingCache,
        download_queue: DownloadQueue,
        backup_dir: str = DEFAULT_BACKUP_DIR,
        replica_label: str = "python",
        window_min: int = 1,
        retention_days: int = 3,
        clock: Callable[[], int] | None = None,
    ):
        self.client = client
        self.kv = kv
        self.listing_cache = listing_cache
        self.download_queue = download_queue
        self.backup_dir = (backup_dir or DEFAULT_BACKUP_DIR).strip("/")
        self.replica_label = replica_label
        self.window_min = window_min
        self.retention_days = retention_days
        self.clock = clock or (lambda: int(time.time() * 1000))

    def ensure_directory(self) -> None:
        if not self.client.exists(self.backup_dir):
            self.client.create_directory(self.backup_dir)
            logger.info("backup_dir_created path=%s", self.backup_dir)

    def list_backup_files(self, use_cache: bool = True) -> list[RemoteFile]:
        """Backup files in the backup directory, newest first."""
        files = self.listing_cache.get(self.backup_dir) if use_cache else None
        if files is None:
            files = [f for f in self.client.list_files(self.backup_dir) if is_backup_file(f.name)]
            self.listing_cache.put(self.backup_dir, files)
        return sorted(files, key=file_timestamp, reverse=True)

    def latest_backup(self, use_cache: bool = True) -> RemoteFile | None:
        files = self.list_backup_files(use_cache=use_cache)
        return files[0] if files else None

    def download(self, path: str) -> RemoteSnapshot:
        text = self.download_queue.fetch(path, self.client.get_file)
        return RemoteSnapshot.from_json(text)

    def _load_last_info(self) -> LastBackupFileInfo | None:
        raw = self.kv.get(LAST_BACKUP_INFO_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return LastBackupFileInfo.model_validate(raw)
        except ValueError:
            return None

    def upload(self, snapshot: RemoteSnapshot, bookmark_count: int) -> dict:
        now = self.clock()
        last = self._load_last_info()
        window_ms = self.window_min * 60 * 1000

        if last is not None and window_ms > 0 and now - last.created_at < window_ms:
            self.client.delete_file(last.file_path)
            revision = last.revision + 1
            created_at = last.created_at
            is_new = False
        else:
            revision = 1
            created_at = now
            is_new = True

        file_name = generate_filename(
            BackupFileRecord(
                timestamp=now,
                replica_label=self.replica_label,
                bookmark_count=bookmark_count,
                revision=revision,
            )
        )
        file_path = f"{self.backup_dir}/{file_name}"
        self.ensure_directory()
        self.client.put_file(file_path, encode_payload(snapshot.to_json()), content_type=PAYLOAD_CONTENT_TYPE)
        self.kv.set(
            LAST_BACKUP_INFO_KEY,
            LastBackupFileInfo(
                file_name=file_name,
                file_path=file_path,
                created_at=created_at,
                revision=revision,
            ).model_dump(),
        )
        logger.info(
            "backup_uploaded file=%s revision=%s replaced=%s count=%s",
            file_name,
            revision,
            not is_new,
            bookmark_count,
        )

        cleaned = 0
        if is_new:
            try:
                cleaned = self.cleanup_old_backups(keep_path=file_path)
            except RemoteError as e:
                logger.warning("backup_cleanup_failed error=%s", e)
        self.listing_cache.clear()
        return {
            "file_name": file_name,
            "file_path": file_path,
            "revision": revision,
            "replaced": not is_new,
            "cleaned": cleaned,
        }

    def cleanup_old_backups(self, keep_path: str | None = None) -> int:
        cutoff = self.clock() - self.retention_days * DAY_MS
        removed = 0
        for item in self.list_backup_files(use_cache=False):
            if item.path == keep_path:
                continue
            if file_timestamp(item) < cutoff:
                self.client.delete_file(item.path)
                removed += 1
                logger.info("backup_expired_deleted file=%s", item.name)
        return removed

    def describe(self, item: RemoteFile) -> dict:
        record = parse_filename(item.name)
        return {
            "file_name": item.name,
            "file_path": item.path,
            "last_modified": item.last_modified,
            "size": item.size,
            "timestamp": record.timestamp if record else None,
            "replica_label": record.replica_label if record else None,
            "bookmark_count": record.bookmark_count if record else None,
            "revision": record.revision if record else None,
        }

    def cloud_info(self) -> dict:
        latest = self.latest_backup()
        if latest is None:
            return {"exists": False}
        return {"exists": True, **self.describe(latest)}

    def backup_list(self) -> list[dict]:
        return [self.describe(item) for item in self.list_backup_files()]
