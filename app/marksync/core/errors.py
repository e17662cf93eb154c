"""Error taxonomy shared by the storage, WebDAV and sync layers.

Every error carries a stable snake_case ``code`` so CLI/web payloads can be
matched on without parsing messages.
"""

from __future__ import annotations


class MarkSyncError(RuntimeError):
    code = "marksync_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class OfflineError(MarkSyncError):
    code = "offline"


class WebDAVUnconfiguredError(MarkSyncError):
    code = "webdav_unconfigured"


class LockContentionError(MarkSyncError):
    code = "lock_contention"


class RemoteError(MarkSyncError):
    code = "remote_error"

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteAuthError(RemoteError):
    code = "remote_auth"


class RemoteNotFoundError(RemoteError):
    code = "remote_not_found"


class RemoteConflictError(RemoteError):
    code = "remote_conflict"


class DownloadTimeoutError(MarkSyncError):
    code = "download_timeout"


class DecompressionError(MarkSyncError):
    code = "decompression_failure"


class MalformedBackupError(MarkSyncError):
    code = "malformed_backup"


class EmptyLocalTreeError(MarkSyncError):
    code = "empty_local_tree"


class TreeStoreError(MarkSyncError):
    code = "tree_store_error"


def error_code(exc: BaseException) -> str:
    return getattr(exc, "code", None) or type(exc).__name__
