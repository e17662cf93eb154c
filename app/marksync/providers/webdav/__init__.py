from marksync.providers.webdav.backup_store import BackupStore
from marksync.providers.webdav.webdav_client import WebDAVClient

__all__ = ["BackupStore", "WebDAVClient"]
