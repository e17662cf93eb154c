from __future__ import annotations

import logging
import time
from typing import Callable, Literal

from marksync.bookmarks.hashing import assign_hashes
from marksync.bookmarks.index import build_global_index
from marksync.bookmarks.models import CLIENT_VERSION, RemoteSnapshot, SnapshotMetadata, TreeNode, top_level_roots
from marksync.bookmarks.normalizer import find_matching_root, has_role_mapping, root_label
from marksync.bookmarks.reconciler import Reconciler
from marksync.bookmarks.tree_store import TreeStore
from marksync.core.errors import MalformedBackupError

logger = logging.getLogger("repository")

RestoreMode = Literal["overwrite", "merge"]


class BookmarkRepository:
    def __init__(
        self,
        store: TreeStore,
        client_version: str = CLIENT_VERSION,
        clock: Callable[[], int] | None = None,
    ):
        self.store = store
        self.client_version = client_version
        self.clock = clock or (lambda: int(time.time() * 1000))

    def get_local_tree(self) -> list[TreeNode]:
        return self.store.get_tree()

    def create_snapshot_for_upload(self) -> RemoteSnapshot:
        tree = self.store.get_tree()
        return RemoteSnapshot(
            metadata=SnapshotMetadata(timestamp=self.clock(), client_version=self.client_version),
            data=assign_hashes(tree),
        )

    def restore(self, snapshot: RemoteSnapshot, mode: RestoreMode = "overwrite") -> dict:
        """Drive the local tree towards ``snapshot``, one system root at a time.

        Remote roots without a cross-replica role (e.g. a Firefox menu root)
        are skipped, as are roots with no local counterpart.
        """
        data = snapshot.data
        if not data or data[0].children is None:
            raise MalformedBackupError("backup_missing_root_children")

        started = time.monotonic()
        local_tree = self.store.get_tree()
        local_roots = top_level_roots(local_tree)
        reconciler = Reconciler(self.store, build_global_index(local_tree))

        roots_synced = 0
        roots_skipped = 0
        for remote_root in top_level_roots(data):
            if not has_role_mapping(remote_root):
                roots_skipped += 1
                logger.info("restore_root_skipped title=%r reason=no_role_mapping", remote_root.title)
                continue
            local_root = find_matching_root(remote_root, local_roots)
            if local_root is None or not local_root.local_id:
                roots_skipped += 1
                logger.warning("restore_root_skipped title=%r reason=no_local_match", remote_root.title)
                continue

            if mode == "merge":
                reconciler.merge_folder(local_root.local_id, remote_root.children or [])
            else:
                reconciler.sync_folder(local_root.local_id, remote_root.children or [], root_label(local_root))
            roots_synced += 1

        stats = dict(reconciler.stats)
        stats["mode"] = mode
        stats["roots_synced"] = roots_synced
        stats["roots_skipped"] = roots_skipped
        stats["elapsed_ms"] = int((time.monotonic() - started) * 1000)
        logger.info(
            "restore_completed mode=%s created=%s folders_created=%s updated=%s moved=%s removed=%s errors=%s elapsed_ms=%s",
            mode,
            stats["created"],
            stats["folders_created"],
            stats["updated"],
            stats["moved"],
            stats["removed"],
            stats["errors"],
            stats["elapsed_ms"],
        )
        return stats

    def restore_tree(self, tree: list[TreeNode], mode: RestoreMode = "overwrite") -> dict:
        """Restore from a raw local tree (e.g. a local snapshot)."""
        snapshot = RemoteSnapshot(
            metadata=SnapshotMetadata(timestamp=self.clock(), client_version=self.client_version),
            data=assign_hashes(tree),
        )
        return self.restore(snapshot, mode=mode)
