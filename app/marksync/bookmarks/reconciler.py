"""Three-phase folder reconciliation of a remote subtree onto the local tree.

Phases 1/2 walk the remote children in order and upsert each one into the
local folder: match an existing local node (hash, then URL, then the global
index), fix its title/URL and position, or create it. Phase 3 re-reads the
folder and deletes every local child that was never claimed.

Positions are tracked relative to the previously placed sibling, so a node
already sitting after it is left alone and unclaimed leftovers (deleted in
phase 3) never cause moves of matched nodes.
"""

from __future__ import annotations

import logging

from marksync.bookmarks.hashing import node_hash
from marksync.bookmarks.index import GlobalIndex, join_path
from marksync.bookmarks.models import TreeNode
from marksync.bookmarks.normalizer import normalize_url
from marksync.bookmarks.tree_store import TreeStore

logger = logging.getLogger("reconciler")


def new_stats() -> dict[str, int]:
    return {
        "created": 0,
        "folders_created": 0,
        "updated": 0,
        "moved": 0,
        "removed": 0,
        "errors": 0,
    }


class Reconciler:
    def __init__(self, store: TreeStore, index: GlobalIndex):
        self.store = store
        self.index = index
        self.claimed: set[str] = set()
        self.stats = new_stats()

    def _fail(self, action: str, node: TreeNode, exc: Exception) -> None:
        self.stats["errors"] += 1
        logger.warning(
            "%s_failed title=%r url=%s error=%s",
            action,
            node.title,
            node.url or "",
            exc,
        )

    def sync_folder(self, folder_id: str, remote_children: list[TreeNode], path_label: str) -> None:
        try:
            local_children = self.store.get_children(folder_id)
        except Exception as e:
            self.stats["errors"] += 1
            logger.warning("folder_read_failed folder=%s error=%s", folder_id, e)
            return

        order = [child.local_id for child in local_children]
        prev_id: str | None = None
        for remote in remote_children:
            try:
                if remote.url:
                    placed = self._upsert_bookmark(folder_id, remote, local_children, order, prev_id)
                else:
                    placed = self._upsert_folder(folder_id, remote, local_children, order, prev_id, path_label)
                prev_id = placed
            except Exception as e:
                self._fail("bookmark_sync" if remote.url else "folder_sync", remote, e)

        self._remove_unclaimed(folder_id)

    @staticmethod
    def _target_index(order: list[str], prev_id: str | None) -> int:
        if prev_id is None or prev_id not in order:
            return 0
        return order.index(prev_id) + 1

    def _place(self, node_id: str, folder_id: str, order: list[str], prev_id: str | None) -> None:
        target = self._target_index(order, prev_id)
        if node_id in order and order.index(node_id) >= target:
            return
        if node_id in order:
            order.remove(node_id)
            target = self._target_index(order, prev_id)
        self.store.move(node_id, folder_id, target)
        order.insert(target, node_id)
        self.stats["moved"] += 1

    def _match_bookmark(
        self,
        folder_id: str,
        remote: TreeNode,
        local_children: list[TreeNode],
    ) -> tuple[str, str, str | None] | None:
        loc = self.index.find_by_hash(node_hash(remote), self.claimed, prefer_parent=folder_id)
        if loc is not None:
            return loc.id, loc.title, loc.url

        url = normalize_url(remote.url)
        for child in local_children:
            if child.url and child.local_id not in self.claimed and normalize_url(child.url) == url:
                return child.local_id, child.title, child.url

        loc = self.index.find_by_url(url, self.claimed, prefer_parent=folder_id)
        if loc is not None:
            return loc.id, loc.title, loc.url
        return None

    def _upsert_bookmark(
        self,
        folder_id: str,
        remote: TreeNode,
        local_children: list[TreeNode],
        order: list[str],
        prev_id: str | None,
    ) -> str:
        match = self._match_bookmark(folder_id, remote, local_children)
        if match is None:
            target = self._target_index(order, prev_id)
            created = self.store.create(folder_id, remote.title, url=remote.url, index=target)
            self.claimed.add(created.local_id)
            order.insert(target, created.local_id)
            self.stats["created"] += 1
            return created.local_id

        node_id, title, url = match
        self.claimed.add(node_id)
        new_title = remote.title if (remote.title or "") != (title or "") else None
        new_url = remote.url if normalize_url(remote.url) != normalize_url(url) else None
        if new_title is not None or new_url is not None:
            self.store.update(node_id, title=new_title, url=new_url)
            self.stats["updated"] += 1
        self._place(node_id, folder_id, order, prev_id)
        return node_id

    def _upsert_folder(
        self,
        folder_id: str,
        remote: TreeNode,
        local_children: list[TreeNode],
        order: list[str],
        prev_id: str | None,
        path_label: str,
    ) -> str:
        title = (remote.title or "").strip()
        child_path = join_path(path_label, remote.title)

        match_id = None
        match_title = None
        for child in local_children:
            if not child.url and child.local_id not in self.claimed and (child.title or "").strip() == title:
                match_id, match_title = child.local_id, child.title
                break
        if match_id is None:
            loc = self.index.find_folder(child_path, self.claimed)
            if loc is not None:
                match_id, match_title = loc.id, loc.title

        if match_id is None:
            target = self._target_index(order, prev_id)
            created = self.store.create(folder_id, remote.title, index=target)
            self.claimed.add(created.local_id)
            order.insert(target, created.local_id)
            self.stats["folders_created"] += 1
            self.create_children(created.local_id, remote.children or [])
            return created.local_id

        self.claimed.add(match_id)
        if (match_title or "") != (remote.title or ""):
            self.store.update(match_id, title=remote.title)
            self.stats["updated"] += 1
        self._place(match_id, folder_id, order, prev_id)
        self.sync_folder(match_id, remote.children or [], child_path)
        # Recursion may have pulled nodes out of this folder.
        order[:] = [child.local_id for child in self.store.get_children(folder_id)]
        return match_id

    def create_children(self, folder_id: str, remote_children: list[TreeNode]) -> None:
        for remote in remote_children:
            try:
                created = self.store.create(folder_id, remote.title, url=remote.url or None)
                self.claimed.add(created.local_id)
                if remote.url:
                    self.stats["created"] += 1
                else:
                    self.stats["folders_created"] += 1
                    self.create_children(created.local_id, remote.children or [])
            except Exception as e:
                self._fail("create", remote, e)

    def _remove_unclaimed(self, folder_id: str) -> None:
        try:
            current = self.store.get_children(folder_id)
        except Exception as e:
            self.stats["errors"] += 1
            logger.warning("folder_reread_failed folder=%s error=%s", folder_id, e)
            return

        for child in current:
            if child.local_id in self.claimed:
                continue
            try:
                if child.url:
                    self.store.remove(child.local_id)
                    self.claimed.add(child.local_id)
                else:
                    gone = self._subtree_ids(child.local_id)
                    self.store.remove_tree(child.local_id)
                    self.claimed.update(gone)
                self.stats["removed"] += 1
            except Exception as e:
                self._fail("remove", child, e)

    def _subtree_ids(self, folder_id: str) -> list[str]:
        # Removed nodes are marked claimed so later index lookups skip them.
        ids = [folder_id]
        for child in self.store.get_children(folder_id):
            if child.url:
                ids.append(child.local_id)
            else:
                ids.extend(self._subtree_ids(child.local_id))
        return ids

    def merge_folder(self, folder_id: str, remote_children: list[TreeNode]) -> None:
        """Additive merge: create what is missing, never delete or move."""
        try:
            local_children = self.store.get_children(folder_id)
        except Exception as e:
            self.stats["errors"] += 1
            logger.warning("folder_read_failed folder=%s error=%s", folder_id, e)
            return

        for remote in remote_children:
            try:
                if remote.url:
                    url = normalize_url(remote.url)
                    if any(child.url and normalize_url(child.url) == url for child in local_children):
                        continue
                    created = self.store.create(folder_id, remote.title, url=remote.url)
                    local_children.append(created)
                    self.stats["created"] += 1
                    continue

                title = (remote.title or "").strip()
                existing = next(
                    (c for c in local_children if not c.url and (c.title or "").strip() == title),
                    None,
                )
                if existing is not None:
                    self.merge_folder(existing.local_id, remote.children or [])
                    continue
                created = self.store.create(folder_id, remote.title)
                local_children.append(created)
                self.stats["folders_created"] += 1
                self.create_children(created.local_id, remote.children or [])
            except Exception as e:
                self._fail("merge", remote, e)
