"""Host tree-store collaborators.

The reconciler and repository only ever talk to ``TreeStore``. Two
implementations ship: an in-memory store (also used by the tests) and a
SQLite-backed store persisting the local replica in the service database.

``move(node_id, parent_id, index)`` places the node at final position
``index`` among the new parent's children (clamped to the valid range).
"""

from __future__ import annotations

import sqlite3
import time
from abc import ABC, abstractmethod

from marksync.bookmarks.models import TreeNode
from marksync.core.errors import TreeStoreError
from marksync.storage.db import get_conn, init_db

CHROMIUM_ROOT_ID = "0"
CHROMIUM_SYSTEM_ROOTS = [
    ("1", "Bookmarks bar", "bookmarks-bar"),
    ("2", "Other bookmarks", "other"),
    ("3", "Mobile bookmarks", "mobile"),
]

FIREFOX_ROOT_ID = "root________"
FIREFOX_SYSTEM_ROOTS = [
    ("menu________", "Bookmarks Menu", None),
    ("toolbar_____", "Bookmarks Toolbar", None),
    ("unfiled_____", "Other Bookmarks", None),
    ("mobile______", "Mobile Bookmarks", None),
]

LAYOUTS = {
    "chromium": (CHROMIUM_ROOT_ID, CHROMIUM_SYSTEM_ROOTS),
    "firefox": (FIREFOX_ROOT_ID, FIREFOX_SYSTEM_ROOTS),
}


def _clamp(index: int | None, size: int) -> int:
    if index is None or index > size:
        return size
    return max(index, 0)


class TreeStore(ABC):
    @abstractmethod
    def get_tree(self) -> list[TreeNode]:
        ...

    @abstractmethod
    def get_children(self, node_id: str) -> list[TreeNode]:
        ...

    @abstractmethod
    def get(self, node_id: str) -> TreeNode:
        ...

    @abstractmethod
    def create(self, parent_id: str, title: str, url: str | None = None, index: int | None = None) -> TreeNode:
        ...

    @abstractmethod
    def update(self, node_id: str, title: str | None = None, url: str | None = None) -> TreeNode:
        ...

    @abstractmethod
    def move(self, node_id: str, parent_id: str, index: int | None = None) -> TreeNode:
        ...

    @abstractmethod
    def remove(self, node_id: str) -> None:
        ...

    @abstractmethod
    def remove_tree(self, node_id: str) -> None:
        ...


class MemoryTreeStore(TreeStore):
    def __init__(self, layout: str = "chromium"):
        if layout not in LAYOUTS:
            raise ValueError(f"unknown_layout: {layout}")
        root_id, system_roots = LAYOUTS[layout]
        self.root_id = root_id
        self.ops: list[tuple[str, str]] = []
        self._next_id = 100
        self._nodes: dict[str, dict] = {
            root_id: {"id": root_id, "parent_id": None, "title": "", "url": None, "role_tag": None, "date_added": None}
        }
        self._children: dict[str, list[str]] = {root_id: []}
        self._protected = {root_id}
        for node_id, title, role_tag in system_roots:
            self._nodes[node_id] = {
                "id": node_id,
                "parent_id": root_id,
                "title": title,
                "url": None,
                "role_tag": role_tag,
                "date_added": None,
            }
            self._children[node_id] = []
            self._children[root_id].append(node_id)
            self._protected.add(node_id)

    def _require(self, node_id: str) -> dict:
        row = self._nodes.get(str(node_id))
        if row is None:
            raise TreeStoreError(f"node_not_found: {node_id}")
        return row

    def _require_folder(self, node_id: str) -> dict:
        row = self._require(node_id)
        if row["url"]:
            raise TreeStoreError(f"parent_not_folder: {node_id}")
        return row

    def _require_mutable(self, node_id: str) -> dict:
        row = self._require(node_id)
        if row["id"] in self._protected:
            raise TreeStoreError(f"system_root_immutable: {node_id}")
        return row

    def _to_node(self, node_id: str, deep: bool = False) -> TreeNode:
        row = self._nodes[node_id]
        parent_id = row["parent_id"]
        node = TreeNode(
            local_id=row["id"],
            parent_id=parent_id,
            index=self._children[parent_id].index(node_id) if parent_id is not None else 0,
            title=row["title"],
            url=row["url"],
            role_tag=row["role_tag"],
            date_added=row["date_added"],
        )
        if deep and not row["url"]:
            node.children = [self._to_node(child_id, deep=True) for child_id in self._children[node_id]]
        return node

    def get_tree(self) -> list[TreeNode]:
        return [self._to_node(self.root_id, deep=True)]

    def get_children(self, node_id: str) -> list[TreeNode]:
        self._require_folder(node_id)
        return [self._to_node(child_id) for child_id in self._children[str(node_id)]]

    def get(self, node_id: str) -> TreeNode:
        row = self._require(node_id)
        return self._to_node(row["id"])

    def create(self, parent_id: str, title: str, url: str | None = None, index: int | None = None) -> TreeNode:
        parent = self._require_folder(parent_id)
        node_id = str(self._next_id)
        self._next_id += 1
        self._nodes[node_id] = {
            "id": node_id,
            "parent_id": parent["id"],
            "title": title or "",
            "url": url or None,
            "role_tag": None,
            "date_added": int(time.time() * 1000),
        }
        if not url:
            self._children[node_id] = []
        siblings = self._children[parent["id"]]
        siblings.insert(_clamp(index, len(siblings)), node_id)
        self.ops.append(("create", node_id))
        return self._to_node(node_id)

    def update(self, node_id: str, title: str | None = None, url: str | None = None) -> TreeNode:
        row = self._require_mutable(node_id)
        if url is not None and not row["url"]:
            raise TreeStoreError(f"cannot_set_url_on_folder: {node_id}")
        if title is not None:
            row["title"] = title
        if url is not None:
            row["url"] = url
        self.ops.append(("update", row["id"]))
        return self._to_node(row["id"])

    def move(self, node_id: str, parent_id: str, index: int | None = None) -> TreeNode:
        row = self._require_mutable(node_id)
        parent = self._require_folder(parent_id)
        cursor = parent["id"]
        while cursor is not None:
            if cursor == row["id"]:
                raise TreeStoreError(f"move_into_descendant: {node_id}")
            cursor = self._nodes[cursor]["parent_id"]

        self._children[row["parent_id"]].remove(row["id"])
        siblings = self._children[parent["id"]]
        siblings.insert(_clamp(index, len(siblings)), row["id"])
        row["parent_id"] = parent["id"]
        self.ops.append(("move", row["id"]))
        return self._to_node(row["id"])

    def remove(self, node_id: str) -> None:
        row = self._require_mutable(node_id)
        if not row["url"] and self._children.get(row["id"]):
            raise TreeStoreError(f"folder_not_empty: {node_id}")
        self._children[row["parent_id"]].remove(row["id"])
        self._children.pop(row["id"], None)
        del self._nodes[row["id"]]
        self.ops.append(("remove", row["id"]))

    def remove_tree(self, node_id: str) -> None:
        row = self._require_mutable(node_id)
        self._children[row["parent_id"]].remove(row["id"])
        pending = [row["id"]]
        while pending:
            current = pending.pop()
            pending.extend(self._children.pop(current, []))
            del self._nodes[current]
        self.ops.append(("remove_tree", row["id"]))


class SqliteTreeStore(TreeStore):
    """Chromium-shaped local tree in the ``bookmarks`` table.

    Positions are kept dense (0..n-1) per parent.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)
        self._ensure_roots()

    def _ensure_roots(self) -> None:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT OR IGNORE INTO bookmarks(id, parent_id, position, title, url, role_tag) VALUES (0, NULL, 0, '', NULL, NULL)"
            )
            for position, (node_id, title, role_tag) in enumerate(CHROMIUM_SYSTEM_ROOTS):
                cur.execute(
                    "INSERT OR IGNORE INTO bookmarks(id, parent_id, position, title, url, role_tag) VALUES (?, 0, ?, ?, NULL, ?)",
                    (int(node_id), position, title, role_tag),
                )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _id(node_id: str) -> int:
        try:
            return int(node_id)
        except (TypeError, ValueError):
            raise TreeStoreError(f"node_not_found: {node_id}")

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> TreeNode:
        return TreeNode(
            local_id=str(row["id"]),
            parent_id=str(row["parent_id"]) if row["parent_id"] is not None else None,
            index=row["position"],
            title=row["title"] or "",
            url=row["url"] or None,
            role_tag=row["role_tag"],
            date_added=row["date_added"],
        )

    def _fetch(self, cur: sqlite3.Cursor, node_id: str) -> sqlite3.Row:
        row = cur.execute("SELECT * FROM bookmarks WHERE id = ?", (self._id(node_id),)).fetchone()
        if row is None:
            raise TreeStoreError(f"node_not_found: {node_id}")
        return row

    def _fetch_folder(self, cur: sqlite3.Cursor, node_id: str) -> sqlite3.Row:
        row = self._fetch(cur, node_id)
        if row["url"]:
            raise TreeStoreError(f"parent_not_folder: {node_id}")
        return row

    def _fetch_mutable(self, cur: sqlite3.Cursor, node_id: str) -> sqlite3.Row:
        row = self._fetch(cur, node_id)
        if row["parent_id"] is None or row["role_tag"]:
            raise TreeStoreError(f"system_root_immutable: {node_id}")
        return row

    @staticmethod
    def _sibling_count(cur: sqlite3.Cursor, parent_id: int) -> int:
        return cur.execute("SELECT COUNT(*) FROM bookmarks WHERE parent_id = ?", (parent_id,)).fetchone()[0]

    @staticmethod
    def _close_gap(cur: sqlite3.Cursor, parent_id: int, position: int) -> None:
        cur.execute(
            "UPDATE bookmarks SET position = position - 1 WHERE parent_id = ? AND position > ?",
            (parent_id, position),
        )

    @staticmethod
    def _open_gap(cur: sqlite3.Cursor, parent_id: int, position: int) -> None:
        cur.execute(
            "UPDATE bookmarks SET position = position + 1 WHERE parent_id = ? AND position >= ?",
            (parent_id, position),
        )

    def get_tree(self) -> list[TreeNode]:
        conn = get_conn(self.db_path)
        try:
            rows = conn.execute("SELECT * FROM bookmarks ORDER BY parent_id, position").fetchall()
        finally:
            conn.close()

        nodes: dict[int, TreeNode] = {}
        by_parent: dict[int, list[int]] = {}
        root_id = None
        for row in rows:
            node = self._row_to_node(row)
            if not row["url"]:
                node.children = []
            nodes[row["id"]] = node
            if row["parent_id"] is None:
                root_id = row["id"]
            else:
                by_parent.setdefault(row["parent_id"], []).append(row["id"])
        for parent_id, child_ids in by_parent.items():
            parent = nodes.get(parent_id)
            if parent is None or parent.children is None:
                continue
            parent.children.extend(nodes[child_id] for child_id in child_ids)
        if root_id is None:
            return []
        return [nodes[root_id]]

    def get_children(self, node_id: str) -> list[TreeNode]:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            parent = self._fetch_folder(cur, node_id)
            rows = cur.execute(
                "SELECT * FROM bookmarks WHERE parent_id = ? ORDER BY position",
                (parent["id"],),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_node(row) for row in rows]

    def get(self, node_id: str) -> TreeNode:
        conn = get_conn(self.db_path)
        try:
            row = self._fetch(conn.cursor(), node_id)
        finally:
            conn.close()
        return self._row_to_node(row)

    def create(self, parent_id: str, title: str, url: str | None = None, index: int | None = None) -> TreeNode:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            parent = self._fetch_folder(cur, parent_id)
            position = _clamp(index, self._sibling_count(cur, parent["id"]))
            self._open_gap(cur, parent["id"], position)
            cur.execute(
                "INSERT INTO bookmarks(parent_id, position, title, url, date_added) VALUES (?, ?, ?, ?, ?)",
                (parent["id"], position, title or "", url or None, int(time.time() * 1000)),
            )
            row = self._fetch(cur, str(cur.lastrowid))
            conn.commit()
        finally:
            conn.close()
        return self._row_to_node(row)

    def update(self, node_id: str, title: str | None = None, url: str | None = None) -> TreeNode:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            row = self._fetch_mutable(cur, node_id)
            if url is not None and not row["url"]:
                raise TreeStoreError(f"cannot_set_url_on_folder: {node_id}")
            cur.execute(
                "UPDATE bookmarks SET title = ?, url = ? WHERE id = ?",
                (row["title"] if title is None else title, row["url"] if url is None else url, row["id"]),
            )
            row = self._fetch(cur, node_id)
            conn.commit()
        finally:
            conn.close()
        return self._row_to_node(row)

    def move(self, node_id: str, parent_id: str, index: int | None = None) -> TreeNode:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            row = self._fetch_mutable(cur, node_id)
            parent = self._fetch_folder(cur, parent_id)
            cursor = parent["id"]
            while cursor is not None:
                if cursor == row["id"]:
                    raise TreeStoreError(f"move_into_descendant: {node_id}")
                cursor = cur.execute("SELECT parent_id FROM bookmarks WHERE id = ?", (cursor,)).fetchone()["parent_id"]

            cur.execute("UPDATE bookmarks SET parent_id = NULL, position = -1 WHERE id = ?", (row["id"],))
            self._close_gap(cur, row["parent_id"], row["position"])
            position = _clamp(index, self._sibling_count(cur, parent["id"]))
            self._open_gap(cur, parent["id"], position)
            cur.execute(
                "UPDATE bookmarks SET parent_id = ?, position = ? WHERE id = ?",
                (parent["id"], position, row["id"]),
            )
            row = self._fetch(cur, node_id)
            conn.commit()
        finally:
            conn.close()
        return self._row_to_node(row)

    def remove(self, node_id: str) -> None:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            row = self._fetch_mutable(cur, node_id)
            if not row["url"] and self._sibling_count(cur, row["id"]) > 0:
                raise TreeStoreError(f"folder_not_empty: {node_id}")
            cur.execute("DELETE FROM bookmarks WHERE id = ?", (row["id"],))
            self._close_gap(cur, row["parent_id"], row["position"])
            conn.commit()
        finally:
            conn.close()

    def remove_tree(self, node_id: str) -> None:
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            row = self._fetch_mutable(cur, node_id)
            cur.execute(
                """
                WITH RECURSIVE subtree(id) AS (
                  SELECT ?
                  UNION ALL
                  SELECT b.id FROM bookmarks b JOIN subtree s ON b.parent_id = s.id
                )
                DELETE FROM bookmarks WHERE id IN (SELECT id FROM subtree)
                """,
                (row["id"],),
            )
            self._close_gap(cur, row["parent_id"], row["position"])
            conn.commit()
        finally:
            conn.close()
