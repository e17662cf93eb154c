from __future__ import annotations

import json
import logging
import time

from pydantic import BaseModel, Field

from marksync.bookmarks.models import TreeNode, count_bookmarks
from marksync.storage.db import get_conn, init_db

logger = logging.getLogger("snapshots")

DEFAULT_MAX_SNAPSHOTS = 5


class Snapshot(BaseModel):
    id: int
    timestamp: int
    reason: str = ""
    count: int = 0
    tree: list[TreeNode] = Field(default_factory=list)


class SnapshotManager:
    """Local safety-net copies of the tree taken before destructive syncs."""

    def __init__(self, db_path: str, max_snapshots: int = DEFAULT_MAX_SNAPSHOTS):
        self.db_path = db_path
        self.max_snapshots = max_snapshots
        init_db(db_path)

    @staticmethod
    def _row_to_snapshot(row, with_tree: bool) -> Snapshot:
        tree: list[TreeNode] = []
        if with_tree:
            tree = [TreeNode.model_validate(item) for item in json.loads(row["tree_json"] or "[]")]
        return Snapshot(
            id=row["id"],
            timestamp=row["timestamp"],
            reason=row["reason"] or "",
            count=row["count"] or 0,
            tree=tree,
        )

    def create(self, tree: list[TreeNode], reason: str) -> int:
        tree_json = json.dumps(
            [node.model_dump(by_alias=True, exclude_none=True) for node in tree],
            ensure_ascii=False,
        )
        count = count_bookmarks(tree)
        conn = get_conn(self.db_path)
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO snapshots(timestamp, reason, count, tree_json) VALUES (?, ?, ?, ?)",
                (int(time.time() * 1000), reason, count, tree_json),
            )
            snapshot_id = int(cur.lastrowid)
            cur.execute(
                """
                DELETE FROM snapshots WHERE id NOT IN (
                  SELECT id FROM snapshots ORDER BY id DESC LIMIT ?
                )
                """,
                (self.max_snapshots,),
            )
            pruned = cur.rowcount
            conn.commit()
        finally:
            conn.close()
        logger.info("snapshot_created id=%s reason=%s count=%s pruned=%s", snapshot_id, reason, count, max(pruned, 0))
        return snapshot_id

    def latest(self) -> Snapshot | None:
        conn = get_conn(self.db_path)
        try:
            row = conn.execute("SELECT * FROM snapshots ORDER BY id DESC LIMIT 1").fetchone()
        finally:
            conn.close()
        return self._row_to_snapshot(row, with_tree=True) if row else None

    def list(self, with_tree: bool = False) -> list[Snapshot]:
        conn = get_conn(self.db_path)
        try:
            rows = conn.execute("SELECT * FROM snapshots ORDER BY id DESC").fetchall()
        finally:
            conn.close()
        return [self._row_to_snapshot(row, with_tree=with_tree) for row in rows]

    def get(self, snapshot_id: int) -> Snapshot | None:
        conn = get_conn(self.db_path)
        try:
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_snapshot(row, with_tree=True) if row else None

    def delete(self, snapshot_id: int) -> bool:
        conn = get_conn(self.db_path)
        try:
            cur = conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    def delete_all(self) -> int:
        conn = get_conn(self.db_path)
        try:
            cur = conn.execute("DELETE FROM snapshots")
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_conn(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]
        finally:
            conn.close()
