from __future__ import annotations

import hashlib

from marksync.bookmarks.models import TreeNode
from marksync.bookmarks.normalizer import is_system_root, normalize_url


def content_hash(url: str | None, title: str | None) -> str:
    raw = f"{normalize_url(url)}|{title or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def node_hash(node: TreeNode) -> str:
    return content_hash(node.url, node.title)


def assign_hashes(nodes: list[TreeNode]) -> list[TreeNode]:
    """Minimized, hash-stamped copy of a tree; this is what gets uploaded.

    Local ids, positions and timestamps are dropped; system roots keep their
    id and role tag so the receiving side can pair them.
    """
    return [_minimize(node) for node in nodes]


def _minimize(node: TreeNode) -> TreeNode:
    out = TreeNode(title=node.title or "")
    if node.url:
        out.url = node.url
        out.content_hash = node_hash(node)
    if is_system_root(node):
        out.local_id = node.local_id
        out.role_tag = node.role_tag
    if node.children is not None:
        out.children = [_minimize(child) for child in node.children]
    return out
