from __future__ import annotations

from collections import Counter

from marksync.bookmarks.hashing import assign_hashes, node_hash
from marksync.bookmarks.models import TreeNode
from marksync.bookmarks.normalizer import is_system_root


def extract_signatures(nodes: list[TreeNode]) -> list[str]:
    out: list[str] = []
    _walk(nodes, out)
    return out


def _walk(nodes: list[TreeNode], out: list[str]) -> None:
    for node in nodes:
        if not is_system_root(node):
            if node.url:
                # Recomputed rather than trusted from the wire.
                out.append(f"B|{node_hash(node)}")
            else:
                out.append(f"F|{(node.title or '').strip()}|{len(node.children or [])}")
        if node.children:
            _walk(node.children, out)


def compare_trees(local_tree: list[TreeNode], remote_data: list[TreeNode], ignore_order: bool = False) -> bool:
    """True when both trees carry the same content.

    By default the signature sequences must match position by position, so a
    pure reordering counts as a difference.
    """
    local_signatures = extract_signatures(assign_hashes(local_tree))
    remote_signatures = extract_signatures(remote_data)
    if len(local_signatures) != len(remote_signatures):
        return False
    if ignore_order:
        return Counter(local_signatures) == Counter(remote_signatures)
    return local_signatures == remote_signatures
