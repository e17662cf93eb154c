"""URL canonicalization and system-root handling across replica kinds.

Chromium-style replicas tag their roots with a ``folderType``
(``bookmarks-bar``, ``other``, ``mobile``); Firefox-style replicas use fixed
twelve-character ids. Both are folded into three canonical roles so roots
can be paired without any shared id.
"""

from __future__ import annotations

import re

from marksync.bookmarks.models import TreeNode

ANONYMOUS_ROOT_IDS = {"0", "root________"}
FIREFOX_SYSTEM_IDS = {"toolbar_____", "unfiled_____", "menu________", "mobile______"}

ROLE_TO_CANONICAL = {
    "bookmarks-bar": "toolbar",
    "toolbar_____": "toolbar",
    "other": "unfiled",
    "unfiled_____": "unfiled",
    "mobile": "mobile",
    "mobile______": "mobile",
}

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):")


def normalize_url(url: str | None) -> str:
    value = (url or "").strip().rstrip("/")
    match = _SCHEME_RE.match(value)
    if match:
        value = match.group(1).lower() + value[match.end(1):]
    return value


def is_system_root(node: TreeNode) -> bool:
    if node.url:
        return False
    if node.role_tag:
        return True
    node_id = node.local_id
    if not node_id:
        return False
    if node_id == "0":
        return not node.title
    return node_id in ANONYMOUS_ROOT_IDS or node_id in FIREFOX_SYSTEM_IDS


def role_of(node: TreeNode) -> str | None:
    if node.role_tag:
        return node.role_tag
    if node.local_id in FIREFOX_SYSTEM_IDS:
        return node.local_id
    return None


def canonical_role(node: TreeNode) -> str | None:
    role = role_of(node)
    if role is None:
        return None
    return ROLE_TO_CANONICAL.get(role)


def has_role_mapping(node: TreeNode) -> bool:
    return canonical_role(node) is not None


def root_label(node: TreeNode) -> str:
    """Path prefix used for the children of a system root."""
    if node.local_id == "0" and not node.title:
        return ""
    return canonical_role(node) or (node.title or "").strip()


def find_matching_root(remote_root: TreeNode, local_roots: list[TreeNode]) -> TreeNode | None:
    remote_role = role_of(remote_root)
    if remote_role:
        for local in local_roots:
            if role_of(local) == remote_role:
                return local

    remote_canonical = canonical_role(remote_root)
    if remote_canonical:
        for local in local_roots:
            if canonical_role(local) == remote_canonical:
                return local

    title = (remote_root.title or "").strip()
    if title:
        for local in local_roots:
            if (local.title or "").strip() == title:
                return local
    return None
