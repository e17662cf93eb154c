from __future__ import annotations

from dataclasses import dataclass

from marksync.bookmarks.hashing import node_hash
from marksync.bookmarks.models import TreeNode
from marksync.bookmarks.normalizer import is_system_root, normalize_url, root_label


@dataclass
class Location:
    id: str
    parent_id: str | None
    index: int | None
    title: str
    url: str | None
    path: str
    is_folder: bool
    content_hash: str | None = None


class GlobalIndex:
    """Lookup tables over one full local tree.

    ``hash_to_locations`` keeps every bookmark sharing a hash, so duplicates
    stay reachable; lookups skip ids already claimed by the caller.
    """

    def __init__(self):
        self.hash_to_locations: dict[str, list[Location]] = {}
        self.url_to_locations: dict[str, list[Location]] = {}
        self.path_to_folder: dict[str, Location] = {}
        self.id_to_path: dict[str, str] = {}
        self.bookmark_count = 0
        self.folder_count = 0

    def find_by_hash(self, digest: str, claimed: set[str], prefer_parent: str | None = None) -> Location | None:
        return _pick(self.hash_to_locations.get(digest), claimed, prefer_parent)

    def find_by_url(self, url: str, claimed: set[str], prefer_parent: str | None = None) -> Location | None:
        return _pick(self.url_to_locations.get(normalize_url(url)), claimed, prefer_parent)

    def find_folder(self, path: str, claimed: set[str]) -> Location | None:
        loc = self.path_to_folder.get(path)
        if loc is None or loc.id in claimed:
            return None
        return loc


def _pick(candidates: list[Location] | None, claimed: set[str], prefer_parent: str | None) -> Location | None:
    if not candidates:
        return None
    fallback = None
    for loc in candidates:
        if loc.id in claimed:
            continue
        if prefer_parent is None or loc.parent_id == prefer_parent:
            return loc
        if fallback is None:
            fallback = loc
    return fallback


def join_path(prefix: str, title: str | None) -> str:
    name = (title or "").strip()
    return f"{prefix}/{name}" if prefix else name


def build_global_index(tree: list[TreeNode]) -> GlobalIndex:
    index = GlobalIndex()
    for node in tree:
        _collect(index, node, "")
    return index


def _collect(index: GlobalIndex, node: TreeNode, prefix: str) -> None:
    if is_system_root(node):
        label = root_label(node)
        for child in node.children or []:
            _collect(index, child, label)
        return

    node_id = node.local_id or ""
    if node.url:
        digest = node_hash(node)
        loc = Location(
            id=node_id,
            parent_id=node.parent_id,
            index=node.index,
            title=node.title or "",
            url=node.url,
            path=prefix,
            is_folder=False,
            content_hash=digest,
        )
        index.hash_to_locations.setdefault(digest, []).append(loc)
        index.url_to_locations.setdefault(normalize_url(node.url), []).append(loc)
        index.bookmark_count += 1
        return

    path = join_path(prefix, node.title)
    loc = Location(
        id=node_id,
        parent_id=node.parent_id,
        index=node.index,
        title=node.title or "",
        url=None,
        path=path,
        is_folder=True,
    )
    # First folder seen at a path wins; same-title siblings are matched directly.
    index.path_to_folder.setdefault(path, loc)
    if node_id:
        index.id_to_path[node_id] = path
    index.folder_count += 1
    for child in node.children or []:
        _collect(index, child, path)
