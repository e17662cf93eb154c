from helpers import add_nodes
from marksync.bookmarks.comparator import compare_trees, extract_signatures
from marksync.bookmarks.hashing import assign_hashes
from marksync.bookmarks.tree_store import MemoryTreeStore


def _tree(items: list) -> MemoryTreeStore:
    store = MemoryTreeStore()
    add_nodes(store, "1", items)
    return store


ITEMS = [
    ("A", "https://a.example"),
    {"title": "Folder", "children": [("B", "https://b.example")]},
]


def test_signatures_skip_system_roots():
    signatures = extract_signatures(assign_hashes(_tree(ITEMS).get_tree()))
    assert len(signatures) == 3
    assert signatures[1] == "F|Folder|1"
    assert all(sig.startswith(("B|", "F|")) for sig in signatures)


def test_identical_trees_compare_equal():
    remote = assign_hashes(_tree(ITEMS).get_tree())
    assert compare_trees(_tree(ITEMS).get_tree(), remote)


def test_reordering_counts_as_difference_unless_ignored():
    remote = assign_hashes(_tree(list(reversed(ITEMS))).get_tree())
    local = _tree(ITEMS).get_tree()
    assert not compare_trees(local, remote)
    assert compare_trees(local, remote, ignore_order=True)


def test_wire_hash_is_recomputed():
    remote = assign_hashes(_tree(ITEMS).get_tree())
    remote[0].children[0].children[0].content_hash = "tampered"
    assert compare_trees(_tree(ITEMS).get_tree(), remote)


def test_folder_child_count_matters():
    remote = assign_hashes(_tree([{"title": "Folder", "children": []}]).get_tree())
    local = _tree([{"title": "Folder", "children": [{"title": "Sub", "children": []}]}]).get_tree()
    assert not compare_trees(local, remote)
