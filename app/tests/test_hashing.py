import hashlib

from helpers import add_nodes
from marksync.bookmarks.hashing import assign_hashes, content_hash
from marksync.bookmarks.tree_store import MemoryTreeStore


def test_content_hash_is_sha256_of_normalized_url_and_title():
    expected = hashlib.sha256("https://example.com/a|Example".encode("utf-8")).hexdigest()
    assert content_hash("https://example.com/a/", "Example") == expected
    assert content_hash("HTTPS://example.com/a", "Example") == expected


def test_content_hash_changes_with_title():
    assert content_hash("https://example.com", "A") != content_hash("https://example.com", "B")


def test_assign_hashes_minimizes_tree():
    store = MemoryTreeStore()
    add_nodes(store, "1", [{"title": "Dev", "children": [("Docs", "https://docs.python.org/")]}])

    minimized = assign_hashes(store.get_tree())

    root = minimized[0]
    assert root.local_id == "0"
    bar = root.children[0]
    assert bar.local_id == "1"
    assert bar.role_tag == "bookmarks-bar"

    folder = bar.children[0]
    assert folder.local_id is None
    assert folder.index is None
    assert folder.title == "Dev"

    bookmark = folder.children[0]
    assert bookmark.local_id is None
    assert bookmark.date_added is None
    assert bookmark.content_hash == content_hash("https://docs.python.org", "Docs")
    # Original URL is kept as written.
    assert bookmark.url == "https://docs.python.org/"
