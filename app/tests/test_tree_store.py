from pathlib import Path

import pytest

from helpers import add_nodes, shape
from marksync.bookmarks.tree_store import SqliteTreeStore
from marksync.core.errors import TreeStoreError


def _store(tmp_path: Path) -> SqliteTreeStore:
    return SqliteTreeStore(str(tmp_path / "runtime" / "service.db"))


def test_sqlite_store_starts_with_chromium_roots(tmp_path: Path):
    tree = _store(tmp_path).get_tree()

    assert len(tree) == 1
    root = tree[0]
    assert root.local_id == "0"
    assert [(c.local_id, c.role_tag) for c in root.children] == [
        ("1", "bookmarks-bar"),
        ("2", "other"),
        ("3", "mobile"),
    ]


def test_sqlite_store_keeps_positions_dense(tmp_path: Path):
    store = _store(tmp_path)
    add_nodes(store, "1", [("A", "https://a.example"), ("B", "https://b.example"), ("C", "https://c.example")])
    a, b, c = store.get_children("1")

    store.move(c.local_id, "1", 0)
    assert [n.title for n in store.get_children("1")] == ["C", "A", "B"]
    assert [n.index for n in store.get_children("1")] == [0, 1, 2]

    store.move(a.local_id, "2", 99)
    assert [n.title for n in store.get_children("1")] == ["C", "B"]
    assert [n.index for n in store.get_children("1")] == [0, 1]
    assert store.get(a.local_id).parent_id == "2"

    store.remove(b.local_id)
    assert [(n.title, n.index) for n in store.get_children("1")] == [("C", 0)]


def test_sqlite_store_remove_tree_and_persistence(tmp_path: Path):
    store = _store(tmp_path)
    add_nodes(store, "1", [{"title": "Dev", "children": [("A", "https://a.example"), {"title": "Sub", "children": []}]}])
    add_nodes(store, "1", [("Z", "https://z.example")])

    reopened = _store(tmp_path)
    assert shape(reopened, "1") == [
        {"title": "Dev", "children": [("A", "https://a.example"), {"title": "Sub", "children": []}]},
        ("Z", "https://z.example"),
    ]

    dev = reopened.get_children("1")[0]
    reopened.remove_tree(dev.local_id)
    assert shape(reopened, "1") == [("Z", "https://z.example")]
    assert reopened.get_children("1")[0].index == 0


def test_sqlite_store_rejects_invalid_operations(tmp_path: Path):
    store = _store(tmp_path)
    folder = store.create("1", "Dev")
    store.create(folder.local_id, "A", url="https://a.example")

    with pytest.raises(TreeStoreError):
        store.get("12345")
    with pytest.raises(TreeStoreError):
        store.remove("1")
    with pytest.raises(TreeStoreError):
        store.remove(folder.local_id)
    with pytest.raises(TreeStoreError):
        store.move(folder.local_id, folder.local_id)
    with pytest.raises(TreeStoreError):
        store.update(folder.local_id, url="https://nope.example")
