from marksync.bookmarks.models import TreeNode
from marksync.bookmarks.normalizer import (
    canonical_role,
    find_matching_root,
    has_role_mapping,
    is_system_root,
    normalize_url,
    root_label,
)
from marksync.bookmarks.tree_store import MemoryTreeStore


def test_normalize_url_trims_trailing_slashes_and_lowercases_scheme():
    assert normalize_url("  HTTPS://Example.com/Path/ ") == "https://Example.com/Path"
    assert normalize_url("https://example.com///") == "https://example.com"
    assert normalize_url(None) == ""
    assert normalize_url("about:blank") == "about:blank"


def test_is_system_root_detects_both_replica_kinds():
    assert is_system_root(TreeNode(local_id="0", title=""))
    assert is_system_root(TreeNode(local_id="1", title="Bookmarks bar", role_tag="bookmarks-bar"))
    assert is_system_root(TreeNode(local_id="toolbar_____", title="Bookmarks Toolbar"))
    assert is_system_root(TreeNode(local_id="root________", title=""))
    assert not is_system_root(TreeNode(local_id="12", title="Dev"))
    assert not is_system_root(TreeNode(local_id="1", title="x", url="https://example.com", role_tag="other"))


def test_canonical_role_folds_chromium_and_firefox_roots():
    assert canonical_role(TreeNode(local_id="1", role_tag="bookmarks-bar")) == "toolbar"
    assert canonical_role(TreeNode(local_id="toolbar_____")) == "toolbar"
    assert canonical_role(TreeNode(local_id="2", role_tag="other")) == "unfiled"
    assert canonical_role(TreeNode(local_id="unfiled_____")) == "unfiled"
    assert canonical_role(TreeNode(local_id="mobile______")) == "mobile"
    assert not has_role_mapping(TreeNode(local_id="menu________", title="Bookmarks Menu"))


def test_root_label_uses_canonical_role():
    assert root_label(TreeNode(local_id="0", title="")) == ""
    assert root_label(TreeNode(local_id="1", title="Bookmarks bar", role_tag="bookmarks-bar")) == "toolbar"
    assert root_label(TreeNode(local_id="toolbar_____", title="Bookmarks Toolbar")) == "toolbar"


def test_find_matching_root_pairs_firefox_remote_with_chromium_local():
    local_roots = MemoryTreeStore("chromium").get_tree()[0].children
    remote_roots = MemoryTreeStore("firefox").get_tree()[0].children
    by_id = {root.local_id: root for root in remote_roots}

    assert find_matching_root(by_id["toolbar_____"], local_roots).local_id == "1"
    assert find_matching_root(by_id["unfiled_____"], local_roots).local_id == "2"
    assert find_matching_root(by_id["mobile______"], local_roots).local_id == "3"
    assert find_matching_root(by_id["menu________"], local_roots) is None
