from helpers import add_nodes, shape
from marksync.bookmarks.comparator import compare_trees
from marksync.bookmarks.hashing import assign_hashes
from marksync.core.errors import RemoteError
from marksync.sync.lock import LOCK_HOLDER_AUTO
from marksync.sync.strategies import CONTENTION_HINT, SyncPhase

BAR = [
    ("Python", "https://python.org"),
    {"title": "Dev", "children": [("PyPI", "https://pypi.org"), ("Requests", "https://requests.readthedocs.io")]},
]


def _seeded(make_service, label: str, items: list = BAR, **kwargs):
    service = make_service(label, **kwargs)
    add_nodes(service.tree_store, "1", items)
    return service


def test_push_uploads_and_second_replica_pull_converges(make_service, fake_dav):
    chrome = _seeded(make_service, "chrome")
    result = chrome.push()

    assert result.success is True
    assert result.action == "uploaded"
    assert result.file["file_name"].startswith("bookmarks_")
    assert len(fake_dav.files) == 1
    assert chrome.state.get().kind == "upload"
    assert chrome.snapshots.latest().reason == "before_push:manual"
    assert chrome.phase == SyncPhase.SUCCESS

    edge = make_service("edge")
    pulled = edge.pull()

    assert pulled.action == "downloaded"
    assert shape(edge.tree_store, "1") == BAR
    assert compare_trees(edge.tree_store.get_tree(), assign_hashes(chrome.tree_store.get_tree()))
    assert edge.state.get().kind == "download"


def test_pull_twice_is_idempotent(make_service):
    _seeded(make_service, "chrome").push()
    edge = make_service("edge")
    edge.pull()
    edge.tree_store.ops.clear()

    again = edge.pull()

    assert again.success is True
    assert edge.tree_store.ops == []
    assert again.stats["created"] == 0


def test_first_smart_sync_with_divergent_content_asks_for_direction(make_service, fake_dav):
    _seeded(make_service, "chrome").push()
    edge = _seeded(make_service, "edge", [("Local only", "https://local.example")])
    edge.tree_store.ops.clear()
    files_before = dict(fake_dav.files)

    result = edge.smart_sync()

    assert result.success is False
    assert result.action == "needs_manual_choice"
    assert result.cloud_info["replica_label"] == "chrome"
    assert edge.phase == SyncPhase.NEEDS_MANUAL_CHOICE
    assert edge.tree_store.ops == []
    assert fake_dav.files == files_before
    assert not edge.lock.is_held()


def test_smart_sync_without_remote_delegates_to_push(make_service, fake_dav):
    chrome = _seeded(make_service, "chrome")

    result = chrome.smart_sync()

    assert result.action == "uploaded"
    assert len(fake_dav.files) == 1


def test_smart_sync_skips_when_identical(make_service, fake_dav, clock):
    chrome = _seeded(make_service, "chrome")
    chrome.push()
    clock.advance(5_000)

    result = chrome.smart_sync()

    assert result.action == "skipped"
    assert result.success is True
    assert chrome.state.get().kind == "skip_identical"


def test_smart_sync_pulls_when_remote_is_newer(make_service, clock):
    chrome = _seeded(make_service, "chrome")
    edge = make_service("edge")
    chrome.push()
    edge.pull()

    clock.advance(120_000)
    add_nodes(chrome.tree_store, "2", [("Later", "https://later.example")])
    assert chrome.push().action == "uploaded"
    clock.advance(1_000)

    result = edge.smart_sync()

    assert result.action == "downloaded"
    assert shape(edge.tree_store, "2") == [("Later", "https://later.example")]


def test_smart_sync_pushes_local_changes_when_remote_is_older(make_service, fake_dav, clock):
    chrome = _seeded(make_service, "chrome")
    chrome.push()
    clock.advance(120_000)
    add_nodes(chrome.tree_store, "1", [("New", "https://new.example")])

    result = chrome.smart_sync()

    assert result.action == "uploaded"
    assert len(fake_dav.files) == 2


def test_manual_resync_inside_window_bumps_revision(make_service, fake_dav, clock):
    chrome = _seeded(make_service, "chrome")
    first = chrome.push()
    clock.advance(10_000)

    second = chrome.push()

    assert second.action == "uploaded"
    assert second.file["revision"] == 2
    assert second.file["replaced"] is True
    assert list(fake_dav.files) == [second.file["file_path"]]
    assert first.file["file_path"] not in fake_dav.files


def test_auto_push_of_identical_content_is_skipped(make_service, fake_dav, clock):
    chrome = _seeded(make_service, "chrome")
    chrome.push()
    clock.advance(10_000)

    result = chrome.push(holder=LOCK_HOLDER_AUTO)

    assert result.action == "skipped"
    assert len(fake_dav.files) == 1


def test_auto_push_is_blocked_when_cloud_is_newer(make_service, fake_dav, clock):
    _seeded(make_service, "chrome").push()
    clock.advance(1_000)
    edge = _seeded(make_service, "edge", [("Local only", "https://local.example")])

    blocked = edge.push(holder=LOCK_HOLDER_AUTO)

    assert blocked.success is False
    assert blocked.error_code == "cloud_newer"
    assert len(fake_dav.files) == 1

    forced = edge.push()
    assert forced.action == "uploaded"


def test_push_refuses_empty_local_tree(make_service, fake_dav):
    result = make_service("chrome").push()

    assert result.success is False
    assert result.error_code == "empty_local_tree"
    assert fake_dav.files == {}


def test_lock_contention_returns_retry_hint(make_service):
    chrome = _seeded(make_service, "chrome")
    assert chrome.lock.acquire(LOCK_HOLDER_AUTO)

    result = chrome.push()

    assert result.success is False
    assert result.error_code == "lock_contention"
    assert result.hint == CONTENTION_HINT
    assert chrome.lock.read().holder == LOCK_HOLDER_AUTO


def test_offline_aborts_before_touching_anything(make_service, fake_dav):
    chrome = _seeded(make_service, "chrome", online=False)

    result = chrome.push()

    assert result.error_code == "offline"
    assert fake_dav.files == {}
    assert not chrome.lock.is_held()


def test_missing_webdav_url_is_reported_before_the_network_check(make_service, fake_dav):
    chrome = _seeded(make_service, "chrome", online=False)
    chrome.cfg.webdav.url = "  "

    pushed = chrome.push()
    pulled = chrome.pull()

    assert pushed.error_code == pulled.error_code == "webdav_unconfigured"
    assert pushed.message == "webdav_url_missing"
    assert fake_dav.files == {}
    assert not chrome.lock.is_held()

def test_pull_without_backup_reports_not_found(make_service):
    result = make_service("edge").pull()
    assert result.success is False
    assert result.error_code == "remote_not_found"


def test_remote_failure_releases_lock(make_service, fake_dav):
    edge = make_service("edge")
    fake_dav.list_error = RemoteError("webdav_list_failed: status=503", status_code=503)

    result = edge.pull()

    assert result.error_code == "remote_error"
    assert not edge.lock.is_held()
    assert edge.phase == SyncPhase.ERROR


def test_manual_push_survives_unreadable_remote(make_service, fake_dav):
    chrome = _seeded(make_service, "chrome")
    fake_dav.files["BookmarkSyncer/bookmarks_20250101_000000_edge_1_v1.json.gz"] = (b"garbage", 1)

    assert chrome.push(holder=LOCK_HOLDER_AUTO).error_code == "decompression_failure"
    assert chrome.push().action == "uploaded"


def test_merge_pull_keeps_local_additions(make_service):
    _seeded(make_service, "chrome").push()
    edge = _seeded(make_service, "edge", [("Local only", "https://local.example")])

    result = edge.pull(mode="merge")

    assert result.stats["mode"] == "merge"
    titles = [child.title for child in edge.tree_store.get_children("1")]
    assert titles == ["Local only", "Python", "Dev"]


def test_restore_specific_backup(make_service, clock):
    chrome = _seeded(make_service, "chrome")
    first = chrome.push()
    original = assign_hashes(chrome.tree_store.get_tree())
    clock.advance(120_000)
    add_nodes(chrome.tree_store, "1", [("Second", "https://second.example")])
    chrome.push()

    edge = make_service("edge")
    result = edge.restore_backup(first.file["file_path"])

    assert result.action == "downloaded"
    assert compare_trees(edge.tree_store.get_tree(), original)
    assert edge.state.get().kind == "restore"


def test_restore_snapshot_rolls_back_local_changes(make_service):
    chrome = _seeded(make_service, "chrome")
    chrome.push()
    add_nodes(chrome.tree_store, "1", [("Oops", "https://oops.example")])

    result = chrome.restore_snapshot()

    assert result.action == "restored"
    assert shape(chrome.tree_store, "1") == BAR
    assert chrome.snapshots.latest().reason.startswith("before_snapshot_restore")


def test_restore_unknown_snapshot_is_an_error(make_service):
    result = make_service("chrome").restore_snapshot(999)
    assert result.success is False
    assert "snapshot_not_found" in result.message
