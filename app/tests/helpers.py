from __future__ import annotations

from marksync.core.errors import RemoteNotFoundError
from marksync.storage.records import RemoteFile

START_MS = 1_760_000_000_000
DAV_URL = "https://dav.example.com/remote.php/webdav"


class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeWebDAV:
    """In-memory stand-in for ``WebDAVClient`` (same method surface)."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.files: dict[str, tuple[bytes, int]] = {}
        self.dirs: set[str] = set()
        self.reachable = True
        self.list_error: Exception | None = None
        self.get_count = 0
        self.content_types: dict[str, str] = {}

    def is_reachable(self) -> bool:
        return self.reachable

    def test_connection(self) -> bool:
        return True

    def exists(self, path: str) -> bool:
        return path.strip("/") in self.dirs

    def create_directory(self, path: str) -> None:
        self.dirs.add(path.strip("/"))

    def list_files(self, path: str) -> list[RemoteFile]:
        if self.list_error is not None:
            raise self.list_error
        prefix = path.strip("/") + "/"
        out = []
        for file_path, (data, modified) in self.files.items():
            name = file_path[len(prefix):]
            if file_path.startswith(prefix) and "/" not in name:
                out.append(RemoteFile(name=name, path=file_path, last_modified=modified, size=len(data)))
        return out

    def put_file(self, path: str, data: bytes, content_type: str = "application/gzip") -> None:
        self.files[path.strip("/")] = (data, self.clock())
        self.content_types[path.strip("/")] = content_type

    def get_file(self, path: str) -> bytes:
        self.get_count += 1
        item = self.files.get(path.strip("/"))
        if item is None:
            raise RemoteNotFoundError(f"webdav_get_failed: status=404 path={path}", status_code=404)
        return item[0]

    def delete_file(self, path: str) -> None:
        self.files.pop(path.strip("/"), None)


def add_nodes(store, parent_id: str, items: list) -> None:
    """``("title", "url")`` tuples are bookmarks; ``{"title", "children"}`` dicts are folders."""
    for item in items:
        if isinstance(item, tuple):
            store.create(parent_id, item[0], url=item[1])
        else:
            folder = store.create(parent_id, item["title"])
            add_nodes(store, folder.local_id, item.get("children", []))


def shape(store, folder_id: str) -> list:
    out = []
    for child in store.get_children(folder_id):
        if child.url:
            out.append((child.title, child.url))
        else:
            out.append({"title": child.title, "children": shape(store, child.local_id)})
    return out
