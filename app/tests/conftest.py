from __future__ import annotations

from pathlib import Path

import pytest

from helpers import DAV_URL, FakeClock, FakeWebDAV
from marksync.bookmarks.tree_store import MemoryTreeStore
from marksync.core.config import AppConfig
from marksync.storage.kv_store import MemoryKeyValueStore
from marksync.sync.service import SyncService


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_dav(clock: FakeClock) -> FakeWebDAV:
    return FakeWebDAV(clock)


@pytest.fixture
def make_service(tmp_path: Path, fake_dav: FakeWebDAV, clock: FakeClock):
    services: list[SyncService] = []

    def _make(label: str = "python", layout: str = "chromium", online: bool = True, **sync_overrides) -> SyncService:
        cfg = AppConfig()
        cfg.webdav.url = DAV_URL
        cfg.database.path = str(tmp_path / f"{label}.db")
        cfg.logging.file = str(tmp_path / "service.log")
        cfg.sync.replica_label = label
        for key, value in sync_overrides.items():
            setattr(cfg.sync, key, value)
        service = SyncService(
            cfg,
            tree_store=MemoryTreeStore(layout),
            kv=MemoryKeyValueStore(),
            client=fake_dav,
            is_online=lambda: online,
            clock=clock,
        )
        services.append(service)
        return service

    yield _make
    for service in services:
        service.close()
