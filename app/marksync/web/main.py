from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from marksync.bookmarks.models import CLIENT_VERSION
from marksync.core.config import AppConfig, load_config
from marksync.core.logging_setup import setup_logging
from marksync.storage.db import init_db
from marksync.web.api import router as api_router, start_scheduler, stop_scheduler
from marksync.web.security import NetworkAllowlistMiddleware, get_allowed_nets


def build_app(cfg: AppConfig | None = None, scheduler: bool = True) -> FastAPI:
    cfg = cfg or load_config()
    init_db(cfg.database.path)

    @asynccontextmanager
    async def lifespan(_api: FastAPI):
        if scheduler:
            start_scheduler()
        try:
            yield
        finally:
            if scheduler:
                await stop_scheduler()

    api = FastAPI(title="marksync", version=CLIENT_VERSION, lifespan=lifespan)
    api.add_middleware(NetworkAllowlistMiddleware, allowed_nets=get_allowed_nets())

    @api.get("/")
    def index():
        return {
            "service": "marksync",
            "version": CLIENT_VERSION,
            "backup_dir": cfg.webdav.backup_dir,
            "replica_label": cfg.sync.replica_label,
            "docs": "/docs",
            "health": "/api/healthz",
        }

    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()
    setup_logging(
        cfg.logging.level,
        cfg.logging.file,
        max_bytes=cfg.logging.max_bytes,
        backup_count=cfg.logging.backup_count,
    )

    uvicorn.run(
        build_app(cfg),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
