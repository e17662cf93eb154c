from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

PROJECT_ROOT = Path(os.environ.get("MARKSYNC_HOME") or (Path.home() / ".marksync"))
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
# Shipped inside the package; used when MARKSYNC_HOME holds no template of its own.
BUNDLED_CONFIG_TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "config.yaml.example"
LAST_RUN_PATH = RUNTIME_DIR / "last_run.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"


class WebDAVConfig(BaseModel):
    url: str = ""
    username: str = ""
    password: str = ""
    # Remote directory (relative to url) holding the backup files.
    backup_dir: str = "BookmarkSyncer"
    timeout_sec: int = 30


class SyncConfig(BaseModel):
    # Written into backup filenames; lowercased and reduced to [a-z]+.
    replica_label: str = "python"
    # 0 means disabled; positive values are seconds between scheduled pulls.
    poll_interval_sec: int = Field(default=1800, ge=0, le=86400)
    # Delay between a local tree change and the automatic upload.
    debounce_sec: float = Field(default=1.0, ge=0, le=3600)
    auto_sync_enabled: bool = True
    # Uploads within this window replace the previous file with revision+1.
    backup_file_interval_min: int = Field(default=1, ge=0, le=1440)
    retention_days: int = Field(default=3, ge=1, le=3650)
    lock_timeout_sec: int = Field(default=60, ge=1, le=3600)
    download_timeout_sec: int = Field(default=30, ge=1, le=600)
    listing_cache_enabled: bool = True
    listing_cache_ttl_sec: int = Field(default=300, ge=0, le=86400)
    max_snapshots: int = Field(default=5, ge=1, le=100)
    # When enabled, a pure reordering of identical content does not count as a change.
    compare_ignore_order: bool = False
    restoring_guard_sec: int = Field(default=10, ge=0, le=600)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")
    # 0 disables rotation.
    max_bytes: int = Field(default=5 * 1024 * 1024, ge=0)
    backup_count: int = Field(default=3, ge=0, le=50)


class DatabaseConfig(BaseModel):
    path: str = str(RUNTIME_DIR / "service.db")


class AppConfig(BaseModel):
    webdav: WebDAVConfig = Field(default_factory=WebDAVConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8766


def webdav_configured(cfg: AppConfig) -> bool:
    return bool(cfg.webdav.url.strip())


def config_template_path() -> Path | None:
    for candidate in (DEFAULT_CONFIG_TEMPLATE_PATH, BUNDLED_CONFIG_TEMPLATE_PATH):
        if candidate.exists():
            return candidate
    return None


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        template = config_template_path()
        if template is not None:
            try:
                template_text = template.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
