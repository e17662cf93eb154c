from pathlib import Path

from marksync.core import config as config_module


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "webdav:",
                "  url: https://dav.example.com/remote.php/webdav",
                "  username: tpl_user",
                "  backup_dir: Backups/Bookmarks",
                "sync:",
                "  replica_label: laptop",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
                "database:",
                f"  path: {runtime_dir / 'service.db'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.webdav.url == "https://dav.example.com/remote.php/webdav"
    assert cfg.webdav.username == "tpl_user"
    assert cfg.webdav.backup_dir == "Backups/Bookmarks"
    assert cfg.sync.replica_label == "laptop"
    assert config_module.webdav_configured(cfg) is True


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "BUNDLED_CONFIG_TEMPLATE_PATH", tmp_path / "missing-bundled.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.backup_file_interval_min == 1
    assert cfg.sync.retention_days == 3
    assert config_module.webdav_configured(cfg) is False


def test_load_config_uses_bundled_template_when_home_has_none(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    assert config_module.BUNDLED_CONFIG_TEMPLATE_PATH.exists()
    assert config_module.config_template_path() == config_module.BUNDLED_CONFIG_TEMPLATE_PATH

    cfg = config_module.load_config(target)

    assert target.read_text(encoding="utf-8") == config_module.BUNDLED_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
    assert "# file: defaults to" in target.read_text(encoding="utf-8")
    assert cfg.web_port == 8766
    assert config_module.webdav_configured(cfg) is False

def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("webdav: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.webdav.backup_dir == "BookmarkSyncer"


def test_save_config_roundtrips(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)
    cfg = config_module.AppConfig()
    cfg.webdav.url = "https://dav.example.com/dav"
    cfg.sync.poll_interval_sec = 600

    config_module.save_config(cfg, target)
    loaded = config_module.load_config(target)

    assert loaded.webdav.url == "https://dav.example.com/dav"
    assert loaded.sync.poll_interval_sec == 600
