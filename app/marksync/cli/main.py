from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from marksync.bookmarks.models import TreeNode, count_bookmarks
from marksync.core.clock import iso_from_ms, now_iso
from marksync.core.config import (
    DEFAULT_CONFIG_PATH,
    load_config,
    save_config,
    webdav_configured,
)
from marksync.core.log_tail import build_log_tail_payload
from marksync.core.logging_setup import setup_logging
from marksync.core.run_history import record_run
from marksync.sync.lock import LOCK_HOLDER_AUTO, LOCK_HOLDER_MANUAL
from marksync.sync.service import SyncService
from marksync.sync.strategies import SyncResult

app = typer.Typer(add_completion=False)
console = Console()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _build_service() -> SyncService:
    cfg = load_config()
    setup_logging(
        cfg.logging.level,
        cfg.logging.file,
        console=False,
        max_bytes=cfg.logging.max_bytes,
        backup_count=cfg.logging.backup_count,
    )
    return SyncService(cfg)


def _finish_run(run_type: str, result: SyncResult) -> None:
    summary = {"run_type": run_type, "checked_at": now_iso(), **result.model_dump()}
    record_run(summary)
    _print_json(summary)
    if not result.success and result.action != "skipped":
        raise typer.Exit(2)


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml (password masked)."""
    cfg = load_config(path)
    payload = cfg.model_dump()
    if payload["webdav"]["password"]:
        payload["webdav"]["password"] = "********"
    _print_json(payload)


@app.command("config-set-webdav")
def config_set_webdav(
    url: str = typer.Option(..., "--url", help="WebDAV base URL"),
    username: str = typer.Option("", "--username"),
    password: str = typer.Option("", "--password"),
    backup_dir: str = typer.Option("BookmarkSyncer", "--backup-dir", help="Remote directory for backups"),
):
    """Set the WebDAV endpoint and credentials."""
    cfg = load_config()
    cfg.webdav.url = url
    cfg.webdav.username = username
    cfg.webdav.password = password
    cfg.webdav.backup_dir = backup_dir
    save_config(cfg)
    _print_json(
        {
            "ok": True,
            "url": cfg.webdav.url,
            "username_set": bool(cfg.webdav.username),
            "password_set": bool(cfg.webdav.password),
            "backup_dir": cfg.webdav.backup_dir,
        }
    )


@app.command("config-set-web")
def config_set_web(bind: str = typer.Option(..., "--bind"), port: int = typer.Option(8766, "--port")):
    """Set web service bind host/port."""
    cfg = load_config()
    cfg.web_bind_host = bind
    cfg.web_port = port
    save_config(cfg)
    print(f"OK: web_bind_host={bind} web_port={port}")


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "webdav_url_configured": False,
            "webdav_credentials_configured": False,
            "web_bind_host_configured": False,
            "web_port_valid": False,
            "poll_interval_valid": False,
            "database_parent_ready": False,
            "log_parent_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    out["checks"]["webdav_url_configured"] = webdav_configured(cfg)
    if not out["checks"]["webdav_url_configured"]:
        out["errors"].append("webdav_url_missing")
    elif not cfg.webdav.url.lower().startswith(("http://", "https://")):
        out["errors"].append(f"webdav_url_invalid_scheme: {cfg.webdav.url}")
    elif cfg.webdav.url.lower().startswith("http://"):
        out["warnings"].append("webdav_url_not_tls: credentials are sent with basic auth")

    out["checks"]["webdav_credentials_configured"] = bool(cfg.webdav.username and cfg.webdav.password)
    if not out["checks"]["webdav_credentials_configured"]:
        out["warnings"].append("webdav_credentials_incomplete")

    bind_host = str(cfg.web_bind_host or "").strip()
    out["checks"]["web_bind_host_configured"] = bool(bind_host)
    if not out["checks"]["web_bind_host_configured"]:
        out["errors"].append("web_bind_host_missing")

    port = int(cfg.web_port)
    out["checks"]["web_port_valid"] = 1 <= port <= 65535
    if not out["checks"]["web_port_valid"]:
        out["errors"].append(f"web_port_out_of_range: {port}")

    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    out["checks"]["poll_interval_valid"] = 0 <= poll_interval <= 86400
    if 0 < poll_interval < 60:
        out["warnings"].append(f"poll_interval_too_short: {poll_interval} (<60 hammers the WebDAV server)")

    try:
        Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
        out["checks"]["database_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"database_parent_unavailable: {e}")

    try:
        Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
        out["checks"]["log_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"log_parent_unavailable: {e}")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command()
def status():
    """Show configuration and sync state summary."""
    service = _build_service()
    cfg = service.cfg
    try:
        info = service.status()
    finally:
        service.close()
    last_sync = info.get("last_sync") or {}

    table = Table(title="marksync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("webdav", cfg.webdav.url or "(unset)")
    table.add_row("backup_dir", cfg.webdav.backup_dir)
    table.add_row("replica", cfg.sync.replica_label)
    table.add_row("local_bookmarks", str(info["local_bookmarks"]))
    table.add_row("last_sync", iso_from_ms(last_sync.get("time")) or "never")
    table.add_row("last_sync_kind", str(last_sync.get("kind") or "-"))
    table.add_row("lock", (info.get("lock") or {}).get("holder") or "free")
    table.add_row("snapshots", str(info["snapshots"]))
    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    table.add_row("auto_sync", "on" if cfg.sync.auto_sync_enabled else "off")
    table.add_row("poll_interval_sec", str(poll_interval))
    table.add_row("db", cfg.database.path)
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command()
def unlock(force: bool = typer.Option(False, "--force", help="Release even if the holder looks alive.")):
    """Release the sync lock left behind by a crashed process."""
    service = _build_service()
    try:
        record = service.lock.read()
        held = service.lock.is_held()
        if record is None:
            print("lock is free")
            return
        if held and not force:
            print(f"lock held by {record.holder} since {iso_from_ms(record.timestamp)}; use --force to release")
            raise typer.Exit(2)
        service.lock.force_release()
    finally:
        service.close()
    print(f"OK: released lock of {record.holder}")


@app.command("test-connection")
def test_connection():
    """Check that the WebDAV endpoint answers with the configured credentials."""
    service = _build_service()
    try:
        out = service.test_connection()
    finally:
        service.close()
    _print_json(out)
    if not out.get("ok"):
        raise typer.Exit(2)


@app.command()
def push(auto: bool = typer.Option(False, "--auto", help="Behave like an automatic upload (no override).")):
    """Upload the local tree as a new backup."""
    service = _build_service()
    try:
        result = service.push(holder=LOCK_HOLDER_AUTO if auto else LOCK_HOLDER_MANUAL)
    finally:
        service.close()
    _finish_run("push_auto" if auto else "push_manual", result)


@app.command()
def pull(mode: str = typer.Option("overwrite", "--mode", help="overwrite | merge")):
    """Restore the local tree from the latest backup."""
    if mode not in ("overwrite", "merge"):
        print(f"invalid mode: {mode}")
        raise typer.Exit(2)
    service = _build_service()
    try:
        result = service.pull(mode=mode)
    finally:
        service.close()
    _finish_run(f"pull_{mode}", result)


@app.command()
def sync():
    """Smart sync: upload, download or skip based on content and timestamps."""
    service = _build_service()
    try:
        result = service.smart_sync()
    finally:
        service.close()
    _finish_run("smart_sync", result)


@app.command("cloud-info")
def cloud_info():
    """Show metadata of the latest remote backup (listing only)."""
    service = _build_service()
    try:
        _print_json(service.cloud_info())
    finally:
        service.close()


@app.command()
def backups():
    """List remote backup files, newest first."""
    service = _build_service()
    try:
        items = service.list_backups()
    finally:
        service.close()

    table = Table(title=f"backups in {service.cfg.webdav.backup_dir}")
    table.add_column("File")
    table.add_column("Time")
    table.add_column("Replica")
    table.add_column("Bookmarks", justify="right")
    table.add_column("Rev", justify="right")
    for item in items:
        table.add_row(
            item["file_path"],
            iso_from_ms(item.get("timestamp")) or "-",
            item.get("replica_label") or "-",
            str(item.get("bookmark_count") if item.get("bookmark_count") is not None else "-"),
            str(item.get("revision") or "-"),
        )
    console.print(table)


@app.command("restore-backup")
def restore_backup(path: str = typer.Argument(..., help="Remote path, e.g. BookmarkSyncer/bookmarks_...json.gz")):
    """Overwrite the local tree with a specific remote backup."""
    service = _build_service()
    try:
        result = service.restore_backup(path)
    finally:
        service.close()
    _finish_run("restore_backup", result)


@app.command()
def snapshots():
    """List local safety-net snapshots."""
    service = _build_service()
    try:
        items = service.snapshots.list()
    finally:
        service.close()

    table = Table(title="local snapshots")
    table.add_column("ID", justify="right")
    table.add_column("Time")
    table.add_column("Reason")
    table.add_column("Bookmarks", justify="right")
    for item in items:
        table.add_row(str(item.id), iso_from_ms(item.timestamp) or "-", item.reason, str(item.count))
    console.print(table)


@app.command("snapshot-restore")
def snapshot_restore(snapshot_id: int | None = typer.Argument(None, help="Snapshot id (default: latest)")):
    """Roll the local tree back to a local snapshot."""
    service = _build_service()
    try:
        result = service.restore_snapshot(snapshot_id)
    finally:
        service.close()
    _finish_run("snapshot_restore", result)


def _add_tree_nodes(branch: Tree, nodes: list[TreeNode]) -> None:
    for node in nodes:
        if node.url:
            branch.add(f"{node.title or node.url} [dim]{node.url}[/dim] [dim]#{node.local_id}[/dim]")
        else:
            sub = branch.add(f"[bold]{node.title or '(root)'}[/bold] [dim]#{node.local_id}[/dim]")
            _add_tree_nodes(sub, node.children or [])


@app.command()
def tree():
    """Print the local bookmark tree."""
    service = _build_service()
    try:
        nodes = service.repository.get_local_tree()
    finally:
        service.close()
    root = Tree(f"local bookmarks ({count_bookmarks(nodes)})")
    for node in nodes:
        _add_tree_nodes(root, node.children or [])
    console.print(root)


@app.command("add-bookmark")
def add_bookmark(
    title: str = typer.Option(..., "--title"),
    url: str = typer.Option(..., "--url"),
    parent: str = typer.Option("1", "--parent", help="Parent folder id (1 = bookmarks bar)"),
    index: int | None = typer.Option(None, "--index"),
):
    """Add a bookmark to the local tree."""
    service = _build_service()
    try:
        node = service.tree_store.create(parent, title, url=url, index=index)
    finally:
        service.close()
    _print_json(node.model_dump(by_alias=True, exclude_none=True))


@app.command("add-folder")
def add_folder(
    title: str = typer.Option(..., "--title"),
    parent: str = typer.Option("1", "--parent", help="Parent folder id (1 = bookmarks bar)"),
    index: int | None = typer.Option(None, "--index"),
):
    """Add a folder to the local tree."""
    service = _build_service()
    try:
        node = service.tree_store.create(parent, title, index=index)
    finally:
        service.close()
    _print_json(node.model_dump(by_alias=True, exclude_none=True))


@app.command()
def remove(node_id: str = typer.Argument(...)):
    """Remove a bookmark or folder (recursively) from the local tree."""
    service = _build_service()
    try:
        node = service.tree_store.get(node_id)
        if node.url:
            service.tree_store.remove(node_id)
        else:
            service.tree_store.remove_tree(node_id)
    finally:
        service.close()
    print(f"OK: removed {node_id}")


@app.command("logs-tail")
def logs_tail(
    n: int = typer.Option(200, "--n", min=1),
    level: str | None = typer.Option(None, "--level", help="Filter by log level (e.g. INFO)."),
    module: str | None = typer.Option(None, "--module", help="Filter by logger/module name."),
    event: str | None = typer.Option(None, "--event", help="Filter by event name prefix (e.g. push_)."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Tail service log file."""
    cfg = load_config()
    payload = build_log_tail_payload(
        cfg.logging.file,
        n=n,
        level=level,
        module=module,
        event=event,
    )
    if json_output:
        _print_json(payload)
        return
    print(payload.get("tail", ""))


@app.command()
def serve():
    """Run the web service with the scheduler."""
    from marksync.web.main import main as web_main

    web_main()


def main():
    app()


if __name__ == "__main__":
    main()
