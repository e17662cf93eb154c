from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Callable

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from marksync.core.clock import iso_from_ms, now_iso
from marksync.core.config import (
    LAST_RUN_PATH,
    RUN_HISTORY_PATH,
    AppConfig,
    load_config,
    save_config,
    webdav_configured,
)
from marksync.core.log_tail import build_log_tail_payload
from marksync.core.run_history import load_last_run, read_run_history, record_run
from marksync.sync.executor import AutoSyncExecutor
from marksync.sync.service import SyncService
from marksync.sync.strategies import SyncResult

router = APIRouter(prefix="/api")

SYNC_RUN_LOCK = threading.Lock()
SCHEDULER_STATE_LOCK = threading.Lock()
SERVICE_CACHE_LOCK = threading.Lock()
SCHEDULER_POLL_GRANULARITY_SEC = 1
SCHEDULER_MIN_INTERVAL_SEC = 10
SCHEDULER_MAX_INTERVAL_SEC = 86400

_scheduler_task: asyncio.Task | None = None
_scheduler_stop_event: asyncio.Event | None = None
_scheduler_state: dict[str, object] = {
    "running": False,
    "enabled": False,
    "configured_interval_sec": 0,
    "effective_interval_sec": 0,
    "last_started_at": None,
    "last_finished_at": None,
    "last_run_type": None,
    "last_result": None,
    "last_error": None,
    "next_run_at": None,
    "upload_due_at": None,
    "local_change_count": 0,
    "skipped_busy_count": 0,
    "run_count": 0,
}

# One service per effective config so the session cache (listing cache,
# restoring flag) survives between runs.
_service: SyncService | None = None
_service_key: str | None = None


def _as_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            return default
    return default


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _sanitize_poll_interval(raw_value: object) -> int:
    raw = _as_int(raw_value, 0)
    if raw <= 0:
        return 0
    return min(max(raw, SCHEDULER_MIN_INTERVAL_SEC), SCHEDULER_MAX_INTERVAL_SEC)


def _iso_from_ts(ts: object) -> str | None:
    value = _as_float(ts)
    if value is None:
        return None
    return iso_from_ms(value * 1000)


def _scheduler_state_update(**kwargs) -> None:
    with SCHEDULER_STATE_LOCK:
        _scheduler_state.update(kwargs)


def _scheduler_state_get(key: str) -> object:
    with SCHEDULER_STATE_LOCK:
        return _scheduler_state.get(key)


def _scheduler_state_snapshot() -> dict[str, object]:
    with SCHEDULER_STATE_LOCK:
        snap = dict(_scheduler_state)

    now_ts = time.time()
    next_run_at = _as_float(snap.get("next_run_at"))
    upload_due_at = _as_float(snap.get("upload_due_at"))
    return {
        "running": bool(snap.get("running")),
        "enabled": bool(snap.get("enabled")),
        "configured_interval_sec": _as_int(snap.get("configured_interval_sec"), 0),
        "effective_interval_sec": _as_int(snap.get("effective_interval_sec"), 0),
        "last_started_at": _iso_from_ts(snap.get("last_started_at")),
        "last_finished_at": _iso_from_ts(snap.get("last_finished_at")),
        "next_run_at": _iso_from_ts(next_run_at),
        "next_run_in_sec": None if next_run_at is None else max(int(next_run_at - now_ts), 0),
        "upload_due_at": _iso_from_ts(upload_due_at),
        "last_run_type": snap.get("last_run_type"),
        "last_result": snap.get("last_result"),
        "last_error": snap.get("last_error"),
        "local_change_count": _as_int(snap.get("local_change_count"), 0),
        "run_count": _as_int(snap.get("run_count"), 0),
        "skipped_busy_count": _as_int(snap.get("skipped_busy_count"), 0),
    }


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


def _get_service(cfg: AppConfig | None = None) -> SyncService:
    global _service, _service_key
    cfg = cfg or load_config()
    key = cfg.model_dump_json()
    with SERVICE_CACHE_LOCK:
        if _service is None or _service_key != key:
            if _service is not None:
                _service.close()
            _service = SyncService(cfg)
            _service_key = key
        return _service


def reset_service() -> None:
    global _service, _service_key
    with SERVICE_CACHE_LOCK:
        if _service is not None:
            _service.close()
        _service = None
        _service_key = None


def _record(run_type: str, result: SyncResult) -> dict:
    summary = {"run_type": run_type, "checked_at": now_iso(), **result.model_dump()}
    record_run(summary)
    return summary


def _run_and_record(run_type: str, action: Callable[[SyncService], SyncResult]) -> dict:
    return _record(run_type, action(_get_service()))


def _run_exclusive(run_type: str, action: Callable[[SyncService], SyncResult]) -> dict:
    if not SYNC_RUN_LOCK.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="sync_busy")
    try:
        return _run_and_record(run_type, action)
    finally:
        SYNC_RUN_LOCK.release()


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "webdav_configured": False,
        "database_parent_ready": False,
        "log_parent_ready": False,
        "scheduler_running": False,
        "scheduler_enabled": False,
    }
    warnings: list[str] = []
    errors: list[str] = []
    scheduler = _scheduler_state_snapshot()
    checks["scheduler_running"] = bool(scheduler.get("running"))
    checks["scheduler_enabled"] = bool(scheduler.get("enabled"))

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        checks["webdav_configured"] = webdav_configured(cfg)
        if not checks["webdav_configured"]:
            warnings.append("webdav_unconfigured")

        try:
            Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
            checks["database_parent_ready"] = True
        except Exception as e:
            errors.append(f"database_parent_unavailable: {e}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except Exception as e:
            errors.append(f"log_parent_unavailable: {e}")

    if checks["scheduler_enabled"] and not checks["scheduler_running"]:
        warnings.append("scheduler_enabled_but_not_running")

    ok = checks["config_load"] and checks["database_parent_ready"] and checks["log_parent_ready"]
    return {
        "ok": ok,
        "checked_at": now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
        "scheduler": scheduler,
    }


def notify_local_change() -> float:
    """Arm (or re-arm) the debounce; returns the new upload deadline."""
    cfg = load_config()
    due_at = time.time() + float(cfg.sync.debounce_sec or 0)
    with SCHEDULER_STATE_LOCK:
        _scheduler_state["upload_due_at"] = due_at
        _scheduler_state["local_change_count"] = _as_int(_scheduler_state.get("local_change_count"), 0) + 1
    return due_at


def _auto_upload() -> dict:
    return _run_and_record("auto_upload", lambda service: AutoSyncExecutor(service).auto_upload())


def _auto_pull() -> dict:
    return _run_and_record("auto_pull", lambda service: AutoSyncExecutor(service).auto_pull())


async def _run_scheduled(run_type: str, job: Callable[[], dict]) -> bool:
    """Run one scheduled job. Returns False when another run held the lock."""
    logger = logging.getLogger("scheduler")
    if not SYNC_RUN_LOCK.acquire(blocking=False):
        skipped = _as_int(_scheduler_state_snapshot().get("skipped_busy_count"), 0) + 1
        _scheduler_state_update(
            skipped_busy_count=skipped,
            last_finished_at=time.time(),
            last_run_type=run_type,
            last_result="skipped_busy",
            last_error="sync_busy",
        )
        logger.warning("scheduled_run_skipped run_type=%s reason=sync_busy", run_type)
        return False

    _scheduler_state_update(last_started_at=time.time(), last_run_type=run_type, last_result="running", last_error=None)
    try:
        summary = await asyncio.to_thread(job)
        run_count = _as_int(_scheduler_state_snapshot().get("run_count"), 0) + 1
        _scheduler_state_update(
            last_finished_at=time.time(),
            last_result=summary.get("action"),
            last_error=None if summary.get("success") else summary.get("error_code") or summary.get("message"),
            run_count=run_count,
        )
        logger.info(
            "scheduled_run_completed run_type=%s success=%s action=%s message=%s",
            run_type,
            summary.get("success"),
            summary.get("action"),
            summary.get("message"),
        )
    except Exception as e:
        run_count = _as_int(_scheduler_state_snapshot().get("run_count"), 0) + 1
        _scheduler_state_update(
            last_finished_at=time.time(),
            last_result="failed",
            last_error=str(e),
            run_count=run_count,
        )
        logger.exception("scheduled_run_failed run_type=%s: %s", run_type, e)
    finally:
        SYNC_RUN_LOCK.release()
    return True


async def _scheduler_loop(stop_event: asyncio.Event) -> None:
    logger = logging.getLogger("scheduler")
    next_run_at_ts: float | None = None
    previous_effective_interval: int | None = None
    _scheduler_state_update(
        running=True,
        last_error=None,
        last_result=None,
    )
    logger.info("scheduler_started")

    try:
        while not stop_event.is_set():
            cfg = load_config()
            configured_interval = int(cfg.sync.poll_interval_sec or 0)
            effective_interval = _sanitize_poll_interval(configured_interval)
            enabled = configured_interval > 0

            _scheduler_state_update(
                enabled=enabled,
                configured_interval_sec=configured_interval,
                effective_interval_sec=effective_interval,
            )

            now_ts = time.time()
            upload_due_at = _as_float(_scheduler_state_get("upload_due_at"))
            if upload_due_at is not None and upload_due_at <= now_ts:
                if await _run_scheduled("auto_upload", _auto_upload):
                    _scheduler_state_update(upload_due_at=None)
                else:
                    # Retry once the running sync has finished.
                    _scheduler_state_update(upload_due_at=time.time() + SCHEDULER_POLL_GRANULARITY_SEC)
                continue

            if not enabled:
                next_run_at_ts = None
                previous_effective_interval = None
                _scheduler_state_update(next_run_at=None)
                await _wait_stop_or_timeout(stop_event, SCHEDULER_POLL_GRANULARITY_SEC)
                continue

            if next_run_at_ts is None:
                next_run_at_ts = now_ts + effective_interval
            elif previous_effective_interval is not None and previous_effective_interval != effective_interval:
                next_run_at_ts = now_ts + effective_interval
            previous_effective_interval = effective_interval
            _scheduler_state_update(next_run_at=next_run_at_ts)

            wait_sec = next_run_at_ts - now_ts
            if wait_sec > 0:
                await _wait_stop_or_timeout(stop_event, min(wait_sec, SCHEDULER_POLL_GRANULARITY_SEC))
                continue

            await _run_scheduled("auto_pull", _auto_pull)
            next_run_at_ts = time.time() + effective_interval
            _scheduler_state_update(next_run_at=next_run_at_ts)
    finally:
        _scheduler_state_update(running=False, next_run_at=None)
        logger.info("scheduler_stopped")


def start_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_task and not _scheduler_task.done():
        return

    _scheduler_stop_event = asyncio.Event()
    _scheduler_task = asyncio.create_task(_scheduler_loop(_scheduler_stop_event), name="marksync_scheduler")


async def stop_scheduler() -> None:
    global _scheduler_task, _scheduler_stop_event
    if _scheduler_stop_event is not None:
        _scheduler_stop_event.set()

    if _scheduler_task is not None:
        try:
            await _scheduler_task
        except Exception:
            logging.getLogger("scheduler").exception("scheduler_stop_error")

    _scheduler_task = None
    _scheduler_stop_event = None
    _scheduler_state_update(running=False, next_run_at=None)
    reset_service()


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": now_iso(),
    }


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/config")
def get_config():
    cfg = load_config()
    payload = cfg.model_dump()
    payload["webdav"]["password"] = "********" if cfg.webdav.password else ""
    effective_interval = _sanitize_poll_interval(cfg.sync.poll_interval_sec)
    return {
        **payload,
        "_scheduler": {
            "configured_poll_interval_sec": int(cfg.sync.poll_interval_sec or 0),
            "effective_poll_interval_sec": effective_interval,
            "auto_sync_enabled": cfg.sync.auto_sync_enabled,
        },
    }


@router.post("/config")
def update_config(payload: dict):
    cfg = load_config()
    merged = cfg.model_dump()

    for key, value in payload.items():
        if key in ("webdav", "sync", "logging", "database") and isinstance(value, dict):
            if key == "webdav" and value.get("password") == "********":
                value = {k: v for k, v in value.items() if k != "password"}
            merged.setdefault(key, {})
            merged[key].update(value)
        else:
            merged[key] = value

    try:
        cfg2 = cfg.model_validate(merged)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"invalid_config: {e}")
    save_config(cfg2)

    warnings: list[dict[str, object]] = []
    configured_interval = int(cfg2.sync.poll_interval_sec or 0)
    effective_interval = _sanitize_poll_interval(configured_interval)
    _scheduler_state_update(
        enabled=configured_interval > 0,
        configured_interval_sec=configured_interval,
        effective_interval_sec=effective_interval,
    )
    if configured_interval > 0 and configured_interval != effective_interval:
        warnings.append(
            {
                "code": "poll_interval_clamped",
                "configured_poll_interval_sec": configured_interval,
                "effective_poll_interval_sec": effective_interval,
            }
        )
    return {"ok": True, "warnings": warnings}


@router.get("/logs")
def get_logs(n: int = 200, level: str | None = None, module: str | None = None, event: str | None = None):
    cfg = load_config()
    return build_log_tail_payload(
        cfg.logging.file,
        n=min(max(int(n), 1), 5000),
        level=level,
        module=module,
        event=event,
    )


@router.get("/history")
def get_history(limit: int = 50):
    limit_sanitized = min(max(int(limit), 1), 500)
    items = read_run_history(limit=limit_sanitized)
    return {
        "path": str(RUN_HISTORY_PATH),
        "limit": limit_sanitized,
        "count": len(items),
        "items": items,
    }


@router.get("/status/scheduler")
def scheduler_status():
    return {
        "ok": True,
        "checked_at": now_iso(),
        **_scheduler_state_snapshot(),
    }


@router.get("/status/sync")
def sync_status():
    service = _get_service()
    return {
        "ok": True,
        "checked_at": now_iso(),
        "busy": SYNC_RUN_LOCK.locked(),
        "last_run_path": str(LAST_RUN_PATH),
        "last_run": load_last_run(),
        **service.status(),
    }


@router.get("/cloud/info")
def cloud_info():
    return _get_service().cloud_info()


@router.get("/cloud/backups")
def cloud_backups():
    try:
        items = _get_service().list_backups()
    except Exception as e:
        logging.getLogger("backups").warning("backup_list_failed error=%s", e)
        return {"ok": False, "error": str(e), "items": []}
    return {"ok": True, "count": len(items), "items": items}


@router.get("/snapshots")
def list_snapshots():
    items = _get_service().snapshots.list()
    return {
        "count": len(items),
        "items": [item.model_dump(exclude={"tree"}) for item in items],
    }


@router.post("/actions/push")
def action_push():
    return _run_exclusive("push_manual", lambda service: service.push())


@router.post("/actions/pull")
def action_pull(mode: str = "overwrite"):
    if mode not in ("overwrite", "merge"):
        raise HTTPException(status_code=400, detail=f"invalid_mode: {mode}")
    return _run_exclusive(f"pull_{mode}", lambda service: service.pull(mode=mode))


@router.post("/actions/sync")
def action_sync():
    return _run_exclusive("smart_sync", lambda service: service.smart_sync())


@router.post("/actions/restore-backup")
def action_restore_backup(payload: dict):
    path = str(payload.get("path", "")).strip()
    if not path:
        raise HTTPException(status_code=400, detail="backup_path_missing")
    return _run_exclusive("restore_backup", lambda service: service.restore_backup(path))


@router.post("/actions/restore-snapshot")
def action_restore_snapshot(payload: dict | None = None):
    raw_id = (payload or {}).get("id")
    snapshot_id = _as_int(raw_id, -1) if raw_id is not None else None
    if snapshot_id is not None and snapshot_id < 0:
        raise HTTPException(status_code=400, detail=f"invalid_snapshot_id: {raw_id}")
    return _run_exclusive("snapshot_restore", lambda service: service.restore_snapshot(snapshot_id))


@router.post("/events/local-change")
def local_change_event():
    due_at = notify_local_change()
    return {"ok": True, "upload_due_at": _iso_from_ts(due_at)}

