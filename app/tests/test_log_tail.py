from pathlib import Path

from marksync.core.log_tail import build_log_tail_payload


def test_build_log_tail_payload_filters_by_level_and_module(tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text(
        "\n".join(
            [
                "2026-02-22 10:00:00,000 [INFO] [scheduler] scheduler_started",
                "2026-02-22 10:01:00,000 [WARNING] [push] push_blocked_cloud_newer cloud_time=2 last_sync=1",
                "2026-02-22 10:02:00,000 [ERROR] [push] push_failed: boom",
            ]
        ),
        encoding="utf-8",
    )

    payload = build_log_tail_payload(str(log_file), n=100, level="WARNING", module="push")

    assert payload["count"] == 1
    assert payload["items"][0]["level"] == "WARNING"
    assert payload["items"][0]["module"] == "push"
    assert "push_blocked_cloud_newer" in payload["tail"]


def test_build_log_tail_payload_keeps_unparsed_lines(tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text("Traceback (most recent call last):\n", encoding="utf-8")

    payload = build_log_tail_payload(str(log_file), n=10)

    assert payload["count"] == 1
    assert payload["items"][0]["level"] == ""
    assert payload["items"][0]["message"].startswith("Traceback")


def test_build_log_tail_payload_handles_missing_file(tmp_path: Path):
    payload = build_log_tail_payload(str(tmp_path / "missing.log"), n=20)
    assert payload["count"] == 0
    assert payload["tail"] == ""


def test_build_log_tail_payload_splits_event_and_fields(tmp_path: Path):
    log_file = tmp_path / "service.log"
    log_file.write_text(
        "\n".join(
            [
                "2026-02-22 10:00:00,000 [INFO] [repository] restore_completed mode=overwrite created=3 removed=1",
                "2026-02-22 10:00:01,000 [INFO] [repository] restore_root_skipped title='Bookmarks Menu' reason=no_role_mapping",
                "2026-02-22 10:00:02,000 [INFO] [push] push_finished holder=manual success=True",
            ]
        ),
        encoding="utf-8",
    )

    payload = build_log_tail_payload(str(log_file), n=10, event="restore_")

    assert payload["count"] == 2
    first, second = payload["items"]
    assert first["event"] == "restore_completed"
    assert first["fields"] == {"mode": "overwrite", "created": "3", "removed": "1"}
    assert second["fields"]["title"] == "Bookmarks Menu"
