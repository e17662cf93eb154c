from pathlib import Path

from marksync.core.run_history import load_last_run, read_run_history, record_run


def test_record_run_appends_history_and_overwrites_last(tmp_path: Path):
    history = tmp_path / "runtime" / "run_history.jsonl"
    last = tmp_path / "runtime" / "last_run.json"

    record_run({"run_type": "push_manual", "action": "uploaded"}, history_path=history, last_path=last)
    record_run({"run_type": "auto_pull", "action": "skipped"}, history_path=history, last_path=last)
    with history.open("a", encoding="utf-8") as f:
        f.write("not json\n")

    items = read_run_history(limit=10, history_path=history)

    assert [item.get("run_type") for item in items] == [None, "auto_pull", "push_manual"]
    assert items[0]["parse_error"] is True
    assert read_run_history(limit=1, history_path=history)[0]["raw"] == "not json"
    assert load_last_run(last)["run_type"] == "auto_pull"


def test_missing_files_read_as_empty(tmp_path: Path):
    assert read_run_history(history_path=tmp_path / "none.jsonl") == []
    assert load_last_run(tmp_path / "none.json") is None
