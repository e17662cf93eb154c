import json

from typer.testing import CliRunner

from marksync.cli import main as cli_module

runner = CliRunner()


def _use_service(monkeypatch, service) -> list[dict]:
    recorded: list[dict] = []
    monkeypatch.setattr(cli_module, "_build_service", lambda: service)
    monkeypatch.setattr(cli_module, "record_run", lambda summary: recorded.append(summary))
    return recorded


def test_add_bookmark_then_push(monkeypatch, make_service, fake_dav):
    service = make_service("chrome")
    recorded = _use_service(monkeypatch, service)

    added = runner.invoke(cli_module.app, ["add-bookmark", "--title", "Python", "--url", "https://python.org"])
    assert added.exit_code == 0
    assert json.loads(added.stdout)["title"] == "Python"

    pushed = runner.invoke(cli_module.app, ["push"])
    assert pushed.exit_code == 0
    assert json.loads(pushed.stdout)["action"] == "uploaded"
    assert recorded[0]["run_type"] == "push_manual"
    assert len(fake_dav.files) == 1


def test_failed_push_exits_with_code_2(monkeypatch, make_service):
    recorded = _use_service(monkeypatch, make_service("chrome"))

    result = runner.invoke(cli_module.app, ["push", "--auto"])

    assert result.exit_code == 2
    assert recorded[0]["run_type"] == "push_auto"
    assert recorded[0]["error_code"] == "empty_local_tree"


def test_pull_rejects_unknown_mode(monkeypatch, make_service):
    _use_service(monkeypatch, make_service("chrome"))
    result = runner.invoke(cli_module.app, ["pull", "--mode", "sideways"])
    assert result.exit_code == 2


def test_unlock_requires_force_for_live_lock(monkeypatch, make_service):
    service = make_service("chrome")
    _use_service(monkeypatch, service)
    assert service.lock.acquire("auto_sync")

    refused = runner.invoke(cli_module.app, ["unlock"])
    assert refused.exit_code == 2
    assert service.lock.is_held()

    forced = runner.invoke(cli_module.app, ["unlock", "--force"])
    assert forced.exit_code == 0
    assert service.lock.read() is None
