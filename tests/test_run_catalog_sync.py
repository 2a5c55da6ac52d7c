import json

from scripts import run_catalog_sync as cli
from services.catalog_models import SyncErrorKind, SyncResult


def test_cli_success_exit_code_and_overrides(monkeypatch, tmp_path, capsys):
    seen = {}

    def fake_sync(config, *, sync_log=None, trigger="manual"):
        seen["config"] = config
        seen["sync_log"] = sync_log
        seen["trigger"] = trigger
        return SyncResult(success=True, fetched=2, created=2)

    monkeypatch.setattr(cli, "sync_catalog", fake_sync)

    code = cli.main(["--db", str(tmp_path / "c.db"), "--timeout", "5", "--json"])

    assert code == 0
    assert seen["trigger"] == "cli"
    assert seen["config"].db_path == tmp_path / "c.db"
    assert seen["config"].timeout_seconds == 5
    assert seen["sync_log"] is not None
    assert json.loads(capsys.readouterr().out)["created"] == 2


def test_cli_failure_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(
        cli,
        "sync_catalog",
        lambda config, **kwargs: SyncResult.failure("Sidecar unreachable", SyncErrorKind.TRANSPORT),
    )

    code = cli.main(["--no-log"])

    assert code == 1
    out = capsys.readouterr().out
    assert "success=False" in out
    assert "error (transport): Sidecar unreachable" in out
