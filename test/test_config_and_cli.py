import json
import logging
from pathlib import Path

from rpos.config import get_app_paths, load_runtime_config
from rpos.logging_config import JsonFormatter
from rpos.main import main


def test_app_paths_honor_home_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("RPOS_HOME", str(tmp_path / "pos-home"))

    paths = get_app_paths()

    assert paths.base_dir == tmp_path / "pos-home"
    assert paths.db_path.name == "ledger.db"
    assert paths.logs_dir.exists()


def test_runtime_config_from_environment(monkeypatch):
    monkeypatch.setenv("RPOS_SYNC_URL", " https://sync.example.test ")
    monkeypatch.setenv("RPOS_SYNC_TIMEOUT", "2.5")
    monkeypatch.setenv("RPOS_OUTBOX_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("RPOS_BACKUP_RETENTION", "not-a-number")

    cfg = load_runtime_config()

    assert cfg.sync_url == "https://sync.example.test"
    assert cfg.sync_timeout == 2.5
    assert cfg.outbox_max_attempts == 1
    assert cfg.backup_retention == 30


def test_json_formatter_emits_one_object_per_line():
    record = logging.LogRecord("rpos.billing", logging.INFO, __file__, 1, "bill_created invoice=%s", ("INV-00001",), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["logger"] == "rpos.billing"
    assert payload["level"] == "INFO"
    assert payload["message"] == "bill_created invoice=INV-00001"


def test_cli_init_and_health(tmp_path: Path, capsys):
    db = tmp_path / "ledger.db"

    assert main(["--db", str(db), "init"]) == 0
    assert "INV-00001" in capsys.readouterr().out

    assert main(["--db", str(db), "health"]) == 0
    assert json.loads(capsys.readouterr().out)["healthy"] is True


def test_cli_backup_then_restore(tmp_path: Path, capsys):
    db = tmp_path / "ledger.db"

    assert main(["--db", str(db), "backup"]) == 0
    backup_path = capsys.readouterr().out.strip()
    assert Path(backup_path).exists()

    assert main(["--db", str(db), "restore", backup_path]) == 0


def test_cli_reports_domain_errors(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.delenv("RPOS_SYNC_URL", raising=False)

    assert main(["--db", str(tmp_path / "ledger.db"), "sync"]) == 2
    assert "RPOS_SYNC_URL" in capsys.readouterr().err
