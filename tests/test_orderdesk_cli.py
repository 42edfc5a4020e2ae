"""Unit tests for scripts/orderdesk_cli.py."""

from __future__ import annotations

import argparse
from decimal import Decimal
import importlib.util
import json
from pathlib import Path
import sys
from typing import Any

import pytest

from tests.utils.memory_db import MemoryBackend, MemoryDatabase

ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT / "scripts" / "orderdesk_cli.py"


def _load_cli_module(module_name: str = "orderdesk_cli_under_test") -> Any:
    spec = importlib.util.spec_from_file_location(module_name, SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def cli() -> Any:
    return _load_cli_module()


def _run(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    db: MemoryDatabase,
    argv: list[str],
) -> int:
    monkeypatch.setattr(cli, "connect_database", lambda dsn: db)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    monkeypatch.setattr(sys, "argv", ["orderdesk_cli.py", "--dsn", "postgresql://test/orderdesk", *argv])
    return cli.main()


def test_parse_amount_accepts_positive_decimals(cli: Any) -> None:
    assert cli._parse_amount(" 2.50 ") == Decimal("2.50")
    for bad in ("abc", "0", "-1", "NaN"):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_amount(bad)


def test_parse_handler_loads_module_function(cli: Any) -> None:
    assert cli._parse_handler("json:dumps") is json.dumps
    for bad in ("json", "json:", "no_such_module_here:run", "json:missing_attr", "json:decoder"):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_handler(bad)


def test_resolve_dsn_precedence(cli: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("DATABASE_URL", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    blank = dict(dsn=None, host=None, port=None, dbname=None, user=None, password=None)

    assert cli._resolve_dsn(argparse.Namespace(**{**blank, "dsn": "postgresql://x"})) == "postgresql://x"

    with pytest.raises(SystemExit, match="missing: host, port, dbname, user, password"):
        cli._resolve_dsn(argparse.Namespace(**blank))

    monkeypatch.setenv("DB_HOST", "db")
    monkeypatch.setenv("DB_PORT", "5432")
    monkeypatch.setenv("DB_NAME", "orderdesk")
    monkeypatch.setenv("DB_USER", "desk")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    assert cli._resolve_dsn(argparse.Namespace(**blank)) == (
        "host=db port=5432 dbname=orderdesk user=desk password=secret"
    )

    monkeypatch.setenv("DATABASE_URL", "postgresql://env")
    assert cli._resolve_dsn(argparse.Namespace(**blank)) == "postgresql://env"


def test_balance_command_prints_json(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
) -> None:
    account_id = backend.add_account(balance="14.50")

    assert _run(cli, monkeypatch, db, ["balance", "--account-id", str(account_id)]) == 0
    assert json.loads(capsys.readouterr().out) == {"account_id": str(account_id), "balance": "14.50"}
    assert db.closed


def test_admin_credit_then_history_and_verify(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
) -> None:
    account_id = backend.add_account(balance="1.00")
    admin_id = backend.add_account(role="admin")

    code = _run(
        cli,
        monkeypatch,
        db,
        ["credit", "--account-id", str(account_id), "--admin-id", str(admin_id), "--amount", "2.00"],
    )
    assert code == 0
    assert json.loads(capsys.readouterr().out)["balance"] == "3.00"
    assert backend.rows("admin_audit")[0]["action"] == "ADMIN_ADJUST_CREDIT"

    assert _run(cli, monkeypatch, db, ["history", "--account-id", str(account_id)]) == 0
    history = json.loads(capsys.readouterr().out)
    assert [entry["amount"] for entry in history["entries"]] == ["2.00"]


def test_verify_ledger_exit_codes(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
) -> None:
    account_id = backend.add_account()
    code = _run(cli, monkeypatch, db, ["verify-ledger", "--account-id", str(account_id)])
    assert code == 0
    assert json.loads(capsys.readouterr().out)["status"] == "LEDGER REPLAY: TRUE"

    backend.set_account_field(account_id, credit_balance=Decimal("4.00"))
    code = _run(cli, monkeypatch, db, ["verify-ledger", "--account-id", str(account_id)])
    payload = json.loads(capsys.readouterr().out)
    assert code == 2
    assert payload["status"] == "LEDGER REPLAY: FALSE"
    assert payload["credit_balance"] == "4.00"


def test_service_errors_map_to_exit_code_one(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
) -> None:
    account_id = backend.add_account(balance="1.00")
    admin_id = backend.add_account(role="admin")

    code = _run(
        cli,
        monkeypatch,
        db,
        ["debit", "--account-id", str(account_id), "--admin-id", str(admin_id), "--amount", "5"],
    )

    assert code == 1
    payload = json.loads(capsys.readouterr().out)
    assert (payload["status"], payload["code"]) == (400, "INSUFFICIENT_BALANCE")
    assert backend.rows("balance_transaction") == []
    assert db.closed


def test_export_statement_writes_csv(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
    tmp_path: Path,
) -> None:
    pytest.importorskip("pandas")
    account_id = backend.add_account()
    output = tmp_path / "statement.csv"

    code = _run(
        cli,
        monkeypatch,
        db,
        ["export-statement", "--account-id", str(account_id), "--output", str(output)],
    )

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"output": str(output)}
    assert output.exists()


def test_topup_review_commands(
    cli: Any,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    backend: MemoryBackend,
    db: MemoryDatabase,
) -> None:
    from orderdesk.ledger import BalanceLedger
    from orderdesk.topups import CreditTopupService

    account_id = backend.add_account(balance="1.00")
    admin_id = backend.add_account(role="admin")
    service = CreditTopupService(BalanceLedger(db))
    approved = service.create_topup(account_id, "5", "PP-CLI-1")
    rejected = service.create_topup(account_id, "7", "PP-CLI-2")

    assert _run(cli, monkeypatch, db, ["list-topups", "--status", "pending"]) == 0
    listed = json.loads(capsys.readouterr().out)["topups"]
    assert {row["topup_id"] for row in listed} == {str(approved.topup_id), str(rejected.topup_id)}

    argv = ["approve-topup", "--topup-id", str(approved.topup_id), "--admin-id", str(admin_id)]
    assert _run(cli, monkeypatch, db, argv) == 0
    assert json.loads(capsys.readouterr().out)["balance"] == "6.00"

    assert _run(cli, monkeypatch, db, argv) == 1
    payload = json.loads(capsys.readouterr().out)
    assert (payload["status"], payload["code"]) == (400, "TOPUP_NOT_PENDING")

    reject_argv = [
        "reject-topup",
        "--topup-id",
        str(rejected.topup_id),
        "--admin-id",
        str(admin_id),
        "--note",
        "no transfer found",
    ]
    assert _run(cli, monkeypatch, db, reject_argv) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "rejected"
    assert [row["action"] for row in backend.rows("admin_audit")] == [
        "credit_topup_approved",
        "credit_topup_rejected",
    ]
