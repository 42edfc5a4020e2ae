"""Unit tests for ledger statement export."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

pd = pytest.importorskip("pandas")

from orderdesk.ledger import BalanceLedger
from orderdesk.statements import STATEMENT_COLUMNS, export_ledger_statement, ledger_statement_frame
from tests.utils.memory_db import MemoryBackend, MutableClock


def _seed(backend: MemoryBackend, ledger: BalanceLedger, clock: MutableClock) -> object:
    account_id = backend.add_account()
    ledger.credit_amount(account_id, "5.00")
    clock.advance(minutes=1)
    ledger.apply_change(account_id, "1.25", "debit", "scan_label", "order-ref")
    clock.advance(minutes=1)
    ledger.credit_amount(account_id, "0.50", reason="refund")
    return account_id


def test_statement_frame_is_in_creation_order(
    backend: MemoryBackend,
    ledger: BalanceLedger,
    clock: MutableClock,
) -> None:
    account_id = _seed(backend, ledger, clock)

    frame = ledger_statement_frame(ledger, account_id)

    assert list(frame.columns) == list(STATEMENT_COLUMNS)
    assert frame["entry_seq"].tolist() == [1, 2, 3]
    assert frame["reason"].tolist() == ["top-up", "scan_label", "refund"]
    assert frame["balance_after"].tolist() == [Decimal("5.00"), Decimal("3.75"), Decimal("4.25")]
    assert str(frame["created_at_utc"].dt.tz) == "UTC"


def test_statement_frame_limit_keeps_latest_entries(
    backend: MemoryBackend,
    ledger: BalanceLedger,
    clock: MutableClock,
) -> None:
    account_id = _seed(backend, ledger, clock)
    frame = ledger_statement_frame(ledger, account_id, limit=2)
    assert frame["entry_seq"].tolist() == [2, 3]


def test_empty_statement_has_header_only(backend: MemoryBackend, ledger: BalanceLedger) -> None:
    frame = ledger_statement_frame(ledger, backend.add_account())
    assert frame.empty
    assert list(frame.columns) == list(STATEMENT_COLUMNS)


def test_export_writes_csv(
    backend: MemoryBackend,
    ledger: BalanceLedger,
    clock: MutableClock,
    tmp_path: Path,
) -> None:
    account_id = _seed(backend, ledger, clock)

    output = export_ledger_statement(ledger, account_id, tmp_path / "statements" / "acct.csv")

    assert output.exists()
    lines = output.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(STATEMENT_COLUMNS)
    assert len(lines) == 4
    assert ",top-up," in lines[1]
