"""Unit tests for audited admin credit adjustments."""

from __future__ import annotations

from decimal import Decimal

import pytest

from orderdesk.admin import AdminCreditService
from orderdesk.errors import InsufficientBalanceError, LedgerInputError
from orderdesk.ledger import BalanceLedger
from tests.utils.memory_db import MemoryBackend, MemoryDatabase, MemoryDBError


def test_adjustment_writes_ledger_entry_and_admin_audit(backend: MemoryBackend, ledger: BalanceLedger) -> None:
    account_id = backend.add_account(balance="4.00")
    admin_id = backend.add_account(role="admin")

    new_balance = AdminCreditService(ledger).adjust_account_credit(
        account_id,
        "2.5",
        "credit",
        admin_id,
        note="goodwill",
    )

    assert new_balance == Decimal("6.50")
    entry = backend.rows("balance_transaction")[0]
    assert entry["reason"] == "admin-adjust"
    assert entry["acting_admin_id"] == admin_id
    audit = backend.rows("admin_audit")[0]
    assert audit["action"] == "ADMIN_ADJUST_CREDIT"
    assert audit["admin_id"] == admin_id
    assert audit["target_id"] == str(account_id)
    assert audit["payload"] == {
        "amount": "2.50",
        "direction": "credit",
        "reason": "admin-adjust",
        "note": "goodwill",
        "before": "4.00",
        "after": "6.50",
    }


def test_debit_adjustment_records_before_and_after(backend: MemoryBackend, ledger: BalanceLedger) -> None:
    account_id = backend.add_account(balance="4.00")
    admin_id = backend.add_account(role="admin")

    AdminCreditService(ledger).adjust_account_credit(account_id, "1.00", "debit", admin_id, reason="chargeback")

    payload = backend.rows("admin_audit")[0]["payload"]
    assert (payload["before"], payload["after"], payload["reason"]) == ("4.00", "3.00", "chargeback")


def test_failed_audit_insert_rolls_back_ledger_change(
    backend: MemoryBackend,
    db: MemoryDatabase,
    ledger: BalanceLedger,
) -> None:
    account_id = backend.add_account(balance="4.00")
    admin_id = backend.add_account(role="admin")
    db.fail_on("insert into admin_audit")

    with pytest.raises(MemoryDBError):
        AdminCreditService(ledger).adjust_account_credit(account_id, "1.00", "credit", admin_id)

    assert ledger.get_balance(account_id) == Decimal("4.00")
    assert backend.rows("balance_transaction") == []
    assert backend.rows("admin_audit") == []


def test_rejected_adjustment_leaves_no_audit(backend: MemoryBackend, ledger: BalanceLedger) -> None:
    account_id = backend.add_account(balance="1.00")
    admin_id = backend.add_account(role="admin")
    service = AdminCreditService(ledger)

    with pytest.raises(InsufficientBalanceError):
        service.adjust_account_credit(account_id, "5.00", "debit", admin_id)
    with pytest.raises(LedgerInputError):
        service.adjust_account_credit(account_id, "1.00", "sideways", admin_id)
    assert backend.rows("admin_audit") == []


def test_fetch_account_transactions_returns_recent_entries(backend: MemoryBackend, ledger: BalanceLedger) -> None:
    account_id = backend.add_account()
    admin_id = backend.add_account(role="admin")
    service = AdminCreditService(ledger)
    for amount in ("1.00", "2.00", "3.00"):
        service.adjust_account_credit(account_id, amount, "credit", admin_id)

    entries = service.fetch_account_transactions(account_id, limit=2)
    assert [entry.balance_after for entry in entries] == [Decimal("6.00"), Decimal("3.00")]
