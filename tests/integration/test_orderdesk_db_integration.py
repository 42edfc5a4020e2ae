"""DB-backed integration tests for the ledger and refresh-token rotation.

Requires a PostgreSQL database migrated to head (``0001_initial_schema``).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import psycopg
import pytest

from orderdesk.database import PsycopgDatabase
from orderdesk.errors import InsufficientBalanceError, TokenReuseDetectedError
from orderdesk.ledger import BalanceLedger
from orderdesk.sessions import SessionService
from orderdesk.token_guard import TokenRotationGuard


def _insert_account(db: PsycopgDatabase, balance: str = "0.00") -> UUID:
    account_id = uuid4()
    db.execute(
        """
        INSERT INTO account (account_id, email, status, credit_balance)
        VALUES (:account_id, :email, 'active', :credit_balance)
        """,
        {"account_id": account_id, "email": f"{account_id.hex}@example.test", "credit_balance": Decimal(balance)},
    )
    return account_id


def _count(db: PsycopgDatabase, sql: str, params: dict[str, Any]) -> int:
    row = db.fetch_one(sql, params)
    return int(row["n"]) if row is not None else 0


def test_credit_debit_and_replay_against_postgres(pg_db: PsycopgDatabase) -> None:
    account_id = _insert_account(pg_db)
    ledger = BalanceLedger(pg_db)

    assert ledger.credit_amount(account_id, "14.50") == Decimal("14.50")
    assert ledger.apply_change(account_id, "1.00", "debit", "scan_label") == Decimal("13.50")
    with pytest.raises(InsufficientBalanceError):
        ledger.apply_change(account_id, "20.00", "debit", "design_3d")

    report = ledger.verify_replay(account_id)
    assert report.is_consistent
    assert report.entry_count == 2
    assert report.ledger_sum == Decimal("13.50")
    assert not pg_db.in_transaction


def test_ledger_rows_are_append_only(pg_db: PsycopgDatabase) -> None:
    account_id = _insert_account(pg_db)
    BalanceLedger(pg_db).credit_amount(account_id, "1.00")

    with pytest.raises(psycopg.Error):
        pg_db.execute(
            "UPDATE balance_transaction SET reason = 'edited' WHERE account_id = :account_id",
            {"account_id": account_id},
        )
    with pytest.raises(psycopg.Error):
        pg_db.execute(
            "DELETE FROM balance_transaction WHERE account_id = :account_id",
            {"account_id": account_id},
        )


def test_refresh_reuse_revokes_family_and_audits(pg_db: PsycopgDatabase) -> None:
    account_id = _insert_account(pg_db)
    sessions = SessionService(TokenRotationGuard(pg_db))

    first = sessions.login(account_id)
    second = sessions.refresh(first.refresh_token)

    with pytest.raises(TokenReuseDetectedError):
        sessions.refresh(first.refresh_token)

    live = _count(
        pg_db,
        "SELECT COUNT(*) AS n FROM refresh_token WHERE account_id = :account_id AND revoked_at_utc IS NULL",
        {"account_id": account_id},
    )
    assert live == 0
    assert second.record.account_id == account_id
    failures = _count(
        pg_db,
        "SELECT COUNT(*) AS n FROM login_audit WHERE account_id = :account_id AND result = 'fail'",
        {"account_id": account_id},
    )
    assert failures == 1
