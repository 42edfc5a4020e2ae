"""Authoritative account balance plus append-only balance_transaction log.

``BalanceLedger.apply_change`` is the only code path that writes
``account.credit_balance``. Every successful mutation writes exactly one ledger
entry in the same transaction, under a row lock on the account, so replaying an
account's entries in ``entry_seq`` order reproduces its balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

from backend.db.enums import LedgerDirection
from orderdesk.common import ZERO, SystemClock, parse_uuid, to_cents
from orderdesk.database import OrderDeskDatabase, transaction
from orderdesk.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    LedgerInputError,
    LedgerIntegrityError,
)

logger = logging.getLogger(__name__)

_LOCK_ACCOUNT_SQL = """
SELECT account_id, credit_balance
FROM account
WHERE account_id = :account_id
FOR UPDATE
"""

_SELECT_BALANCE_SQL = """
SELECT credit_balance
FROM account
WHERE account_id = :account_id
"""

_UPDATE_BALANCE_SQL = """
UPDATE account
SET credit_balance = :credit_balance
WHERE account_id = :account_id
"""

_INSERT_ENTRY_SQL = """
INSERT INTO balance_transaction (
    entry_id, account_id, order_id, amount, direction, balance_after,
    reason, reference, acting_admin_id, created_at_utc
) VALUES (
    :entry_id, :account_id, :order_id, :amount, :direction, :balance_after,
    :reason, :reference, :acting_admin_id, :created_at_utc
)
"""

_LIST_ENTRIES_SQL = """
SELECT
    entry_id, entry_seq, account_id, order_id, amount, direction, balance_after,
    reason, reference, acting_admin_id, created_at_utc
FROM balance_transaction
WHERE account_id = :account_id
ORDER BY entry_seq DESC
LIMIT :limit
"""

_REPLAY_SQL = """
WITH ordered AS (
    SELECT
        entry_seq,
        amount,
        balance_after,
        LAG(balance_after) OVER (ORDER BY entry_seq) AS prev_balance_after
    FROM balance_transaction
    WHERE account_id = :account_id
)
SELECT
    (SELECT credit_balance FROM account WHERE account_id = :account_id) AS credit_balance,
    COUNT(*) AS entry_count,
    COALESCE(SUM(amount), 0) AS ledger_sum,
    COUNT(*) FILTER (
        WHERE balance_after <> COALESCE(prev_balance_after, 0) + amount
    ) AS chain_breaks,
    MIN(entry_seq) FILTER (
        WHERE balance_after <> COALESCE(prev_balance_after, 0) + amount
    ) AS first_break_seq
FROM ordered
"""


@dataclass(frozen=True)
class LedgerEntry:
    entry_id: UUID
    entry_seq: int
    account_id: UUID
    order_id: Optional[UUID]
    amount: Decimal
    direction: str
    balance_after: Decimal
    reason: Optional[str]
    reference: Optional[str]
    acting_admin_id: Optional[UUID]
    created_at_utc: datetime


@dataclass(frozen=True)
class LedgerReplayReport:
    """Result of recomputing an account's balance from its ledger entries."""

    account_id: UUID
    credit_balance: Decimal
    ledger_sum: Decimal
    entry_count: int
    chain_breaks: int
    first_break_seq: Optional[int]

    @property
    def is_consistent(self) -> bool:
        return self.credit_balance == self.ledger_sum and self.chain_breaks == 0


def _entry_from_row(row: Mapping[str, Any]) -> LedgerEntry:
    return LedgerEntry(
        entry_id=row["entry_id"],
        entry_seq=int(row["entry_seq"]),
        account_id=row["account_id"],
        order_id=row["order_id"],
        amount=to_cents(row["amount"]),
        direction=str(row["direction"]),
        balance_after=to_cents(row["balance_after"]),
        reason=row["reason"],
        reference=row["reference"],
        acting_admin_id=row["acting_admin_id"],
        created_at_utc=row["created_at_utc"],
    )


def _normalize_direction(direction: Union[LedgerDirection, str]) -> LedgerDirection:
    try:
        return LedgerDirection(direction)
    except ValueError as exc:
        raise LedgerInputError(f"direction must be 'credit' or 'debit', got {direction!r}") from exc


def _require_account_id(account_id: Any) -> UUID:
    parsed = parse_uuid(account_id)
    if parsed is None:
        raise LedgerInputError(f"account_id must be a UUID, got {account_id!r}")
    return parsed


class BalanceLedger:
    """Row-locked balance mutation with a mandatory ledger entry per change."""

    def __init__(self, db: OrderDeskDatabase, clock: Optional[SystemClock] = None) -> None:
        self.db = db
        self.clock = clock or SystemClock()

    def apply_change(
        self,
        account_id: Union[UUID, str],
        amount: Any,
        direction: Union[LedgerDirection, str],
        reason: Optional[str],
        reference: Optional[str] = None,
        acting_admin_id: Optional[UUID] = None,
    ) -> Decimal:
        """Apply one credit or debit and return the resulting balance.

        Joins the caller's transaction when one is open, otherwise commits on its own.
        """
        account_uuid = _require_account_id(account_id)
        ledger_direction = _normalize_direction(direction)
        try:
            change = to_cents(amount)
        except ValueError as exc:
            raise LedgerInputError(str(exc)) from exc
        if change <= ZERO:
            raise LedgerInputError(f"amount must be positive, got {amount!r}")

        with transaction(self.db):
            row = self.db.fetch_one(_LOCK_ACCOUNT_SQL, {"account_id": account_uuid})
            if row is None:
                raise AccountNotFoundError(account_uuid)
            balance = to_cents(row["credit_balance"])

            if ledger_direction is LedgerDirection.DEBIT:
                if change > balance:
                    logger.info(
                        "Debit rejected: account=%s balance=%s requested=%s reason=%s",
                        account_uuid,
                        balance,
                        change,
                        reason,
                    )
                    raise InsufficientBalanceError(account_uuid, balance, change)
                signed_amount = -change
            else:
                signed_amount = change
            new_balance = to_cents(balance + signed_amount)

            self.db.execute(
                _UPDATE_BALANCE_SQL,
                {"account_id": account_uuid, "credit_balance": new_balance},
            )
            self.db.execute(
                _INSERT_ENTRY_SQL,
                {
                    "entry_id": uuid4(),
                    "account_id": account_uuid,
                    "order_id": parse_uuid(reference),
                    "amount": signed_amount,
                    "direction": ledger_direction.value,
                    "balance_after": new_balance,
                    "reason": reason,
                    "reference": reference,
                    "acting_admin_id": acting_admin_id,
                    "created_at_utc": self.clock.now_utc(),
                },
            )

        logger.info(
            "Ledger %s applied: account=%s amount=%s balance_after=%s reason=%s",
            ledger_direction.value,
            account_uuid,
            signed_amount,
            new_balance,
            reason,
        )
        return new_balance

    def credit_for_order(
        self,
        account_id: Union[UUID, str],
        order_id: Union[UUID, str],
        amount: Any,
        reason: str = "order-credit",
    ) -> Decimal:
        return self.apply_change(account_id, amount, LedgerDirection.CREDIT, reason, reference=str(order_id))

    def debit_for_order(
        self,
        account_id: Union[UUID, str],
        order_id: Union[UUID, str],
        amount: Any,
        reason: str = "order-debit",
    ) -> Decimal:
        return self.apply_change(account_id, amount, LedgerDirection.DEBIT, reason, reference=str(order_id))

    def credit_amount(
        self,
        account_id: Union[UUID, str],
        amount: Any,
        reason: str = "top-up",
        reference: Optional[str] = None,
    ) -> Decimal:
        return self.apply_change(account_id, amount, LedgerDirection.CREDIT, reason, reference=reference)

    def get_balance(self, account_id: Union[UUID, str]) -> Decimal:
        """Current balance; 0.00 for an account that has no row yet."""
        account_uuid = _require_account_id(account_id)
        row = self.db.fetch_one(_SELECT_BALANCE_SQL, {"account_id": account_uuid})
        if row is None:
            return ZERO
        return to_cents(row["credit_balance"])

    def list_entries(self, account_id: Union[UUID, str], limit: int = 50) -> tuple[LedgerEntry, ...]:
        """Most recent entries first."""
        account_uuid = _require_account_id(account_id)
        if limit <= 0:
            raise LedgerInputError(f"limit must be positive, got {limit}")
        rows = self.db.fetch_all(_LIST_ENTRIES_SQL, {"account_id": account_uuid, "limit": int(limit)})
        return tuple(_entry_from_row(row) for row in rows)

    def verify_replay(self, account_id: Union[UUID, str]) -> LedgerReplayReport:
        account_uuid = _require_account_id(account_id)
        row = self.db.fetch_one(_REPLAY_SQL, {"account_id": account_uuid})
        if row is None:
            raise LedgerIntegrityError(f"Replay query returned no row for account {account_uuid}")
        credit_balance = row["credit_balance"]
        first_break = row["first_break_seq"]
        return LedgerReplayReport(
            account_id=account_uuid,
            credit_balance=ZERO if credit_balance is None else to_cents(credit_balance),
            ledger_sum=to_cents(row["ledger_sum"]),
            entry_count=int(row["entry_count"]),
            chain_breaks=int(row["chain_breaks"]),
            first_break_seq=None if first_break is None else int(first_break),
        )

    def assert_replay_continuity(self, account_id: Union[UUID, str]) -> LedgerReplayReport:
        report = self.verify_replay(account_id)
        if not report.is_consistent:
            logger.error(
                "Ledger replay mismatch: account=%s balance=%s ledger_sum=%s chain_breaks=%s first_break_seq=%s",
                report.account_id,
                report.credit_balance,
                report.ledger_sum,
                report.chain_breaks,
                report.first_break_seq,
            )
            raise LedgerIntegrityError(
                f"Ledger replay mismatch for account {report.account_id}: "
                f"balance={report.credit_balance} ledger_sum={report.ledger_sum} "
                f"chain_breaks={report.chain_breaks}"
            )
        return report
