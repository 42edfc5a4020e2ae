"""Manual credit top-ups: customer-declared transfers that an admin approves or rejects."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

from backend.db.enums import LedgerDirection, TopupStatus
from orderdesk.audit import record_admin_audit
from orderdesk.common import ZERO, SystemClock, as_utc, parse_uuid, to_cents
from orderdesk.config import OrderDeskConfig
from orderdesk.credit import TOPUP_PACKAGES
from orderdesk.database import transaction
from orderdesk.errors import (
    DuplicateTopupError,
    InvalidPackageError,
    InvalidTopupError,
    TopupExpiredError,
    TopupNotFoundError,
    TopupStateError,
)
from orderdesk.ledger import BalanceLedger

logger = logging.getLogger(__name__)

MANUAL_PAYMENT_METHOD = "pingpong_manual"
TOPUP_LEDGER_REASON = "topup_manual"
APPROVED_ACTION = "credit_topup_approved"
REJECTED_ACTION = "credit_topup_rejected"
MAX_PAYMENT_TX_ID_LENGTH = 128

_TOPUP_COLUMNS = """
    topup_id, account_id, amount, credit_amount, package_key, payment_method,
    transfer_note, payment_tx_id, note, status, admin_id, admin_note,
    created_at_utc, reviewed_at_utc
"""

_SELECT_BY_TX_ID_SQL = """
SELECT topup_id FROM credit_topup WHERE payment_tx_id = :payment_tx_id
"""

_INSERT_TOPUP_SQL = """
INSERT INTO credit_topup (
    topup_id, account_id, amount, credit_amount, package_key, payment_method,
    transfer_note, payment_tx_id, note, status, created_at_utc
) VALUES (
    :topup_id, :account_id, :amount, :credit_amount, :package_key, :payment_method,
    :transfer_note, :payment_tx_id, :note, :status, :created_at_utc
)
"""

_LOCK_TOPUP_SQL = f"""
SELECT {_TOPUP_COLUMNS}
FROM credit_topup
WHERE topup_id = :topup_id
FOR UPDATE
"""

_REVIEW_TOPUP_SQL = """
UPDATE credit_topup
SET status = :status, admin_id = :admin_id, admin_note = :admin_note, reviewed_at_utc = :reviewed_at_utc
WHERE topup_id = :topup_id
"""

_LIST_ACCOUNT_TOPUPS_SQL = f"""
SELECT {_TOPUP_COLUMNS}
FROM credit_topup
WHERE account_id = :account_id
ORDER BY created_at_utc DESC
"""

_LIST_TOPUPS_SQL = f"""
SELECT {_TOPUP_COLUMNS}
FROM credit_topup
ORDER BY created_at_utc DESC
LIMIT :limit
"""

_LIST_TOPUPS_BY_STATUS_SQL = f"""
SELECT {_TOPUP_COLUMNS}
FROM credit_topup
WHERE status = :status
ORDER BY created_at_utc DESC
LIMIT :limit
"""


@dataclass(frozen=True)
class CreditTopupRecord:
    topup_id: UUID
    account_id: UUID
    amount: Decimal
    credit_amount: Decimal
    package_key: Optional[str]
    payment_method: str
    transfer_note: str
    payment_tx_id: Optional[str]
    note: Optional[str]
    status: str
    admin_id: Optional[UUID]
    admin_note: Optional[str]
    created_at_utc: datetime
    reviewed_at_utc: Optional[datetime]


def _record_from_row(row: Mapping[str, Any]) -> CreditTopupRecord:
    reviewed_at = row["reviewed_at_utc"]
    return CreditTopupRecord(
        topup_id=row["topup_id"],
        account_id=row["account_id"],
        amount=to_cents(row["amount"]),
        credit_amount=to_cents(row["credit_amount"]),
        package_key=row["package_key"],
        payment_method=row["payment_method"],
        transfer_note=row["transfer_note"],
        payment_tx_id=row["payment_tx_id"],
        note=row["note"],
        status=str(row["status"]),
        admin_id=row["admin_id"],
        admin_note=row["admin_note"],
        created_at_utc=as_utc(row["created_at_utc"]),
        reviewed_at_utc=None if reviewed_at is None else as_utc(reviewed_at),
    )


def make_transfer_note(account_id: UUID) -> str:
    """Reference the customer puts on the bank transfer so reviewers can match it."""
    return f"PP_{account_id}_{uuid4().hex[:8].upper()}"


def _clean_payment_tx_id(payment_tx_id: Optional[str]) -> str:
    cleaned = (payment_tx_id or "").strip()
    if not cleaned:
        raise InvalidTopupError("Payment transaction id is required")
    if len(cleaned) > MAX_PAYMENT_TX_ID_LENGTH:
        raise InvalidTopupError(f"Payment transaction id exceeds {MAX_PAYMENT_TX_ID_LENGTH} characters")
    return cleaned


def _clean_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    cleaned = note.strip()
    return cleaned or None


class CreditTopupService:
    """Pending top-up requests; approval credits the ledger and writes an admin audit row."""

    def __init__(
        self,
        ledger: BalanceLedger,
        clock: Optional[SystemClock] = None,
        review_ttl_seconds: int = 60 * 60 * 24,
    ) -> None:
        if review_ttl_seconds <= 0:
            raise ValueError("review_ttl_seconds must be positive")
        self.ledger = ledger
        self.db = ledger.db
        self.clock = clock or ledger.clock
        self.review_ttl = timedelta(seconds=review_ttl_seconds)

    @classmethod
    def from_config(
        cls,
        ledger: BalanceLedger,
        config: OrderDeskConfig,
        clock: Optional[SystemClock] = None,
    ) -> "CreditTopupService":
        return cls(ledger, clock=clock, review_ttl_seconds=config.topup_review_ttl_seconds)

    def create_topup(
        self,
        account_id: Union[UUID, str],
        amount: Any,
        payment_tx_id: Optional[str],
        note: Optional[str] = None,
    ) -> CreditTopupRecord:
        """Record a declared transfer crediting one credit per unit paid."""
        try:
            value = to_cents(amount)
        except ValueError as exc:
            raise InvalidTopupError(str(exc)) from exc
        return self._create(account_id, value, value, None, payment_tx_id, note)

    def create_package_topup(
        self,
        account_id: Union[UUID, str],
        package_key: str,
        payment_tx_id: Optional[str],
        note: Optional[str] = None,
    ) -> CreditTopupRecord:
        package = TOPUP_PACKAGES.get((package_key or "").strip().lower())
        if package is None:
            raise InvalidPackageError(f"Unknown top-up package: {package_key}")
        return self._create(account_id, package.price, package.credits, package.key, payment_tx_id, note)

    def _create(
        self,
        account_id: Union[UUID, str],
        amount: Decimal,
        credit_amount: Decimal,
        package_key: Optional[str],
        payment_tx_id: Optional[str],
        note: Optional[str],
    ) -> CreditTopupRecord:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            raise InvalidTopupError(f"Invalid account id: {account_id!r}")
        if amount <= ZERO or credit_amount <= ZERO:
            raise InvalidTopupError("Top-up amount must be positive")
        tx_id = _clean_payment_tx_id(payment_tx_id)

        if self.db.fetch_one(_SELECT_BY_TX_ID_SQL, {"payment_tx_id": tx_id}) is not None:
            raise DuplicateTopupError(f"Payment transaction id already submitted: {tx_id}")

        record = CreditTopupRecord(
            topup_id=uuid4(),
            account_id=account_uuid,
            amount=amount,
            credit_amount=credit_amount,
            package_key=package_key,
            payment_method=MANUAL_PAYMENT_METHOD,
            transfer_note=make_transfer_note(account_uuid),
            payment_tx_id=tx_id,
            note=_clean_note(note),
            status=TopupStatus.PENDING.value,
            admin_id=None,
            admin_note=None,
            created_at_utc=self.clock.now_utc(),
            reviewed_at_utc=None,
        )
        with transaction(self.db):
            self.db.execute(
                _INSERT_TOPUP_SQL,
                {
                    "topup_id": record.topup_id,
                    "account_id": record.account_id,
                    "amount": record.amount,
                    "credit_amount": record.credit_amount,
                    "package_key": record.package_key,
                    "payment_method": record.payment_method,
                    "transfer_note": record.transfer_note,
                    "payment_tx_id": record.payment_tx_id,
                    "note": record.note,
                    "status": record.status,
                    "created_at_utc": record.created_at_utc,
                },
            )
        logger.info(
            "Top-up requested: topup=%s account=%s amount=%s credits=%s",
            record.topup_id,
            record.account_id,
            record.amount,
            record.credit_amount,
        )
        return record

    def list_account_topups(self, account_id: Union[UUID, str]) -> tuple[CreditTopupRecord, ...]:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            return ()
        rows = self.db.fetch_all(_LIST_ACCOUNT_TOPUPS_SQL, {"account_id": account_uuid})
        return tuple(_record_from_row(row) for row in rows)

    def list_topups(
        self,
        status: Optional[Union[TopupStatus, str]] = None,
        limit: int = 50,
    ) -> tuple[CreditTopupRecord, ...]:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if status is None:
            rows = self.db.fetch_all(_LIST_TOPUPS_SQL, {"limit": limit})
        else:
            rows = self.db.fetch_all(
                _LIST_TOPUPS_BY_STATUS_SQL,
                {"status": TopupStatus(status).value, "limit": limit},
            )
        return tuple(_record_from_row(row) for row in rows)

    def _lock_pending(self, topup_id: Union[UUID, str], verb: str) -> CreditTopupRecord:
        topup_uuid = parse_uuid(topup_id)
        if topup_uuid is None:
            raise TopupNotFoundError(f"Top-up not found: {topup_id}")
        row = self.db.fetch_one(_LOCK_TOPUP_SQL, {"topup_id": topup_uuid})
        if row is None:
            raise TopupNotFoundError(f"Top-up not found: {topup_id}")
        record = _record_from_row(row)
        if record.status != TopupStatus.PENDING.value:
            raise TopupStateError(f"Only pending top-ups can be {verb}; {record.topup_id} is {record.status}")
        return record

    def approve_topup(self, topup_id: Union[UUID, str], admin_id: UUID) -> Decimal:
        """Credit the account and mark the request approved; returns the new balance."""
        now = self.clock.now_utc()
        with transaction(self.db):
            record = self._lock_pending(topup_id, "approved")
            if now - record.created_at_utc > self.review_ttl:
                raise TopupExpiredError(f"Top-up review window has passed: {record.topup_id}")
            self.db.execute(
                _REVIEW_TOPUP_SQL,
                {
                    "topup_id": record.topup_id,
                    "status": TopupStatus.APPROVED.value,
                    "admin_id": admin_id,
                    "admin_note": None,
                    "reviewed_at_utc": now,
                },
            )
            balance = self.ledger.apply_change(
                record.account_id,
                record.credit_amount,
                LedgerDirection.CREDIT,
                TOPUP_LEDGER_REASON,
                reference=f"topup:{record.topup_id}",
                acting_admin_id=admin_id,
            )
            record_admin_audit(
                self.db,
                admin_id=admin_id,
                action=APPROVED_ACTION,
                target_id=str(record.topup_id),
                payload={
                    "account_id": str(record.account_id),
                    "amount": str(record.amount),
                    "credit_amount": str(record.credit_amount),
                    "package_key": record.package_key,
                    "payment_method": record.payment_method,
                    "transfer_note": record.transfer_note,
                },
                created_at_utc=now,
            )
        logger.info(
            "Top-up approved: topup=%s account=%s credits=%s admin=%s balance=%s",
            record.topup_id,
            record.account_id,
            record.credit_amount,
            admin_id,
            balance,
        )
        return balance

    def reject_topup(
        self,
        topup_id: Union[UUID, str],
        admin_id: UUID,
        admin_note: Optional[str],
    ) -> CreditTopupRecord:
        note = _clean_note(admin_note)
        if note is None:
            raise InvalidTopupError("A note is required to reject a top-up")
        now = self.clock.now_utc()
        with transaction(self.db):
            record = self._lock_pending(topup_id, "rejected")
            self.db.execute(
                _REVIEW_TOPUP_SQL,
                {
                    "topup_id": record.topup_id,
                    "status": TopupStatus.REJECTED.value,
                    "admin_id": admin_id,
                    "admin_note": note,
                    "reviewed_at_utc": now,
                },
            )
            record_admin_audit(
                self.db,
                admin_id=admin_id,
                action=REJECTED_ACTION,
                target_id=str(record.topup_id),
                payload={
                    "account_id": str(record.account_id),
                    "amount": str(record.amount),
                    "credit_amount": str(record.credit_amount),
                    "transfer_note": record.transfer_note,
                    "admin_note": note,
                },
                created_at_utc=now,
            )
        logger.info("Top-up rejected: topup=%s account=%s admin=%s", record.topup_id, record.account_id, admin_id)
        return replace(
            record,
            status=TopupStatus.REJECTED.value,
            admin_id=admin_id,
            admin_note=note,
            reviewed_at_utc=now,
        )
