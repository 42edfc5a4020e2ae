"""Admin-driven credit adjustments with an admin_audit row in the same transaction."""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Optional, Union
from uuid import UUID

from backend.db.enums import LedgerDirection
from orderdesk.audit import record_admin_audit
from orderdesk.common import to_cents
from orderdesk.database import transaction
from orderdesk.ledger import BalanceLedger, LedgerEntry

logger = logging.getLogger(__name__)

ADJUST_CREDIT_ACTION = "ADMIN_ADJUST_CREDIT"
DEFAULT_ADJUST_REASON = "admin-adjust"


class AdminCreditService:
    def __init__(self, ledger: BalanceLedger) -> None:
        self.ledger = ledger

    def adjust_account_credit(
        self,
        account_id: Union[UUID, str],
        amount: Any,
        direction: Union[LedgerDirection, str],
        admin_id: UUID,
        reason: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Decimal:
        """Apply the change and its audit row atomically; returns the new balance."""
        db = self.ledger.db
        effective_reason = reason or DEFAULT_ADJUST_REASON
        with transaction(db):
            after = self.ledger.apply_change(
                account_id,
                amount,
                direction,
                effective_reason,
                acting_admin_id=admin_id,
            )
            ledger_direction = LedgerDirection(direction)
            change = to_cents(amount)
            # derived under the row lock taken by apply_change
            before = after + change if ledger_direction is LedgerDirection.DEBIT else after - change
            record_admin_audit(
                db,
                admin_id=admin_id,
                action=ADJUST_CREDIT_ACTION,
                target_id=str(account_id),
                payload={
                    "amount": str(change),
                    "direction": ledger_direction.value,
                    "reason": effective_reason,
                    "note": note,
                    "before": str(before),
                    "after": str(after),
                },
                created_at_utc=self.ledger.clock.now_utc(),
            )
        logger.info(
            "Admin credit adjustment: admin=%s account=%s direction=%s amount=%s after=%s",
            admin_id,
            account_id,
            ledger_direction.value,
            amount,
            after,
        )
        return after

    def fetch_account_transactions(self, account_id: Union[UUID, str], limit: int = 10) -> tuple[LedgerEntry, ...]:
        return self.ledger.list_entries(account_id, limit=limit)
