"""Order columns the ledger references and the scan worker updates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from backend.db.enums import OrderStatus
from orderdesk.common import SystemClock, parse_uuid
from orderdesk.database import OrderDeskDatabase

_SELECT_ORDER_SQL = """
SELECT order_id, account_id, service_type, order_status, tracking_code, error_code, error_reason
FROM customer_order
WHERE order_id = :order_id
"""

_MARK_ORDER_FAILED_SQL = """
UPDATE customer_order
SET order_status = :order_status,
    error_code = :error_code,
    error_reason = :error_reason,
    updated_at_utc = :updated_at_utc
WHERE order_id = :order_id
"""


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: UUID
    account_id: UUID
    service_type: str
    order_status: str
    tracking_code: Optional[str]
    error_code: Optional[str]
    error_reason: Optional[str]


class OrderStore:
    def __init__(self, db: OrderDeskDatabase, clock: Optional[SystemClock] = None) -> None:
        self.db = db
        self.clock = clock or SystemClock()

    def get_order(self, order_id: Union[UUID, str]) -> Optional[OrderSnapshot]:
        order_uuid = parse_uuid(order_id)
        if order_uuid is None:
            return None
        row = self.db.fetch_one(_SELECT_ORDER_SQL, {"order_id": order_uuid})
        if row is None:
            return None
        return OrderSnapshot(
            order_id=row["order_id"],
            account_id=row["account_id"],
            service_type=row["service_type"],
            order_status=str(row["order_status"]),
            tracking_code=row["tracking_code"],
            error_code=row["error_code"],
            error_reason=row["error_reason"],
        )

    def mark_failed(
        self,
        order_id: UUID,
        error_code: str,
        error_reason: str,
        updated_at_utc: Optional[datetime] = None,
    ) -> bool:
        updated = self.db.execute(
            _MARK_ORDER_FAILED_SQL,
            {
                "order_id": order_id,
                "order_status": OrderStatus.FAILED.value,
                "error_code": error_code,
                "error_reason": error_reason,
                "updated_at_utc": updated_at_utc or self.clock.now_utc(),
            },
        )
        return updated > 0
