"""Customer order model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, PrimaryKeyConstraint, Text, desc, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import order_status_enum

logger = logging.getLogger(__name__)


class CustomerOrder(Base):
    """Label/scan order as seen by the ledger and the scan queue."""

    __tablename__ = "customer_order"
    __table_args__ = (
        PrimaryKeyConstraint("order_id", name="pk_customer_order"),
        Index("idx_customer_order_account_created_desc", "account_id", desc("created_at_utc")),
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_customer_order_account", ondelete="CASCADE"),
        nullable=False,
    )
    service_type: Mapped[str] = mapped_column(Text, nullable=False)
    order_status: Mapped[str] = mapped_column(
        order_status_enum,
        nullable=False,
        server_default=text("'pending'"),
    )
    tracking_code: Mapped[Optional[str]] = mapped_column(Text)
    error_code: Mapped[Optional[str]] = mapped_column(Text)
    error_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
