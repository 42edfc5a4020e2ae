"""Manual credit top-up request model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    desc,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import topup_status_enum

logger = logging.getLogger(__name__)


class CreditTopup(Base):
    """Customer-declared bank transfer awaiting admin review before crediting."""

    __tablename__ = "credit_topup"
    __table_args__ = (
        PrimaryKeyConstraint("topup_id", name="pk_credit_topup"),
        UniqueConstraint("transfer_note", name="uq_credit_topup_transfer_note"),
        UniqueConstraint("payment_tx_id", name="uq_credit_topup_payment_tx_id"),
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("credit_amount > 0", name="credit_amount_positive"),
        Index("idx_credit_topup_account_created_desc", "account_id", desc("created_at_utc")),
        Index("idx_credit_topup_status_created_desc", "status", desc("created_at_utc")),
    )

    topup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_credit_topup_account", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    package_key: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[str] = mapped_column(Text, nullable=False)
    transfer_note: Mapped[str] = mapped_column(Text, nullable=False)
    payment_tx_id: Mapped[Optional[str]] = mapped_column(Text)
    note: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        topup_status_enum,
        nullable=False,
        server_default=text("'pending'"),
    )
    admin_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_credit_topup_admin", ondelete="SET NULL"),
    )
    admin_note: Mapped[Optional[str]] = mapped_column(Text)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    reviewed_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
