"""Append-only credit ledger model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Identity,
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
from backend.db.enums import ledger_direction_enum

logger = logging.getLogger(__name__)


class BalanceTransaction(Base):
    """One immutable row per account balance mutation."""

    __tablename__ = "balance_transaction"
    __table_args__ = (
        PrimaryKeyConstraint("entry_id", name="pk_balance_transaction"),
        UniqueConstraint("entry_seq", name="uq_balance_transaction_entry_seq"),
        CheckConstraint("amount <> 0", name="amount_nonzero"),
        CheckConstraint("balance_after >= 0", name="balance_after_nonneg"),
        CheckConstraint(
            "(direction = 'credit' AND amount > 0) OR (direction = 'debit' AND amount < 0)",
            name="sign_matches_direction",
        ),
        Index("idx_balance_transaction_account_seq", "account_id", "entry_seq"),
        Index("idx_balance_transaction_created_desc", desc("created_at_utc")),
        Index("idx_balance_transaction_order", "order_id"),
    )

    entry_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True))
    entry_seq: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        nullable=False,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "account.account_id",
            name="fk_balance_transaction_account",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        nullable=False,
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customer_order.order_id", name="fk_balance_transaction_order", ondelete="SET NULL"),
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    direction: Mapped[str] = mapped_column(ledger_direction_enum, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    reference: Mapped[Optional[str]] = mapped_column(Text)
    acting_admin_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
