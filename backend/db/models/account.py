"""Tenant account model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import account_role_enum, account_status_enum

logger = logging.getLogger(__name__)


class Account(Base):
    """Tenant account and its single authoritative credit balance.

    ``credit_balance`` is written only by ``orderdesk.ledger.BalanceLedger``.
    """

    __tablename__ = "account"
    __table_args__ = (
        PrimaryKeyConstraint("account_id", name="pk_account"),
        UniqueConstraint("email", name="uq_account_email"),
        CheckConstraint("email = lower(email)", name="email_lower"),
        CheckConstraint("length(btrim(email)) > 0", name="email_not_blank"),
        CheckConstraint("credit_balance >= 0", name="credit_balance_nonneg"),
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    email: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(
        account_role_enum,
        nullable=False,
        server_default=text("'user'"),
    )
    status: Mapped[str] = mapped_column(
        account_status_enum,
        nullable=False,
        server_default=text("'pending'"),
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        server_default=text("0"),
    )
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
