"""One-time passcode model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import otp_purpose_enum

logger = logging.getLogger(__name__)


class OtpCode(Base):
    """Hashed one-time passcode with attempt budget; single use."""

    __tablename__ = "otp_code"
    __table_args__ = (
        PrimaryKeyConstraint("otp_id", name="pk_otp_code"),
        UniqueConstraint("request_id", name="uq_otp_code_request_id"),
        CheckConstraint("attempts >= 0", name="attempts_nonneg"),
        CheckConstraint("max_attempts > 0", name="max_attempts_positive"),
        CheckConstraint("expires_at_utc > created_at_utc", name="expiry_after_creation"),
        Index("idx_otp_code_account", "account_id"),
    )

    otp_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_otp_code_account", ondelete="CASCADE"),
        nullable=False,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    code_hash: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'email'"))
    purpose: Mapped[str] = mapped_column(otp_purpose_enum, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("5"))
    expires_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
