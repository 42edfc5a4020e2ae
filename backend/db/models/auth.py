"""Session credential, trusted device and security-audit model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CHAR,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    PrimaryKeyConstraint,
    Text,
    desc,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import audit_result_enum

logger = logging.getLogger(__name__)


class TrustedDevice(Base):
    """Device trusted to skip OTP, bound to a hashed fingerprint."""

    __tablename__ = "trusted_device"
    __table_args__ = (
        PrimaryKeyConstraint("device_id", name="pk_trusted_device"),
        CheckConstraint("expires_at_utc > created_at_utc", name="expiry_after_creation"),
        Index("idx_trusted_device_account", "account_id"),
    )

    device_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_trusted_device_account", ondelete="CASCADE"),
        nullable=False,
    )
    device_token_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(CHAR(64))
    device_name: Mapped[Optional[str]] = mapped_column(Text)
    expires_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    revoked_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class RefreshToken(Base):
    """Issued refresh credential; kept after revocation for forensic audit."""

    __tablename__ = "refresh_token"
    __table_args__ = (
        PrimaryKeyConstraint("token_id", name="pk_refresh_token"),
        CheckConstraint("rotated_from IS NULL OR rotated_from <> token_id", name="no_self_rotation"),
        Index("idx_refresh_token_account", "account_id"),
        Index("idx_refresh_token_device_revoked_desc", "device_id", desc("revoked_at_utc")),
    )

    token_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True))
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_refresh_token_account", ondelete="CASCADE"),
        nullable=False,
    )
    device_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("trusted_device.device_id", name="fk_refresh_token_device", ondelete="CASCADE"),
    )
    token_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    expires_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rotated_from: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rotated_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class LoginAudit(Base):
    """Append-only security audit sink for logins, refreshes and token reuse."""

    __tablename__ = "login_audit"
    __table_args__ = (
        PrimaryKeyConstraint("audit_id", name="pk_login_audit"),
        Index("idx_login_audit_account_created_desc", "account_id", desc("created_at_utc")),
    )

    audit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        server_default=text("gen_random_uuid()"),
    )
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("account.account_id", name="fk_login_audit_account", ondelete="SET NULL"),
    )
    ip: Mapped[Optional[str]] = mapped_column(Text)
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(CHAR(64))
    result: Mapped[str] = mapped_column(audit_result_enum, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
