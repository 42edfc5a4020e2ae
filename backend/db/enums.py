"""PostgreSQL native enum contracts for the order-desk database schema."""

from __future__ import annotations

import enum
import logging

from sqlalchemy.dialects.postgresql import ENUM as PGEnum

logger = logging.getLogger(__name__)


class AccountRole(str, enum.Enum):
    """Tenant account role."""

    USER = "user"
    ADMIN = "admin"


class AccountStatus(str, enum.Enum):
    """Account lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class LedgerDirection(str, enum.Enum):
    """Direction of a balance mutation."""

    CREDIT = "credit"
    DEBIT = "debit"


class AuditResult(str, enum.Enum):
    """Outcome recorded on a security-audit row."""

    SUCCESS = "success"
    FAIL = "fail"


class OrderStatus(str, enum.Enum):
    """Order lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TopupStatus(str, enum.Enum):
    """Review state of a manual credit top-up request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OtpPurpose(str, enum.Enum):
    """What a one-time passcode was issued for."""

    LOGIN = "login"
    DEVICE_TRUST = "device_trust"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


account_role_enum = PGEnum(AccountRole, name="account_role_enum", values_callable=_enum_values)
account_status_enum = PGEnum(AccountStatus, name="account_status_enum", values_callable=_enum_values)
ledger_direction_enum = PGEnum(LedgerDirection, name="ledger_direction_enum", values_callable=_enum_values)
audit_result_enum = PGEnum(AuditResult, name="audit_result_enum", values_callable=_enum_values)
order_status_enum = PGEnum(OrderStatus, name="order_status_enum", values_callable=_enum_values)
topup_status_enum = PGEnum(TopupStatus, name="topup_status_enum", values_callable=_enum_values)
otp_purpose_enum = PGEnum(OtpPurpose, name="otp_purpose_enum", values_callable=_enum_values)
