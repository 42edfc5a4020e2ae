"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.account import Account
from backend.db.models.admin import AdminAudit
from backend.db.models.auth import LoginAudit, RefreshToken, TrustedDevice
from backend.db.models.ledger import BalanceTransaction
from backend.db.models.order import CustomerOrder
from backend.db.models.otp import OtpCode
from backend.db.models.topup import CreditTopup

logger = logging.getLogger(__name__)

__all__ = [
    "Account",
    "AdminAudit",
    "BalanceTransaction",
    "CreditTopup",
    "CustomerOrder",
    "LoginAudit",
    "OtpCode",
    "RefreshToken",
    "TrustedDevice",
]
