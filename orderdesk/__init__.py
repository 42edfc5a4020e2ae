"""Order-desk backend core: credit ledger, refresh-token rotation and supporting services."""

from orderdesk.admin import AdminCreditService
from orderdesk.config import OrderDeskConfig, configure_logging, load_orderdesk_config
from orderdesk.credit import SERVICE_CREDIT_COST, TOPUP_PACKAGES, CreditService
from orderdesk.database import OrderDeskDatabase, PsycopgDatabase, connect_database, transaction
from orderdesk.devices import TrustedDeviceService, compute_fingerprint, hash_fingerprint
from orderdesk.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    DeviceNotFoundError,
    InsufficientBalanceError,
    InvalidCredentialsError,
    InvalidPackageError,
    InvalidTokenError,
    LedgerInputError,
    LedgerIntegrityError,
    OrderDeskError,
    OtpError,
    RateLimitExceededError,
    TokenError,
    TokenExpiredError,
    TokenReuseDetectedError,
    TopupError,
    UnknownServiceTypeError,
    public_error,
)
from orderdesk.ledger import BalanceLedger, LedgerEntry, LedgerReplayReport
from orderdesk.otp import IssuedOtp, OtpRecord, OtpService
from orderdesk.rate_limit import RedisRateLimiter
from orderdesk.sessions import SessionService, SessionTokens
from orderdesk.token_guard import IssuedToken, RefreshTokenRecord, TokenRotationGuard
from orderdesk.topups import CreditTopupRecord, CreditTopupService

__all__ = [
    "AccountInactiveError",
    "AccountNotFoundError",
    "AdminCreditService",
    "BalanceLedger",
    "CreditService",
    "CreditTopupRecord",
    "CreditTopupService",
    "DeviceNotFoundError",
    "InsufficientBalanceError",
    "InvalidCredentialsError",
    "InvalidPackageError",
    "InvalidTokenError",
    "IssuedOtp",
    "IssuedToken",
    "LedgerEntry",
    "LedgerInputError",
    "LedgerIntegrityError",
    "LedgerReplayReport",
    "OrderDeskConfig",
    "OrderDeskDatabase",
    "OrderDeskError",
    "OtpError",
    "OtpRecord",
    "OtpService",
    "PsycopgDatabase",
    "RateLimitExceededError",
    "RedisRateLimiter",
    "RefreshTokenRecord",
    "SERVICE_CREDIT_COST",
    "SessionService",
    "SessionTokens",
    "TOPUP_PACKAGES",
    "TokenError",
    "TokenExpiredError",
    "TokenReuseDetectedError",
    "TokenRotationGuard",
    "TopupError",
    "TrustedDeviceService",
    "UnknownServiceTypeError",
    "compute_fingerprint",
    "configure_logging",
    "connect_database",
    "hash_fingerprint",
    "load_orderdesk_config",
    "public_error",
    "transaction",
]
