"""Typed failures raised by order-desk services.

Every error carries a stable machine-readable ``code``. ``public_error`` maps an
error onto what the HTTP boundary may reveal: all refresh-token failures collapse
to the same 401 so callers cannot tell which check failed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class OrderDeskError(RuntimeError):
    """Base class for order-desk service failures."""

    code = "ORDERDESK_ERROR"


class LedgerInputError(OrderDeskError):
    """Raised when a balance change request violates input constraints."""

    code = "INVALID_LEDGER_INPUT"


class AccountNotFoundError(OrderDeskError):
    """Raised when a ledger mutation targets an account that does not exist."""

    code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: object) -> None:
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class InsufficientBalanceError(OrderDeskError):
    """Raised when a debit exceeds the current balance."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, account_id: object, balance: object, requested: object) -> None:
        super().__init__(
            f"Insufficient balance for account {account_id}: balance={balance} requested={requested}"
        )
        self.account_id = account_id
        self.balance = balance
        self.requested = requested


class LedgerIntegrityError(OrderDeskError):
    """Raised when the ledger no longer replays to the stored balance."""

    code = "LEDGER_INTEGRITY_VIOLATION"


class UnknownServiceTypeError(OrderDeskError):
    code = "UNKNOWN_SERVICE_TYPE"


class InvalidPackageError(OrderDeskError):
    code = "INVALID_PACKAGE"


class DeviceNotFoundError(OrderDeskError):
    code = "DEVICE_NOT_FOUND"


class AccountInactiveError(OrderDeskError):
    code = "ACCOUNT_INACTIVE"


class TopupError(OrderDeskError):
    """Base class for manual top-up request failures."""

    code = "TOPUP_ERROR"


class InvalidTopupError(TopupError):
    code = "INVALID_TOPUP"


class DuplicateTopupError(TopupError):
    code = "DUPLICATE_TOPUP"


class TopupNotFoundError(TopupError):
    code = "TOPUP_NOT_FOUND"


class TopupStateError(TopupError):
    """Raised when a reviewed top-up is approved or rejected again."""

    code = "TOPUP_NOT_PENDING"


class TopupExpiredError(TopupError):
    """Raised when approval comes after the review window closed."""

    code = "TOPUP_EXPIRED"


class InvalidCredentialsError(OrderDeskError):
    code = "INVALID_CREDENTIALS"


class RateLimitExceededError(OrderDeskError):
    code = "RATE_LIMITED"

    def __init__(self, key: str, limit: int, window_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded for {key}: limit={limit} window={window_seconds}s")
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds


class OtpDeliveryError(OrderDeskError):
    code = "OTP_DELIVERY_FAILED"


class OtpError(OrderDeskError):
    """Base class for passcode verification failures; all look the same to callers."""

    code = "OTP_ERROR"


class OtpNotFoundError(OtpError):
    code = "OTP_NOT_FOUND"


class OtpAlreadyUsedError(OtpError):
    code = "OTP_ALREADY_USED"


class OtpExpiredError(OtpError):
    code = "OTP_EXPIRED"


class OtpAttemptsExceededError(OtpError):
    code = "OTP_ATTEMPTS_EXCEEDED"


class InvalidOtpError(OtpError):
    code = "INVALID_OTP"


class TokenError(OrderDeskError):
    """Base class for refresh-token failures; all terminal for the presented token."""

    code = "TOKEN_ERROR"


class InvalidTokenError(TokenError):
    code = "INVALID_TOKEN"


class TokenExpiredError(TokenError):
    code = "TOKEN_EXPIRED"


class TokenReuseDetectedError(TokenError):
    """Raised after a retired or tampered token was presented and its family revoked."""

    code = "TOKEN_REUSE_DETECTED"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Refresh token reuse detected ({reason})")
        self.reason = reason


@dataclass(frozen=True)
class PublicError:
    """What the HTTP boundary may expose for a failure."""

    status: int
    code: str
    message: str


_STATUS_BY_TYPE: tuple[tuple[type[OrderDeskError], int], ...] = (
    (TokenError, 401),
    (InvalidCredentialsError, 401),
    (AccountInactiveError, 403),
    (DeviceNotFoundError, 404),
    (TopupNotFoundError, 404),
    (RateLimitExceededError, 429),
    (TopupError, 400),
    (InsufficientBalanceError, 400),
    (LedgerInputError, 400),
    (UnknownServiceTypeError, 400),
    (InvalidPackageError, 400),
)


def public_error(exc: BaseException) -> PublicError:
    """Translate a service failure into a stable status/code pair."""
    if isinstance(exc, TokenError):
        return PublicError(status=401, code="UNAUTHORIZED", message="Invalid refresh token")
    if isinstance(exc, OtpError):
        return PublicError(status=401, code="UNAUTHORIZED", message="Invalid or expired code")
    status: Optional[int] = None
    if isinstance(exc, OrderDeskError):
        for error_type, mapped_status in _STATUS_BY_TYPE:
            if isinstance(exc, error_type):
                status = mapped_status
                break
    if status is None:
        return PublicError(status=500, code="INTERNAL_ERROR", message="Internal error")
    return PublicError(status=status, code=exc.code, message=str(exc))
