"""Unit tests for error codes and the HTTP-boundary mapping."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from orderdesk.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    DeviceNotFoundError,
    DuplicateTopupError,
    InsufficientBalanceError,
    InvalidCredentialsError,
    InvalidOtpError,
    InvalidPackageError,
    InvalidTokenError,
    LedgerInputError,
    LedgerIntegrityError,
    OrderDeskError,
    OtpAlreadyUsedError,
    OtpAttemptsExceededError,
    OtpDeliveryError,
    OtpExpiredError,
    OtpNotFoundError,
    RateLimitExceededError,
    TokenExpiredError,
    TokenReuseDetectedError,
    TopupExpiredError,
    TopupNotFoundError,
    TopupStateError,
    UnknownServiceTypeError,
    public_error,
)


@pytest.mark.parametrize(
    "exc",
    [InvalidTokenError("bad"), TokenExpiredError("old"), TokenReuseDetectedError("revoked")],
)
def test_token_failures_are_indistinguishable(exc: Exception) -> None:
    error = public_error(exc)
    assert (error.status, error.code, error.message) == (401, "UNAUTHORIZED", "Invalid refresh token")


@pytest.mark.parametrize(
    ("exc", "status", "code"),
    [
        (InsufficientBalanceError(uuid4(), Decimal("1.00"), Decimal("2.00")), 400, "INSUFFICIENT_BALANCE"),
        (LedgerInputError("amount must be positive"), 400, "INVALID_LEDGER_INPUT"),
        (UnknownServiceTypeError("hologram"), 400, "UNKNOWN_SERVICE_TYPE"),
        (InvalidPackageError("mega"), 400, "INVALID_PACKAGE"),
        (AccountInactiveError("suspended"), 403, "ACCOUNT_INACTIVE"),
        (DeviceNotFoundError("gone"), 404, "DEVICE_NOT_FOUND"),
        (TopupNotFoundError("missing"), 404, "TOPUP_NOT_FOUND"),
        (TopupStateError("approved"), 400, "TOPUP_NOT_PENDING"),
        (TopupExpiredError("late"), 400, "TOPUP_EXPIRED"),
        (DuplicateTopupError("PP-1"), 400, "DUPLICATE_TOPUP"),
        (InvalidCredentialsError("nope"), 401, "INVALID_CREDENTIALS"),
        (RateLimitExceededError("otp_send:ip:1.2.3.4", 20, 3600), 429, "RATE_LIMITED"),
    ],
)
def test_client_errors_keep_their_codes(exc: OrderDeskError, status: int, code: str) -> None:
    error = public_error(exc)
    assert (error.status, error.code) == (status, code)


@pytest.mark.parametrize(
    "exc",
    [
        OtpNotFoundError("x"),
        OtpAlreadyUsedError("x"),
        OtpExpiredError("x"),
        OtpAttemptsExceededError("x"),
        InvalidOtpError("x"),
    ],
)
def test_passcode_failures_are_indistinguishable(exc: Exception) -> None:
    error = public_error(exc)
    assert (error.status, error.code, error.message) == (401, "UNAUTHORIZED", "Invalid or expired code")


@pytest.mark.parametrize(
    "exc",
    [
        AccountNotFoundError(uuid4()),
        LedgerIntegrityError("drift"),
        OtpDeliveryError("smtp"),
        RuntimeError("boom"),
        ValueError("x"),
    ],
)
def test_integrity_and_unexpected_errors_are_internal(exc: Exception) -> None:
    error = public_error(exc)
    assert (error.status, error.code, error.message) == (500, "INTERNAL_ERROR", "Internal error")


def test_all_service_errors_are_runtime_errors() -> None:
    assert issubclass(OrderDeskError, RuntimeError)
    assert TokenReuseDetectedError("rotated_reuse").reason == "rotated_reuse"
    assert TokenReuseDetectedError("rotated_reuse").code == "TOKEN_REUSE_DETECTED"
