"""Unit tests for one-time passcode issue, delivery and verification."""

from __future__ import annotations

from datetime import datetime, timedelta
import re
from typing import Any
from uuid import uuid4

import bcrypt
import pytest

from orderdesk.errors import (
    AccountInactiveError,
    InvalidCredentialsError,
    InvalidOtpError,
    OtpAlreadyUsedError,
    OtpAttemptsExceededError,
    OtpDeliveryError,
    OtpExpiredError,
    OtpNotFoundError,
    RateLimitExceededError,
)
from orderdesk.otp import OtpService, generate_numeric_code
from orderdesk.rate_limit import RedisRateLimiter
from tests.utils.fake_redis import FakeRedis
from tests.utils.memory_db import MemoryBackend, MemoryDatabase, MutableClock


@pytest.fixture
def otp(db: MemoryDatabase, clock: MutableClock) -> OtpService:
    return OtpService(db, clock=clock, hash_rounds=4)


def _otp_row(backend: MemoryBackend) -> dict[str, Any]:
    rows = backend.rows("otp_code")
    assert len(rows) == 1
    return rows[0]


def _wrong(code: str) -> str:
    return "1" * len(code) if code != "1" * len(code) else "2" * len(code)


def test_generated_codes_are_fixed_length_digits() -> None:
    for _ in range(50):
        assert re.fullmatch(r"[1-9][0-9]{5}", generate_numeric_code())
    assert len(generate_numeric_code(8)) == 8
    with pytest.raises(ValueError):
        generate_numeric_code(0)


def test_create_stores_only_hash_with_ttl(backend: MemoryBackend, otp: OtpService, clock: MutableClock) -> None:
    account_id = backend.add_account()

    issued = otp.create_otp(account_id)

    row = _otp_row(backend)
    assert row["request_id"] == issued.request_id
    assert row["code_hash"] != issued.code
    assert bcrypt.checkpw(issued.code.encode(), row["code_hash"].encode())
    assert row["purpose"] == "login"
    assert row["channel"] == "email"
    assert (row["attempts"], row["max_attempts"]) == (0, 5)
    assert row["used_at_utc"] is None
    assert row["expires_at_utc"] == clock.now_utc() + timedelta(minutes=5)
    assert issued.expires_at_utc == row["expires_at_utc"]


def test_correct_code_verifies_once_then_reuse_fails(backend: MemoryBackend, otp: OtpService) -> None:
    account_id = backend.add_account()
    issued = otp.create_otp(account_id)

    record = otp.verify_otp(issued.request_id, issued.code)

    assert record.account_id == account_id
    assert record.attempts == 1
    assert record.used_at_utc is not None
    assert _otp_row(backend)["used_at_utc"] == record.used_at_utc

    with pytest.raises(OtpAlreadyUsedError):
        otp.verify_otp(issued.request_id, issued.code)
    assert _otp_row(backend)["attempts"] == 1
    reasons = [(row["result"], row["reason"]) for row in backend.rows("login_audit")]
    assert reasons == [("success", "otp_success"), ("fail", "otp_invalid")]


def test_expired_code_is_refused(backend: MemoryBackend, otp: OtpService, clock: MutableClock) -> None:
    issued = otp.create_otp(backend.add_account())

    clock.advance(minutes=5)
    clock.advance(seconds=1)
    with pytest.raises(OtpExpiredError):
        otp.verify_otp(issued.request_id, issued.code)

    row = _otp_row(backend)
    assert row["attempts"] == 0
    assert row["used_at_utc"] is None


def test_code_at_expiry_instant_still_verifies(backend: MemoryBackend, otp: OtpService, clock: MutableClock) -> None:
    issued = otp.create_otp(backend.add_account())
    clock.advance(minutes=5)
    assert otp.verify_otp(issued.request_id, issued.code).used_at_utc == clock.now_utc()


def test_wrong_codes_spend_attempts_until_exhausted(backend: MemoryBackend, otp: OtpService) -> None:
    issued = otp.create_otp(backend.add_account())

    for expected_attempts in range(1, 6):
        with pytest.raises(InvalidOtpError):
            otp.verify_otp(issued.request_id, _wrong(issued.code))
        assert _otp_row(backend)["attempts"] == expected_attempts

    with pytest.raises(OtpAttemptsExceededError):
        otp.verify_otp(issued.request_id, issued.code)
    row = _otp_row(backend)
    assert row["attempts"] == 5
    assert row["used_at_utc"] is None


def test_match_on_last_attempt_succeeds(backend: MemoryBackend, otp: OtpService) -> None:
    issued = otp.create_otp(backend.add_account())
    for _ in range(4):
        with pytest.raises(InvalidOtpError):
            otp.verify_otp(issued.request_id, _wrong(issued.code))

    assert otp.verify_otp(issued.request_id, issued.code).attempts == 5


@pytest.mark.parametrize("request_id", ["not-a-uuid", None, str(uuid4())])
def test_unknown_request_is_not_found(otp: OtpService, request_id: Any) -> None:
    with pytest.raises(OtpNotFoundError):
        otp.verify_otp(request_id, "123456")


def test_request_login_otp_sends_code_and_audits(
    backend: MemoryBackend,
    otp: OtpService,
) -> None:
    account_id = backend.add_account(email="buyer@example.test")
    sent: list[tuple[str, str, datetime]] = []

    issued = otp.request_login_otp(
        " Buyer@Example.test ",
        ip="10.0.0.1",
        user_agent="pytest",
        sender=lambda email, code, expires_at: sent.append((email, code, expires_at)),
    )

    assert issued.account_id == account_id
    assert sent == [("buyer@example.test", issued.code, issued.expires_at_utc)]
    audit = backend.rows("login_audit")[0]
    assert (audit["account_id"], audit["result"], audit["reason"]) == (account_id, "success", "otp_sent")
    assert (audit["ip"], audit["user_agent"]) == ("10.0.0.1", "pytest")


def test_request_login_otp_for_unknown_or_inactive_account(backend: MemoryBackend, otp: OtpService) -> None:
    suspended_id = backend.add_account(email="gone@example.test", status="suspended")

    with pytest.raises(InvalidCredentialsError):
        otp.request_login_otp("nobody@example.test")
    with pytest.raises(AccountInactiveError):
        otp.request_login_otp("gone@example.test")

    assert backend.rows("otp_code") == []
    audits = [(row["account_id"], row["reason"]) for row in backend.rows("login_audit")]
    assert audits == [(None, "user_not_found"), (suspended_id, "inactive")]


def test_delivery_failure_is_audited(backend: MemoryBackend, otp: OtpService) -> None:
    backend.add_account(email="buyer@example.test")

    def broken_sender(email: str, code: str, expires_at: datetime) -> None:
        raise ConnectionError("smtp down")

    with pytest.raises(OtpDeliveryError):
        otp.request_login_otp("buyer@example.test", sender=broken_sender)
    assert backend.rows("login_audit")[0]["reason"] == "email_send_failed"


def test_send_rate_limit_per_email_is_audited(
    backend: MemoryBackend,
    db: MemoryDatabase,
    clock: MutableClock,
) -> None:
    backend.add_account(email="buyer@example.test")
    limiter = RedisRateLimiter(FakeRedis(), clock=clock)
    service = OtpService(db, clock=clock, hash_rounds=4, rate_limiter=limiter, send_limit_email=2)

    service.request_login_otp("buyer@example.test", ip="10.0.0.1")
    service.request_login_otp("buyer@example.test", ip="10.0.0.2")
    with pytest.raises(RateLimitExceededError) as exc_info:
        service.request_login_otp("buyer@example.test", ip="10.0.0.3")

    assert exc_info.value.key == "otp_send:email:buyer@example.test"
    assert len(backend.rows("otp_code")) == 2
    last = backend.rows("login_audit")[-1]
    assert (last["account_id"], last["result"], last["reason"]) == (None, "fail", "otp_send_rate_limited")


def test_verify_rate_limit_per_request(backend: MemoryBackend, db: MemoryDatabase, clock: MutableClock) -> None:
    limiter = RedisRateLimiter(FakeRedis(), clock=clock)
    service = OtpService(db, clock=clock, hash_rounds=4, rate_limiter=limiter, max_attempts=10)
    issued = service.create_otp(backend.add_account())

    for _ in range(6):
        with pytest.raises(InvalidOtpError):
            service.verify_otp(issued.request_id, _wrong(issued.code))
    with pytest.raises(RateLimitExceededError):
        service.verify_otp(issued.request_id, issued.code)
    assert _otp_row(backend)["attempts"] == 6
