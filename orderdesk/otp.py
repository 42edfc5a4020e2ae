"""Email one-time passcodes: issue, deliver and verify with an attempt budget.

Codes are stored only as bcrypt hashes. A code is single use; every verification
attempt against a live code is counted, including the one that finally matches,
and a code whose budget is spent is refused even when the right digits arrive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID, uuid4

import bcrypt

from backend.db.enums import AccountStatus, AuditResult, OtpPurpose
from orderdesk.audit import record_login_audit
from orderdesk.common import SystemClock, as_utc, parse_uuid
from orderdesk.config import OrderDeskConfig
from orderdesk.database import OrderDeskDatabase, transaction
from orderdesk.errors import (
    AccountInactiveError,
    InvalidCredentialsError,
    InvalidOtpError,
    OtpAlreadyUsedError,
    OtpAttemptsExceededError,
    OtpDeliveryError,
    OtpError,
    OtpExpiredError,
    OtpNotFoundError,
    RateLimitExceededError,
)
from orderdesk.rate_limit import RedisRateLimiter

logger = logging.getLogger(__name__)

OTP_CHANNEL = "email"
VERIFY_LIMIT = 6
VERIFY_WINDOW_SECONDS = 600

OtpSender = Callable[[str, str, datetime], None]

_SELECT_ACCOUNT_BY_EMAIL_SQL = """
SELECT account_id, email, status
FROM account
WHERE email = :email
"""

_INSERT_OTP_SQL = """
INSERT INTO otp_code (
    otp_id, account_id, request_id, code_hash, channel, purpose,
    attempts, max_attempts, expires_at_utc, used_at_utc, sent_at_utc, created_at_utc
) VALUES (
    :otp_id, :account_id, :request_id, :code_hash, :channel, :purpose,
    :attempts, :max_attempts, :expires_at_utc, :used_at_utc, :sent_at_utc, :created_at_utc
)
"""

_LOCK_OTP_SQL = """
SELECT
    otp_id, account_id, request_id, code_hash, purpose,
    attempts, max_attempts, expires_at_utc, used_at_utc
FROM otp_code
WHERE request_id = :request_id
FOR UPDATE
"""

_RECORD_ATTEMPT_SQL = """
UPDATE otp_code
SET attempts = :attempts, used_at_utc = :used_at_utc
WHERE otp_id = :otp_id
"""


@dataclass(frozen=True)
class IssuedOtp:
    """Plain code for delivery; never persisted."""

    request_id: UUID
    account_id: UUID
    code: str
    expires_at_utc: datetime


@dataclass(frozen=True)
class OtpRecord:
    otp_id: UUID
    account_id: UUID
    request_id: UUID
    purpose: str
    attempts: int
    max_attempts: int
    expires_at_utc: datetime
    used_at_utc: Optional[datetime]


def _record_from_row(row: Mapping[str, Any]) -> OtpRecord:
    used_at = row["used_at_utc"]
    return OtpRecord(
        otp_id=row["otp_id"],
        account_id=row["account_id"],
        request_id=row["request_id"],
        purpose=str(row["purpose"]),
        attempts=int(row["attempts"]),
        max_attempts=int(row["max_attempts"]),
        expires_at_utc=as_utc(row["expires_at_utc"]),
        used_at_utc=None if used_at is None else as_utc(used_at),
    )


def generate_numeric_code(length: int = 6) -> str:
    """Random decimal code without a leading zero."""
    if length <= 0:
        raise ValueError("length must be positive")
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


class OtpService:
    def __init__(
        self,
        db: OrderDeskDatabase,
        clock: Optional[SystemClock] = None,
        ttl_seconds: int = 300,
        max_attempts: int = 5,
        code_length: int = 6,
        hash_rounds: int = 12,
        rate_limiter: Optional[RedisRateLimiter] = None,
        send_limit_ip: int = 20,
        send_window_ip_seconds: int = 60 * 60,
        send_limit_email: int = 5,
        send_window_email_seconds: int = 15 * 60,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.db = db
        self.clock = clock or SystemClock()
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self.code_length = code_length
        self.hash_rounds = hash_rounds
        self.rate_limiter = rate_limiter
        self.send_limit_ip = send_limit_ip
        self.send_window_ip_seconds = send_window_ip_seconds
        self.send_limit_email = send_limit_email
        self.send_window_email_seconds = send_window_email_seconds

    @classmethod
    def from_config(
        cls,
        db: OrderDeskDatabase,
        config: OrderDeskConfig,
        rate_limiter: Optional[RedisRateLimiter] = None,
        clock: Optional[SystemClock] = None,
    ) -> "OtpService":
        return cls(
            db,
            clock=clock,
            ttl_seconds=config.otp_ttl_seconds,
            max_attempts=config.otp_max_attempts,
            rate_limiter=rate_limiter,
            send_limit_ip=config.otp_send_limit_ip,
            send_window_ip_seconds=config.otp_send_window_ip_seconds,
            send_limit_email=config.otp_send_limit_email,
            send_window_email_seconds=config.otp_send_window_email_seconds,
        )

    def _hash_code(self, code: str) -> str:
        return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=self.hash_rounds)).decode("ascii")

    def _audit(
        self,
        account_id: Optional[UUID],
        result: AuditResult,
        reason: str,
        ip: Optional[str],
        user_agent: Optional[str],
        device_fingerprint: Optional[str],
    ) -> None:
        record_login_audit(
            self.db,
            account_id=account_id,
            result=result.value,
            reason=reason,
            created_at_utc=self.clock.now_utc(),
            ip=ip,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint,
        )

    def create_otp(
        self,
        account_id: Union[UUID, str],
        purpose: Union[OtpPurpose, str] = OtpPurpose.LOGIN,
    ) -> IssuedOtp:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            raise ValueError(f"account_id must be a UUID, got {account_id!r}")
        otp_purpose = OtpPurpose(purpose)
        code = generate_numeric_code(self.code_length)
        now = self.clock.now_utc()
        issued = IssuedOtp(
            request_id=uuid4(),
            account_id=account_uuid,
            code=code,
            expires_at_utc=now + self.ttl,
        )
        with transaction(self.db):
            self.db.execute(
                _INSERT_OTP_SQL,
                {
                    "otp_id": uuid4(),
                    "account_id": account_uuid,
                    "request_id": issued.request_id,
                    "code_hash": self._hash_code(code),
                    "channel": OTP_CHANNEL,
                    "purpose": otp_purpose.value,
                    "attempts": 0,
                    "max_attempts": self.max_attempts,
                    "expires_at_utc": issued.expires_at_utc,
                    "used_at_utc": None,
                    "sent_at_utc": now,
                    "created_at_utc": now,
                },
            )
        return issued

    def request_login_otp(
        self,
        email: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
        sender: Optional[OtpSender] = None,
    ) -> IssuedOtp:
        """Issue a login code for an active account and hand it to ``sender``."""
        normalized_email = (email or "").strip().lower()
        if self.rate_limiter is not None:
            try:
                self.rate_limiter.consume(
                    f"otp_send:ip:{ip or 'unknown'}",
                    self.send_limit_ip,
                    self.send_window_ip_seconds,
                )
                self.rate_limiter.consume(
                    f"otp_send:email:{normalized_email}",
                    self.send_limit_email,
                    self.send_window_email_seconds,
                )
            except RateLimitExceededError:
                self._audit(None, AuditResult.FAIL, "otp_send_rate_limited", ip, user_agent, device_fingerprint)
                raise

        row = self.db.fetch_one(_SELECT_ACCOUNT_BY_EMAIL_SQL, {"email": normalized_email})
        if row is None:
            self._audit(None, AuditResult.FAIL, "user_not_found", ip, user_agent, device_fingerprint)
            raise InvalidCredentialsError("Invalid credentials")
        account_id = row["account_id"]
        if str(row["status"]) != AccountStatus.ACTIVE.value:
            self._audit(account_id, AuditResult.FAIL, "inactive", ip, user_agent, device_fingerprint)
            raise AccountInactiveError(f"Account is not active: {row['status']}")

        issued = self.create_otp(account_id, OtpPurpose.LOGIN)
        if sender is not None:
            try:
                sender(row["email"], issued.code, issued.expires_at_utc)
            except Exception as exc:
                logger.error("OTP delivery failed: account=%s error=%s", account_id, exc)
                self._audit(account_id, AuditResult.FAIL, "email_send_failed", ip, user_agent, device_fingerprint)
                raise OtpDeliveryError("Could not deliver the login code") from exc
        self._audit(account_id, AuditResult.SUCCESS, "otp_sent", ip, user_agent, device_fingerprint)
        return issued

    def _consume_code(self, request_id: Union[UUID, str], code: str) -> OtpRecord:
        request_uuid = parse_uuid(request_id)
        if request_uuid is None:
            raise OtpNotFoundError("OTP not found")
        now = self.clock.now_utc()
        with transaction(self.db):
            row = self.db.fetch_one(_LOCK_OTP_SQL, {"request_id": request_uuid})
            if row is None:
                raise OtpNotFoundError("OTP not found")
            record = _record_from_row(row)
            if record.used_at_utc is not None:
                raise OtpAlreadyUsedError("OTP already used")
            if record.expires_at_utc < now:
                raise OtpExpiredError("OTP expired")
            if record.attempts >= record.max_attempts:
                raise OtpAttemptsExceededError("OTP attempts exceeded")

            valid = bcrypt.checkpw((code or "").encode("utf-8"), str(row["code_hash"]).encode("ascii"))
            attempts = record.attempts + 1
            used_at = now if valid else None
            self.db.execute(
                _RECORD_ATTEMPT_SQL,
                {"otp_id": record.otp_id, "attempts": attempts, "used_at_utc": used_at},
            )
        # raised after commit so the spent attempt sticks
        if not valid:
            raise InvalidOtpError("Invalid OTP")
        return OtpRecord(
            otp_id=record.otp_id,
            account_id=record.account_id,
            request_id=record.request_id,
            purpose=record.purpose,
            attempts=attempts,
            max_attempts=record.max_attempts,
            expires_at_utc=record.expires_at_utc,
            used_at_utc=used_at,
        )

    def verify_otp(
        self,
        request_id: Union[UUID, str],
        code: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
    ) -> OtpRecord:
        if self.rate_limiter is not None:
            self.rate_limiter.consume(f"otp_verify:req:{request_id}", VERIFY_LIMIT, VERIFY_WINDOW_SECONDS)
        try:
            record = self._consume_code(request_id, code)
        except OtpError as exc:
            logger.info("OTP verification failed: request=%s code=%s", request_id, exc.code)
            self._audit(None, AuditResult.FAIL, "otp_invalid", ip, user_agent, device_fingerprint)
            raise
        self._audit(record.account_id, AuditResult.SUCCESS, "otp_success", ip, user_agent, device_fingerprint)
        return record
