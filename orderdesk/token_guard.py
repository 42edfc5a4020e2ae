"""Refresh-token issue, rotation, verification and reuse detection.

Token strings are ``"<token_id>.<secret>"``; only the sha256 of the secret is
stored. Rotation chains are linked backwards from the revocation side: a new
token for a device adopts that device's most recently revoked token as its
predecessor. Presenting a revoked, rotated-out or tampered token revokes the
whole device family (or the account's tokens when there is no device), writes a
``login_audit`` row and raises ``TokenReuseDetectedError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

from backend.db.enums import AuditResult
from orderdesk.audit import record_login_audit
from orderdesk.common import SystemClock, as_utc, parse_uuid, secret_matches, sha256_hex, split_compound_token
from orderdesk.config import OrderDeskConfig
from orderdesk.database import OrderDeskDatabase, transaction
from orderdesk.errors import InvalidTokenError, TokenExpiredError, TokenReuseDetectedError

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 14

REUSE_REVOKED = "revoked"
REUSE_INVALID_HASH = "invalid_hash"
REUSE_ROTATED = "rotated_reuse"

_INSERT_TOKEN_SQL = """
INSERT INTO refresh_token (
    token_id, account_id, device_id, token_hash, expires_at_utc, rotated_from, created_at_utc
) VALUES (
    :token_id, :account_id, :device_id, :token_hash, :expires_at_utc, :rotated_from, :created_at_utc
)
"""

_LATEST_REVOKED_FOR_DEVICE_SQL = """
SELECT token_id
FROM refresh_token
WHERE device_id = :device_id
  AND revoked_at_utc IS NOT NULL
ORDER BY revoked_at_utc DESC, created_at_utc DESC
LIMIT 1
"""

_SET_ROTATED_TO_SQL = """
UPDATE refresh_token
SET rotated_to = :rotated_to
WHERE token_id = :token_id
"""

_SELECT_TOKEN_SQL = """
SELECT
    rt.token_id, rt.account_id, rt.device_id, rt.token_hash, rt.expires_at_utc,
    rt.revoked_at_utc, rt.rotated_from, rt.rotated_to, rt.created_at_utc,
    a.email AS account_email, a.status AS account_status,
    td.device_fingerprint
FROM refresh_token rt
JOIN account a ON a.account_id = rt.account_id
LEFT JOIN trusted_device td ON td.device_id = rt.device_id
WHERE rt.token_id = :token_id
"""

_REVOKE_TOKEN_SQL = """
UPDATE refresh_token
SET revoked_at_utc = :revoked_at_utc
WHERE token_id = :token_id
  AND revoked_at_utc IS NULL
"""

_REVOKE_DEVICE_TOKENS_SQL = """
UPDATE refresh_token
SET revoked_at_utc = :revoked_at_utc
WHERE device_id = :device_id
  AND revoked_at_utc IS NULL
"""

_REVOKE_ACCOUNT_TOKENS_SQL = """
UPDATE refresh_token
SET revoked_at_utc = :revoked_at_utc
WHERE account_id = :account_id
  AND revoked_at_utc IS NULL
"""


@dataclass(frozen=True)
class RefreshTokenRecord:
    token_id: UUID
    account_id: UUID
    device_id: Optional[UUID]
    expires_at_utc: datetime
    revoked_at_utc: Optional[datetime]
    rotated_from: Optional[UUID]
    rotated_to: Optional[UUID]
    created_at_utc: datetime
    account_email: Optional[str] = None
    account_status: Optional[str] = None
    device_fingerprint: Optional[str] = None


@dataclass(frozen=True)
class IssuedToken:
    """Opaque token string handed to the client plus the stored record."""

    token: str
    record: RefreshTokenRecord


def _record_from_row(row: Mapping[str, Any]) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_id=row["token_id"],
        account_id=row["account_id"],
        device_id=row["device_id"],
        expires_at_utc=as_utc(row["expires_at_utc"]),
        revoked_at_utc=None if row["revoked_at_utc"] is None else as_utc(row["revoked_at_utc"]),
        rotated_from=row["rotated_from"],
        rotated_to=row["rotated_to"],
        created_at_utc=as_utc(row["created_at_utc"]),
        account_email=row.get("account_email"),
        account_status=None if row.get("account_status") is None else str(row["account_status"]),
        device_fingerprint=row.get("device_fingerprint"),
    )


class TokenRotationGuard:
    """Owns every write to ``refresh_token``."""

    def __init__(
        self,
        db: OrderDeskDatabase,
        ttl_seconds: int = DEFAULT_REFRESH_TOKEN_TTL_SECONDS,
        escalate_hash_mismatch: bool = True,
        clock: Optional[SystemClock] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        self.escalate_hash_mismatch = escalate_hash_mismatch
        self.clock = clock or SystemClock()

    @classmethod
    def from_config(
        cls,
        db: OrderDeskDatabase,
        config: OrderDeskConfig,
        clock: Optional[SystemClock] = None,
    ) -> "TokenRotationGuard":
        return cls(
            db,
            ttl_seconds=config.refresh_token_ttl_seconds,
            escalate_hash_mismatch=config.escalate_hash_mismatch,
            clock=clock,
        )

    def issue(self, account_id: Union[UUID, str], device_id: Optional[Union[UUID, str]] = None) -> IssuedToken:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            raise ValueError(f"account_id must be a UUID, got {account_id!r}")
        device_uuid = None
        if device_id is not None:
            device_uuid = parse_uuid(device_id)
            if device_uuid is None:
                raise ValueError(f"device_id must be a UUID, got {device_id!r}")

        token_id = uuid4()
        secret = secrets.token_hex(32)
        now = self.clock.now_utc()

        with transaction(self.db):
            rotated_from: Optional[UUID] = None
            if device_uuid is not None:
                previous = self.db.fetch_one(_LATEST_REVOKED_FOR_DEVICE_SQL, {"device_id": device_uuid})
                if previous is not None:
                    rotated_from = previous["token_id"]
            self.db.execute(
                _INSERT_TOKEN_SQL,
                {
                    "token_id": token_id,
                    "account_id": account_uuid,
                    "device_id": device_uuid,
                    "token_hash": sha256_hex(secret),
                    "expires_at_utc": now + self.ttl,
                    "rotated_from": rotated_from,
                    "created_at_utc": now,
                },
            )
            if rotated_from is not None:
                self.db.execute(_SET_ROTATED_TO_SQL, {"token_id": rotated_from, "rotated_to": token_id})

        record = RefreshTokenRecord(
            token_id=token_id,
            account_id=account_uuid,
            device_id=device_uuid,
            expires_at_utc=now + self.ttl,
            revoked_at_utc=None,
            rotated_from=rotated_from,
            rotated_to=None,
            created_at_utc=now,
        )
        return IssuedToken(token=f"{token_id}.{secret}", record=record)

    def verify(self, token: Optional[str]) -> RefreshTokenRecord:
        """Return the live record for ``token`` or raise a ``TokenError``.

        Must run outside an open transaction: reuse handling commits its
        revocations before raising.
        """
        if self.db.in_transaction:
            raise RuntimeError("Refresh token verification must run outside an open transaction.")

        parts = split_compound_token(token)
        if parts is None:
            raise InvalidTokenError("Malformed refresh token")
        token_id, secret = parts

        row = self.db.fetch_one(_SELECT_TOKEN_SQL, {"token_id": token_id})
        if row is None:
            raise InvalidTokenError("Unknown refresh token")
        record = _record_from_row(row)

        if record.revoked_at_utc is not None:
            self._handle_reuse(record, REUSE_REVOKED)
        if record.expires_at_utc < self.clock.now_utc():
            raise TokenExpiredError("Refresh token expired")
        if not secret_matches(secret, str(row["token_hash"])):
            if self.escalate_hash_mismatch:
                self._handle_reuse(record, REUSE_INVALID_HASH)
            raise InvalidTokenError("Refresh token secret mismatch")
        if record.rotated_to is not None:
            self._handle_reuse(record, REUSE_ROTATED)
        return record

    def revoke(self, token_id: Union[UUID, str]) -> bool:
        """Mark one token revoked; a second call keeps the first timestamp."""
        token_uuid = parse_uuid(token_id)
        if token_uuid is None:
            return False
        with transaction(self.db):
            updated = self.db.execute(
                _REVOKE_TOKEN_SQL,
                {"token_id": token_uuid, "revoked_at_utc": self.clock.now_utc()},
            )
        return updated > 0

    def revoke_all_for_device(
        self,
        device_id: Optional[Union[UUID, str]] = None,
        account_id: Optional[Union[UUID, str]] = None,
    ) -> int:
        """Revoke the device family, or every token of the account when no device is given."""
        device_uuid = parse_uuid(device_id)
        if device_uuid is not None:
            with transaction(self.db):
                return self.db.execute(
                    _REVOKE_DEVICE_TOKENS_SQL,
                    {"device_id": device_uuid, "revoked_at_utc": self.clock.now_utc()},
                )
        if account_id is not None:
            return self.revoke_all_for_account(account_id)
        raise ValueError("revoke_all_for_device requires device_id or account_id")

    def revoke_all_for_account(self, account_id: Union[UUID, str]) -> int:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            raise ValueError(f"account_id must be a UUID, got {account_id!r}")
        with transaction(self.db):
            return self.db.execute(
                _REVOKE_ACCOUNT_TOKENS_SQL,
                {"account_id": account_uuid, "revoked_at_utc": self.clock.now_utc()},
            )

    def _handle_reuse(self, record: RefreshTokenRecord, reason: str) -> None:
        with transaction(self.db):
            revoked = self.revoke_all_for_device(record.device_id, record.account_id)
            record_login_audit(
                self.db,
                account_id=record.account_id,
                result=AuditResult.FAIL.value,
                reason=f"refresh_token_reuse:{reason}",
                created_at_utc=self.clock.now_utc(),
                device_fingerprint=record.device_fingerprint,
            )
        logger.warning(
            "Refresh token reuse detected: token=%s account=%s device=%s reason=%s revoked=%s",
            record.token_id,
            record.account_id,
            record.device_id,
            reason,
            revoked,
        )
        raise TokenReuseDetectedError(reason)
