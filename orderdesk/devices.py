"""Trusted-device tokens bound to a hashed client fingerprint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

from orderdesk.common import SystemClock, as_utc, parse_uuid, secret_matches, sha256_hex, split_compound_token
from orderdesk.database import OrderDeskDatabase, transaction
from orderdesk.errors import DeviceNotFoundError
from orderdesk.token_guard import TokenRotationGuard

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 60

_DEVICE_COLUMNS = """
    device_id, account_id, device_token_hash, device_fingerprint, device_name,
    expires_at_utc, last_used_at_utc, revoked_at_utc, created_at_utc
"""

_INSERT_DEVICE_SQL = """
INSERT INTO trusted_device (
    device_id, account_id, device_token_hash, device_fingerprint, device_name,
    expires_at_utc, last_used_at_utc, created_at_utc
) VALUES (
    :device_id, :account_id, :device_token_hash, :device_fingerprint, :device_name,
    :expires_at_utc, :last_used_at_utc, :created_at_utc
)
"""

_SELECT_DEVICE_SQL = f"""
SELECT {_DEVICE_COLUMNS}
FROM trusted_device
WHERE device_id = :device_id
"""

_LIST_DEVICES_SQL = f"""
SELECT {_DEVICE_COLUMNS}
FROM trusted_device
WHERE account_id = :account_id
ORDER BY created_at_utc DESC
"""

_TOUCH_DEVICE_SQL = """
UPDATE trusted_device
SET last_used_at_utc = :last_used_at_utc
WHERE device_id = :device_id
"""

_REVOKE_DEVICE_SQL = """
UPDATE trusted_device
SET revoked_at_utc = :revoked_at_utc
WHERE device_id = :device_id
  AND revoked_at_utc IS NULL
"""


def compute_fingerprint(
    user_agent: Optional[str],
    platform: Optional[str],
    timezone: Optional[str],
) -> Optional[str]:
    """Raw fingerprint ``"ua|platform|tz"``; None when any part is missing."""
    parts = [part.strip() if part else "" for part in (user_agent, platform, timezone)]
    if not all(parts):
        return None
    return "|".join(parts)


def hash_fingerprint(fingerprint_raw: Optional[str]) -> Optional[str]:
    if not fingerprint_raw:
        return None
    return sha256_hex(fingerprint_raw)


@dataclass(frozen=True)
class TrustedDevice:
    device_id: UUID
    account_id: UUID
    device_fingerprint: Optional[str]
    device_name: Optional[str]
    expires_at_utc: datetime
    last_used_at_utc: Optional[datetime]
    revoked_at_utc: Optional[datetime]
    created_at_utc: datetime


@dataclass(frozen=True)
class TrustedDeviceGrant:
    device_token: str
    device: TrustedDevice


def _device_from_row(row: Mapping[str, Any]) -> TrustedDevice:
    return TrustedDevice(
        device_id=row["device_id"],
        account_id=row["account_id"],
        device_fingerprint=row["device_fingerprint"],
        device_name=row["device_name"],
        expires_at_utc=as_utc(row["expires_at_utc"]),
        last_used_at_utc=None if row["last_used_at_utc"] is None else as_utc(row["last_used_at_utc"]),
        revoked_at_utc=None if row["revoked_at_utc"] is None else as_utc(row["revoked_at_utc"]),
        created_at_utc=as_utc(row["created_at_utc"]),
    )


class TrustedDeviceService:
    def __init__(
        self,
        db: OrderDeskDatabase,
        guard: TokenRotationGuard,
        ttl_seconds: int = DEFAULT_DEVICE_TOKEN_TTL_SECONDS,
        clock: Optional[SystemClock] = None,
    ) -> None:
        self.db = db
        self.guard = guard
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or guard.clock

    def create_trusted_device(
        self,
        account_id: Union[UUID, str],
        fingerprint_raw: Optional[str],
        device_name: Optional[str] = None,
    ) -> TrustedDeviceGrant:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            raise ValueError(f"account_id must be a UUID, got {account_id!r}")
        device_id = uuid4()
        secret = secrets.token_hex(32)
        now = self.clock.now_utc()
        device = TrustedDevice(
            device_id=device_id,
            account_id=account_uuid,
            device_fingerprint=hash_fingerprint(fingerprint_raw),
            device_name=device_name,
            expires_at_utc=now + self.ttl,
            last_used_at_utc=now,
            revoked_at_utc=None,
            created_at_utc=now,
        )
        with transaction(self.db):
            self.db.execute(
                _INSERT_DEVICE_SQL,
                {
                    "device_id": device.device_id,
                    "account_id": device.account_id,
                    "device_token_hash": sha256_hex(secret),
                    "device_fingerprint": device.device_fingerprint,
                    "device_name": device.device_name,
                    "expires_at_utc": device.expires_at_utc,
                    "last_used_at_utc": device.last_used_at_utc,
                    "created_at_utc": device.created_at_utc,
                },
            )
        logger.info("Trusted device created: account=%s device=%s", account_uuid, device_id)
        return TrustedDeviceGrant(device_token=f"{device_id}.{secret}", device=device)

    def validate_trusted_device(
        self,
        device_token: Optional[str],
        fingerprint_raw: Optional[str] = None,
    ) -> Optional[TrustedDevice]:
        """Return the device when the token is live and matches, else None."""
        parts = split_compound_token(device_token)
        if parts is None:
            return None
        device_id, secret = parts
        row = self.db.fetch_one(_SELECT_DEVICE_SQL, {"device_id": device_id})
        if row is None:
            return None
        device = _device_from_row(row)
        now = self.clock.now_utc()
        if device.revoked_at_utc is not None:
            return None
        if device.expires_at_utc < now:
            return None
        presented = hash_fingerprint(fingerprint_raw)
        if device.device_fingerprint and presented and device.device_fingerprint.strip() != presented:
            return None
        if not secret_matches(secret, str(row["device_token_hash"])):
            return None
        with transaction(self.db):
            self.db.execute(_TOUCH_DEVICE_SQL, {"device_id": device_id, "last_used_at_utc": now})
        return TrustedDevice(
            device_id=device.device_id,
            account_id=device.account_id,
            device_fingerprint=device.device_fingerprint,
            device_name=device.device_name,
            expires_at_utc=device.expires_at_utc,
            last_used_at_utc=now,
            revoked_at_utc=None,
            created_at_utc=device.created_at_utc,
        )

    def list_devices(self, account_id: Union[UUID, str]) -> tuple[TrustedDevice, ...]:
        account_uuid = parse_uuid(account_id)
        if account_uuid is None:
            return ()
        rows = self.db.fetch_all(_LIST_DEVICES_SQL, {"account_id": account_uuid})
        return tuple(_device_from_row(row) for row in rows)

    def revoke_device_for_account(self, account_id: Union[UUID, str], device_id: Union[UUID, str]) -> int:
        """Revoke an owned device and its refresh-token family; returns revoked token count."""
        account_uuid = parse_uuid(account_id)
        device_uuid = parse_uuid(device_id)
        if account_uuid is None or device_uuid is None:
            raise DeviceNotFoundError(f"Device not found: {device_id}")
        with transaction(self.db):
            row = self.db.fetch_one(_SELECT_DEVICE_SQL, {"device_id": device_uuid})
            if row is None or row["account_id"] != account_uuid:
                raise DeviceNotFoundError(f"Device not found: {device_id}")
            self.db.execute(
                _REVOKE_DEVICE_SQL,
                {"device_id": device_uuid, "revoked_at_utc": self.clock.now_utc()},
            )
            revoked_tokens = self.guard.revoke_all_for_device(device_uuid)
        logger.info(
            "Trusted device revoked: account=%s device=%s revoked_tokens=%s",
            account_uuid,
            device_uuid,
            revoked_tokens,
        )
        return revoked_tokens
