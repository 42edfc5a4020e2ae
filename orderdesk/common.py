"""Shared helpers for order-desk services: clock, money rounding, coercion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import hashlib
import hmac
from typing import Any, Optional
from uuid import UUID

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class SystemClock:
    """Injectable UTC clock; tests substitute a fixed or stepping clock."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)


def to_cents(value: Any) -> Decimal:
    """Quantize a money value to 2 decimal places (half-up, like the stored NUMERIC(12,2))."""
    if isinstance(value, float):
        value = Decimal(str(value))
    elif not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money value: {value!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid money value: {value!r}")
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


def parse_uuid(value: Any) -> Optional[UUID]:
    """Return a UUID for UUID-shaped input, else None."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def as_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def sha256_hex(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def secret_matches(raw_secret: str, stored_hash: str) -> bool:
    """Constant-time comparison of a presented secret against its stored sha256 hex."""
    return hmac.compare_digest(sha256_hex(raw_secret), stored_hash.strip())


def split_compound_token(token: Optional[str]) -> Optional[tuple[UUID, str]]:
    """Split ``"<uuid>.<secret>"`` into its parts; None when malformed."""
    if not token:
        return None
    record_id, sep, secret = token.strip().partition(".")
    if not sep or not record_id or not secret:
        return None
    parsed = parse_uuid(record_id)
    if parsed is None:
        return None
    return parsed, secret
