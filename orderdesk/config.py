"""Environment-backed configuration for order-desk services."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os

_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class OrderDeskConfig:
    """Canonical configuration surface for the ledger, sessions, top-ups, passcodes and scan worker."""

    database_url: str
    redis_url: str
    refresh_token_ttl_seconds: int
    device_token_ttl_seconds: int
    escalate_hash_mismatch: bool
    scan_queue_key: str
    scan_max_attempts: int
    scan_dequeue_timeout_seconds: int
    topup_review_ttl_seconds: int
    otp_ttl_seconds: int
    otp_max_attempts: int
    otp_send_limit_ip: int
    otp_send_window_ip_seconds: int
    otp_send_limit_email: int
    otp_send_window_email_seconds: int
    rate_limit_disabled: bool
    log_level: str


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}: {raw}")


def _read_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _read_log_level() -> str:
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if level not in _LOG_LEVELS:
        raise RuntimeError(f"Invalid LOG_LEVEL: {level}")
    return level


def load_orderdesk_config() -> OrderDeskConfig:
    """Load and validate order-desk configuration from environment."""
    return OrderDeskConfig(
        database_url=_read_env("DATABASE_URL"),
        redis_url=_read_env("REDIS_URL", "redis://localhost:6379/0"),
        refresh_token_ttl_seconds=_read_positive_int("REFRESH_TOKEN_TTL", 60 * 60 * 24 * 14),
        device_token_ttl_seconds=_read_positive_int("DEVICE_TOKEN_TTL", 60 * 60 * 24 * 60),
        escalate_hash_mismatch=_read_bool("REFRESH_ESCALATE_HASH_MISMATCH", True),
        scan_queue_key=_read_env("SCAN_QUEUE_KEY", "queue:scan-label"),
        scan_max_attempts=_read_positive_int("SCAN_MAX_ATTEMPTS", 3),
        scan_dequeue_timeout_seconds=_read_positive_int("SCAN_DEQUEUE_TIMEOUT_SECONDS", 5),
        topup_review_ttl_seconds=_read_positive_int("TOPUP_REVIEW_TTL", 60 * 60 * 24),
        otp_ttl_seconds=_read_positive_int("OTP_TTL_SECONDS", 300),
        otp_max_attempts=_read_positive_int("OTP_MAX_ATTEMPTS", 5),
        otp_send_limit_ip=_read_positive_int("OTP_SEND_LIMIT_IP", 20),
        otp_send_window_ip_seconds=_read_positive_int("OTP_SEND_WINDOW_IP", 60 * 60),
        otp_send_limit_email=_read_positive_int("OTP_SEND_LIMIT_EMAIL", 5),
        otp_send_window_email_seconds=_read_positive_int("OTP_SEND_WINDOW_EMAIL", 15 * 60),
        rate_limit_disabled=_read_bool("RATE_LIMIT_DISABLED", False),
        log_level=_read_log_level(),
    )


def configure_logging(log_level: str = "INFO") -> None:
    """Install the process-wide log format; entry points call this once."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
