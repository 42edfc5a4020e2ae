"""Append-only audit sinks: security events (login_audit) and admin actions (admin_audit)."""

from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

from orderdesk.database import OrderDeskDatabase

_INSERT_LOGIN_AUDIT_SQL = """
INSERT INTO login_audit (
    audit_id, account_id, ip, user_agent, device_fingerprint, result, reason, created_at_utc
) VALUES (
    :audit_id, :account_id, :ip, :user_agent, :device_fingerprint, :result, :reason, :created_at_utc
)
"""

_INSERT_ADMIN_AUDIT_SQL = """
INSERT INTO admin_audit (
    audit_id, admin_id, action, target_id, payload, created_at_utc
) VALUES (
    :audit_id, :admin_id, :action, :target_id, CAST(:payload AS JSONB), :created_at_utc
)
"""


def record_login_audit(
    db: OrderDeskDatabase,
    *,
    account_id: Optional[UUID],
    result: str,
    reason: str,
    created_at_utc: datetime,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    device_fingerprint: Optional[str] = None,
) -> UUID:
    audit_id = uuid4()
    db.execute(
        _INSERT_LOGIN_AUDIT_SQL,
        {
            "audit_id": audit_id,
            "account_id": account_id,
            "ip": ip,
            "user_agent": user_agent,
            "device_fingerprint": device_fingerprint,
            "result": result,
            "reason": reason,
            "created_at_utc": created_at_utc,
        },
    )
    return audit_id


def record_admin_audit(
    db: OrderDeskDatabase,
    *,
    admin_id: UUID,
    action: str,
    target_id: Optional[str],
    payload: Mapping[str, Any],
    created_at_utc: datetime,
) -> UUID:
    """Insert one admin audit row; payload is stored as canonical JSON."""
    audit_id = uuid4()
    db.execute(
        _INSERT_ADMIN_AUDIT_SQL,
        {
            "audit_id": audit_id,
            "admin_id": admin_id,
            "action": action,
            "target_id": target_id,
            "payload": json.dumps(payload, sort_keys=True, default=str),
            "created_at_utc": created_at_utc,
        },
    )
    return audit_id
