"""Login, refresh and logout flows on top of the refresh-token guard."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Union
from uuid import UUID

from backend.db.enums import AccountStatus, AuditResult
from orderdesk.audit import record_login_audit
from orderdesk.common import as_uuid
from orderdesk.database import transaction
from orderdesk.errors import AccountInactiveError, InvalidTokenError, TokenError
from orderdesk.token_guard import IssuedToken, RefreshTokenRecord, TokenRotationGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionTokens:
    refresh_token: str
    record: RefreshTokenRecord

    @classmethod
    def from_issued(cls, issued: IssuedToken) -> "SessionTokens":
        return cls(refresh_token=issued.token, record=issued.record)


class SessionService:
    """Session lifecycle; access-token signing stays in the HTTP layer."""

    def __init__(self, guard: TokenRotationGuard) -> None:
        self.guard = guard
        self.db = guard.db

    def _audit(
        self,
        account_id: Optional[UUID],
        result: AuditResult,
        reason: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_fingerprint: Optional[str] = None,
    ) -> None:
        record_login_audit(
            self.db,
            account_id=account_id,
            result=result.value,
            reason=reason,
            created_at_utc=self.guard.clock.now_utc(),
            ip=ip,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint,
        )

    def login(
        self,
        account_id: Union[UUID, str],
        device_id: Optional[Union[UUID, str]] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionTokens:
        """Issue the first refresh token after credentials were checked upstream."""
        with transaction(self.db):
            issued = self.guard.issue(account_id, device_id)
            self._audit(issued.record.account_id, AuditResult.SUCCESS, "login", ip, user_agent)
        return SessionTokens.from_issued(issued)

    def refresh(
        self,
        token: Optional[str],
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionTokens:
        record = self.guard.verify(token)

        if record.account_status != AccountStatus.ACTIVE.value:
            with transaction(self.db):
                self.guard.revoke_all_for_device(record.device_id, record.account_id)
                self._audit(
                    record.account_id,
                    AuditResult.FAIL,
                    "status_invalid",
                    ip,
                    user_agent,
                    record.device_fingerprint,
                )
            logger.warning(
                "Refresh refused for inactive account: account=%s status=%s",
                record.account_id,
                record.account_status,
            )
            raise AccountInactiveError(f"Account is not active: {record.account_status}")

        with transaction(self.db):
            self.guard.revoke(record.token_id)
            issued = self.guard.issue(record.account_id, record.device_id)
            self._audit(
                record.account_id,
                AuditResult.SUCCESS,
                "refresh",
                ip,
                user_agent,
                record.device_fingerprint,
            )
        return SessionTokens.from_issued(issued)

    def logout(
        self,
        token: Optional[str],
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        try:
            record = self.guard.verify(token)
        except TokenError as exc:
            raise InvalidTokenError("Invalid refresh token") from exc
        with transaction(self.db):
            self.guard.revoke(record.token_id)
            self._audit(
                record.account_id,
                AuditResult.SUCCESS,
                "logout",
                ip,
                user_agent,
                record.device_fingerprint,
            )

    def logout_everywhere(self, account_id: Union[UUID, str]) -> int:
        with transaction(self.db):
            revoked = self.guard.revoke_all_for_account(account_id)
            self._audit(
                as_uuid(account_id),
                AuditResult.SUCCESS,
                "logout_all",
            )
        logger.info("Logged out everywhere: account=%s revoked=%s", account_id, revoked)
        return revoked

