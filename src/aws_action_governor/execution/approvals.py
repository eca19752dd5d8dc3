"""Single-use, time-boxed approval tokens."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ApprovalToken:
    token: str
    plan_id: str
    user_id: str
    connection_id: str
    created_at: datetime
    expires_at: datetime
    used: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "plan_id": self.plan_id,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class ApprovalDecision:
    valid: bool
    reason: str | None = None
    code: str | None = None


class ApprovalTokenStore:
    """Issues approval tokens and consumes them at most once.

    Validation and consumption happen under a single lock acquisition, so two
    concurrent executions presenting the same token cannot both pass.
    """

    def __init__(self, ttl_seconds: int = 900) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._tokens: dict[str, ApprovalToken] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def issue(self, plan_id: str, user_id: str, connection_id: str) -> ApprovalToken:
        now = utc_now()
        token = ApprovalToken(
            token=secrets.token_hex(32),
            plan_id=plan_id,
            user_id=user_id,
            connection_id=connection_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._tokens[token.token] = token
        logger.info("Approval token issued: plan=%s user=%s", plan_id, user_id)
        return token

    def validate_and_consume(
        self,
        token: str,
        plan_id: str,
        user_id: str,
        now: datetime | None = None,
    ) -> ApprovalDecision:
        now = now or utc_now()
        with self._lock:
            data = self._tokens.get(token)
            if data is None:
                return ApprovalDecision(False, "Invalid approval token", "approval_invalid")
            if data.used:
                return ApprovalDecision(
                    False, "Approval token has already been used", "approval_used"
                )
            if now >= data.expires_at:
                return ApprovalDecision(False, "Approval token has expired", "approval_expired")
            if data.plan_id != plan_id:
                return ApprovalDecision(
                    False, "Approval token does not match plan", "approval_mismatch"
                )
            if data.user_id != user_id:
                return ApprovalDecision(
                    False, "Approval token does not match user", "approval_mismatch"
                )
            data.used = True
        return ApprovalDecision(True)

    def sweep(self, now: datetime | None = None) -> int:
        """Drop expired tokens. Used tokens stay until expiry to keep their reason."""
        now = now or utc_now()
        with self._lock:
            expired = [key for key, data in self._tokens.items() if now >= data.expires_at]
            for key in expired:
                del self._tokens[key]
        if expired:
            logger.debug("Removed %d expired approval tokens", len(expired))
        return len(expired)
