"""Kill switch entries, requests and audit events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

KillSwitchScope = Literal["global", "read_only", "customer", "service", "connection"]
SCOPED_SCOPES: tuple[str, ...] = ("customer", "service", "connection")
ALL_SCOPES: tuple[str, ...] = ("global", "read_only", *SCOPED_SCOPES)


@dataclass
class KillSwitchEntry:
    active: bool
    activated_at: datetime
    activated_by: str
    reason: str
    expires_at: datetime | None = None
    notes: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_effective(self, now: datetime) -> bool:
        return self.active and not self.is_expired(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "activated_at": self.activated_at.isoformat(),
            "activated_by": self.activated_by,
            "reason": self.reason,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "notes": self.notes,
        }


@dataclass
class KillSwitchRequest:
    customer_id: str
    service: str
    connection_id: str
    action: str
    risk_level: str
    is_write: bool = True


@dataclass
class KillSwitchDecision:
    allowed: bool
    reason: str | None = None
    scope: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason, "scope": self.scope}


@dataclass
class KillSwitchAuditEvent:
    timestamp: datetime
    event: Literal["activated", "deactivated", "expired"]
    scope: str
    scope_id: str | None
    actor: str
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event": self.event,
            "scope": self.scope,
            "scope_id": self.scope_id,
            "actor": self.actor,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EmergencyStopMethod:
    name: str
    description: str
    steps: tuple[str, ...] = field(default_factory=tuple)
    recommended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "steps": list(self.steps),
            "recommended": self.recommended,
        }


# Issued STS credentials cannot be revoked; these cut off new credentials on
# the customer side and existing ones lapse on expiry.
EMERGENCY_STOP_METHODS: tuple[EmergencyStopMethod, ...] = (
    EmergencyStopMethod(
        name="remove_trust_relationship",
        description="Remove the governor's account from the IAM role trust policy.",
        steps=(
            "Open the IAM role used by the connection",
            "Edit the trust policy and remove the governor principal",
        ),
        recommended=True,
    ),
    EmergencyStopMethod(
        name="explicit_deny",
        description="Add an explicit Deny on sts:AssumeRole for the governor principal.",
        steps=(
            'Add a statement with "Effect": "Deny" and "Action": "sts:AssumeRole"',
            "Scope the Principal to the governor account root",
        ),
    ),
    EmergencyStopMethod(
        name="delete_role",
        description="Delete the IAM role the connection assumes.",
        steps=("aws iam delete-role --role-name <role-name>",),
    ),
    EmergencyStopMethod(
        name="await_expiry",
        description=(
            "Already-issued temporary credentials stay valid until they expire "
            "(at most 15 minutes); no new calls succeed afterwards."
        ),
    ),
)
