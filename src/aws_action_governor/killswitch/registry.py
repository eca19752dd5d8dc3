"""Kill switch registry.

Holds the global freeze flag, the read-only flag and per-customer, per-service
and per-connection freeze entries. ``check`` answers whether an execution
request may proceed right now; scoped entries past their ``expires_at`` are
treated as inactive even before the periodic sweep removes them.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any

from aws_action_governor.killswitch.models import (
    ALL_SCOPES,
    EMERGENCY_STOP_METHODS,
    SCOPED_SCOPES,
    EmergencyStopMethod,
    KillSwitchAuditEvent,
    KillSwitchDecision,
    KillSwitchEntry,
    KillSwitchRequest,
)
from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)


class KillSwitchRegistry:
    def __init__(self, audit_log_size: int = 1000) -> None:
        self._lock = threading.Lock()
        self._global: KillSwitchEntry | None = None
        self._read_only: KillSwitchEntry | None = None
        self._scoped: dict[str, dict[str, KillSwitchEntry]] = {
            scope: {} for scope in SCOPED_SCOPES
        }
        self._audit_log: deque[KillSwitchAuditEvent] = deque(maxlen=audit_log_size)

    def activate(
        self,
        scope: str,
        reason: str,
        activated_by: str,
        scope_id: str | None = None,
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> KillSwitchEntry:
        if scope not in ALL_SCOPES:
            raise ValueError(f"Unknown kill switch scope: {scope}")
        if scope in SCOPED_SCOPES and not scope_id:
            raise ValueError(f"Kill switch scope '{scope}' requires an id")

        now = utc_now()
        entry = KillSwitchEntry(
            active=True,
            activated_at=now,
            activated_by=activated_by,
            reason=reason,
            # Global and read-only freezes only end on explicit deactivation.
            expires_at=expires_at if scope in SCOPED_SCOPES else None,
            notes=notes,
        )
        with self._lock:
            if scope == "global":
                self._global = entry
            elif scope == "read_only":
                self._read_only = entry
            else:
                self._scoped[scope][scope_id] = entry  # type: ignore[index]
            self._audit_log.append(
                KillSwitchAuditEvent(now, "activated", scope, scope_id, activated_by, reason)
            )

        if scope == "global":
            logger.critical("GLOBAL kill switch activated by %s: %s", activated_by, reason)
        else:
            logger.warning(
                "Kill switch activated: scope=%s id=%s by=%s reason=%s",
                scope,
                scope_id,
                activated_by,
                reason,
            )
        return entry

    def deactivate(self, scope: str, deactivated_by: str, scope_id: str | None = None) -> bool:
        if scope not in ALL_SCOPES:
            raise ValueError(f"Unknown kill switch scope: {scope}")

        with self._lock:
            if scope == "global":
                removed = self._global is not None
                self._global = None
            elif scope == "read_only":
                removed = self._read_only is not None
                self._read_only = None
            else:
                removed = self._scoped[scope].pop(scope_id or "", None) is not None
            if removed:
                self._audit_log.append(
                    KillSwitchAuditEvent(utc_now(), "deactivated", scope, scope_id, deactivated_by)
                )

        if removed:
            logger.warning(
                "Kill switch deactivated: scope=%s id=%s by=%s", scope, scope_id, deactivated_by
            )
        return removed

    def enable_read_only(self, activated_by: str, reason: str) -> KillSwitchEntry:
        return self.activate("read_only", reason, activated_by)

    def disable_read_only(self, deactivated_by: str) -> bool:
        return self.deactivate("read_only", deactivated_by)

    @property
    def global_active(self) -> bool:
        with self._lock:
            return self._global is not None

    @property
    def read_only_mode(self) -> bool:
        with self._lock:
            return self._read_only is not None

    def check(self, request: KillSwitchRequest, now: datetime | None = None) -> KillSwitchDecision:
        now = now or utc_now()
        with self._lock:
            if self._global is not None:
                return KillSwitchDecision(
                    False, f"Global kill switch active: {self._global.reason}", "global"
                )
            if self._read_only is not None and request.is_write:
                return KillSwitchDecision(
                    False,
                    f"Read-only mode active: {self._read_only.reason}",
                    "read_only",
                )
            for scope, key in (
                ("customer", request.customer_id),
                ("service", request.service),
                ("connection", request.connection_id),
            ):
                entry = self._scoped[scope].get(key)
                if entry is not None and entry.is_effective(now):
                    return KillSwitchDecision(
                        False, f"{scope.capitalize()} kill switch active: {entry.reason}", scope
                    )
        return KillSwitchDecision(True)

    def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or utc_now()
        removed = 0
        with self._lock:
            for scope, entries in self._scoped.items():
                expired = [key for key, entry in entries.items() if entry.is_expired(now)]
                for key in expired:
                    del entries[key]
                    self._audit_log.append(
                        KillSwitchAuditEvent(now, "expired", scope, key, "system")
                    )
                removed += len(expired)
        if removed:
            logger.info("Removed %d expired kill switch entries", removed)
        return removed

    def get_state(self) -> dict[str, Any]:
        now = utc_now()
        with self._lock:
            return {
                "global": self._global is not None,
                "read_only_mode": self._read_only is not None,
                "global_entry": self._global.to_dict() if self._global else None,
                "read_only_entry": self._read_only.to_dict() if self._read_only else None,
                "counts": {
                    scope: sum(1 for e in entries.values() if e.is_effective(now))
                    for scope, entries in self._scoped.items()
                },
                "entries": {
                    scope: {key: e.to_dict() for key, e in entries.items() if e.is_effective(now)}
                    for scope, entries in self._scoped.items()
                },
            }

    def get_audit_log(self, limit: int = 100) -> list[KillSwitchAuditEvent]:
        with self._lock:
            events = list(self._audit_log)
        if limit <= 0:
            return []
        return events[-limit:]

    @staticmethod
    def emergency_stop_methods() -> tuple[EmergencyStopMethod, ...]:
        return EMERGENCY_STOP_METHODS
