"""Error taxonomy for governed execution.

Every rejection carries a human-readable message plus a machine-checkable
``code`` and ``category`` so callers can tell "try again later" (rate limit)
from "will never succeed as submitted" (permission denial) from "needs
re-approval" (expired token or plan).
"""

from __future__ import annotations

ADMISSION = "admission"
EXECUTION = "execution"
ROLLBACK = "rollback"
INFRASTRUCTURE = "infrastructure"
PLAN = "plan"


class GovernanceError(Exception):
    """Base class for every error raised by the governor."""

    category = ADMISSION

    def __init__(self, message: str, code: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable

    def to_dict(self) -> dict[str, object]:
        return {
            "error": self.message,
            "code": self.code,
            "category": self.category,
            "retryable": self.retryable,
        }


class AdmissionError(GovernanceError):
    """Rejected before any resource mutation."""

    category = ADMISSION


class ApprovalRejectedError(AdmissionError):
    pass


class PlanExpiredError(AdmissionError):
    def __init__(self, message: str = "Plan has expired") -> None:
        super().__init__(message, "plan_expired")


class PlanIntegrityError(AdmissionError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "plan_integrity")


class KillSwitchBlockedError(AdmissionError):
    def __init__(self, message: str, scope: str | None) -> None:
        super().__init__(message, "kill_switch")
        self.scope = scope

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["scope"] = self.scope
        return data


class SimulationModeError(AdmissionError):
    def __init__(
        self,
        message: str = "Connection is in simulation mode - live execution not allowed yet",
    ) -> None:
        super().__init__(message, "simulation_mode")


class PermissionDeniedError(AdmissionError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "permission_denied")


class CostGuardRejectedError(AdmissionError):
    def __init__(
        self,
        message: str,
        *,
        alert_type: str,
        risk_level: str,
        recommendation: str | None = None,
    ) -> None:
        super().__init__(message, alert_type, retryable=alert_type == "rate_limit")
        self.alert_type = alert_type
        self.risk_level = risk_level
        self.recommendation = recommendation

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["risk_level"] = self.risk_level
        data["recommendation"] = self.recommendation
        return data


class PlanGenerationError(GovernanceError):
    category = PLAN

    def __init__(self, message: str, code: str = "plan_generation") -> None:
        super().__init__(message, code)


class UnknownPlanError(GovernanceError):
    category = PLAN

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Unknown plan: {plan_id}", "unknown_plan")
        self.plan_id = plan_id


class InfrastructureError(GovernanceError):
    """Aborts the execution attempt before any step runs."""

    category = INFRASTRUCTURE


class ConnectionNotFoundError(InfrastructureError):
    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection not found: {connection_id}", "connection_not_found")
        self.connection_id = connection_id


class CredentialIssueError(InfrastructureError):
    def __init__(self, message: str, code: str = "sts_error") -> None:
        super().__init__(message, code, retryable=code in {"throttled", "sts_unavailable"})


class ExecutionCancelledError(GovernanceError):
    category = EXECUTION

    def __init__(self, plan_id: str) -> None:
        super().__init__("Execution cancelled by user", "cancelled")
        self.plan_id = plan_id


class StepExecutionError(GovernanceError):
    """A step's API call failed; captured into the step result."""

    category = EXECUTION

    def __init__(self, message: str, code: str = "step_failed") -> None:
        super().__init__(message, code)


class ExecutionInProgressError(AdmissionError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan {plan_id} is already executing", "already_running")
        self.plan_id = plan_id
