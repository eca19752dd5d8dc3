"""Execution engine value types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Literal

from aws_action_governor.domain.models import ExecutionStatus, ExecutionStep

ProgressStatus = Literal["running", "completed", "failed", "rolling_back"]


@dataclass
class ExecutionContext:
    user_id: str
    customer_id: str
    connection_id: str
    approval_token: str


@dataclass
class ExecutionProgress:
    plan_id: str
    current_step: int
    total_steps: int
    step_id: str
    step_status: ProgressStatus
    progress: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "step_id": self.step_id,
            "step_status": self.step_status,
            "progress": self.progress,
            "message": self.message,
        }


ProgressCallback = Callable[[ExecutionProgress], None]


@dataclass
class ExecutionResult:
    plan_id: str
    status: ExecutionStatus
    steps: list[ExecutionStep]
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    error: str | None = None
    rollback_executed: bool = False
    rollback_succeeded: bool | None = None
    rollback_steps: list[ExecutionStep] = field(default_factory=list)
    rollback_errors: list[str] = field(default_factory=list)

    @property
    def steps_completed(self) -> int:
        return sum(1 for step in self.steps if step.status == "completed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "status": self.status,
            "steps": [step.to_dict() for step in self.steps],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "rollback_executed": self.rollback_executed,
            "rollback_succeeded": self.rollback_succeeded,
            "rollback_steps": [step.to_dict() for step in self.rollback_steps],
            "rollback_errors": list(self.rollback_errors),
        }


@dataclass
class ActiveExecution:
    plan_id: str
    context: ExecutionContext
    started_at: datetime
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "user_id": self.context.user_id,
            "connection_id": self.context.connection_id,
            "started_at": self.started_at.isoformat(),
            "cancelled": self.cancelled,
        }


@dataclass
class CancelResult:
    success: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "reason": self.reason}
