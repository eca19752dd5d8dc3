"""Plan and step types shared by the planner and the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

RiskLevel = Literal["low", "medium", "high", "critical"]
StepStatus = Literal["pending", "running", "completed", "failed", "skipped", "rolled_back"]
ExecutionStatus = Literal["completed", "partial", "failed", "rolled_back"]

RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")
RISK_SCORES: dict[str, int] = {"low": 20, "medium": 50, "high": 75, "critical": 100}

PRECHECK_PREFIX = "precheck:"
POSTCHECK_PREFIX = "postcheck:"


def risk_level_for_score(score: int) -> RiskLevel:
    if score > 75:
        return "high"
    if score > 50:
        return "medium"
    return "low"


@dataclass
class StepImpact:
    resource_count: int
    cost_change: float
    reversible: bool
    downtime: bool
    data_loss: bool
    risk_level: RiskLevel

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_count": self.resource_count,
            "cost_change": self.cost_change,
            "reversible": self.reversible,
            "downtime": self.downtime,
            "data_loss": self.data_loss,
            "risk_level": self.risk_level,
        }


@dataclass(frozen=True)
class ApiCall:
    service: str
    operation: str
    parameters: dict[str, Any]
    expected_duration: int
    region: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "operation": self.operation,
            "parameters": dict(self.parameters),
            "expected_duration": self.expected_duration,
            "region": self.region,
        }


@dataclass
class StepResult:
    success: bool
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    request_ids: list[str] = field(default_factory=list)
    error: str | None = None
    output: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_ms": self.duration_ms,
            "request_ids": list(self.request_ids),
            "error": self.error,
            "output": self.output,
        }


@dataclass
class ExecutionStep:
    step_id: str
    order: int
    service: str
    action: str
    description: str
    resources: list[str]
    impact: StepImpact
    api_calls: list[ApiCall]
    depends_on: list[str] | None = None
    status: StepStatus = "pending"
    result: StepResult | None = None

    @property
    def is_precheck(self) -> bool:
        return self.action.startswith(PRECHECK_PREFIX)

    @property
    def is_postcheck(self) -> bool:
        return self.action.startswith(POSTCHECK_PREFIX)

    @property
    def is_check(self) -> bool:
        return self.is_precheck or self.is_postcheck

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "order": self.order,
            "service": self.service,
            "action": self.action,
            "description": self.description,
            "resources": list(self.resources),
            "impact": self.impact.to_dict(),
            "api_calls": [call.to_dict() for call in self.api_calls],
            "depends_on": list(self.depends_on) if self.depends_on else None,
            "status": self.status,
            "result": self.result.to_dict() if self.result else None,
        }


@dataclass
class PlanSummary:
    total_steps: int
    estimated_duration: int
    estimated_cost_impact: float
    risk_score: int
    resources_affected: int
    services_affected: list[str]
    requires_approval: bool
    reversible: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "estimated_duration": self.estimated_duration,
            "estimated_cost_impact": self.estimated_cost_impact,
            "risk_score": self.risk_score,
            "resources_affected": self.resources_affected,
            "services_affected": list(self.services_affected),
            "requires_approval": self.requires_approval,
            "reversible": self.reversible,
        }


@dataclass
class ExecutionPlan:
    """An ephemeral, expiring sequence of steps built from one validated action.

    Steps are mutated in place by the execution engine (status and result).
    """

    plan_id: str
    dsl_hash: str
    dsl_version: str
    action: str
    regions: list[str]
    steps: list[ExecutionStep]
    summary: PlanSummary
    created_at: datetime
    expires_at: datetime
    visualization: str | None = None
    rollback_plan: ExecutionPlan | None = None

    @property
    def primary_service(self) -> str:
        return self.steps[0].service if self.steps else "unknown"

    @property
    def primary_action(self) -> str:
        return self.steps[0].action if self.steps else "unknown"

    @property
    def total_api_calls(self) -> int:
        return sum(len(step.api_calls) for step in self.steps)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "dsl_hash": self.dsl_hash,
            "dsl_version": self.dsl_version,
            "action": self.action,
            "regions": list(self.regions),
            "steps": [step.to_dict() for step in self.steps],
            "summary": self.summary.to_dict(),
            "visualization": self.visualization,
            "rollback_plan": self.rollback_plan.to_dict() if self.rollback_plan else None,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
