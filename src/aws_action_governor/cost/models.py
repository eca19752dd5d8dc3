"""Cost guard value types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from aws_action_governor.utils.time import utc_now

AlertType = Literal["cost_increase", "rate_limit", "unexpected_region", "self_monitoring"]
AlertSeverity = Literal["warning", "critical"]
Confidence = Literal["high", "medium", "low"]


@dataclass
class CostThresholds:
    cost_increase_percent: float = 20.0
    cost_increase_absolute: float = 1000.0
    api_calls_per_minute: int = 100
    unexpected_regions: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "cost_increase_percent": self.cost_increase_percent,
            "cost_increase_absolute": self.cost_increase_absolute,
            "api_calls_per_minute": self.api_calls_per_minute,
            "unexpected_regions": self.unexpected_regions,
        }


@dataclass
class PlanForCost:
    """The slice of an execution plan the guard evaluates."""

    plan_id: str
    estimated_cost_impact: float
    resource_count: int
    service: str
    action: str
    regions: list[str]


@dataclass
class CostPrediction:
    percent_increase: float
    absolute_increase: float
    monthly_cost_before: float
    monthly_cost_after: float
    confidence: Confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "percent_increase": self.percent_increase,
            "absolute_increase": self.absolute_increase,
            "monthly_cost_before": self.monthly_cost_before,
            "monthly_cost_after": self.monthly_cost_after,
            "confidence": self.confidence,
        }


@dataclass
class CostValidation:
    allowed: bool
    risk_level: str
    reason: str | None = None
    recommendation: str | None = None
    alert_type: str | None = None
    prediction: CostPrediction | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "risk_level": self.risk_level,
            "reason": self.reason,
            "recommendation": self.recommendation,
            "alert_type": self.alert_type,
            "prediction": self.prediction.to_dict() if self.prediction else None,
        }


@dataclass
class CostMetrics:
    total_cost_increase: float = 0.0
    total_cost_decrease: float = 0.0
    net_cost_change: float = 0.0
    actions_executed: int = 0
    last_updated: datetime = field(default_factory=utc_now)

    def record(self, cost_change: float, now: datetime) -> None:
        if cost_change > 0:
            self.total_cost_increase += cost_change
        else:
            self.total_cost_decrease += abs(cost_change)
        self.net_cost_change += cost_change
        self.actions_executed += 1
        self.last_updated = now

    def copy(self) -> "CostMetrics":
        return CostMetrics(
            self.total_cost_increase,
            self.total_cost_decrease,
            self.net_cost_change,
            self.actions_executed,
            self.last_updated,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cost_increase": self.total_cost_increase,
            "total_cost_decrease": self.total_cost_decrease,
            "net_cost_change": self.net_cost_change,
            "actions_executed": self.actions_executed,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass
class CostAlert:
    timestamp: datetime
    customer_id: str
    type: AlertType
    message: str
    severity: AlertSeverity

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "customer_id": self.customer_id,
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
        }
