"""Customer cloud-account binding consumed by the planner and the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from aws_action_governor.utils.time import utc_now

ExecutionMode = Literal["simulation", "live"]


@dataclass
class Connection:
    """A customer's AWS account binding.

    Owned by the connection-management subsystem; the governor only reads it
    and increments the usage counters after every execution attempt.
    """

    connection_id: str
    customer_id: str
    role_arn: str
    external_id: str
    allowed_regions: list[str] = field(default_factory=lambda: ["us-east-1"])
    execution_mode: ExecutionMode = "simulation"
    simulation_started_at: datetime | None = None
    simulation_period_days: int = 7
    last_used: datetime | None = None
    total_executions: int = 0
    total_api_calls: int = 0

    @property
    def default_region(self) -> str | None:
        return self.allowed_regions[0] if self.allowed_regions else None

    def can_execute_live(self, now: datetime | None = None) -> bool:
        if self.execution_mode == "live":
            return True
        if self.simulation_started_at is None:
            return False
        now = now or utc_now()
        return now >= self.simulation_started_at + timedelta(days=self.simulation_period_days)

    def record_usage(self, api_calls: int, now: datetime | None = None) -> None:
        self.last_used = now or utc_now()
        self.total_executions += 1
        self.total_api_calls += api_calls

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "customer_id": self.customer_id,
            "role_arn": self.role_arn,
            "allowed_regions": list(self.allowed_regions),
            "execution_mode": self.execution_mode,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "total_executions": self.total_executions,
            "total_api_calls": self.total_api_calls,
        }
