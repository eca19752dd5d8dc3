"""Governance facade.

The one surface callers use: plan issuance, approval, execution with progress
events, cancellation, and the administrative operations of the kill switch
registry and the cost anomaly guard.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from aws_action_governor.catalog.descriptor import (
    ActionDescriptor,
    ActionDescriptorParser,
    ValidatedAction,
    verify_hash,
)
from aws_action_governor.connections.store import InMemoryConnectionStore
from aws_action_governor.cost.guard import CostAnomalyGuard
from aws_action_governor.cost.models import CostAlert, CostMetrics, CostThresholds, PlanForCost
from aws_action_governor.domain.models import ExecutionPlan
from aws_action_governor.errors import (
    CostGuardRejectedError,
    PlanExpiredError,
    PlanIntegrityError,
    UnknownPlanError,
)
from aws_action_governor.execution.approvals import ApprovalToken
from aws_action_governor.execution.engine import ExecutionEngine
from aws_action_governor.execution.models import (
    ActiveExecution,
    CancelResult,
    ExecutionContext,
    ExecutionResult,
    ProgressCallback,
)
from aws_action_governor.killswitch.models import (
    EmergencyStopMethod,
    KillSwitchAuditEvent,
    KillSwitchEntry,
)
from aws_action_governor.killswitch.registry import KillSwitchRegistry
from aws_action_governor.planning.generator import PlanGenerator
from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class PlanRecord:
    plan: ExecutionPlan
    validated: ValidatedAction
    connection_id: str
    customer_id: str
    proposed_by: str
    last_result: ExecutionResult | None = None


class GovernanceService:
    def __init__(
        self,
        parser: ActionDescriptorParser,
        generator: PlanGenerator,
        engine: ExecutionEngine,
        kill_switch: KillSwitchRegistry,
        cost_guard: CostAnomalyGuard,
        connections: InMemoryConnectionStore,
    ) -> None:
        self._parser = parser
        self._generator = generator
        self._engine = engine
        self._kill_switch = kill_switch
        self._cost_guard = cost_guard
        self._connections = connections
        self._plans: dict[str, PlanRecord] = {}
        self._lock = threading.Lock()

    # Plans

    async def propose_plan(
        self,
        user_id: str,
        connection_id: str,
        descriptor: ActionDescriptor,
        resources: list[str] | None = None,
    ) -> ExecutionPlan:
        connection = await self._connections.get(connection_id)
        validated = self._parser.parse(descriptor, default_regions=connection.allowed_regions)
        plan = await self._generator.generate(validated, connection, resources)
        with self._lock:
            self._plans[plan.plan_id] = PlanRecord(
                plan=plan,
                validated=validated,
                connection_id=connection_id,
                customer_id=connection.customer_id,
                proposed_by=user_id,
            )
        return plan

    def get_plan(self, plan_id: str) -> ExecutionPlan:
        return self._record(plan_id).plan

    def get_last_result(self, plan_id: str) -> ExecutionResult | None:
        return self._record(plan_id).last_result

    def approve_plan(self, plan_id: str, user_id: str) -> ApprovalToken:
        record = self._record(plan_id)
        if not self._generator.validate(record.plan).valid:
            raise PlanExpiredError()
        return self._engine.issue_approval(plan_id, user_id, record.connection_id)

    async def execute_plan(
        self,
        plan_id: str,
        user_id: str,
        approval_token: str,
        current_monthly_cost: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        record = self._record(plan_id)
        plan = record.plan

        if plan.dsl_hash != record.validated.hash or not verify_hash(
            record.validated.definition, plan.dsl_hash
        ):
            logger.warning("Plan %s failed integrity check", plan_id)
            raise PlanIntegrityError("Plan does not match its validated action")

        validation = self._cost_guard.validate(
            PlanForCost(
                plan_id=plan.plan_id,
                estimated_cost_impact=plan.summary.estimated_cost_impact,
                resource_count=plan.summary.resources_affected,
                service=plan.primary_service,
                action=plan.action,
                regions=list(plan.regions),
            ),
            record.customer_id,
            current_monthly_cost,
        )
        if not validation.allowed:
            raise CostGuardRejectedError(
                validation.reason or "Cost guard rejected the plan",
                alert_type=validation.alert_type or "cost_increase",
                risk_level=validation.risk_level,
                recommendation=validation.recommendation,
            )

        context = ExecutionContext(
            user_id=user_id,
            customer_id=record.customer_id,
            connection_id=record.connection_id,
            approval_token=approval_token,
        )
        result = await self._engine.execute(plan, context, on_progress)

        with self._lock:
            record.last_result = result
        logger.info(
            "Execution audit: plan=%s action=%s customer=%s user=%s status=%s "
            "rollback=%s api_calls=%d",
            plan.plan_id,
            plan.action,
            record.customer_id,
            user_id,
            result.status,
            result.rollback_executed,
            plan.total_api_calls,
        )
        return result

    def cancel_execution(self, plan_id: str, user_id: str) -> CancelResult:
        return self._engine.cancel(plan_id, user_id)

    def active_executions(self, user_id: str | None = None) -> list[ActiveExecution]:
        return self._engine.get_active_executions(user_id)

    def sweep(self, now: datetime | None = None) -> int:
        """Drop expired approval tokens and expired, idle plan records."""
        now = now or utc_now()
        removed = self._engine.sweep_approvals()
        active = {e.plan_id for e in self._engine.get_active_executions()}
        with self._lock:
            stale = [
                plan_id
                for plan_id, record in self._plans.items()
                if record.plan.is_expired(now) and plan_id not in active
            ]
            for plan_id in stale:
                del self._plans[plan_id]
        return removed + len(stale)

    # Kill switch administration

    def activate_kill_switch(
        self,
        scope: str,
        reason: str,
        activated_by: str,
        scope_id: str | None = None,
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> KillSwitchEntry:
        return self._kill_switch.activate(
            scope, reason, activated_by, scope_id=scope_id, expires_at=expires_at, notes=notes
        )

    def deactivate_kill_switch(
        self, scope: str, deactivated_by: str, scope_id: str | None = None
    ) -> bool:
        return self._kill_switch.deactivate(scope, deactivated_by, scope_id=scope_id)

    def enable_read_only(self, activated_by: str, reason: str) -> KillSwitchEntry:
        return self._kill_switch.enable_read_only(activated_by, reason)

    def disable_read_only(self, deactivated_by: str) -> bool:
        return self._kill_switch.disable_read_only(deactivated_by)

    def kill_switch_state(self) -> dict[str, Any]:
        return self._kill_switch.get_state()

    def kill_switch_audit_log(self, limit: int = 100) -> list[KillSwitchAuditEvent]:
        return self._kill_switch.get_audit_log(limit)

    def emergency_stop_methods(self) -> tuple[EmergencyStopMethod, ...]:
        return self._kill_switch.emergency_stop_methods()

    # Cost guard administration

    def get_cost_thresholds(self, customer_id: str) -> CostThresholds:
        return self._cost_guard.get_thresholds(customer_id)

    def set_cost_thresholds(self, customer_id: str, **overrides: Any) -> CostThresholds:
        return self._cost_guard.set_customer_thresholds(customer_id, **overrides)

    def cost_metrics(self, customer_id: str | None = None) -> CostMetrics | None:
        if customer_id:
            return self._cost_guard.get_customer_metrics(customer_id)
        return self._cost_guard.get_global_metrics()

    def cost_alerts(self, customer_id: str | None = None, limit: int = 100) -> list[CostAlert]:
        return self._cost_guard.get_alert_history(customer_id, limit)

    def _record(self, plan_id: str) -> PlanRecord:
        with self._lock:
            record = self._plans.get(plan_id)
        if record is None:
            raise UnknownPlanError(plan_id)
        return record
