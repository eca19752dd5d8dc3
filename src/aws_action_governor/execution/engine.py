"""Execution engine.

Plan lifecycle: pending approval, running, then completed, partial, failed or
rolled_back. Admission (approval token, plan freshness, kill switch, execution
mode) happens before any resource mutation. Steps run strictly in order; a
failed step after the first triggers the plan's rollback plan, and a
cancellation flag is honoured between steps.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
from datetime import datetime

from aws_action_governor.config import ExecutionSettings
from aws_action_governor.connections.store import InMemoryConnectionStore
from aws_action_governor.cost.guard import CostAnomalyGuard
from aws_action_governor.credentials.models import TemporaryCredentials
from aws_action_governor.credentials.sts_issuer import STSCredentialIssuer
from aws_action_governor.domain.connection import Connection
from aws_action_governor.domain.models import (
    ExecutionPlan,
    ExecutionStep,
    StepResult,
    risk_level_for_score,
)
from aws_action_governor.errors import (
    ApprovalRejectedError,
    ExecutionCancelledError,
    ExecutionInProgressError,
    KillSwitchBlockedError,
    PlanExpiredError,
    SimulationModeError,
    StepExecutionError,
)
from aws_action_governor.execution.approvals import (
    ApprovalDecision,
    ApprovalToken,
    ApprovalTokenStore,
)
from aws_action_governor.execution.aws_client import Boto3ActionInvoker
from aws_action_governor.execution.models import (
    ActiveExecution,
    CancelResult,
    ExecutionContext,
    ExecutionProgress,
    ExecutionResult,
    ProgressCallback,
    ProgressStatus,
)
from aws_action_governor.killswitch.models import KillSwitchRequest
from aws_action_governor.killswitch.registry import KillSwitchRegistry
from aws_action_governor.planning.generator import PlanGenerator
from aws_action_governor.policy.engine import ActionRequest, PermissionBoundary
from aws_action_governor.utils.time import elapsed_ms, utc_now

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        settings: ExecutionSettings,
        generator: PlanGenerator,
        kill_switch: KillSwitchRegistry,
        cost_guard: CostAnomalyGuard,
        boundary: PermissionBoundary,
        credentials: STSCredentialIssuer,
        invoker: Boto3ActionInvoker,
        connections: InMemoryConnectionStore,
        approvals: ApprovalTokenStore | None = None,
    ) -> None:
        self._settings = settings
        self._generator = generator
        self._kill_switch = kill_switch
        self._cost_guard = cost_guard
        self._boundary = boundary
        self._credentials = credentials
        self._invoker = invoker
        self._connections = connections
        self._approvals = approvals or ApprovalTokenStore(settings.approval_ttl_seconds)
        self._active: dict[str, ActiveExecution] = {}
        self._active_lock = threading.Lock()

    # Approvals

    def issue_approval(self, plan_id: str, user_id: str, connection_id: str) -> ApprovalToken:
        return self._approvals.issue(plan_id, user_id, connection_id)

    def validate_approval(self, token: str, plan_id: str, user_id: str) -> ApprovalDecision:
        """Validate a token and consume it on success."""
        return self._approvals.validate_and_consume(token, plan_id, user_id)

    def sweep_approvals(self) -> int:
        return self._approvals.sweep()

    # Execution

    async def execute(
        self,
        plan: ExecutionPlan,
        context: ExecutionContext,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        started_at = utc_now()

        # Consumed before the first await so a concurrent replay sees "already used".
        decision = self.validate_approval(context.approval_token, plan.plan_id, context.user_id)
        if not decision.valid:
            logger.warning(
                "Approval rejected for plan %s (user=%s): %s",
                plan.plan_id,
                context.user_id,
                decision.reason,
            )
            raise ApprovalRejectedError(
                f"Approval validation failed: {decision.reason}",
                decision.code or "approval_invalid",
            )

        validation = self._generator.validate(plan)
        if not validation.valid:
            logger.warning("Plan %s rejected: %s", plan.plan_id, validation.reason)
            raise PlanExpiredError(f"Plan validation failed: {validation.reason}")

        connection = await self._connections.get(context.connection_id)

        kill_decision = self._kill_switch.check(
            KillSwitchRequest(
                customer_id=context.customer_id,
                service=plan.primary_service,
                connection_id=context.connection_id,
                action=plan.primary_action,
                risk_level=risk_level_for_score(plan.summary.risk_score),
                is_write=True,
            )
        )
        if not kill_decision.allowed:
            logger.warning("Plan %s blocked: %s", plan.plan_id, kill_decision.reason)
            raise KillSwitchBlockedError(
                f"Kill switch active: {kill_decision.reason}", kill_decision.scope
            )

        if connection.execution_mode == "simulation" and not connection.can_execute_live():
            logger.warning(
                "Plan %s blocked: connection %s is in simulation mode",
                plan.plan_id,
                connection.connection_id,
            )
            raise SimulationModeError()

        self._register(plan.plan_id, context, started_at)
        try:
            assumed = await self._credentials.assume_role(connection, plan.plan_id)
            logger.info(
                "Execution started: plan=%s steps=%d user=%s",
                plan.plan_id,
                len(plan.steps),
                context.user_id,
            )
            result = await self._run_plan(
                plan, context, connection, assumed.credentials, started_at, on_progress
            )
        finally:
            with self._active_lock:
                self._active.pop(plan.plan_id, None)
            await self._credentials.release(plan.plan_id)
            await self._connections.record_usage(connection.connection_id, plan.total_api_calls)

        logger.info(
            "Execution finished: plan=%s status=%s completed=%d/%d duration=%dms",
            plan.plan_id,
            result.status,
            result.steps_completed,
            len(plan.steps),
            result.duration_ms,
        )
        return result

    async def _run_plan(
        self,
        plan: ExecutionPlan,
        context: ExecutionContext,
        connection: Connection,
        credentials: TemporaryCredentials,
        started_at: datetime,
        on_progress: ProgressCallback | None,
    ) -> ExecutionResult:
        # Step state from an earlier run of the same plan must not leak into this one.
        for step in plan.steps:
            step.status = "pending"
            step.result = None

        total = len(plan.steps)
        completed = 0
        error: str | None = None

        for i, step in enumerate(plan.steps):
            if self._is_cancelled(plan.plan_id):
                logger.info(
                    "Execution cancelled: plan=%s before step %s", plan.plan_id, step.step_id
                )
                raise ExecutionCancelledError(plan.plan_id)

            self._emit(
                on_progress,
                plan.plan_id,
                i + 1,
                total,
                step,
                "running",
                round(i / total * 100),
                f"Executing: {step.description}",
            )
            step.status = "running"
            step.result = await self._execute_step(step, connection, credentials)

            if not step.result.success:
                step.status = "failed"
                error = step.result.error
                self._emit(
                    on_progress,
                    plan.plan_id,
                    i + 1,
                    total,
                    step,
                    "failed",
                    round(i / total * 100),
                    f"Failed: {step.description}",
                )
                if plan.rollback_plan is not None and i > 0:
                    logger.warning(
                        "Step %s of plan %s failed, initiating rollback: %s",
                        step.step_id,
                        plan.plan_id,
                        error,
                    )
                    return await self._rollback(
                        plan,
                        copy.deepcopy(plan.rollback_plan),
                        step,
                        context,
                        connection,
                        credentials,
                        started_at,
                        on_progress,
                    )
                break

            step.status = "completed"
            completed += 1
            if not step.is_check:
                self._cost_guard.record_cost_metrics(
                    context.customer_id, step.impact.cost_change, step.action
                )
            self._emit(
                on_progress,
                plan.plan_id,
                i + 1,
                total,
                step,
                "completed",
                round((i + 1) / total * 100),
                f"Completed: {step.description}",
            )

        if completed == total:
            status = "completed"
        elif completed == 0:
            status = "failed"
        else:
            status = "partial"
        completed_at = utc_now()
        return ExecutionResult(
            plan_id=plan.plan_id,
            status=status,
            steps=plan.steps,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=elapsed_ms(started_at, completed_at),
            error=error,
        )

    async def _execute_step(
        self,
        step: ExecutionStep,
        connection: Connection,
        credentials: TemporaryCredentials,
    ) -> StepResult:
        started_at = utc_now()
        request_ids: list[str] = []

        if step.is_check:
            await asyncio.sleep(self._settings.check_latency_seconds)
            finished = utc_now()
            return StepResult(
                success=True,
                started_at=started_at,
                completed_at=finished,
                duration_ms=elapsed_ms(started_at, finished),
                output={"checked": True},
            )

        try:
            for api_call in step.api_calls:
                decision = await self._boundary.validate_action(
                    ActionRequest(
                        service=api_call.service,
                        operation=api_call.operation,
                        resources=list(step.resources),
                        region=api_call.region,
                    ),
                    connection,
                )
                if not decision.allowed:
                    raise StepExecutionError(
                        f"Permission denied: {decision.reason}", code="permission_denied"
                    )
                invocation = await self._invoker.invoke(api_call, step.resources, credentials)
                request_ids.extend(invocation.request_ids)
        except StepExecutionError as exc:
            error: str | None = exc.message
        except Exception as exc:
            logger.exception("Unexpected error in step %s", step.step_id)
            error = f"{type(exc).__name__}: {exc}"
        else:
            error = None

        finished = utc_now()
        if error is not None:
            return StepResult(
                success=False,
                started_at=started_at,
                completed_at=finished,
                duration_ms=elapsed_ms(started_at, finished),
                request_ids=request_ids,
                error=error,
            )
        return StepResult(
            success=True,
            started_at=started_at,
            completed_at=finished,
            duration_ms=elapsed_ms(started_at, finished),
            request_ids=request_ids,
            output={"resources_affected": len(step.resources)},
        )

    async def _rollback(
        self,
        plan: ExecutionPlan,
        rollback_plan: ExecutionPlan,
        failed_step: ExecutionStep,
        context: ExecutionContext,
        connection: Connection,
        credentials: TemporaryCredentials,
        started_at: datetime,
        on_progress: ProgressCallback | None,
    ) -> ExecutionResult:
        # Target only resources this run touched. rollback_plan is a per-run copy
        # and is narrowed in place.
        touched: set[str] = set(failed_step.resources)
        for step in plan.steps:
            if step.status == "completed" and not step.is_check:
                touched.update(step.resources)

        logger.info("Executing rollback plan %s for %s", rollback_plan.plan_id, plan.plan_id)
        total = len(rollback_plan.steps)
        errors: list[str] = []
        for i, step in enumerate(rollback_plan.steps):
            if not step.is_check:
                narrowed = [r for r in step.resources if r in touched]
                if step.impact.resource_count:
                    per_resource = step.impact.cost_change / step.impact.resource_count
                    step.impact.cost_change = per_resource * len(narrowed)
                step.impact.resource_count = len(narrowed)
                step.resources = narrowed
                if not step.resources and touched:
                    step.status = "skipped"
                    continue

            self._emit(
                on_progress,
                rollback_plan.plan_id,
                i + 1,
                total,
                step,
                "rolling_back",
                round(i / total * 100),
                f"Rolling back: {step.description}",
            )
            step.result = await self._execute_step(step, connection, credentials)
            if step.result.success:
                step.status = "rolled_back"
                if not step.is_check:
                    self._cost_guard.record_cost_metrics(
                        context.customer_id, step.impact.cost_change, step.action
                    )
            else:
                step.status = "failed"
                errors.append(f"{step.step_id}: {step.result.error}")

        succeeded = not errors
        if succeeded:
            for step in plan.steps:
                if step.status == "completed" and not step.is_check:
                    step.status = "rolled_back"
        else:
            logger.error(
                "Rollback %s for plan %s failed: %s",
                rollback_plan.plan_id,
                plan.plan_id,
                "; ".join(errors),
            )

        completed_at = utc_now()
        return ExecutionResult(
            plan_id=plan.plan_id,
            status="rolled_back",
            steps=plan.steps,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=elapsed_ms(started_at, completed_at),
            error=failed_step.result.error if failed_step.result else None,
            rollback_executed=True,
            rollback_succeeded=succeeded,
            rollback_steps=rollback_plan.steps,
            rollback_errors=errors,
        )

    # Cancellation and visibility

    def cancel(self, plan_id: str, user_id: str) -> CancelResult:
        with self._active_lock:
            active = self._active.get(plan_id)
            if active is None:
                return CancelResult(False, "No active execution found for this plan")
            if active.context.user_id != user_id:
                return CancelResult(False, "Not authorized to cancel this execution")
            active.cancelled = True
        logger.info("Execution cancel requested: plan=%s user=%s", plan_id, user_id)
        return CancelResult(True)

    def get_active_executions(self, user_id: str | None = None) -> list[ActiveExecution]:
        with self._active_lock:
            entries = list(self._active.values())
        if user_id is None:
            return entries
        return [e for e in entries if e.context.user_id == user_id]

    def _register(self, plan_id: str, context: ExecutionContext, started_at: datetime) -> None:
        with self._active_lock:
            if plan_id in self._active:
                raise ExecutionInProgressError(plan_id)
            self._active[plan_id] = ActiveExecution(plan_id, context, started_at)

    def _is_cancelled(self, plan_id: str) -> bool:
        with self._active_lock:
            active = self._active.get(plan_id)
            return bool(active and active.cancelled)

    @staticmethod
    def _emit(
        callback: ProgressCallback | None,
        plan_id: str,
        current: int,
        total: int,
        step: ExecutionStep,
        status: ProgressStatus,
        progress: int,
        message: str,
    ) -> None:
        if callback is None:
            return
        try:
            callback(
                ExecutionProgress(
                    plan_id=plan_id,
                    current_step=current,
                    total_steps=total,
                    step_id=step.step_id,
                    step_status=status,
                    progress=progress,
                    message=message,
                )
            )
        except Exception:
            logger.exception("Progress callback failed for plan %s", plan_id)
