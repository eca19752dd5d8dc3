"""Plan generator.

Converts a validated action into an ordered, resource-batched execution plan:
pre-check steps, one action step per batch of resources (each depending on the
previous one), then post-check steps. Reversible actions with a known inverse
also get a rollback plan built the same way without an approval requirement.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from aws_action_governor.catalog.descriptor import (
    ActionDescriptor,
    ActionDescriptorParser,
    ValidatedAction,
)
from aws_action_governor.catalog.models import ActionCatalog
from aws_action_governor.config import ExecutionSettings
from aws_action_governor.domain.connection import Connection
from aws_action_governor.domain.models import (
    POSTCHECK_PREFIX,
    PRECHECK_PREFIX,
    RISK_SCORES,
    ApiCall,
    ExecutionPlan,
    ExecutionStep,
    PlanSummary,
    StepImpact,
)
from aws_action_governor.errors import PermissionDeniedError, PlanGenerationError
from aws_action_governor.planning.visualization import render_mermaid
from aws_action_governor.policy.engine import ActionRequest, PermissionBoundary
from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class PlanValidation:
    valid: bool
    reason: str | None = None


def batch_resources(resources: list[str], batch_size: int) -> list[list[str]]:
    if not resources:
        return [[]]
    return [resources[i : i + batch_size] for i in range(0, len(resources), batch_size)]


def _new_plan_id(prefix: str, now: datetime) -> str:
    return f"{prefix}-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


class PlanGenerator:
    def __init__(
        self,
        catalog: ActionCatalog,
        parser: ActionDescriptorParser,
        boundary: PermissionBoundary,
        settings: ExecutionSettings,
    ) -> None:
        self._catalog = catalog
        self._parser = parser
        self._boundary = boundary
        self._settings = settings

    async def generate(
        self,
        validated: ValidatedAction,
        connection: Connection,
        resources: list[str] | None = None,
    ) -> ExecutionPlan:
        definition = validated.definition
        if validated.blocked:
            raise PlanGenerationError(
                f"Cannot generate plan: {validated.block_reason or 'action is blocked'}",
                "action_blocked",
            )
        if not validated.validation.valid:
            messages = ", ".join(issue.message for issue in validated.validation.errors)
            raise PlanGenerationError(f"Invalid action: {messages}", "invalid_descriptor")
        if not definition.operation or not definition.api_service:
            raise PlanGenerationError(
                f"No operation mapped for action {definition.action}", "no_operation"
            )

        targets = list(resources or [])
        if len(targets) > definition.max_resources:
            raise PlanGenerationError(
                f"Plan targets {len(targets)} resources (limit {definition.max_resources})",
                "resource_limit",
            )

        regions = list(definition.regions or connection.allowed_regions)
        decision = await self._boundary.validate_action(
            ActionRequest(
                service=definition.api_service,
                operation=definition.operation,
                resources=targets,
                region=regions[0] if regions else None,
            ),
            connection,
        )
        if not decision.allowed:
            raise PermissionDeniedError(f"Permission denied: {decision.reason}")

        now = utc_now()
        plan = self._build_plan(validated, regions, targets, now, prefix="plan")
        if definition.reversible:
            plan.rollback_plan = self.generate_rollback(validated, regions, targets, now)

        logger.info(
            "Execution plan generated: plan=%s action=%s steps=%d duration=%ds risk=%d",
            plan.plan_id,
            definition.action,
            len(plan.steps),
            plan.summary.estimated_duration,
            plan.summary.risk_score,
        )
        return plan

    def generate_rollback(
        self,
        validated: ValidatedAction,
        regions: list[str],
        resources: list[str],
        now: datetime | None = None,
    ) -> ExecutionPlan | None:
        definition = validated.definition
        inverse = self._catalog.inverse_of(definition.action)
        if inverse is None:
            return None

        rollback = self._parser.parse(
            ActionDescriptor(
                action=inverse,
                version=definition.version,
                regions=regions,
                max_resources=definition.max_resources,
                require_approval=False,
            )
        )
        if not rollback.validation.valid:
            logger.warning(
                "Rollback action %s for %s failed validation; no rollback plan",
                inverse,
                definition.action,
            )
            return None
        return self._build_plan(rollback, regions, resources, now or utc_now(), prefix="rollback")

    def validate(self, plan: ExecutionPlan, now: datetime | None = None) -> PlanValidation:
        if plan.is_expired(now or utc_now()):
            return PlanValidation(False, "Plan has expired")
        return PlanValidation(True)

    def _build_plan(
        self,
        validated: ValidatedAction,
        regions: list[str],
        resources: list[str],
        now: datetime,
        prefix: str,
    ) -> ExecutionPlan:
        steps = self._build_steps(validated, regions, resources)
        return ExecutionPlan(
            plan_id=_new_plan_id(prefix, now),
            dsl_hash=validated.hash,
            dsl_version=validated.dsl_version,
            action=validated.definition.action,
            regions=list(regions),
            steps=steps,
            summary=self._summarize(steps, validated.definition.require_approval),
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.plan_ttl_seconds),
            visualization=render_mermaid(steps),
        )

    def _build_steps(
        self,
        validated: ValidatedAction,
        regions: list[str],
        resources: list[str],
    ) -> list[ExecutionStep]:
        definition = validated.definition
        spec = self._catalog.get(definition.action)
        monthly_delta = spec.monthly_cost_delta if spec else 0.0
        duration = spec.duration_seconds if spec else 60
        downtime = spec.downtime if spec else False
        steps: list[ExecutionStep] = []

        for i, check in enumerate(definition.pre_checks):
            steps.append(
                self._check_step(
                    f"step-precheck-{i}",
                    len(steps),
                    definition.service,
                    f"{PRECHECK_PREFIX}{check}",
                    self._catalog.pre_check_description(check),
                    depends_on=[steps[-1].step_id] if steps else None,
                )
            )

        batches = batch_resources(resources, self._settings.batch_size)
        action_steps: list[ExecutionStep] = []
        for i, batch in enumerate(batches):
            step = ExecutionStep(
                step_id=f"step-action-{i}",
                order=len(steps),
                service=definition.service,
                action=definition.action,
                description=f"{definition.name} (batch {i + 1}/{len(batches)})",
                resources=list(batch),
                impact=StepImpact(
                    resource_count=len(batch),
                    cost_change=monthly_delta * len(batch),
                    reversible=definition.reversible,
                    downtime=downtime,
                    data_loss=False,
                    risk_level=definition.risk,  # type: ignore[arg-type]
                ),
                api_calls=[
                    ApiCall(
                        service=definition.api_service or definition.service,
                        operation=definition.operation or "",
                        parameters=dict(definition.parameters),
                        expected_duration=duration,
                        region=regions[0] if regions else None,
                    )
                ],
                depends_on=[steps[-1].step_id] if steps else None,
            )
            steps.append(step)
            action_steps.append(step)

        last_action = action_steps[-1].step_id
        for i, check in enumerate(definition.post_checks):
            steps.append(
                self._check_step(
                    f"step-postcheck-{i}",
                    len(steps),
                    definition.service,
                    f"{POSTCHECK_PREFIX}{check}",
                    self._catalog.post_check_description(check),
                    depends_on=[last_action],
                )
            )
        return steps

    @staticmethod
    def _check_step(
        step_id: str,
        order: int,
        service: str,
        action: str,
        description: str,
        depends_on: list[str] | None,
    ) -> ExecutionStep:
        return ExecutionStep(
            step_id=step_id,
            order=order,
            service=service,
            action=action,
            description=description,
            resources=[],
            impact=StepImpact(
                resource_count=0,
                cost_change=0.0,
                reversible=True,
                downtime=False,
                data_loss=False,
                risk_level="low",
            ),
            api_calls=[],
            depends_on=depends_on,
        )

    def _summarize(self, steps: list[ExecutionStep], requires_approval: bool) -> PlanSummary:
        check_duration = self._catalog.check_duration_seconds
        services: list[str] = []
        for step in steps:
            if step.service not in services:
                services.append(step.service)
        return PlanSummary(
            total_steps=len(steps),
            estimated_duration=sum(
                check_duration if step.is_check else sum(c.expected_duration for c in step.api_calls)
                for step in steps
            ),
            estimated_cost_impact=sum(step.impact.cost_change for step in steps),
            risk_score=max((RISK_SCORES[step.impact.risk_level] for step in steps), default=0),
            resources_affected=sum(step.impact.resource_count for step in steps),
            services_affected=services,
            requires_approval=requires_approval,
            reversible=all(step.impact.reversible for step in steps),
        )
