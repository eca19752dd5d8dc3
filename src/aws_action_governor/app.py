"""Application context assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from aws_action_governor.catalog.descriptor import ActionDescriptorParser
from aws_action_governor.catalog.loader import load_catalog
from aws_action_governor.catalog.models import ActionCatalog
from aws_action_governor.config import Settings, load_settings
from aws_action_governor.connections.store import InMemoryConnectionStore
from aws_action_governor.cost.guard import CostAnomalyGuard
from aws_action_governor.credentials.sts_issuer import STSCredentialIssuer
from aws_action_governor.execution.approvals import ApprovalTokenStore
from aws_action_governor.execution.aws_client import Boto3ActionInvoker
from aws_action_governor.execution.engine import ExecutionEngine
from aws_action_governor.killswitch.registry import KillSwitchRegistry
from aws_action_governor.periodic import PeriodicTask
from aws_action_governor.planning.generator import PlanGenerator
from aws_action_governor.policy.engine import PermissionBoundary
from aws_action_governor.policy.loader import load_policy
from aws_action_governor.service import GovernanceService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application-wide dependency container.

    Every component is constructed once here and passed explicitly to the
    components that depend on it. The periodic tasks only run between
    ``start_background_tasks`` and ``stop_background_tasks``.
    """

    settings: Settings
    catalog: ActionCatalog
    parser: ActionDescriptorParser
    boundary: PermissionBoundary
    kill_switch: KillSwitchRegistry
    cost_guard: CostAnomalyGuard
    generator: PlanGenerator
    credentials: STSCredentialIssuer
    invoker: Boto3ActionInvoker
    connections: InMemoryConnectionStore
    engine: ExecutionEngine
    service: GovernanceService
    periodic_tasks: list[PeriodicTask] = field(default_factory=list)

    def start_background_tasks(self) -> None:
        for task in self.periodic_tasks:
            task.start()

    async def stop_background_tasks(self) -> None:
        for task in self.periodic_tasks:
            await task.stop()


def build_app_context(
    settings: Settings | None = None,
    *,
    connections: InMemoryConnectionStore | None = None,
    credentials: STSCredentialIssuer | None = None,
    invoker: Boto3ActionInvoker | None = None,
) -> AppContext:
    """Wire the governor's components from settings.

    ``connections``, ``credentials`` and ``invoker`` can be supplied to swap
    the in-memory store, the STS issuer or the boto3 invoker.
    """
    settings = settings or load_settings()

    catalog = load_catalog(settings.catalog.path)
    parser = ActionDescriptorParser(catalog)
    boundary = PermissionBoundary(load_policy(settings.policy.path))
    kill_switch = KillSwitchRegistry(audit_log_size=settings.kill_switch.audit_log_size)
    cost_guard = CostAnomalyGuard(settings.cost_guard, kill_switch)
    generator = PlanGenerator(catalog, parser, boundary, settings.execution)
    connections = connections or InMemoryConnectionStore()
    credentials = credentials or STSCredentialIssuer(settings.aws)
    invoker = invoker or Boto3ActionInvoker(settings)
    engine = ExecutionEngine(
        settings=settings.execution,
        generator=generator,
        kill_switch=kill_switch,
        cost_guard=cost_guard,
        boundary=boundary,
        credentials=credentials,
        invoker=invoker,
        connections=connections,
        approvals=ApprovalTokenStore(settings.execution.approval_ttl_seconds),
    )
    service = GovernanceService(parser, generator, engine, kill_switch, cost_guard, connections)

    periodic_tasks = [
        PeriodicTask(
            "kill-switch-expiry-sweep",
            settings.kill_switch.sweep_interval_seconds,
            kill_switch.sweep_expired,
        ),
        PeriodicTask(
            "approval-token-sweep",
            settings.execution.approval_sweep_interval_seconds,
            service.sweep,
        ),
        PeriodicTask(
            "cost-rate-limit-reset",
            settings.cost_guard.rate_window_seconds,
            cost_guard.reset_rate_limits,
        ),
        PeriodicTask(
            "cost-self-monitor",
            settings.cost_guard.self_monitor_interval_seconds,
            cost_guard.self_monitor,
        ),
    ]

    logger.info(
        "Governor initialized: %d catalog actions, %d periodic tasks",
        len(catalog.actions),
        len(periodic_tasks),
    )
    return AppContext(
        settings=settings,
        catalog=catalog,
        parser=parser,
        boundary=boundary,
        kill_switch=kill_switch,
        cost_guard=cost_guard,
        generator=generator,
        credentials=credentials,
        invoker=invoker,
        connections=connections,
        engine=engine,
        service=service,
        periodic_tasks=periodic_tasks,
    )
