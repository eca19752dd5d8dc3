"""Starlette HTTP application exposing the governance facade."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from aws_action_governor import __version__
from aws_action_governor.app import AppContext, build_app_context
from aws_action_governor.catalog.descriptor import ActionDescriptor
from aws_action_governor.domain.connection import Connection, ExecutionMode
from aws_action_governor.errors import (
    AdmissionError,
    ApprovalRejectedError,
    ConnectionNotFoundError,
    CostGuardRejectedError,
    CredentialIssueError,
    ExecutionCancelledError,
    ExecutionInProgressError,
    GovernanceError,
    InfrastructureError,
    PlanExpiredError,
    PlanGenerationError,
    UnknownPlanError,
)
from aws_action_governor.execution.models import ExecutionProgress
from aws_action_governor.utils.masking import redact_sensitive_fields

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]

USER_HEADER = "x-user-id"
ROLE_HEADER = "x-user-role"
ADMIN_ROLE = "admin"


class ProposePlanBody(BaseModel):
    connection_id: str
    action: str
    version: str | None = None
    regions: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    resources: list[str] = Field(default_factory=list)
    max_resources: int | None = None
    require_approval: bool | None = None
    pre_checks: list[str] | None = None
    post_checks: list[str] | None = None

    def descriptor(self) -> ActionDescriptor:
        return ActionDescriptor(
            action=self.action,
            version=self.version,
            regions=self.regions,
            parameters=self.parameters,
            max_resources=self.max_resources,
            require_approval=self.require_approval,
            pre_checks=self.pre_checks,
            post_checks=self.post_checks,
        )


class ExecutePlanBody(BaseModel):
    approval_token: str
    current_monthly_cost: float | None = None


class KillSwitchActivateBody(BaseModel):
    scope: str
    reason: str
    scope_id: str | None = None
    expires_at: datetime | None = None
    notes: str | None = None


class KillSwitchDeactivateBody(BaseModel):
    scope: str
    scope_id: str | None = None


class ReadOnlyBody(BaseModel):
    reason: str


class ThresholdsBody(BaseModel):
    cost_increase_percent: float | None = Field(default=None, ge=0)
    cost_increase_absolute: float | None = Field(default=None, ge=0)
    api_calls_per_minute: int | None = Field(default=None, ge=1)
    unexpected_regions: bool | None = None


class ConnectionBody(BaseModel):
    connection_id: str
    customer_id: str
    role_arn: str
    external_id: str
    allowed_regions: list[str] = Field(default_factory=lambda: ["us-east-1"])
    execution_mode: ExecutionMode = "simulation"
    simulation_started_at: datetime | None = None
    simulation_period_days: int = Field(default=7, ge=0)


class HTTPError(Exception):
    def __init__(self, status_code: int, message: str, code: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


def status_for_error(exc: GovernanceError) -> int:
    if isinstance(exc, (ApprovalRejectedError, PlanExpiredError)):
        return 409
    if isinstance(exc, (ExecutionCancelledError, ExecutionInProgressError)):
        return 409
    if isinstance(exc, CostGuardRejectedError) and exc.alert_type == "rate_limit":
        return 429
    if isinstance(exc, AdmissionError):
        return 403
    if isinstance(exc, (UnknownPlanError, ConnectionNotFoundError)):
        return 404
    if isinstance(exc, PlanGenerationError):
        return 422
    if isinstance(exc, CredentialIssueError):
        return 502
    if isinstance(exc, InfrastructureError):
        return 503
    return 500


def _require_user(request: Request) -> str:
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        raise HTTPError(401, "Missing X-User-Id header", "unauthenticated")
    return user_id


def _require_admin(request: Request) -> str:
    user_id = _require_user(request)
    if request.headers.get(ROLE_HEADER, "").strip().lower() != ADMIN_ROLE:
        raise HTTPError(403, "Administrative role required", "forbidden")
    return user_id


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPError(400, "Request body must be valid JSON", "invalid_json") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        message = exc.errors()[0]["msg"] if exc.errors() else str(exc)
        raise HTTPError(400, f"Invalid request body: {message}", "invalid_body") from exc


def _query_int(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None:
        return default
    try:
        return max(0, int(raw))
    except ValueError as exc:
        raise HTTPError(
            400, f"Query parameter '{name}' must be an integer", "invalid_query"
        ) from exc


def _handle_errors(handler: Handler) -> Handler:
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except HTTPError as exc:
            return JSONResponse(
                {"error": exc.message, "code": exc.code}, status_code=exc.status_code
            )
        except GovernanceError as exc:
            return JSONResponse(exc.to_dict(), status_code=status_for_error(exc))
        except ValueError as exc:
            return JSONResponse({"error": str(exc), "code": "invalid_request"}, status_code=400)

    return wrapper


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the HTTP application around an application context."""
    ctx = context or build_app_context()
    service = ctx.service

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "version": __version__})

    async def propose_plan(request: Request) -> Response:
        user_id = _require_user(request)
        body = await _parse_body(request, ProposePlanBody)
        plan = await service.propose_plan(
            user_id, body.connection_id, body.descriptor(), body.resources
        )
        return JSONResponse(plan.to_dict(), status_code=201)

    async def get_plan(request: Request) -> Response:
        _require_user(request)
        plan_id = request.path_params["plan_id"]
        plan = service.get_plan(plan_id)
        last_result = service.get_last_result(plan_id)
        return JSONResponse(
            {
                "plan": plan.to_dict(),
                "last_result": last_result.to_dict() if last_result else None,
            }
        )

    async def approve_plan(request: Request) -> Response:
        user_id = _require_user(request)
        token = service.approve_plan(request.path_params["plan_id"], user_id)
        return JSONResponse(token.to_dict(), status_code=201)

    async def execute_plan(request: Request) -> Response:
        user_id = _require_user(request)
        body = await _parse_body(request, ExecutePlanBody)
        events: list[dict[str, Any]] = []

        def on_progress(progress: ExecutionProgress) -> None:
            events.append(progress.to_dict())

        result = await service.execute_plan(
            request.path_params["plan_id"],
            user_id,
            body.approval_token,
            current_monthly_cost=body.current_monthly_cost,
            on_progress=on_progress,
        )
        return JSONResponse(
            {"result": redact_sensitive_fields(result.to_dict()), "progress": events}
        )

    async def cancel_plan(request: Request) -> Response:
        user_id = _require_user(request)
        outcome = service.cancel_execution(request.path_params["plan_id"], user_id)
        return JSONResponse(outcome.to_dict(), status_code=200 if outcome.success else 409)

    async def list_executions(request: Request) -> Response:
        user_id = _require_user(request)
        return JSONResponse(
            {"executions": [e.to_dict() for e in service.active_executions(user_id)]}
        )

    async def kill_switch_state(request: Request) -> Response:
        _require_admin(request)
        return JSONResponse(service.kill_switch_state())

    async def kill_switch_activate(request: Request) -> Response:
        user_id = _require_admin(request)
        body = await _parse_body(request, KillSwitchActivateBody)
        entry = service.activate_kill_switch(
            body.scope,
            body.reason,
            user_id,
            scope_id=body.scope_id,
            expires_at=body.expires_at,
            notes=body.notes,
        )
        return JSONResponse(entry.to_dict(), status_code=201)

    async def kill_switch_deactivate(request: Request) -> Response:
        user_id = _require_admin(request)
        body = await _parse_body(request, KillSwitchDeactivateBody)
        removed = service.deactivate_kill_switch(body.scope, user_id, scope_id=body.scope_id)
        return JSONResponse({"deactivated": removed})

    async def read_only_enable(request: Request) -> Response:
        user_id = _require_admin(request)
        body = await _parse_body(request, ReadOnlyBody)
        entry = service.enable_read_only(user_id, body.reason)
        return JSONResponse(entry.to_dict(), status_code=201)

    async def read_only_disable(request: Request) -> Response:
        user_id = _require_admin(request)
        return JSONResponse({"deactivated": service.disable_read_only(user_id)})

    async def kill_switch_audit(request: Request) -> Response:
        _require_admin(request)
        limit = _query_int(request, "limit", 100)
        return JSONResponse(
            {"events": [e.to_dict() for e in service.kill_switch_audit_log(limit)]}
        )

    async def emergency_stop(request: Request) -> Response:
        _require_user(request)
        return JSONResponse({"methods": [m.to_dict() for m in service.emergency_stop_methods()]})

    async def cost_thresholds(request: Request) -> Response:
        _require_admin(request)
        customer_id = request.path_params["customer_id"]
        if request.method == "PUT":
            body = await _parse_body(request, ThresholdsBody)
            thresholds = service.set_cost_thresholds(
                customer_id, **body.model_dump(exclude_none=True)
            )
        else:
            thresholds = service.get_cost_thresholds(customer_id)
        return JSONResponse({"customer_id": customer_id, **thresholds.to_dict()})

    async def cost_metrics(request: Request) -> Response:
        _require_admin(request)
        customer_id = request.query_params.get("customer_id")
        metrics = service.cost_metrics(customer_id)
        return JSONResponse(
            {"customer_id": customer_id, "metrics": metrics.to_dict() if metrics else None}
        )

    async def cost_alerts(request: Request) -> Response:
        _require_admin(request)
        alerts = service.cost_alerts(
            request.query_params.get("customer_id"), _query_int(request, "limit", 100)
        )
        return JSONResponse({"alerts": [a.to_dict() for a in alerts]})

    async def register_connection(request: Request) -> Response:
        _require_admin(request)
        body = await _parse_body(request, ConnectionBody)
        connection = Connection(**body.model_dump())
        await ctx.connections.save(connection)
        return JSONResponse(connection.to_dict(), status_code=201)

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/plans", endpoint=_handle_errors(propose_plan), methods=["POST"]),
        Route("/plans/{plan_id}", endpoint=_handle_errors(get_plan), methods=["GET"]),
        Route(
            "/plans/{plan_id}/approve", endpoint=_handle_errors(approve_plan), methods=["POST"]
        ),
        Route(
            "/plans/{plan_id}/execute", endpoint=_handle_errors(execute_plan), methods=["POST"]
        ),
        Route("/plans/{plan_id}/cancel", endpoint=_handle_errors(cancel_plan), methods=["POST"]),
        Route("/executions", endpoint=_handle_errors(list_executions), methods=["GET"]),
        Route("/kill-switch", endpoint=_handle_errors(kill_switch_state), methods=["GET"]),
        Route(
            "/kill-switch/activate",
            endpoint=_handle_errors(kill_switch_activate),
            methods=["POST"],
        ),
        Route(
            "/kill-switch/deactivate",
            endpoint=_handle_errors(kill_switch_deactivate),
            methods=["POST"],
        ),
        Route(
            "/kill-switch/read-only",
            endpoint=_handle_errors(read_only_enable),
            methods=["POST"],
        ),
        Route(
            "/kill-switch/read-only",
            endpoint=_handle_errors(read_only_disable),
            methods=["DELETE"],
        ),
        Route("/kill-switch/audit", endpoint=_handle_errors(kill_switch_audit), methods=["GET"]),
        Route(
            "/kill-switch/emergency-stop",
            endpoint=_handle_errors(emergency_stop),
            methods=["GET"],
        ),
        Route(
            "/cost/thresholds/{customer_id}",
            endpoint=_handle_errors(cost_thresholds),
            methods=["GET", "PUT"],
        ),
        Route("/cost/metrics", endpoint=_handle_errors(cost_metrics), methods=["GET"]),
        Route("/cost/alerts", endpoint=_handle_errors(cost_alerts), methods=["GET"]),
        Route("/connections", endpoint=_handle_errors(register_connection), methods=["POST"]),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting governance HTTP server...")
        ctx.start_background_tasks()
        logger.info("Governance HTTP server started")
        try:
            yield
        finally:
            logger.info("Stopping governance HTTP server...")
            await ctx.stop_background_tasks()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.context = ctx
    return app
