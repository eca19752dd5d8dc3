from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest

from aws_action_governor.app import AppContext, build_app_context
from aws_action_governor.catalog.descriptor import ActionDescriptor
from aws_action_governor.config import ExecutionSettings, Settings
from aws_action_governor.connections.store import InMemoryConnectionStore
from aws_action_governor.credentials.models import AssumedRole, TemporaryCredentials
from aws_action_governor.domain.connection import Connection
from aws_action_governor.domain.models import ApiCall, ExecutionPlan
from aws_action_governor.errors import StepExecutionError
from aws_action_governor.execution.aws_client import InvocationResult

CONNECTION_ID = "conn-1"
CUSTOMER_ID = "cust-1"
USER_ID = "user-1"


class RecordingInvoker:
    """Stands in for the boto3 invoker and records every call it receives."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.fail_on: set[tuple[str, str]] = set()
        self.before_call: Callable[[ApiCall, list[str]], Awaitable[None]] | None = None

    async def invoke(
        self, api_call: ApiCall, resources: list[str], credentials: Any
    ) -> InvocationResult:
        if self.before_call is not None:
            await self.before_call(api_call, resources)
        self.calls.append((api_call.operation, list(resources)))
        for resource in resources:
            if (api_call.operation, resource) in self.fail_on:
                raise StepExecutionError(
                    f"InvalidInstanceID.NotFound: {resource}", code="aws_error"
                )
        return InvocationResult(
            request_ids=[f"req-{len(self.calls)}"], calls=len(resources)
        )


class FakeCredentials:
    def __init__(self) -> None:
        self.assume_role = AsyncMock(
            return_value=AssumedRole(
                credentials=TemporaryCredentials(
                    access_key_id="ASIATESTKEY",
                    secret_access_key="secret",
                    session_token="session-token",
                    expiration=datetime.now(timezone.utc) + timedelta(minutes=15),
                ),
                session_name="governor-test",
                assumed_role_arn="arn:aws:sts::111111111111:assumed-role/Governor/governor-test",
            )
        )
        self.release = AsyncMock(return_value=None)


def live_connection(**overrides: Any) -> Connection:
    data: dict[str, Any] = {
        "connection_id": CONNECTION_ID,
        "customer_id": CUSTOMER_ID,
        "role_arn": "arn:aws:iam::111111111111:role/Governor",
        "external_id": "ext-123",
        "allowed_regions": ["us-east-1", "us-west-2"],
        "execution_mode": "live",
    }
    data.update(overrides)
    return Connection(**data)


@pytest.fixture
def settings() -> Settings:
    return Settings(execution=ExecutionSettings(check_latency_seconds=0.0, batch_size=10))


@pytest.fixture
def invoker() -> RecordingInvoker:
    return RecordingInvoker()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def connections() -> InMemoryConnectionStore:
    return InMemoryConnectionStore([live_connection()])


@pytest.fixture
def app_context(
    settings: Settings,
    connections: InMemoryConnectionStore,
    credentials: FakeCredentials,
    invoker: RecordingInvoker,
) -> AppContext:
    return build_app_context(
        settings, connections=connections, credentials=credentials, invoker=invoker
    )


@pytest.fixture
def make_plan(app_context: AppContext) -> Callable[..., Awaitable[ExecutionPlan]]:
    async def _make_plan(
        action: str = "ec2.stop",
        resources: list[str] | None = None,
        connection_id: str = CONNECTION_ID,
        **descriptor: Any,
    ) -> ExecutionPlan:
        connection = await app_context.connections.get(connection_id)
        validated = app_context.parser.parse(
            ActionDescriptor(action=action, **descriptor),
            default_regions=connection.allowed_regions,
        )
        return await app_context.generator.generate(
            validated, connection, resources if resources is not None else ["i-1"]
        )

    return _make_plan
