from unittest.mock import patch

import pytest

from aws_action_governor.app import build_app_context
from aws_action_governor.config import Settings
from aws_action_governor.connections.store import InMemoryConnectionStore
from aws_action_governor.credentials.sts_issuer import STSCredentialIssuer
from aws_action_governor.execution.aws_client import Boto3ActionInvoker


def test_defaults_are_wired_from_settings():
    context = build_app_context(Settings())

    assert isinstance(context.connections, InMemoryConnectionStore)
    assert isinstance(context.credentials, STSCredentialIssuer)
    assert isinstance(context.invoker, Boto3ActionInvoker)
    assert context.catalog.get("ec2.stop") is not None
    assert context.parser.catalog is context.catalog
    assert [task.name for task in context.periodic_tasks] == [
        "kill-switch-expiry-sweep",
        "approval-token-sweep",
        "cost-rate-limit-reset",
        "cost-self-monitor",
    ]
    assert not any(task.is_running for task in context.periodic_tasks)


@patch("aws_action_governor.app.load_settings")
def test_settings_loaded_when_omitted(mock_load_settings):
    mock_load_settings.return_value = Settings()

    context = build_app_context()

    mock_load_settings.assert_called_once_with()
    assert context.settings is mock_load_settings.return_value


def test_injected_collaborators_are_used(app_context, connections, credentials, invoker):
    assert app_context.connections is connections
    assert app_context.credentials is credentials
    assert app_context.invoker is invoker


def test_periodic_intervals_follow_settings(app_context):
    intervals = {task.name: task.interval_seconds for task in app_context.periodic_tasks}
    settings = app_context.settings

    assert intervals["kill-switch-expiry-sweep"] == settings.kill_switch.sweep_interval_seconds
    assert (
        intervals["approval-token-sweep"] == settings.execution.approval_sweep_interval_seconds
    )
    assert intervals["cost-rate-limit-reset"] == settings.cost_guard.rate_window_seconds


@pytest.mark.asyncio
async def test_background_tasks_start_and_stop(app_context):
    app_context.start_background_tasks()
    assert all(task.is_running for task in app_context.periodic_tasks)

    await app_context.stop_background_tasks()
    assert not any(task.is_running for task in app_context.periodic_tasks)
