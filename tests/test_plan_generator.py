from __future__ import annotations

import re
from datetime import timedelta

import pytest

from aws_action_governor.errors import PermissionDeniedError, PlanGenerationError
from aws_action_governor.planning.generator import batch_resources
from aws_action_governor.planning.visualization import render_mermaid


def test_batch_resources() -> None:
    assert batch_resources([], 3) == [[]]
    assert batch_resources(["a", "b", "c", "d"], 3) == [["a", "b", "c"], ["d"]]


@pytest.mark.asyncio
async def test_plan_structure_for_single_resource(make_plan) -> None:
    plan = await make_plan("ec2.stop", ["i-1"])

    assert [s.step_id for s in plan.steps] == [
        "step-precheck-0",
        "step-precheck-1",
        "step-precheck-2",
        "step-action-0",
        "step-postcheck-0",
        "step-postcheck-1",
        "step-postcheck-2",
    ]
    assert [s.order for s in plan.steps] == list(range(7))
    assert [s.action for s in plan.steps[:3]] == [
        "precheck:verify_permissions",
        "precheck:verify_idle",
        "precheck:check_dependencies",
    ]
    assert plan.steps[0].description == "Verify AWS permissions"
    assert all(s.status == "pending" for s in plan.steps)
    assert re.fullmatch(r"plan-\d+-[0-9a-f]{8}", plan.plan_id)
    assert plan.expires_at - plan.created_at == timedelta(seconds=900)
    assert plan.regions == ["us-east-1", "us-west-2"]
    assert plan.primary_service == "ec2"


@pytest.mark.asyncio
async def test_step_dependencies(make_plan) -> None:
    plan = await make_plan("ec2.stop", [f"i-{n}" for n in range(15)])
    deps = {s.step_id: s.depends_on for s in plan.steps}

    assert deps["step-precheck-0"] is None
    assert deps["step-precheck-1"] == ["step-precheck-0"]
    assert deps["step-action-0"] == ["step-precheck-2"]
    assert deps["step-action-1"] == ["step-action-0"]
    assert deps["step-postcheck-0"] == ["step-action-1"]
    assert deps["step-postcheck-2"] == ["step-action-1"]


@pytest.mark.asyncio
async def test_resources_are_batched(make_plan) -> None:
    resources = [f"i-{n}" for n in range(25)]

    plan = await make_plan("ec2.stop", resources, pre_checks=[], post_checks=[])

    assert [len(s.resources) for s in plan.steps] == [10, 10, 5]
    assert [s.description for s in plan.steps] == [
        "Stop EC2 Instances (batch 1/3)",
        "Stop EC2 Instances (batch 2/3)",
        "Stop EC2 Instances (batch 3/3)",
    ]
    call = plan.steps[0].api_calls[0]
    assert (call.service, call.operation, call.region) == ("EC2", "StopInstances", "us-east-1")
    assert plan.total_api_calls == 3
    assert plan.steps[0].impact.cost_change == -720.0
    assert plan.steps[2].impact.downtime is True


@pytest.mark.asyncio
async def test_plan_without_resources_has_one_action_step(make_plan) -> None:
    plan = await make_plan("s3.lifecycle", [], pre_checks=[], post_checks=[])

    assert len(plan.steps) == 1
    assert plan.steps[0].resources == []
    assert plan.steps[0].api_calls[0].parameters == {
        "transition_days": 30,
        "storage_class": "STANDARD_IA",
    }


@pytest.mark.asyncio
async def test_summary(make_plan) -> None:
    plan = await make_plan("ec2.stop", ["i-1", "i-2"])

    summary = plan.summary
    assert summary.total_steps == 7
    # Six checks at five seconds each plus the action's sixty seconds.
    assert summary.estimated_duration == 90
    assert summary.estimated_cost_impact == -144.0
    assert summary.risk_score == 50
    assert summary.resources_affected == 2
    assert summary.services_affected == ["ec2"]
    assert summary.requires_approval is True
    assert summary.reversible is True


@pytest.mark.asyncio
async def test_high_risk_action_scores_75(make_plan) -> None:
    plan = await make_plan("rds.stop", ["db-1"])

    assert plan.summary.risk_score == 75


@pytest.mark.asyncio
async def test_reversible_action_gets_rollback_plan(make_plan) -> None:
    plan = await make_plan("ec2.stop", ["i-1", "i-2"])

    rollback = plan.rollback_plan
    assert rollback is not None
    assert re.fullmatch(r"rollback-\d+-[0-9a-f]{8}", rollback.plan_id)
    assert rollback.action == "ec2.start"
    assert rollback.summary.requires_approval is False
    assert rollback.regions == plan.regions
    actions = [s for s in rollback.steps if not s.is_check]
    assert actions[0].api_calls[0].operation == "StartInstances"
    assert actions[0].resources == ["i-1", "i-2"]
    assert rollback.summary.estimated_cost_impact == 144.0


@pytest.mark.asyncio
async def test_no_rollback_without_inverse(make_plan) -> None:
    irreversible = await make_plan("rds.snapshot", ["db-1"])
    no_inverse = await make_plan("ec2.resize", ["i-1"], parameters={"instance_type": "t3.small"})

    assert irreversible.rollback_plan is None
    assert no_inverse.rollback_plan is None


@pytest.mark.asyncio
async def test_blocked_descriptor_is_refused(make_plan) -> None:
    with pytest.raises(PlanGenerationError) as exc_info:
        await make_plan("ec2.stop", blocked=True, block_reason="change freeze")

    assert exc_info.value.code == "action_blocked"
    assert "change freeze" in exc_info.value.message


@pytest.mark.asyncio
async def test_invalid_descriptor_is_refused(make_plan) -> None:
    with pytest.raises(PlanGenerationError) as exc_info:
        await make_plan("ec2.terminate")

    assert exc_info.value.code == "invalid_descriptor"
    assert "Action not allowed: ec2.terminate" in exc_info.value.message


@pytest.mark.asyncio
async def test_descriptor_resource_limit(make_plan) -> None:
    with pytest.raises(PlanGenerationError) as exc_info:
        await make_plan("ec2.stop", ["i-1", "i-2", "i-3"], max_resources=2)

    assert exc_info.value.code == "resource_limit"


@pytest.mark.asyncio
async def test_boundary_denies_foreign_region(make_plan) -> None:
    with pytest.raises(PermissionDeniedError, match="Region ap-south-1 is not allowed"):
        await make_plan("ec2.stop", ["i-1"], regions=["ap-south-1"])


@pytest.mark.asyncio
async def test_boundary_caps_resources_per_request(make_plan) -> None:
    resources = [f"i-{n}" for n in range(51)]

    with pytest.raises(PermissionDeniedError, match="51 resources"):
        await make_plan("ec2.stop", resources, max_resources=100)


@pytest.mark.asyncio
async def test_validate_reports_expiry(make_plan, app_context) -> None:
    plan = await make_plan("ec2.stop")

    assert app_context.generator.validate(plan).valid
    expired = app_context.generator.validate(plan, now=plan.expires_at)
    assert not expired.valid
    assert expired.reason == "Plan has expired"


@pytest.mark.asyncio
async def test_visualization(make_plan) -> None:
    plan = await make_plan("ec2.stop", ["i-1"], post_checks=["verify_stopped"])

    diagram = plan.visualization
    assert diagram is not None
    assert diagram == render_mermaid(plan.steps)
    lines = diagram.splitlines()
    assert lines[0] == "graph TD"
    assert '    step-precheck-0(["Verify AWS permissions"])' in lines
    assert '    step-action-0["Stop EC2 Instances (batch 1/1)"]' in lines
    assert "    step-precheck-2 --> step-action-0" in lines
    assert "    step-action-0 --> step-postcheck-0" in lines
    assert "    class step-action-0 action" in lines
    assert "    class step-postcheck-0 postcheck" in lines
    assert diagram.endswith("\n")
