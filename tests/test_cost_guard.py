from __future__ import annotations

import pytest

from aws_action_governor.config import CostGuardSettings
from aws_action_governor.cost.guard import CostAnomalyGuard
from aws_action_governor.cost.models import PlanForCost
from aws_action_governor.killswitch.registry import KillSwitchRegistry


def _plan(cost: float = 0.0, regions: list[str] | None = None) -> PlanForCost:
    return PlanForCost(
        plan_id="plan-1",
        estimated_cost_impact=cost,
        resource_count=1,
        service="ec2",
        action="ec2.start",
        regions=regions or ["us-east-1"],
    )


@pytest.fixture
def kill_switch() -> KillSwitchRegistry:
    return KillSwitchRegistry()


@pytest.fixture
def guard(kill_switch: KillSwitchRegistry) -> CostAnomalyGuard:
    return CostAnomalyGuard(CostGuardSettings(), kill_switch)


def test_increase_at_threshold_is_allowed(guard: CostAnomalyGuard) -> None:
    result = guard.validate(_plan(200.0), "cust-1", current_monthly_cost=1000.0)

    assert result.allowed
    assert result.prediction is not None
    assert result.prediction.percent_increase == pytest.approx(20.0)
    assert result.prediction.confidence == "high"
    # Above half of the percent threshold.
    assert result.risk_level == "medium"


def test_increase_above_percent_threshold_is_rejected(guard: CostAnomalyGuard) -> None:
    result = guard.validate(_plan(201.0), "cust-1", current_monthly_cost=1000.0)

    assert not result.allowed
    assert result.risk_level == "high"
    assert result.alert_type == "cost_increase"
    assert result.reason == "Cost increase of 20.1% exceeds threshold"
    alerts = guard.get_alert_history("cust-1")
    assert [(a.type, a.severity) for a in alerts] == [("cost_increase", "warning")]


def test_increase_above_absolute_threshold_is_critical(guard: CostAnomalyGuard) -> None:
    result = guard.validate(_plan(1500.0), "cust-1", current_monthly_cost=100_000.0)

    assert not result.allowed
    assert result.risk_level == "critical"
    assert result.reason == "Cost increase of $1500.00 exceeds limit"
    assert guard.get_alert_history()[-1].severity == "critical"


def test_savings_are_low_risk(guard: CostAnomalyGuard) -> None:
    result = guard.validate(_plan(-72.0), "cust-1", current_monthly_cost=1000.0)

    assert result.allowed
    assert result.risk_level == "low"
    assert result.prediction is not None
    assert result.prediction.absolute_increase == 0.0
    assert result.prediction.monthly_cost_after == pytest.approx(928.0)


def test_unknown_baseline_uses_default_with_low_confidence(guard: CostAnomalyGuard) -> None:
    prediction = guard.predict_cost_impact(_plan(100.0), None)

    assert prediction.monthly_cost_before == 1000.0
    assert prediction.percent_increase == pytest.approx(10.0)
    assert prediction.confidence == "low"


def test_unknown_baseline_manual_review_policy(kill_switch: KillSwitchRegistry) -> None:
    guard = CostAnomalyGuard(
        CostGuardSettings(unknown_baseline_policy="manual_review"), kill_switch
    )

    missing = guard.validate(_plan(10.0), "cust-1")
    zero = guard.validate(_plan(10.0), "cust-1", current_monthly_cost=0.0)
    known = guard.validate(_plan(10.0), "cust-1", current_monthly_cost=1000.0)

    assert not missing.allowed
    assert missing.alert_type == "manual_review"
    assert not zero.allowed
    assert known.allowed
    assert guard.get_alert_history() == []


def test_rate_limit_and_reset(guard: CostAnomalyGuard) -> None:
    guard.set_customer_thresholds("cust-1", api_calls_per_minute=2)

    assert guard.validate(_plan(), "cust-1", 1000.0).allowed
    assert guard.validate(_plan(), "cust-1", 1000.0).allowed
    limited = guard.validate(_plan(), "cust-1", 1000.0)

    assert not limited.allowed
    assert limited.alert_type == "rate_limit"
    assert limited.reason == "Rate limit exceeded: 2/2 calls per minute"
    # Other customers keep their own counter.
    assert guard.validate(_plan(), "cust-2", 1000.0).allowed

    guard.reset_rate_limits()
    assert guard.validate(_plan(), "cust-1", 1000.0).allowed


def test_rejected_plans_do_not_consume_rate_budget(guard: CostAnomalyGuard) -> None:
    guard.set_customer_thresholds("cust-1", api_calls_per_minute=1)

    assert not guard.validate(_plan(5000.0), "cust-1", 1000.0).allowed
    assert guard.validate(_plan(), "cust-1", 1000.0).allowed


def test_unexpected_region_is_rejected(guard: CostAnomalyGuard) -> None:
    result = guard.validate(_plan(regions=["us-east-1", "me-south-1"]), "cust-1", 1000.0)

    assert not result.allowed
    assert result.risk_level == "medium"
    assert result.reason == "Operations in unexpected regions: me-south-1"

    guard.add_expected_region("me-south-1")
    assert "me-south-1" in guard.get_expected_regions()
    assert guard.validate(_plan(regions=["me-south-1"]), "cust-1", 1000.0).allowed


def test_region_check_can_be_disabled_per_customer(guard: CostAnomalyGuard) -> None:
    guard.set_customer_thresholds("cust-1", unexpected_regions=False)

    assert guard.validate(_plan(regions=["me-south-1"]), "cust-1", 1000.0).allowed


def test_customer_thresholds_override_defaults(guard: CostAnomalyGuard) -> None:
    updated = guard.set_customer_thresholds("cust-1", cost_increase_percent=50.0)

    assert updated.cost_increase_percent == 50.0
    assert updated.cost_increase_absolute == 1000.0
    assert guard.get_thresholds("cust-1").cost_increase_percent == 50.0
    assert guard.get_thresholds("cust-2").cost_increase_percent == 20.0
    assert guard.get_default_thresholds().cost_increase_percent == 20.0
    assert guard.validate(_plan(400.0), "cust-1", 1000.0).allowed


def test_unknown_threshold_field_is_rejected(guard: CostAnomalyGuard) -> None:
    with pytest.raises(ValueError, match="Unknown threshold fields: budget"):
        guard.set_customer_thresholds("cust-1", budget=5)


def test_record_cost_metrics(guard: CostAnomalyGuard) -> None:
    guard.record_cost_metrics("cust-1", -72.0, "ec2.stop")
    guard.record_cost_metrics("cust-1", 30.0, "ec2.start")
    guard.record_cost_metrics("cust-2", 10.0, "ec2.start")

    metrics = guard.get_customer_metrics("cust-1")
    assert metrics is not None
    assert metrics.total_cost_decrease == 72.0
    assert metrics.total_cost_increase == 30.0
    assert metrics.net_cost_change == -42.0
    assert metrics.actions_executed == 2
    assert guard.get_customer_metrics("cust-3") is None

    overall = guard.get_global_metrics()
    assert overall.actions_executed == 3
    guard.reset_global_metrics()
    assert guard.get_global_metrics().actions_executed == 0


def test_self_monitor_needs_enough_actions(
    guard: CostAnomalyGuard, kill_switch: KillSwitchRegistry
) -> None:
    for _ in range(3):
        guard.record_cost_metrics("cust-1", 500.0, "ec2.start")

    assert guard.self_monitor() is False
    assert not kill_switch.read_only_mode


def test_self_monitor_trips_read_only(
    guard: CostAnomalyGuard, kill_switch: KillSwitchRegistry
) -> None:
    for _ in range(9):
        guard.record_cost_metrics("cust-1", 100.0, "ec2.start")
    guard.record_cost_metrics("cust-1", -100.0, "ec2.stop")

    assert guard.self_monitor() is True
    assert kill_switch.read_only_mode
    state = kill_switch.get_state()
    assert state["read_only_entry"]["activated_by"] == "CostAnomalyGuard"
    assert state["read_only_entry"]["reason"] == "cost_anomaly"
    alert = guard.get_alert_history("system")[-1]
    assert alert.type == "self_monitoring"
    assert alert.severity == "critical"
    # Already in read-only mode; no second trip.
    assert guard.self_monitor() is False


def test_self_monitor_tolerates_balanced_spend(
    guard: CostAnomalyGuard, kill_switch: KillSwitchRegistry
) -> None:
    for _ in range(6):
        guard.record_cost_metrics("cust-1", 100.0, "ec2.start")
    for _ in range(6):
        guard.record_cost_metrics("cust-1", -100.0, "ec2.stop")

    assert guard.self_monitor() is False
    assert not kill_switch.read_only_mode


def test_alert_history_is_bounded(kill_switch: KillSwitchRegistry) -> None:
    guard = CostAnomalyGuard(CostGuardSettings(alert_history_size=2), kill_switch)
    for region in ("me-south-1", "af-south-1", "il-central-1"):
        guard.validate(_plan(regions=[region]), "cust-1", 1000.0)

    alerts = guard.get_alert_history(limit=10)

    assert len(alerts) == 2
    assert alerts[-1].message.endswith("il-central-1")
