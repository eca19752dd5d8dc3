"""Cost anomaly guard.

Admission control on a plan's predicted cost impact, a per-customer call rate
limit and an expected-region allowlist. It also keeps running cost totals per
customer and globally, and trips the kill switch registry into read-only mode
when the governor's own actions increase spend far more than they save.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Any

from aws_action_governor.config import CostGuardSettings
from aws_action_governor.cost.models import (
    AlertSeverity,
    AlertType,
    CostAlert,
    CostMetrics,
    CostPrediction,
    CostThresholds,
    CostValidation,
    PlanForCost,
)
from aws_action_governor.killswitch.registry import KillSwitchRegistry
from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)

SYSTEM_CUSTOMER = "system"
SELF_MONITOR_ACTOR = "CostAnomalyGuard"
SELF_MONITOR_REASON = "cost_anomaly"


class CostAnomalyGuard:
    def __init__(self, settings: CostGuardSettings, kill_switch: KillSwitchRegistry) -> None:
        self._settings = settings
        self._kill_switch = kill_switch
        self._lock = threading.Lock()
        self._defaults = CostThresholds(
            cost_increase_percent=settings.cost_increase_percent,
            cost_increase_absolute=settings.cost_increase_absolute,
            api_calls_per_minute=settings.api_calls_per_minute,
            unexpected_regions=settings.check_unexpected_regions,
        )
        self._customer_thresholds: dict[str, CostThresholds] = {}
        self._expected_regions: set[str] = set(settings.expected_regions)
        self._customer_metrics: dict[str, CostMetrics] = {}
        self._global_metrics = CostMetrics()
        self._call_counts: dict[str, int] = {}
        self._alerts: deque[CostAlert] = deque(maxlen=settings.alert_history_size)

    def validate(
        self,
        plan: PlanForCost,
        customer_id: str,
        current_monthly_cost: float | None = None,
    ) -> CostValidation:
        with self._lock:
            result = self._validate_locked(plan, customer_id, current_monthly_cost)
        if not result.allowed:
            logger.warning(
                "Cost guard rejected plan %s for customer %s: %s",
                plan.plan_id,
                customer_id,
                result.reason,
            )
        return result

    def _validate_locked(
        self,
        plan: PlanForCost,
        customer_id: str,
        current_monthly_cost: float | None,
    ) -> CostValidation:
        thresholds = self._thresholds_for(customer_id)

        count = self._call_counts.get(customer_id, 0)
        if count >= thresholds.api_calls_per_minute:
            message = (
                f"Rate limit exceeded: {count}/{thresholds.api_calls_per_minute} calls per minute"
            )
            self._record_alert(customer_id, "rate_limit", message, "warning")
            return CostValidation(
                allowed=False,
                risk_level="medium",
                reason=message,
                recommendation="Wait for rate limit to reset",
                alert_type="rate_limit",
            )

        if _baseline_unknown(current_monthly_cost) and (
            self._settings.unknown_baseline_policy == "manual_review"
        ):
            return CostValidation(
                allowed=False,
                risk_level="medium",
                reason="No monthly cost baseline supplied; manual review required",
                recommendation="Supply the current monthly cost or review the plan manually",
                alert_type="manual_review",
            )

        prediction = self.predict_cost_impact(plan, current_monthly_cost)

        if prediction.percent_increase > thresholds.cost_increase_percent:
            self._record_alert(
                customer_id,
                "cost_increase",
                f"Cost increase of {prediction.percent_increase:.1f}% exceeds threshold of "
                f"{thresholds.cost_increase_percent:g}%",
                "warning",
            )
            return CostValidation(
                allowed=False,
                risk_level="high",
                reason=f"Cost increase of {prediction.percent_increase:.1f}% exceeds threshold",
                recommendation="Require explicit approval or break into smaller operations",
                alert_type="cost_increase",
                prediction=prediction,
            )

        if prediction.absolute_increase > thresholds.cost_increase_absolute:
            self._record_alert(
                customer_id,
                "cost_increase",
                f"Cost increase of ${prediction.absolute_increase:.2f} exceeds threshold of "
                f"${thresholds.cost_increase_absolute:g}",
                "critical",
            )
            return CostValidation(
                allowed=False,
                risk_level="critical",
                reason=f"Cost increase of ${prediction.absolute_increase:.2f} exceeds limit",
                recommendation="Break into smaller operations or get explicit approval",
                alert_type="cost_increase",
                prediction=prediction,
            )

        if thresholds.unexpected_regions:
            unexpected = [r for r in plan.regions if r not in self._expected_regions]
            if unexpected:
                message = f"Operations in unexpected regions: {', '.join(unexpected)}"
                self._record_alert(customer_id, "unexpected_region", message, "warning")
                return CostValidation(
                    allowed=False,
                    risk_level="medium",
                    reason=message,
                    recommendation="Verify region selection or add regions to expected list",
                    alert_type="unexpected_region",
                    prediction=prediction,
                )

        self._call_counts[customer_id] = count + 1

        risk_level = "low"
        if (
            prediction.absolute_increase > thresholds.cost_increase_absolute * 0.5
            or prediction.percent_increase > thresholds.cost_increase_percent * 0.5
        ):
            risk_level = "medium"
        return CostValidation(allowed=True, risk_level=risk_level, prediction=prediction)

    def predict_cost_impact(
        self, plan: PlanForCost, current_monthly_cost: float | None = None
    ) -> CostPrediction:
        if current_monthly_cost is not None and current_monthly_cost > 0:
            baseline, confidence = current_monthly_cost, "high"
        else:
            baseline, confidence = self._settings.default_baseline, "low"
        absolute_increase = max(0.0, plan.estimated_cost_impact)
        return CostPrediction(
            percent_increase=absolute_increase * 100 / baseline,
            absolute_increase=absolute_increase,
            monthly_cost_before=baseline,
            monthly_cost_after=baseline + plan.estimated_cost_impact,
            confidence=confidence,
        )

    def record_cost_metrics(self, customer_id: str, cost_change: float, action: str) -> None:
        now = utc_now()
        with self._lock:
            metrics = self._customer_metrics.setdefault(customer_id, CostMetrics())
            metrics.record(cost_change, now)
            self._global_metrics.record(cost_change, now)
            net = metrics.net_cost_change
        logger.info(
            "Cost metrics recorded: customer=%s action=%s change=%.2f net=%.2f",
            customer_id,
            action,
            cost_change,
            net,
        )

    def self_monitor(self) -> bool:
        """Trip read-only mode if global cost increases outweigh decreases.

        Returns True when read-only mode was enabled by this run.
        """
        with self._lock:
            metrics = self._global_metrics.copy()
        if metrics.actions_executed < self._settings.self_monitor_min_actions:
            return False
        if metrics.total_cost_increase <= metrics.total_cost_decrease:
            return False

        ratio = metrics.total_cost_increase / max(metrics.total_cost_decrease, 1.0)
        if ratio <= self._settings.self_monitor_max_ratio:
            return False
        if self._kill_switch.read_only_mode:
            return False

        message = (
            f"Governed actions are increasing costs {ratio:.1f}x more than reducing. "
            f"Increase: ${metrics.total_cost_increase:.2f}, "
            f"Decrease: ${metrics.total_cost_decrease:.2f}"
        )
        with self._lock:
            self._record_alert(SYSTEM_CUSTOMER, "self_monitoring", message, "critical")
        logger.critical("Self-monitoring tripped read-only mode: %s", message)
        self._kill_switch.enable_read_only(SELF_MONITOR_ACTOR, SELF_MONITOR_REASON)
        return True

    def reset_rate_limits(self) -> None:
        with self._lock:
            self._call_counts.clear()

    def set_customer_thresholds(self, customer_id: str, **overrides: Any) -> CostThresholds:
        unknown = set(overrides) - set(CostThresholds.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown threshold fields: {', '.join(sorted(unknown))}")
        with self._lock:
            merged = replace(self._thresholds_for(customer_id), **overrides)
            self._customer_thresholds[customer_id] = merged
        logger.info("Customer thresholds updated: customer=%s %s", customer_id, overrides)
        return merged

    def get_thresholds(self, customer_id: str) -> CostThresholds:
        with self._lock:
            return replace(self._thresholds_for(customer_id))

    def get_default_thresholds(self) -> CostThresholds:
        return replace(self._defaults)

    def get_customer_metrics(self, customer_id: str) -> CostMetrics | None:
        with self._lock:
            metrics = self._customer_metrics.get(customer_id)
            return metrics.copy() if metrics else None

    def get_global_metrics(self) -> CostMetrics:
        with self._lock:
            return self._global_metrics.copy()

    def reset_global_metrics(self) -> None:
        with self._lock:
            self._global_metrics = CostMetrics()
        logger.info("Global cost metrics reset")

    def get_alert_history(self, customer_id: str | None = None, limit: int = 100) -> list[CostAlert]:
        with self._lock:
            alerts = list(self._alerts)
        if customer_id:
            alerts = [a for a in alerts if a.customer_id == customer_id]
        if limit <= 0:
            return []
        return alerts[-limit:]

    def add_expected_region(self, region: str) -> None:
        with self._lock:
            self._expected_regions.add(region)

    def get_expected_regions(self) -> list[str]:
        with self._lock:
            return sorted(self._expected_regions)

    def _thresholds_for(self, customer_id: str) -> CostThresholds:
        return self._customer_thresholds.get(customer_id, self._defaults)

    def _record_alert(
        self,
        customer_id: str,
        alert_type: AlertType,
        message: str,
        severity: AlertSeverity,
    ) -> None:
        """Append to the alert history. Caller holds the lock."""
        self._alerts.append(CostAlert(utc_now(), customer_id, alert_type, message, severity))
        logger.warning("Cost alert [%s/%s] %s: %s", alert_type, severity, customer_id, message)


def _baseline_unknown(current_monthly_cost: float | None) -> bool:
    return current_monthly_cost is None or current_monthly_cost <= 0
