"""Configuration management for the AWS action governor."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_REGIONS: tuple[str, ...] = (
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "eu-west-1",
    "eu-west-2",
    "eu-central-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1024, le=65535)


class ExecutionSettings(BaseModel):
    approval_ttl_seconds: int = Field(default=900, ge=60, le=3600)
    plan_ttl_seconds: int = Field(default=900, ge=60, le=3600)
    batch_size: int = Field(default=10, ge=1, le=100)
    check_latency_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="Simulated latency standing in for pre/post-check verification work.",
    )
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    approval_sweep_interval_seconds: float = Field(default=60.0, gt=0)


class KillSwitchSettings(BaseModel):
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    audit_log_size: int = Field(default=1000, ge=1, le=100_000)


class CostGuardSettings(BaseModel):
    cost_increase_percent: float = Field(default=20.0, ge=0)
    cost_increase_absolute: float = Field(default=1000.0, ge=0)
    api_calls_per_minute: int = Field(default=100, ge=1)
    check_unexpected_regions: bool = Field(default=True)
    default_baseline: float = Field(default=1000.0, gt=0)
    unknown_baseline_policy: Literal["default_baseline", "manual_review"] = Field(
        default="default_baseline",
        description=(
            "What to do when no monthly cost baseline is supplied: predict against "
            "default_baseline with low confidence, or reject for manual review."
        ),
    )
    expected_regions: tuple[str, ...] = Field(default=DEFAULT_EXPECTED_REGIONS)
    rate_window_seconds: float = Field(default=60.0, gt=0)
    self_monitor_interval_seconds: float = Field(default=60.0, gt=0)
    self_monitor_min_actions: int = Field(default=10, ge=1)
    self_monitor_max_ratio: float = Field(default=1.5, gt=0)
    alert_history_size: int = Field(default=1000, ge=1, le=100_000)

    @field_validator("expected_regions")
    @classmethod
    def _validate_expected_regions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("expected_regions must not be empty")
        return value


class CatalogSettings(BaseModel):
    path: str | None = Field(default=None, description="Override for the action catalog YAML")


class PolicySettings(BaseModel):
    path: str | None = Field(default=None, description="Override for the permission policy YAML")


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    sts_region: str = Field(default="us-east-1")
    assume_role_duration_seconds: int = Field(default=900, ge=900, le=3600)
    credential_refresh_buffer_seconds: int = Field(default=60, ge=0, le=3600)
    credential_cache_max_entries: int = Field(default=1000, ge=1, le=10000)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    kill_switch: KillSwitchSettings = Field(default_factory=KillSwitchSettings)
    cost_guard: CostGuardSettings = Field(default_factory=CostGuardSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)


ENV_KEYS = {
    "host": "GOVERNOR_HOST",
    "port": "GOVERNOR_PORT",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "catalog_path": "ACTION_CATALOG_PATH",
    "policy_path": "PERMISSION_POLICY_PATH",
    "aws_region": "AWS_DEFAULT_REGION",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_path(key: str) -> str | None:
    value = os.getenv(key, "").strip()
    return _resolve_path(value) if value else None


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    expected_regions = _split_csv_preserve_case(os.getenv("COST_EXPECTED_REGIONS"))

    execution_defaults = ExecutionSettings()
    kill_switch_defaults = KillSwitchSettings()
    cost_defaults = CostGuardSettings()
    aws_defaults = AWSSettings()

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "execution": {
            "approval_ttl_seconds": _env_int(
                "APPROVAL_TTL_SECONDS", execution_defaults.approval_ttl_seconds
            ),
            "plan_ttl_seconds": _env_int("PLAN_TTL_SECONDS", execution_defaults.plan_ttl_seconds),
            "batch_size": _env_int("PLAN_BATCH_SIZE", execution_defaults.batch_size),
            "check_latency_seconds": _env_float(
                "CHECK_LATENCY_SECONDS", execution_defaults.check_latency_seconds
            ),
            "sdk_timeout_seconds": _env_int(
                "SDK_TIMEOUT_SECONDS", execution_defaults.sdk_timeout_seconds
            ),
            "approval_sweep_interval_seconds": _env_float(
                "APPROVAL_SWEEP_INTERVAL_SECONDS",
                execution_defaults.approval_sweep_interval_seconds,
            ),
        },
        "kill_switch": {
            "sweep_interval_seconds": _env_float(
                "KILL_SWITCH_SWEEP_INTERVAL_SECONDS",
                kill_switch_defaults.sweep_interval_seconds,
            ),
            "audit_log_size": _env_int(
                "KILL_SWITCH_AUDIT_LOG_SIZE", kill_switch_defaults.audit_log_size
            ),
        },
        "cost_guard": {
            "cost_increase_percent": _env_float(
                "COST_INCREASE_PERCENT", cost_defaults.cost_increase_percent
            ),
            "cost_increase_absolute": _env_float(
                "COST_INCREASE_ABSOLUTE", cost_defaults.cost_increase_absolute
            ),
            "api_calls_per_minute": _env_int(
                "COST_API_CALLS_PER_MINUTE", cost_defaults.api_calls_per_minute
            ),
            "check_unexpected_regions": _env_bool(
                "COST_CHECK_UNEXPECTED_REGIONS", cost_defaults.check_unexpected_regions
            ),
            "default_baseline": _env_float(
                "COST_DEFAULT_BASELINE", cost_defaults.default_baseline
            ),
            "unknown_baseline_policy": os.getenv(
                "COST_UNKNOWN_BASELINE_POLICY", cost_defaults.unknown_baseline_policy
            ),
            "expected_regions": tuple(expected_regions) or cost_defaults.expected_regions,
            "rate_window_seconds": _env_float(
                "COST_RATE_WINDOW_SECONDS", cost_defaults.rate_window_seconds
            ),
            "self_monitor_interval_seconds": _env_float(
                "COST_SELF_MONITOR_INTERVAL_SECONDS",
                cost_defaults.self_monitor_interval_seconds,
            ),
            "self_monitor_min_actions": _env_int(
                "COST_SELF_MONITOR_MIN_ACTIONS", cost_defaults.self_monitor_min_actions
            ),
            "self_monitor_max_ratio": _env_float(
                "COST_SELF_MONITOR_MAX_RATIO", cost_defaults.self_monitor_max_ratio
            ),
            "alert_history_size": _env_int(
                "COST_ALERT_HISTORY_SIZE", cost_defaults.alert_history_size
            ),
        },
        "catalog": {"path": _env_path(ENV_KEYS["catalog_path"])},
        "policy": {"path": _env_path(ENV_KEYS["policy_path"])},
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "sts_region": os.getenv("AWS_STS_REGION", aws_defaults.sts_region),
            "assume_role_duration_seconds": _env_int(
                "AWS_ASSUME_ROLE_DURATION_SECONDS", aws_defaults.assume_role_duration_seconds
            ),
            "credential_refresh_buffer_seconds": _env_int(
                "AWS_CREDENTIAL_REFRESH_BUFFER_SECONDS",
                aws_defaults.credential_refresh_buffer_seconds,
            ),
            "credential_cache_max_entries": _env_int(
                "AWS_CREDENTIAL_CACHE_MAX_ENTRIES",
                aws_defaults.credential_cache_max_entries,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.logging.file:
        Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)

    return settings
