"""Permission boundary loader."""

from __future__ import annotations

from pathlib import Path

import yaml

from aws_action_governor.policy.models import BoundaryConfig

DEFAULT_POLICY_PATH = Path(__file__).with_name("default_policy.yaml")


def load_policy(path: str | None = None) -> BoundaryConfig:
    policy_path = Path(path) if path else DEFAULT_POLICY_PATH
    if not policy_path.exists():
        raise FileNotFoundError(f"Policy file not found: {policy_path}")
    with policy_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return BoundaryConfig.from_yaml(data)
