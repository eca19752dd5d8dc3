"""Action catalog loader."""

from __future__ import annotations

from pathlib import Path

import yaml

from aws_action_governor.catalog.models import ActionCatalog

DEFAULT_CATALOG_PATH = Path(__file__).with_name("default_catalog.yaml")


def load_catalog(path: str | None = None) -> ActionCatalog:
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    if not catalog_path.exists():
        raise FileNotFoundError(f"Action catalog not found: {catalog_path}")
    with catalog_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return ActionCatalog.from_yaml(data)
