"""Permission boundary configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class BoundaryLimits(BaseModel):
    max_resources_per_request: int = Field(default=50, ge=1)
    enforce_connection_regions: bool = Field(default=True)


class BoundaryConfig(BaseModel):
    version: int = Field(default=1)
    limits: BoundaryLimits = Field(default_factory=BoundaryLimits)
    banned_operations: list[str] = Field(default_factory=list)
    services: dict[str, list[str]] = Field(default_factory=dict)
    risk_patterns: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("banned_operations", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("services", "risk_patterns", mode="before")
    @classmethod
    def _validate_mappings(cls, v: Any) -> dict:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {k: _ensure_list(val) for k, val in v.items()}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "BoundaryConfig":
        return cls.model_validate(data)
