"""Action catalog configuration models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

ActionCategory = Literal[
    "read", "start_stop", "resize", "configure", "create", "delete", "backup", "restore"
]
CostImpact = Literal["negative", "neutral", "positive", "unknown"]


def _ensure_list(v: Any) -> list:
    if v is None:
        return []
    return v


class ApiMapping(BaseModel):
    service: str
    operation: str


class ActionSpec(BaseModel):
    name: str
    description: str = ""
    category: ActionCategory = "configure"
    risk: Literal["low", "medium", "high", "critical"] = "medium"
    reversible: bool = True
    requires_approval: bool = True
    cost_impact: CostImpact = "unknown"
    resource_type: str = "resource"
    api: ApiMapping
    monthly_cost_delta: float = Field(
        default=0.0, description="Estimated monthly USD change per affected resource"
    )
    duration_seconds: int = Field(default=60, ge=1)
    downtime: bool = False
    inverse: str | None = None
    default_parameters: dict[str, Any] = Field(default_factory=dict)
    pre_checks: list[str] = Field(default_factory=lambda: ["verify_permissions"])
    post_checks: list[str] = Field(default_factory=lambda: ["verify_state"])

    @field_validator("pre_checks", "post_checks", mode="before")
    @classmethod
    def _validate_checks(cls, v: Any) -> list:
        return _ensure_list(v)


class ActionCatalog(BaseModel):
    version: int = Field(default=1)
    dsl_versions: list[str] = Field(default_factory=lambda: ["1.0"])
    current_dsl_version: str = Field(default="1.0")
    default_max_resources: int = Field(default=50, ge=1)
    check_duration_seconds: int = Field(default=5, ge=1)
    pre_checks: dict[str, str] = Field(default_factory=dict)
    post_checks: dict[str, str] = Field(default_factory=dict)
    actions: dict[str, ActionSpec] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_references(self) -> "ActionCatalog":
        if self.current_dsl_version not in self.dsl_versions:
            raise ValueError(
                f"current_dsl_version '{self.current_dsl_version}' is not a known DSL version"
            )
        for name, spec in self.actions.items():
            if "." not in name:
                raise ValueError(f"Action '{name}' must be dot-namespaced (service.verb)")
            if spec.inverse is not None and spec.inverse not in self.actions:
                raise ValueError(f"Action '{name}' has unknown inverse '{spec.inverse}'")
        return self

    def get(self, action: str) -> ActionSpec | None:
        return self.actions.get(action)

    def is_allowed(self, action: str) -> bool:
        return action in self.actions

    def inverse_of(self, action: str) -> str | None:
        spec = self.actions.get(action)
        return spec.inverse if spec else None

    def pre_check_description(self, check_type: str) -> str:
        return self.pre_checks.get(check_type, f"Pre-check: {check_type}")

    def post_check_description(self, check_type: str) -> str:
        return self.post_checks.get(check_type, f"Post-check: {check_type}")

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "ActionCatalog":
        return cls.model_validate(data)
