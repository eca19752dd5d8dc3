"""Catalog-backed action descriptor parser.

Turns a requested action (``ActionDescriptor``) into the validated, versioned
definition the plan generator consumes. The definition hash binds a plan to the
exact descriptor it was built from, so a plan can be re-checked before it runs.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from aws_action_governor.catalog.models import ActionCatalog
from aws_action_governor.utils.time import utc_now

logger = logging.getLogger(__name__)


class ActionDescriptor(BaseModel):
    action: str
    version: str | None = None
    regions: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    max_resources: int | None = None
    require_approval: bool | None = None
    pre_checks: list[str] | None = None
    post_checks: list[str] | None = None
    blocked: bool = False
    block_reason: str | None = None


class ActionDefinition(BaseModel):
    action: str
    version: str
    name: str
    description: str
    category: str
    service: str
    resource_type: str
    risk: str
    reversible: bool
    cost_impact: str
    api_service: str | None
    operation: str | None
    regions: list[str]
    parameters: dict[str, Any]
    max_resources: int
    require_approval: bool
    pre_checks: list[str]
    post_checks: list[str]


@dataclass
class ValidationIssue:
    field: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


@dataclass
class DescriptorValidation:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class ValidatedAction:
    definition: ActionDefinition
    hash: str
    dsl_version: str
    validation: DescriptorValidation
    blocked: bool = False
    block_reason: str | None = None
    parsed_at: datetime = field(default_factory=utc_now)


def hash_definition(definition: ActionDefinition) -> str:
    canonical = json.dumps(
        definition.model_dump(mode="json"), sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_hash(definition: ActionDefinition, expected_hash: str) -> bool:
    return hash_definition(definition) == expected_hash


class ActionDescriptorParser:
    def __init__(self, catalog: ActionCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> ActionCatalog:
        return self._catalog

    def parse(
        self,
        descriptor: ActionDescriptor,
        default_regions: list[str] | None = None,
    ) -> ValidatedAction:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        version = descriptor.version or self._catalog.current_dsl_version
        if version not in self._catalog.dsl_versions:
            errors.append(
                ValidationIssue("version", f"Unsupported DSL version: {version}", "unknown_version")
            )

        spec = self._catalog.get(descriptor.action)
        if spec is None:
            errors.append(
                ValidationIssue(
                    "action", f"Action not allowed: {descriptor.action}", "unknown_action"
                )
            )

        regions = list(descriptor.regions or default_regions or [])
        if not regions:
            errors.append(ValidationIssue("regions", "At least one region is required", "no_regions"))

        max_resources = (
            descriptor.max_resources
            if descriptor.max_resources is not None
            else self._catalog.default_max_resources
        )
        if max_resources < 1:
            errors.append(
                ValidationIssue("max_resources", "max_resources must be at least 1", "invalid_limit")
            )

        service = descriptor.action.split(".", 1)[0]
        if spec is not None:
            parameters = {**spec.default_parameters, **descriptor.parameters}
            if not spec.reversible:
                warnings.append(
                    ValidationIssue("action", "Action is not reversible", "irreversible")
                )
            definition = ActionDefinition(
                action=descriptor.action,
                version=version,
                name=spec.name,
                description=spec.description,
                category=spec.category,
                service=service,
                resource_type=spec.resource_type,
                risk=spec.risk,
                reversible=spec.reversible,
                cost_impact=spec.cost_impact,
                api_service=spec.api.service,
                operation=spec.api.operation,
                regions=regions,
                parameters=parameters,
                max_resources=max_resources,
                require_approval=(
                    descriptor.require_approval
                    if descriptor.require_approval is not None
                    else spec.requires_approval
                ),
                pre_checks=list(
                    descriptor.pre_checks if descriptor.pre_checks is not None else spec.pre_checks
                ),
                post_checks=list(
                    descriptor.post_checks
                    if descriptor.post_checks is not None
                    else spec.post_checks
                ),
            )
        else:
            definition = ActionDefinition(
                action=descriptor.action,
                version=version,
                name=descriptor.action,
                description="",
                category="configure",
                service=service,
                resource_type="resource",
                risk="critical",
                reversible=False,
                cost_impact="unknown",
                api_service=None,
                operation=None,
                regions=regions,
                parameters=dict(descriptor.parameters),
                max_resources=max_resources,
                require_approval=True,
                pre_checks=list(descriptor.pre_checks or []),
                post_checks=list(descriptor.post_checks or []),
            )

        validation = DescriptorValidation(valid=not errors, errors=errors, warnings=warnings)
        if errors:
            logger.warning(
                "Descriptor for %s failed validation: %s",
                descriptor.action,
                "; ".join(e.message for e in errors),
            )
        return ValidatedAction(
            definition=definition,
            hash=hash_definition(definition),
            dsl_version=version,
            validation=validation,
            blocked=descriptor.blocked,
            block_reason=descriptor.block_reason,
        )
