"""Permission boundary evaluation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from aws_action_governor.domain.connection import Connection
from aws_action_governor.domain.operations import OperationRef
from aws_action_governor.policy.models import BoundaryConfig

logger = logging.getLogger(__name__)

_MAX_POLICY_REGEX_LENGTH = 256
_BACKREFERENCE_PATTERN = re.compile(r"\\[1-9]")
_NESTED_QUANTIFIER_PATTERN = re.compile(
    r"\((?:[^()\\]|\\.)*[+*](?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d+(?:,\d*)?\})"
)
_LOOKBEHIND_TOKENS = ("(?<=", "(?<!")


@dataclass
class ActionRequest:
    service: str
    operation: str
    resources: list[str] = field(default_factory=list)
    region: str | None = None

    @property
    def ref(self) -> OperationRef:
        return OperationRef(self.service, self.operation)


@dataclass
class BoundaryDecision:
    allowed: bool
    reason: str | None = None
    risk: str | None = None


class PermissionBoundary:
    def __init__(self, config: BoundaryConfig) -> None:
        self._config = config
        self._banned_patterns = self._compile_patterns(config.banned_operations, "banned")
        self._risk_patterns = {
            risk: self._compile_patterns(pats, f"risk:{risk}")
            for risk, pats in config.risk_patterns.items()
        }
        self._allowed_operations = {
            service.lower(): frozenset(ops) for service, ops in config.services.items()
        }

    @classmethod
    def _compile_patterns(cls, patterns: list[str], label: str) -> list[re.Pattern[str]]:
        compiled: list[re.Pattern[str]] = []
        for pat in patterns:
            cls._validate_pattern_safety(pat, label)
            try:
                compiled.append(re.compile(pat))
            except re.error as exc:
                raise ValueError(f"Invalid regex in {label} policy pattern '{pat}': {exc}") from exc
        return compiled

    @staticmethod
    def _validate_pattern_safety(pattern: str, label: str) -> None:
        if len(pattern) > _MAX_POLICY_REGEX_LENGTH:
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': exceeds "
                f"{_MAX_POLICY_REGEX_LENGTH} characters"
            )
        if any(token in pattern for token in _LOOKBEHIND_TOKENS):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': look-behind is not allowed"
            )
        if _BACKREFERENCE_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "backreferences are not allowed"
            )
        if _NESTED_QUANTIFIER_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "nested quantifiers are not allowed"
            )

    @property
    def max_resources_per_request(self) -> int:
        return self._config.limits.max_resources_per_request

    async def validate_action(
        self, request: ActionRequest, connection: Connection
    ) -> BoundaryDecision:
        return self.evaluate(request, connection)

    def evaluate(self, request: ActionRequest, connection: Connection) -> BoundaryDecision:
        operation = request.ref
        risk = self.risk_for_operation(operation)

        banned = self._matches(self._banned_patterns, operation.key)
        if banned:
            return self._deny(request, f"Operation {operation.key} is banned by policy", risk)

        if not self.is_service_allowed(operation.service):
            return self._deny(request, f"Service {operation.service} is not allowed", risk)

        if not self.is_operation_allowed(operation):
            return self._deny(
                request, f"Operation {operation.key} is not in the service allowlist", risk
            )

        if (
            request.region
            and self._config.limits.enforce_connection_regions
            and request.region not in connection.allowed_regions
        ):
            return self._deny(
                request,
                f"Region {request.region} is not allowed for connection "
                f"{connection.connection_id}",
                risk,
            )

        limit = self._config.limits.max_resources_per_request
        if len(request.resources) > limit:
            return self._deny(
                request,
                f"Request targets {len(request.resources)} resources (max {limit})",
                risk,
            )

        return BoundaryDecision(allowed=True, risk=risk)

    def is_service_allowed(self, service: str) -> bool:
        return service.lower() in self._allowed_operations

    def is_operation_allowed(self, operation: OperationRef) -> bool:
        if self._matches(self._banned_patterns, operation.key):
            return False
        allowed = self._allowed_operations.get(operation.service.lower())
        if allowed is None:
            return False
        return operation.operation in allowed

    def risk_for_operation(self, operation: OperationRef) -> str | None:
        for risk, patterns in self._risk_patterns.items():
            if any(pattern.search(operation.operation) for pattern in patterns):
                return risk
        return None

    def _deny(self, request: ActionRequest, reason: str, risk: str | None) -> BoundaryDecision:
        logger.warning(
            "Permission boundary denied %s:%s: %s", request.service, request.operation, reason
        )
        return BoundaryDecision(allowed=False, reason=reason, risk=risk)

    @staticmethod
    def _matches(patterns: list[re.Pattern[str]], key: str) -> str | None:
        for pattern in patterns:
            if pattern.search(key):
                return pattern.pattern
        return None
