"""Boto3 invoker for the mutating operations a plan may contain."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from aws_action_governor.config import Settings
from aws_action_governor.credentials.models import TemporaryCredentials
from aws_action_governor.domain.models import ApiCall
from aws_action_governor.errors import StepExecutionError
from aws_action_governor.utils.masking import redact_sensitive_fields

logger = logging.getLogger(__name__)

ClientCacheKey = tuple[str, ...]
RequestBuilder = Callable[[list[str], dict[str, Any]], list[dict[str, Any]]]

_CLIENT_TTL_SECONDS = 900
_CLIENT_CACHE_MAX_SIZE = 64


@dataclass
class InvocationResult:
    request_ids: list[str] = field(default_factory=list)
    calls: int = 0


def _snake_case(name: str) -> str:
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def _require(parameters: dict[str, Any], key: str, operation: str) -> Any:
    value = parameters.get(key)
    if value is None:
        raise StepExecutionError(
            f"{operation} requires parameter '{key}'", code="missing_parameter"
        )
    return value


def _int_param(parameters: dict[str, Any], key: str, default: int | None, operation: str) -> int:
    value = parameters.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise StepExecutionError(
            f"{operation} parameter '{key}' must be an integer, got {value!r}",
            code="invalid_parameter",
        ) from exc


def _ec2_instances(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"InstanceIds": list(resources)}]


def _ec2_modify_instance(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    instance_type = _require(parameters, "instance_type", "ModifyInstanceAttribute")
    return [{"InstanceId": r, "InstanceType": {"Value": instance_type}} for r in resources]


def _s3_lifecycle(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    rule = {
        "ID": parameters.get("rule_id", "cost-governor-transition"),
        "Status": "Enabled",
        "Filter": {"Prefix": parameters.get("prefix", "")},
        "Transitions": [
            {
                "Days": _int_param(
                    parameters, "transition_days", 30, "PutBucketLifecycleConfiguration"
                ),
                "StorageClass": parameters.get("storage_class", "STANDARD_IA"),
            }
        ],
    }
    return [{"Bucket": r, "LifecycleConfiguration": {"Rules": [rule]}} for r in resources]


def _s3_intelligent_tiering(
    resources: list[str], parameters: dict[str, Any]
) -> list[dict[str, Any]]:
    config_id = parameters.get("configuration_id", "cost-governor-tiering")
    configuration = {
        "Id": config_id,
        "Status": "Enabled",
        "Tierings": [
            {
                "Days": _int_param(
                    parameters, "archive_days", 90, "PutBucketIntelligentTieringConfiguration"
                ),
                "AccessTier": "ARCHIVE_ACCESS",
            }
        ],
    }
    return [
        {"Bucket": r, "Id": config_id, "IntelligentTieringConfiguration": configuration}
        for r in resources
    ]


def _rds_instance(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"DBInstanceIdentifier": r} for r in resources]


def _rds_snapshot(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    suffix = parameters.get("snapshot_suffix") or time.strftime("%Y%m%d%H%M%S", time.gmtime())
    return [
        {"DBInstanceIdentifier": r, "DBSnapshotIdentifier": f"{r}-{suffix}"} for r in resources
    ]


def _rds_modify(resources: list[str], parameters: dict[str, Any]) -> list[dict[str, Any]]:
    instance_class = _require(parameters, "instance_class", "ModifyDBInstance")
    apply_immediately = bool(parameters.get("apply_immediately", True))
    return [
        {
            "DBInstanceIdentifier": r,
            "DBInstanceClass": instance_class,
            "ApplyImmediately": apply_immediately,
        }
        for r in resources
    ]


def _lambda_configuration(
    resources: list[str], parameters: dict[str, Any]
) -> list[dict[str, Any]]:
    update: dict[str, Any] = {}
    if parameters.get("memory_size") is not None:
        update["MemorySize"] = _int_param(
            parameters, "memory_size", None, "UpdateFunctionConfiguration"
        )
    if parameters.get("timeout") is not None:
        update["Timeout"] = _int_param(
            parameters, "timeout", None, "UpdateFunctionConfiguration"
        )
    if not update:
        raise StepExecutionError(
            "UpdateFunctionConfiguration requires 'memory_size' or 'timeout'",
            code="missing_parameter",
        )
    return [{"FunctionName": r, **update} for r in resources]


REQUEST_BUILDERS: dict[str, RequestBuilder] = {
    "ec2:StopInstances": _ec2_instances,
    "ec2:StartInstances": _ec2_instances,
    "ec2:ModifyInstanceAttribute": _ec2_modify_instance,
    "s3:PutBucketLifecycleConfiguration": _s3_lifecycle,
    "s3:PutBucketIntelligentTieringConfiguration": _s3_intelligent_tiering,
    "rds:StopDBInstance": _rds_instance,
    "rds:StartDBInstance": _rds_instance,
    "rds:CreateDBSnapshot": _rds_snapshot,
    "rds:ModifyDBInstance": _rds_modify,
    "lambda:UpdateFunctionConfiguration": _lambda_configuration,
}


def build_requests(api_call: ApiCall, resources: list[str]) -> list[dict[str, Any]]:
    key = f"{api_call.service.lower()}:{api_call.operation}"
    builder = REQUEST_BUILDERS.get(key)
    if builder is None:
        raise StepExecutionError(f"Unsupported operation: {key}", code="unsupported_operation")
    if not resources:
        return []
    return builder(resources, dict(api_call.parameters))


def _credential_fingerprint(credentials: TemporaryCredentials) -> str:
    material = "\x1f".join(
        (credentials.access_key_id, credentials.secret_access_key, credentials.session_token)
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class Boto3ActionInvoker:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: OrderedDict[ClientCacheKey, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    async def invoke(
        self,
        api_call: ApiCall,
        resources: list[str],
        credentials: TemporaryCredentials,
    ) -> InvocationResult:
        requests = build_requests(api_call, resources)
        if not requests:
            return InvocationResult()

        region = api_call.region or self._settings.aws.default_region
        method_name = _snake_case(api_call.operation)
        logger.info(
            "Executing AWS API call: %s.%s region=%s resources=%d params=%s",
            api_call.service,
            api_call.operation,
            region,
            len(resources),
            redact_sensitive_fields(dict(api_call.parameters)),
        )
        client = await asyncio.to_thread(
            self._get_client, api_call.service.lower(), region, credentials
        )

        result = InvocationResult()
        for kwargs in requests:
            response = await asyncio.to_thread(self._call_method, client, method_name, kwargs)
            result.calls += 1
            request_id = response.get("ResponseMetadata", {}).get("RequestId")
            if request_id:
                result.request_ids.append(request_id)
        return result

    @staticmethod
    def _call_method(client: Any, method_name: str, kwargs: dict[str, Any]) -> dict[str, Any]:
        method = getattr(client, method_name)
        try:
            response = method(**kwargs)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code", "Unknown")
            raise StepExecutionError(
                f"{code}: {error.get('Message', str(exc))}", code="aws_error"
            ) from exc
        except BotoCoreError as exc:
            raise StepExecutionError(str(exc), code="aws_unavailable") from exc
        return response if isinstance(response, dict) else {}

    def _get_client(
        self, service: str, region: str | None, credentials: TemporaryCredentials
    ) -> Any:
        key: ClientCacheKey = (service, region or "", _credential_fingerprint(credentials))
        now = time.monotonic()
        with self._lock:
            cached = self._clients.get(key)
            if cached is not None:
                client, created_at = cached
                if now - created_at < _CLIENT_TTL_SECONDS:
                    self._clients.move_to_end(key)
                    return client
                del self._clients[key]
            try:
                client = self._create_client(service, region, credentials)
            except BotoCoreError as exc:
                raise StepExecutionError(
                    f"Cannot create {service} client: {exc}", code="client_error"
                ) from exc
            self._clients[key] = (client, now)
            while len(self._clients) > _CLIENT_CACHE_MAX_SIZE:
                self._clients.popitem(last=False)
            return client

    def _create_client(
        self, service: str, region: str | None, credentials: TemporaryCredentials
    ) -> Any:
        session = boto3.Session(
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            aws_session_token=credentials.session_token,
            region_name=region,
        )
        return session.client(service, config=self._service_config(service))

    def _service_config(self, service: str) -> Config:
        base: dict[str, object] = {
            "read_timeout": self._settings.execution.sdk_timeout_seconds,
            "connect_timeout": self._settings.execution.sdk_timeout_seconds,
        }
        if service == "s3":
            base["request_checksum_calculation"] = "when_required"
            base["response_checksum_validation"] = "when_required"
        return Config(**base)
