"""STS AssumeRole credential issuer.

Credentials are scoped to one connection and one plan, requested with the
connection's ExternalId, and never logged. Issued STS credentials cannot be
revoked; they lapse at expiry (900 seconds by default).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import threading
from typing import Any

import botocore.session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from aws_action_governor.config import AWSSettings
from aws_action_governor.credentials.cache import CacheKey, CredentialCache
from aws_action_governor.credentials.models import AssumedRole, TemporaryCredentials
from aws_action_governor.domain.connection import Connection
from aws_action_governor.errors import CredentialIssueError

logger = logging.getLogger(__name__)

_CODE_MAP = {
    "AccessDenied": "access_denied",
    "MalformedPolicyDocument": "policy_error",
    "PackedPolicyTooLarge": "policy_too_large",
    "ExpiredTokenException": "token_expired",
    "RegionDisabledException": "region_disabled",
    "Throttling": "throttled",
    "ThrottlingException": "throttled",
}


class STSCredentialIssuer:
    """Thread-safe STS issuer for AssumeRole with a per-plan credential cache."""

    def __init__(self, settings: AWSSettings, cache: CredentialCache | None = None) -> None:
        self._region = settings.sts_region
        self._duration_seconds = settings.assume_role_duration_seconds
        self._cache = cache or CredentialCache(
            refresh_buffer_seconds=settings.credential_refresh_buffer_seconds,
            max_entries=settings.credential_cache_max_entries,
        )
        self._client: Any = None
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is not None:
                return self._client

            session = botocore.session.get_session()
            self._client = session.create_client(
                "sts",
                region_name=self._region,
                config=Config(
                    connect_timeout=5,
                    read_timeout=15,
                    retries={"max_attempts": 2},
                ),
            )
            logger.info("STS client initialized (region=%s)", self._region)
            return self._client

    async def assume_role(self, connection: Connection, plan_id: str) -> AssumedRole:
        key = CacheKey(connection.connection_id, plan_id, connection.role_arn)
        session_name = f"governor-{plan_id}"

        async def _refresh() -> AssumedRole:
            return await asyncio.to_thread(
                self._assume_role_sync,
                connection.role_arn,
                connection.external_id,
                session_name,
            )

        return await self._cache.get_or_refresh(key, _refresh)

    async def release(self, plan_id: str) -> None:
        await self._cache.invalidate_plan(plan_id)

    def _assume_role_sync(
        self,
        role_arn: str,
        external_id: str,
        session_name: str,
    ) -> AssumedRole:
        client = self._get_client()
        safe_session_name = self._sanitize_session_name(session_name)

        params: dict[str, Any] = {
            "RoleArn": role_arn,
            "RoleSessionName": safe_session_name,
            "ExternalId": external_id,
            "DurationSeconds": self._duration_seconds,
        }

        try:
            response = client.assume_role(**params)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            error_message = exc.response.get("Error", {}).get("Message", str(exc))
            logger.warning(
                "STS failed: role=%s, session=%s, error=%s: %s",
                role_arn,
                safe_session_name,
                error_code,
                error_message,
            )
            raise CredentialIssueError(
                f"Failed to assume role: {error_message}",
                code=_CODE_MAP.get(error_code, "sts_error"),
            ) from exc
        except BotoCoreError as exc:
            logger.warning("STS unavailable: role=%s, error=%s", role_arn, exc)
            raise CredentialIssueError(
                f"STS unavailable: {exc}", code="sts_unavailable"
            ) from exc

        creds = response["Credentials"]
        assumed = response["AssumedRoleUser"]

        logger.info("Assumed role: %s, session=%s", role_arn, safe_session_name)

        return AssumedRole(
            credentials=TemporaryCredentials(
                access_key_id=creds["AccessKeyId"],
                secret_access_key=creds["SecretAccessKey"],
                session_token=creds["SessionToken"],
                expiration=creds["Expiration"],
            ),
            session_name=safe_session_name,
            assumed_role_arn=assumed["Arn"],
            assumed_role_id=assumed.get("AssumedRoleId", ""),
        )

    @staticmethod
    def _sanitize_session_name(name: str) -> str:
        """Sanitize for STS (2-64 chars, alphanumeric/=.@-)."""
        safe = re.sub(r"[^a-zA-Z0-9=.@-]", "-", name)
        safe = re.sub(r"-+", "-", safe).strip("-")
        if len(safe) > 64:
            suffix = hashlib.sha256(name.encode()).hexdigest()[:8]
            safe = safe[:55] + "-" + suffix
        return safe if len(safe) >= 2 else "governor-" + safe
