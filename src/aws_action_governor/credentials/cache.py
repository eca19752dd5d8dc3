"""Credential cache with async refresh support."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from aws_action_governor.credentials.models import AssumedRole


@dataclass(frozen=True)
class CacheKey:
    connection_id: str
    plan_id: str
    role_arn: str


@dataclass
class CacheEntry:
    assumed: AssumedRole
    cached_at: datetime

    @property
    def expiration(self) -> datetime:
        return self.assumed.credentials.expiration

    def is_expiring_soon(self, buffer_seconds: int) -> bool:
        exp = self.expiration
        if exp.tzinfo is None:
            exp = exp.replace(tzinfo=timezone.utc)
        return exp <= datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds)


class CredentialCache:
    """Async credential cache with single-flight refresh."""

    def __init__(self, refresh_buffer_seconds: int, max_entries: int) -> None:
        self._refresh_buffer_seconds = refresh_buffer_seconds
        self._max_entries = max_entries
        self._cache: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._in_flight: dict[CacheKey, asyncio.Future[AssumedRole]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    async def get_or_refresh(
        self,
        key: CacheKey,
        refresh_fn: Callable[[], Awaitable[AssumedRole]],
    ) -> AssumedRole:
        async with self._lock:
            entry = self._cache.get(key)
            if entry and not entry.is_expiring_soon(self._refresh_buffer_seconds):
                self._cache.move_to_end(key)
                return entry.assumed

            in_flight = self._in_flight.get(key)
            if in_flight is None:
                in_flight = asyncio.get_running_loop().create_future()
                self._in_flight[key] = in_flight
                should_refresh = True
            else:
                should_refresh = False

        if not should_refresh:
            return await in_flight

        try:
            assumed = await refresh_fn()
        except BaseException as exc:
            async with self._lock:
                future = self._in_flight.pop(key, None)
                if future and not future.done():
                    future.set_exception(exc)
            raise

        async with self._lock:
            self._cache[key] = CacheEntry(assumed=assumed, cached_at=datetime.now(timezone.utc))
            self._cache.move_to_end(key)
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)

            future = self._in_flight.pop(key, None)
            if future and not future.done():
                future.set_result(assumed)

        return assumed

    async def invalidate_plan(self, plan_id: str) -> int:
        async with self._lock:
            stale = [key for key in self._cache if key.plan_id == plan_id]
            for key in stale:
                del self._cache[key]
        return len(stale)
