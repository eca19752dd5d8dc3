"""In-memory connection store."""

from __future__ import annotations

import asyncio
import copy

from aws_action_governor.domain.connection import Connection
from aws_action_governor.errors import ConnectionNotFoundError


class InMemoryConnectionStore:
    def __init__(self, connections: list[Connection] | None = None) -> None:
        self._connections: dict[str, Connection] = {
            c.connection_id: c for c in connections or []
        }
        self._lock = asyncio.Lock()

    async def get(self, connection_id: str) -> Connection:
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id)
            return copy.deepcopy(connection)

    async def save(self, connection: Connection) -> None:
        async with self._lock:
            self._connections[connection.connection_id] = copy.deepcopy(connection)

    async def record_usage(self, connection_id: str, api_calls: int) -> Connection:
        """Increment usage counters in place under the store lock."""
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise ConnectionNotFoundError(connection_id)
            connection.record_usage(api_calls)
            return copy.deepcopy(connection)

    async def list(self) -> list[Connection]:
        async with self._lock:
            return [copy.deepcopy(c) for c in self._connections.values()]
