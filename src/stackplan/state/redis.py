"""
Redis state backend for teams sharing one stack.

The state document is a JSON string under the backend key. The lock is a
separate key taken with ``SET NX`` and released through a compare-and-delete
script, so a run only ever removes the lock it holds.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from stackplan.core.errors import LockError, StateError
from stackplan.state.models import LockInfo
from stackplan.state.store import StateStore

logger = structlog.get_logger()

# Delete the lock only if it still carries our id.
_RELEASE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
local holder = cjson.decode(current)
if holder['id'] ~= ARGV[1] then
    return -1
end
redis.call('DEL', KEYS[1])
return 1
"""


class RedisStateStore(StateStore):
    """Remote state: document under ``key``, lock under ``<lock_name>:<key>``."""

    def __init__(
        self,
        redis_url: str,
        *,
        key: str,
        lock_name: str = "stackplan-locks",
        redis_client: aioredis.Redis | None = None,
        lock_timeout: float = 0.0,
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__(lock_timeout=lock_timeout, poll_interval=poll_interval)
        self._redis_url = redis_url
        self._client: aioredis.Redis | None = redis_client
        self._owns_client = redis_client is None
        self.key = key
        self.lock_key = f"{lock_name}:{key}"

    async def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.Redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def initialize(self) -> None:
        client = await self._get_client()
        try:
            await client.ping()
        except aioredis.RedisError as e:
            raise StateError(f"Cannot reach state backend {self._redis_url}: {e}") from e

    async def _read_document(self) -> dict[str, Any] | None:
        client = await self._get_client()
        try:
            raw = await client.get(self.key)
        except aioredis.RedisError as e:
            raise StateError(f"Cannot read state '{self.key}': {e}") from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateError(f"State '{self.key}' is not valid JSON: {e}") from e

    async def _write_document(self, document: dict[str, Any]) -> None:
        client = await self._get_client()
        try:
            await client.set(self.key, json.dumps(document, sort_keys=True))
        except aioredis.RedisError as e:
            raise StateError(f"Cannot write state '{self.key}': {e}") from e

    async def _try_acquire(self, info: LockInfo) -> LockInfo | None:
        client = await self._get_client()
        try:
            acquired = await client.set(self.lock_key, json.dumps(info.to_dict()), nx=True)
            if acquired:
                return None
            raw = await client.get(self.lock_key)
        except aioredis.RedisError as e:
            raise LockError(f"Cannot acquire state lock '{self.lock_key}': {e}") from e
        if not raw:
            # Released between SET and GET; report an unknown holder and retry.
            return LockInfo.from_dict({})
        try:
            return LockInfo.from_dict(json.loads(raw))
        except (json.JSONDecodeError, AttributeError):
            logger.warning("state_lock_unreadable", lock_key=self.lock_key)
            return LockInfo.from_dict({})

    async def _release(self, info: LockInfo) -> None:
        client = await self._get_client()
        try:
            result = await client.eval(_RELEASE_SCRIPT, 1, self.lock_key, info.lock_id)
        except aioredis.RedisError as e:
            logger.error("state_lock_release_failed", lock_id=info.lock_id, err=str(e))
            raise LockError(f"Cannot release state lock '{self.lock_key}': {e}") from e
        if int(result) == -1:
            logger.warning("state_lock_stolen", lock_id=info.lock_id)
        elif int(result) == 0:
            logger.warning("state_lock_missing", lock_id=info.lock_id)

    async def force_unlock(self, lock_id: str) -> None:
        client = await self._get_client()
        try:
            result = await client.eval(_RELEASE_SCRIPT, 1, self.lock_key, lock_id)
        except aioredis.RedisError as e:
            raise LockError(f"Cannot force-unlock state lock '{self.lock_key}': {e}") from e
        if int(result) == 0:
            raise LockError("State is not locked")
        if int(result) == -1:
            raise LockError(f"Lock ID '{lock_id}' does not match the current lock")
        logger.warning("state_lock_forced", lock_id=lock_id)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
