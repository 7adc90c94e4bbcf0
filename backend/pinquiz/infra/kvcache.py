"""Small key-value cache for client-local convenience state."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol

from pinquiz.infra.redis import redis_client


class KeyValueCache(Protocol):
	async def get(self, key: str) -> Optional[str]:
		...

	async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
		...

	async def delete(self, key: str) -> None:
		...


class RedisKeyValueCache:
	def __init__(self, client: Any = None) -> None:
		self._client = client if client is not None else redis_client

	async def get(self, key: str) -> Optional[str]:
		return await self._client.get(key)

	async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
		await self._client.set(key, value, ex=ttl_seconds)

	async def delete(self, key: str) -> None:
		await self._client.delete(key)


class MemoryKeyValueCache:
	"""Dict-backed cache; expiry is left to readers."""

	def __init__(self) -> None:
		self._values: Dict[str, str] = {}
		self._lock = asyncio.Lock()

	async def get(self, key: str) -> Optional[str]:
		async with self._lock:
			return self._values.get(key)

	async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
		async with self._lock:
			self._values[key] = value

	async def delete(self, key: str) -> None:
		async with self._lock:
			self._values.pop(key, None)
