"""Resume pointers for hosts and players.

A pointer is a convenience cache, never a source of truth: it is dropped when
stale or malformed, and a host pointer is re-checked against the live game
before it is used.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Generic, Optional, Type, TypeVar

from pinquiz.domain.games.models import TERMINAL_STATES
from pinquiz.domain.sessions.models import (
	HOST_SESSION_KEY,
	PLAYER_SESSION_KEY,
	HostSession,
	PlayerSession,
	default_return_path,
	session_key,
)
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import DocumentStore, StoreError
from pinquiz.infra.errors import is_permission_error
from pinquiz.infra.kvcache import KeyValueCache, RedisKeyValueCache
from pinquiz.settings import settings

logger = logging.getLogger(__name__)

PointerT = TypeVar("PointerT", HostSession, PlayerSession)


def _now_ms() -> int:
	return int(time.time() * 1000)


class _PointerStore(Generic[PointerT]):
	def __init__(
		self,
		model: Type[PointerT],
		key: str,
		ttl_hours: int,
		cache: KeyValueCache | None = None,
		*,
		clock: Callable[[], int] | None = None,
	) -> None:
		self._model = model
		self._key = key
		self._ttl_ms = ttl_hours * 60 * 60 * 1000
		self._cache = cache if cache is not None else RedisKeyValueCache()
		self._clock = clock or _now_ms

	async def _write(self, pointer: PointerT) -> None:
		await self._cache.set(self._key, json.dumps(pointer.to_mapping()), ttl_seconds=self._ttl_ms // 1000)

	async def load(self) -> Optional[PointerT]:
		"""Return the stored pointer, or None when absent, expired or corrupt."""
		raw = await self._cache.get(self._key)
		if not raw:
			return None
		try:
			pointer = self._model.from_mapping(json.loads(raw))
		except (KeyError, TypeError, ValueError):
			logger.warning("discarding corrupt session pointer", extra={"key": self._key})
			await self.clear()
			return None
		if self._clock() - pointer.timestamp > self._ttl_ms:
			await self.clear()
			return None
		return pointer

	async def clear(self) -> None:
		await self._cache.delete(self._key)

	async def has_active(self) -> bool:
		return await self.load() is not None


class HostSessionManager(_PointerStore[HostSession]):
	def __init__(self, owner: str, cache: KeyValueCache | None = None, *, clock: Callable[[], int] | None = None) -> None:
		super().__init__(HostSession, session_key(HOST_SESSION_KEY, owner), settings.host_session_ttl_hours, cache, clock=clock)

	async def save(
		self,
		*,
		game_id: str,
		game_pin: str,
		activity_id: str,
		activity_title: str,
		host_id: str,
		activity_type: str = "quiz",
		game_state: Optional[str] = None,
		return_path: Optional[str] = None,
	) -> HostSession:
		pointer = HostSession(
			game_id=game_id,
			game_pin=game_pin,
			activity_id=activity_id,
			activity_title=activity_title,
			host_id=host_id,
			timestamp=self._clock(),
			activity_type=activity_type,
			game_state=game_state,
			return_path=return_path or default_return_path(activity_type, game_id, game_state),
		)
		await self._write(pointer)
		return pointer

	async def refresh_timestamp(self, game_state: Optional[str] = None) -> Optional[HostSession]:
		"""Keep the pointer alive; ``game_state`` also records the latest phase."""
		pointer = await self.load()
		if pointer is None:
			return None
		pointer.timestamp = self._clock()
		if game_state is not None:
			pointer.game_state = game_state
		await self._write(pointer)
		return pointer

	async def matches_host(self, host_id: str) -> bool:
		pointer = await self.load()
		return pointer is not None and pointer.host_id == host_id

	async def matches_game(self, game_id: str) -> bool:
		pointer = await self.load()
		return pointer is not None and pointer.game_id == game_id

	async def validate(self, user: Optional[AuthenticatedUser], store: DocumentStore) -> Optional[HostSession]:
		"""Return the pointer only if it still names a live game owned by ``user``."""
		pointer = await self.load()
		if pointer is None:
			return None
		if user is None or pointer.host_id != user.id:
			await self.clear()
			return None
		try:
			snapshot = await store.get(f"games/{pointer.game_id}")
		except StoreError as exc:
			if is_permission_error(exc):
				await self.clear()
				return None
			logger.warning(
				"host session check failed",
				extra={"game_id": pointer.game_id, "error": exc.code},
			)
			return pointer
		if not snapshot.exists or snapshot.get("state") in TERMINAL_STATES:
			await self.clear()
			return None
		return pointer


class PlayerSessionManager(_PointerStore[PlayerSession]):
	def __init__(self, owner: str, cache: KeyValueCache | None = None, *, clock: Callable[[], int] | None = None) -> None:
		super().__init__(PlayerSession, session_key(PLAYER_SESSION_KEY, owner), settings.player_session_ttl_hours, cache, clock=clock)

	async def save(self, *, player_id: str, game_id: str, game_pin: str, nickname: str) -> PlayerSession:
		pointer = PlayerSession(
			player_id=player_id,
			game_id=game_id,
			game_pin=game_pin,
			nickname=nickname,
			timestamp=self._clock(),
		)
		await self._write(pointer)
		return pointer

	async def validate(self, store: DocumentStore) -> Optional[PlayerSession]:
		pointer = await self.load()
		if pointer is None:
			return None
		try:
			player = await store.get(f"games/{pointer.game_id}/players/{pointer.player_id}")
			game = await store.get(f"games/{pointer.game_id}")
		except StoreError as exc:
			if is_permission_error(exc):
				await self.clear()
				return None
			return pointer
		if not player.exists or not game.exists or game.get("state") in TERMINAL_STATES:
			await self.clear()
			return None
		return pointer