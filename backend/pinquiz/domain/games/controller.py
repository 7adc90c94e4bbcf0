"""Host-side driver for a running quiz.

Follows the game document and player roster, keeps the question timer in
step with the current question and finishes the question when the timer runs
out or every player has answered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from pinquiz.domain.games import models
from pinquiz.domain.games.service import GamesService, game_path, players_path
from pinquiz.domain.games.timers import QuestionTimer
from pinquiz.domain.questions.handlers import get_question_handler
from pinquiz.domain.sessions.service import HostSessionManager
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import DocumentSnapshot, Subscription
from pinquiz.obs import logging as obs_logging

logger = logging.getLogger(__name__)


def question_time_limit(question: Optional[Dict[str, Any]]) -> int:
	if not question:
		return get_question_handler("single-choice").default_time_limit
	limit = question.get("timeLimit")
	if isinstance(limit, int) and not isinstance(limit, bool) and limit > 0:
		return limit
	return get_question_handler(question).default_time_limit


class HostGameController:
	def __init__(
		self,
		service: GamesService,
		user: AuthenticatedUser,
		game_id: str,
		*,
		sessions: HostSessionManager | None = None,
		tick_interval: float = 1.0,
		auto_finish_delay: float | None = None,
		clock: Callable[[], int] | None = None,
	) -> None:
		self._service = service
		self._user = user
		self._game_id = game_id
		self._sessions = sessions
		self._timer = QuestionTimer(
			on_auto_finish=self._auto_finish,
			clock=clock or service.store.now_ms,
			tick_interval=tick_interval,
			auto_finish_delay=auto_finish_delay,
		)
		self._game: Optional[models.Game] = None
		self._players: List[Dict[str, Any]] = []
		self._subscriptions: List[Subscription] = []
		self._tasks: List[asyncio.Task] = []

	@property
	def game(self) -> Optional[models.Game]:
		return self._game

	@property
	def timer(self) -> QuestionTimer:
		return self._timer

	@property
	def players(self) -> List[Dict[str, Any]]:
		return list(self._players)

	async def start(self) -> None:
		store = self._service.store
		game_sub = await store.watch(game_path(self._game_id))
		players_sub = await store.watch(players_path(self._game_id))
		self._subscriptions = [game_sub, players_sub]
		self._tasks = [
			asyncio.create_task(self._follow(game_sub, self._on_game)),
			asyncio.create_task(self._follow(players_sub, self._on_players)),
		]

	async def close(self) -> None:
		self._timer.stop()
		for subscription in self._subscriptions:
			subscription.close()
		current = asyncio.current_task()
		pending = [task for task in self._tasks if task is not current]
		for task in pending:
			task.cancel()
		await asyncio.gather(*pending, return_exceptions=True)
		self._subscriptions = []
		self._tasks = []

	async def __aenter__(self) -> "HostGameController":
		await self.start()
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		await self.close()

	async def _follow(self, subscription: Subscription, handler) -> None:
		# each task runs in its own context copy
		obs_logging.bind_context(user_id=self._user.id, game_id=self._game_id)
		async for snapshot in subscription:
			await handler(snapshot)

	async def _on_game(self, snapshot: DocumentSnapshot) -> None:
		if not snapshot.exists:
			logger.info("game removed, stopping controller", extra={"game_id": self._game_id})
			self._timer.stop()
			return
		previous = self._game
		game = models.Game.from_mapping(self._game_id, snapshot.data or {})
		self._game = game

		if self._sessions is not None and (previous is None or previous.state != game.state):
			await self._sessions.refresh_timestamp(game.state)

		if game.activity_type != "quiz" or game.state != "question":
			# A finished timer is still running its own callback.
			if not self._timer.finished:
				self._timer.stop()
			return
		if self._timer.question_index == game.current_question_index and (self._timer.running or self._timer.finished):
			return
		self._timer.activate(
			question_index=game.current_question_index,
			time_limit=question_time_limit(game.current_question()),
			question_start_time=game.question_start_time,
			players=self._players,
		)

	async def _on_players(self, snapshots: List[DocumentSnapshot]) -> None:
		self._players = [dict(snap.data or {}, id=snap.id) for snap in snapshots]
		game = self._game
		if game is not None and game.state == "question" and self._timer.question_index == game.current_question_index:
			self._timer.update_players(self._players)

	async def _auto_finish(self) -> None:
		await self._service.finish_question(self._user, self._game_id, auto=True)
