"""Per-question countdown shared by host and participant views.

Every client derives its remaining time from the same server-assigned
``questionStartTime``, so displays agree to within a second regardless of
when each client saw the question. Only the host passes ``on_auto_finish``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from pinquiz.domain.questions.scoring import round_half_up
from pinquiz.settings import settings

logger = logging.getLogger(__name__)

AutoFinishCallback = Callable[[], Union[None, Awaitable[None]]]


def _now_ms() -> int:
	return int(time.time() * 1000)


def initial_time_remaining(time_limit: int, question_start_time: Optional[int], now_ms: int) -> int:
	"""Seconds left for a question that started at ``question_start_time`` (epoch ms).

	Elapsed time is rounded, not truncated. A missing or future start time
	yields the full limit.
	"""
	if question_start_time is None:
		return time_limit
	elapsed = round_half_up((now_ms - question_start_time) / 1000)
	if elapsed < 0:
		return time_limit
	if elapsed < time_limit:
		return time_limit - elapsed
	return 0


def _answers_of(player: Any) -> Iterable[Mapping[str, Any]]:
	if isinstance(player, Mapping):
		return player.get("answers") or []
	return getattr(player, "answers", None) or []


def count_answered(players: Iterable[Any], question_index: int) -> int:
	return sum(
		1
		for player in players
		if any(answer.get("questionIndex") == question_index for answer in _answers_of(player))
	)


class QuestionTimer:
	def __init__(
		self,
		*,
		on_auto_finish: AutoFinishCallback | None = None,
		on_tick: Callable[[int], None] | None = None,
		clock: Callable[[], int] | None = None,
		tick_interval: float = 1.0,
		auto_finish_delay: float | None = None,
	) -> None:
		self._on_auto_finish = on_auto_finish
		self._on_tick = on_tick
		self._clock = clock or _now_ms
		self._tick_interval = tick_interval
		self._auto_finish_delay = settings.auto_finish_delay_seconds if auto_finish_delay is None else auto_finish_delay
		self._time_limit = settings.default_question_time_limit
		self._question_index: Optional[int] = None
		self._time_remaining = 0
		self._finished = False
		self._countdown: Optional[asyncio.Task] = None
		self._early_finish: Optional[asyncio.Task] = None
		self._answered = 0
		self._player_count = 0

	@property
	def time_remaining(self) -> int:
		return self._time_remaining

	@property
	def question_index(self) -> Optional[int]:
		return self._question_index

	@property
	def answered_players(self) -> int:
		return self._answered

	@property
	def finished(self) -> bool:
		return self._finished

	@property
	def running(self) -> bool:
		return self._countdown is not None and not self._countdown.done()

	def activate(
		self,
		*,
		question_index: int,
		time_limit: int,
		question_start_time: Optional[int] = None,
		players: Iterable[Any] | None = None,
	) -> int:
		"""(Re)start the countdown; a new question index also re-arms auto-finish."""
		if question_index != self._question_index:
			self._finished = False
			self._answered = 0
			self._player_count = 0
		self._cancel_tasks()
		self._question_index = question_index
		self._time_limit = time_limit
		self._time_remaining = max(0, min(time_limit, initial_time_remaining(time_limit, question_start_time, self._clock())))
		self._countdown = asyncio.create_task(self._run())
		if players is not None:
			self.update_players(players)
		return self._time_remaining

	def reset(self) -> None:
		"""Restart the current question at its full time limit."""
		if self._question_index is None:
			return
		self._cancel_tasks()
		self._finished = False
		self._time_remaining = self._time_limit
		self._countdown = asyncio.create_task(self._run())

	def update_players(self, players: Iterable[Any]) -> None:
		"""Host-only: schedule an early finish once every player has answered."""
		if self._question_index is None:
			return
		roster = list(players)
		self._player_count = len(roster)
		self._answered = count_answered(roster, self._question_index)
		all_answered = self._player_count > 0 and self._answered >= self._player_count
		if all_answered and not self._finished and self._on_auto_finish is not None:
			if self._early_finish is None or self._early_finish.done():
				self._early_finish = asyncio.create_task(self._finish_after_grace())
		elif not all_answered and self._early_finish is not None:
			self._early_finish.cancel()
			self._early_finish = None

	def stop(self) -> None:
		self._cancel_tasks()

	def _cancel_tasks(self) -> None:
		for task in (self._countdown, self._early_finish):
			if task is not None and not task.done():
				task.cancel()
		self._countdown = None
		self._early_finish = None

	async def _run(self) -> None:
		while True:
			await asyncio.sleep(self._tick_interval)
			if self._time_remaining <= 1:
				self._time_remaining = 0
				self._emit_tick()
				await self._fire("timeout")
				return
			self._time_remaining -= 1
			self._emit_tick()

	async def _finish_after_grace(self) -> None:
		await asyncio.sleep(self._auto_finish_delay)
		await self._fire("all_answered")

	def _emit_tick(self) -> None:
		if self._on_tick is not None:
			self._on_tick(self._time_remaining)

	async def _fire(self, reason: str) -> None:
		if self._finished or self._on_auto_finish is None:
			return
		self._finished = True
		logger.info(
			"question auto-finish",
			extra={"question_index": self._question_index, "reason": reason},
		)
		try:
			result = self._on_auto_finish()
			if inspect.isawaitable(result):
				await result
		except Exception:
			logger.exception("auto-finish callback failed", extra={"question_index": self._question_index})
