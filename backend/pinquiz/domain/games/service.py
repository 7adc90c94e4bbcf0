"""Service orchestration for live game sessions.

Every transition is host-initiated and goes through ``policy`` before touching
the store. Transitions that wait on a remote computation through an
intermediate state restore the exact previous state when that computation
fails.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pinquiz.domain.crowdsource import service as crowdsource
from pinquiz.domain.games import models, pins, policy
from pinquiz.domain.leaderboards import aggregate
from pinquiz.domain.questions import answer_key
from pinquiz.domain.questions.models import parse_question
from pinquiz.domain.questions.validation import validate_questions
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore, get_document_store
from pinquiz.infra.errors import InputValidationError
from pinquiz.infra.functions import FunctionsClient, RemoteCallError
from pinquiz.settings import settings

logger = logging.getLogger(__name__)

MAX_NICKNAME_LENGTH = 30
MAX_THOUGHT_LENGTH = 500
DEFAULT_THOUGHTS_PER_PLAYER = 3
DEFAULT_ITEMS_PER_PARTICIPANT = 3
# Participant items sort after host items until the host reorders them.
PARTICIPANT_ITEM_ORDER = 999


def game_path(game_id: str) -> str:
	return f"games/{game_id}"


def players_path(game_id: str) -> str:
	return f"games/{game_id}/players"


def activity_path(activity_type: str, activity_id: str) -> str:
	return f"{models.ACTIVITY_COLLECTIONS[activity_type]}/{activity_id}"


class GamesService:
	def __init__(
		self,
		store: DocumentStore | None = None,
		functions: FunctionsClient | None = None,
	) -> None:
		self._store = store or get_document_store()
		self._functions = functions

	@property
	def store(self) -> DocumentStore:
		return self._store

	def _client(self) -> FunctionsClient:
		if self._functions is None:
			from pinquiz.domain.compute.registry import get_functions_client

			self._functions = get_functions_client()
		return self._functions

	# ------------------------------------------------------------------
	# Loading helpers
	# ------------------------------------------------------------------

	async def get_game(self, game_id: str) -> models.Game:
		snapshot = await self._store.get(game_path(game_id))
		if not snapshot.exists:
			raise policy.GamePolicyError("not_found", status_code=404)
		return models.Game.from_mapping(game_id, snapshot.data or {})

	async def list_players(self, game_id: str) -> List[models.Player]:
		snapshots = await self._store.list(players_path(game_id))
		return [models.Player.from_mapping(snap.id, snap.data or {}) for snap in snapshots]

	async def _host_game(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self.get_game(game_id)
		policy.ensure_host(game, user)
		return game

	async def _activity(self, activity_type: str, activity_id: str) -> Dict[str, Any]:
		snapshot = await self._store.get(activity_path(activity_type, activity_id))
		if not snapshot.exists:
			raise policy.GamePolicyError("not_found", status_code=404, message="activity_not_found")
		return dict(snapshot.data or {})

	async def _transition(self, game: models.Game, target: str, **fields: Any) -> models.Game:
		policy.ensure_transition(game, target)
		update = {"state": target, **fields}
		await self._store.update(game_path(game.id), update)
		logger.info(
			"game transition",
			extra={"game_id": game.id, "activity_type": game.activity_type, "from": game.state, "to": target},
		)
		return await self.get_game(game.id)

	async def _revert(self, game: models.Game, previous_state: str, **fields: Any) -> None:
		await self._store.update(game_path(game.id), {"state": previous_state, **fields})
		logger.warning(
			"game transition reverted",
			extra={"game_id": game.id, "activity_type": game.activity_type, "to": previous_state},
		)

	# ------------------------------------------------------------------
	# Creation and joining
	# ------------------------------------------------------------------

	async def _pin_taken(self, pin: str) -> bool:
		matches = await self._store.list("games", where={"gamePin": pin})
		return any(snap.get("state") not in models.TERMINAL_STATES for snap in matches)

	async def create_game(self, host: AuthenticatedUser, activity_id: str, activity_type: str) -> models.Game:
		if activity_type not in models.ACTIVITY_TYPES:
			raise InputValidationError("invalid_activity_type", message=f"Unknown activity type: {activity_type}")
		activity = await self._activity(activity_type, activity_id)
		owner = activity.get("hostId")
		if owner and owner != host.id:
			raise policy.GamePolicyError("not_host", status_code=403)

		questions: List[Dict[str, Any]] = []
		key: Optional[Dict[str, Any]] = None
		if activity_type in ("quiz", "poll"):
			parsed = [parse_question(raw) for raw in activity.get("questions") or []]
			if activity_type == "quiz":
				validate_questions(parsed)
			questions, key = answer_key.split_questions(parsed)
		elif activity_type == "presentation":
			questions = [dict(slide) for slide in activity.get("slides") or []]

		pin = await pins.allocate_pin(
			self._pin_taken,
			length=settings.pin_length,
			max_attempts=settings.pin_max_attempts,
		)
		game = models.Game(
			id="",
			activity_id=activity_id,
			activity_type=activity_type,
			host_id=host.id,
			state=models.INITIAL_STATES[activity_type],
			game_pin=pin,
			created_at=0,
			questions=questions,
			title=str(activity.get("title") or ""),
		)
		if activity_type == "thoughts-gathering":
			game.submissions_open = True
		elif activity_type == "ranking":
			game.item_submissions_open = True
		elif activity_type == "quiz" and crowdsource.parse_config(activity).enabled:
			game.crowdsource_state = models.CrowdsourceState()

		data = game.to_mapping()
		data["createdAt"] = SERVER_TIMESTAMP
		game_id = await self._store.create("games", data)
		if key is not None:
			await answer_key.write_answer_key(self._store, game_id, key)
		logger.info(
			"game created",
			extra={"game_id": game_id, "activity_type": activity_type, "host_id": host.id},
		)
		return await self.get_game(game_id)

	async def join_game(self, user: AuthenticatedUser, pin: str, nickname: str) -> Tuple[models.Game, models.Player]:
		normalized = pins.normalize_pin(pin)
		if not pins.is_valid_pin(normalized):
			raise InputValidationError("invalid_pin", message="Invalid game PIN")
		name = " ".join(nickname.split())
		if not name or len(name) > MAX_NICKNAME_LENGTH:
			raise InputValidationError(
				"invalid_nickname",
				message=f"Nickname must be between 1 and {MAX_NICKNAME_LENGTH} characters",
			)
		matches = await self._store.list("games", where={"gamePin": normalized})
		live = [snap for snap in matches if snap.get("state") not in models.TERMINAL_STATES]
		if not live:
			raise policy.GamePolicyError("not_found", status_code=404, message="Game not found")
		game = models.Game.from_mapping(live[0].id, live[0].data or {})

		player_doc = f"{players_path(game.id)}/{user.id}"
		existing = await self._store.get(player_doc)
		if existing.exists:
			return game, models.Player.from_mapping(user.id, existing.data or {})

		player = models.Player(id=user.id, name=name)
		data = player.to_mapping()
		data["joinedAt"] = SERVER_TIMESTAMP
		await self._store.set(player_doc, data)
		logger.info("player joined", extra={"game_id": game.id, "player_id": user.id})
		snapshot = await self._store.get(player_doc)
		return game, models.Player.from_mapping(user.id, snapshot.data or {})

	# ------------------------------------------------------------------
	# Lobby
	# ------------------------------------------------------------------

	async def start_game(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		if game.activity_type == "quiz":
			return await self._start_quiz(game)
		if game.activity_type == "poll":
			return await self._start_poll(game)
		if game.activity_type == "presentation":
			return await self._start_presentation(game)
		raise policy.GamePolicyError("wrong_activity_type", status_code=409)

	async def _integrate_crowdsourced(self, game: models.Game) -> Optional[List[Dict[str, Any]]]:
		activity = await self._activity(game.activity_type, game.activity_id)
		config = crowdsource.parse_config(activity)
		if not config.enabled:
			return None
		selected = await crowdsource.CrowdsourceService(self._store, self._functions).selected_submissions(game.id)
		if not selected:
			return None
		current = await answer_key.load_questions(self._store, game.id, game.questions)
		integrated = crowdsource.integrate_questions(current, selected, config.integration_mode)
		sanitized, key = answer_key.split_questions(integrated)
		await answer_key.write_answer_key(self._store, game.id, key)
		logger.info(
			"crowdsourced questions integrated",
			extra={"game_id": game.id, "mode": config.integration_mode, "added": len(selected)},
		)
		return sanitized

	async def _start_quiz(self, game: models.Game) -> models.Game:
		policy.ensure_state(game, "lobby")
		policy.ensure_transition(game, "preparing")
		fields: Dict[str, Any] = {"currentQuestionIndex": 0, "questionStartTime": None, "resultsError": None}
		questions = await self._integrate_crowdsourced(game)
		if questions is not None:
			fields["questions"] = questions
		players = await self.list_players(game.id)
		# Aggregate first so "X / Y answered" is right from the first question.
		await aggregate.initialize_aggregate(self._store, game.id, len(players))
		return await self._transition(game, "preparing", **fields)

	async def _start_poll(self, game: models.Game) -> models.Game:
		policy.ensure_state(game, "lobby")
		policy.ensure_transition(game, "question")
		players = await self.list_players(game.id)
		await aggregate.initialize_aggregate(self._store, game.id, len(players))
		return await self._transition(
			game,
			"question",
			currentQuestionIndex=0,
			questionStartTime=SERVER_TIMESTAMP,
		)

	async def _start_presentation(self, game: models.Game) -> models.Game:
		policy.ensure_state(game, "lobby")
		return await self._transition(game, "presenting", currentSlideIndex=0)

	# ------------------------------------------------------------------
	# Quiz
	# ------------------------------------------------------------------

	async def start_question(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "quiz")
		policy.ensure_state(game, "preparing")
		return await self._transition(game, "question", questionStartTime=SERVER_TIMESTAMP)

	async def _compute_question_results(self, user: AuthenticatedUser, game: models.Game) -> Dict[str, Any]:
		return await self._client().call(
			"computeQuestionResults",
			{"gameId": game.id, "questionIndex": game.current_question_index},
			user=user,
		)

	async def finish_question(self, user: AuthenticatedUser, game_id: str, *, auto: bool = False) -> models.Game:
		"""Compute results for the current question, then show the leaderboard.

		Manual and timer-driven finishes share this path; ``auto`` turns a
		stale call (question already finished) into a no-op.
		"""
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "quiz")
		if game.state != "question":
			if auto:
				logger.info("auto-finish skipped", extra={"game_id": game.id, "state": game.state})
				return game
			policy.ensure_state(game, "question")

		results_error: Optional[str] = None
		try:
			await self._compute_question_results(user, game)
		except RemoteCallError as exc:
			results_error = exc.detail
			logger.warning(
				"question results failed",
				extra={"game_id": game.id, "question_index": game.current_question_index, "code": exc.code},
			)
		return await self._transition(game, "leaderboard", resultsError=results_error)

	async def retry_question_results(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "quiz")
		policy.ensure_state(game, "leaderboard")
		try:
			await self._compute_question_results(user, game)
		except RemoteCallError as exc:
			await self._store.update(game_path(game.id), {"resultsError": exc.detail})
			raise
		await self._store.update(game_path(game.id), {"resultsError": None})
		return await self.get_game(game.id)

	async def next_question(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		if game.activity_type == "poll":
			return await self._next_poll_question(game)
		policy.ensure_activity_type(game, "quiz")
		if game.state == "question":
			return await self.finish_question(user, game_id)
		policy.ensure_state(game, "leaderboard")

		if game.is_last_question:
			try:
				await self._compute_question_results(user, game)
			except RemoteCallError as exc:
				logger.warning("final results failed", extra={"game_id": game.id, "code": exc.code})
			return await self._transition(game, "ended")

		await aggregate.reset_question_distribution(self._store, game.id)
		return await self._transition(
			game,
			"preparing",
			currentQuestionIndex=game.current_question_index + 1,
			questionStartTime=None,
			resultsError=None,
		)

	# ------------------------------------------------------------------
	# Poll
	# ------------------------------------------------------------------

	async def show_results(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "poll")
		policy.ensure_state(game, "question")
		return await self._transition(game, "results")

	async def _next_poll_question(self, game: models.Game) -> models.Game:
		policy.ensure_state(game, "results")
		if game.is_last_question:
			return await self._transition(game, "ended")
		await aggregate.reset_question_distribution(self._store, game.id)
		return await self._transition(
			game,
			"question",
			currentQuestionIndex=game.current_question_index + 1,
			questionStartTime=SERVER_TIMESTAMP,
		)

	# ------------------------------------------------------------------
	# Presentation
	# ------------------------------------------------------------------

	async def go_to_slide(self, user: AuthenticatedUser, game_id: str, index: int) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "presentation")
		policy.ensure_state(game, "presenting")
		last = max(0, game.question_count - 1)
		target = min(max(0, index), last)
		await self._store.update(game_path(game.id), {"currentSlideIndex": target})
		return await self.get_game(game.id)

	async def next_slide(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "presentation")
		policy.ensure_state(game, "presenting")
		if game.current_slide_index >= game.question_count - 1:
			return await self._transition(game, "ended")
		await self._store.update(game_path(game.id), {"currentSlideIndex": game.current_slide_index + 1})
		return await self.get_game(game.id)

	async def previous_slide(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "presentation")
		policy.ensure_state(game, "presenting")
		await self._store.update(game_path(game.id), {"currentSlideIndex": max(0, game.current_slide_index - 1)})
		return await self.get_game(game.id)

	# ------------------------------------------------------------------
	# Thoughts gathering
	# ------------------------------------------------------------------

	async def toggle_submissions(self, user: AuthenticatedUser, game_id: str, open_: Optional[bool] = None) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "thoughts-gathering")
		policy.ensure_state(game, "collecting")
		target = (not game.submissions_open) if open_ is None else open_
		await self._store.update(game_path(game.id), {"submissionsOpen": target})
		return await self.get_game(game.id)

	async def stop_and_process(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "thoughts-gathering")
		policy.ensure_state(game, "collecting")
		previous = game.state
		await self._transition(game, "processing", submissionsOpen=False)
		try:
			await self._client().call("extractTopics", {"gameId": game.id}, user=user)
		except RemoteCallError:
			await self._revert(game, previous, submissionsOpen=True)
			raise
		return await self.get_game(game.id)

	async def collect_more(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "thoughts-gathering")
		policy.ensure_state(game, "display")
		activity = await self._activity(game.activity_type, game.activity_id)
		if not (activity.get("config") or {}).get("allowMultipleRounds", False):
			raise policy.GamePolicyError("single_round", status_code=409, message="Multiple rounds are disabled")
		return await self._transition(game, "collecting", submissionsOpen=True)

	async def submit_thought(self, user: AuthenticatedUser, game_id: str, text: str) -> str:
		game = await self.get_game(game_id)
		policy.ensure_activity_type(game, "thoughts-gathering")
		if game.state != "collecting" or not game.submissions_open:
			raise policy.GamePolicyError("submissions_closed", status_code=409, message="Submissions are closed")
		body = text.strip()
		if not body or len(body) > MAX_THOUGHT_LENGTH:
			raise InputValidationError(
				"invalid_submission",
				message=f"Thought must be between 1 and {MAX_THOUGHT_LENGTH} characters",
			)
		player = await self._player(game.id, user.id)
		activity = await self._activity(game.activity_type, game.activity_id)
		limit = int((activity.get("config") or {}).get("maxSubmissionsPerPlayer") or DEFAULT_THOUGHTS_PER_PLAYER)
		mine = await self._store.list(f"{game_path(game.id)}/submissions", where={"playerId": user.id})
		if len(mine) >= limit:
			raise policy.GamePolicyError("submission_limit", status_code=409, message=f"You can only submit {limit} thoughts")
		return await self._store.create(
			f"{game_path(game.id)}/submissions",
			{"playerId": user.id, "playerName": player.name, "rawText": body, "submittedAt": SERVER_TIMESTAMP},
		)

	async def _player(self, game_id: str, player_id: str) -> models.Player:
		snapshot = await self._store.get(f"{players_path(game_id)}/{player_id}")
		if not snapshot.exists:
			raise policy.GamePolicyError("not_joined", status_code=403, message="Join the game first")
		return models.Player.from_mapping(player_id, snapshot.data or {})

	# ------------------------------------------------------------------
	# Ranking
	# ------------------------------------------------------------------

	async def add_item(self, user: AuthenticatedUser, game_id: str, text: str, description: Optional[str] = None) -> str:
		"""Add a ranking item; host items are approved, participant items follow ``requireApproval``."""
		game = await self.get_game(game_id)
		policy.ensure_activity_type(game, "ranking")
		policy.ensure_state(game, "collecting")
		body = text.strip()
		if not body:
			raise InputValidationError("invalid_item", message="Item text is required")
		items_path = f"{game_path(game.id)}/items"
		data: Dict[str, Any] = {"text": body, "createdAt": SERVER_TIMESTAMP}
		if description and description.strip():
			data["description"] = description.strip()

		if user.id == game.host_id:
			existing = await self._store.list(items_path)
			data.update(isHostItem=True, approved=True, order=len(existing))
			return await self._store.create(items_path, data)

		if not game.item_submissions_open:
			raise policy.GamePolicyError("submissions_closed", status_code=409, message="Item submissions are closed")
		player = await self._player(game.id, user.id)
		config = (await self._activity(game.activity_type, game.activity_id)).get("config") or {}
		limit = int(config.get("maxItemsPerParticipant") or DEFAULT_ITEMS_PER_PARTICIPANT)
		mine = await self._store.list(items_path, where={"submittedByPlayerId": user.id})
		if len(mine) >= limit:
			raise policy.GamePolicyError("submission_limit", status_code=409, message=f"You can only submit {limit} items")
		data.update(
			submittedBy=player.name,
			submittedByPlayerId=user.id,
			isHostItem=False,
			approved=not config.get("requireApproval", False),
			order=PARTICIPANT_ITEM_ORDER,
		)
		return await self._store.create(items_path, data)

	async def approve_item(self, user: AuthenticatedUser, game_id: str, item_id: str, approved: bool = True) -> None:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "ranking")
		await self._store.update(f"{game_path(game.id)}/items/{item_id}", {"approved": approved})

	async def submit_ratings(
		self,
		user: AuthenticatedUser,
		game_id: str,
		ratings: Dict[str, Dict[str, float]],
	) -> None:
		game = await self.get_game(game_id)
		policy.ensure_activity_type(game, "ranking")
		policy.ensure_state(game, "ranking")
		player = await self._player(game.id, user.id)
		for item_ratings in ratings.values():
			if not isinstance(item_ratings, dict) or not all(
				isinstance(value, (int, float)) and not isinstance(value, bool) for value in item_ratings.values()
			):
				raise InputValidationError("invalid_ratings", message="Ratings must be numbers")
		await self._store.set(
			f"{game_path(game.id)}/ratings/{user.id}",
			{
				"playerId": user.id,
				"playerName": player.name,
				"ratings": ratings,
				"submittedAt": SERVER_TIMESTAMP,
				"isComplete": True,
			},
		)

	async def close_item_submissions(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "ranking")
		policy.ensure_state(game, "collecting")
		await self._store.update(game_path(game.id), {"itemSubmissionsOpen": False})
		return await self.get_game(game.id)

	async def start_ranking(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "ranking")
		policy.ensure_state(game, "collecting")
		items = await self._store.list(f"games/{game.id}/items", where={"approved": True})
		if not items:
			raise policy.GamePolicyError("no_items", status_code=409, message="Add at least one item before ranking")
		return await self._transition(game, "ranking", itemSubmissionsOpen=False)

	async def end_ranking(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_activity_type(game, "ranking")
		policy.ensure_state(game, "ranking")
		previous = game.state
		await self._transition(game, "analyzing")
		try:
			result = await self._client().call("computeRankingResults", {"gameId": game.id}, user=user)
		except RemoteCallError:
			await self._revert(game, previous)
			raise
		if not result.get("success"):
			await self._revert(game, previous)
			raise RemoteCallError(
				"failed-precondition",
				str(result.get("message") or "Ranking computation failed"),
				function="computeRankingResults",
			)
		return await self.get_game(game.id)

	# ------------------------------------------------------------------
	# Ending
	# ------------------------------------------------------------------

	async def end_session(self, user: AuthenticatedUser, game_id: str) -> models.Game:
		game = await self._host_game(user, game_id)
		policy.ensure_not_terminal(game)
		return await self._transition(game, "ended")

	async def cancel_game(self, user: AuthenticatedUser, game_id: str) -> int:
		game = await self._host_game(user, game_id)
		removed = await self._store.delete_tree(game_path(game.id))
		logger.info("game cancelled", extra={"game_id": game.id, "removed": removed})
		return removed
