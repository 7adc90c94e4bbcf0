"""Authoritative answer scoring (``submitAnswer``)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pinquiz.domain.games.models import Game
from pinquiz.domain.leaderboards.aggregate import apply_scoring_event, rank_for_score
from pinquiz.domain.leaderboards.models import ScoringEvent
from pinquiz.domain.questions import handlers, scoring
from pinquiz.domain.questions.answer_key import load_question
from pinquiz.domain.questions.validation import (
	ANSWER_FIELDS,
	validate_basic_fields,
	validate_question_data,
	validate_time_remaining,
)
from pinquiz.infra import rate_limit
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import DocumentStore
from pinquiz.infra.errors import InputValidationError
from pinquiz.infra.functions import FunctionError
from pinquiz.settings import settings

logger = logging.getLogger(__name__)

ANSWERING_STATES = frozenset({"question"})

_STORED_FIELD = {
	"answer_index": "answerIndex",
	"answer_indices": "answerIndices",
	"slider_value": "sliderValue",
	"text_answer": "textAnswer",
}


async def submit_answer(
	store: DocumentStore,
	payload: Mapping[str, Any],
	user: Optional[AuthenticatedUser] = None,
) -> Dict[str, Any]:
	if user is None:
		raise FunctionError("unauthenticated", "You must be signed in to submit answers")
	try:
		request = validate_basic_fields(payload)
	except InputValidationError as exc:
		raise FunctionError("invalid-argument", exc.detail) from exc
	if user.id != request.player_id:
		raise FunctionError("permission-denied", "Cannot submit answers for another player")

	game_id = request.game_id
	player_path = f"games/{game_id}/players/{request.player_id}"
	game_snapshot = await store.get(f"games/{game_id}")
	if not game_snapshot.exists:
		raise FunctionError("not-found", "Game not found")
	player_snapshot = await store.get(player_path)
	if not player_snapshot.exists:
		raise FunctionError("not-found", "Player not found")

	game = Game.from_mapping(game_id, game_snapshot.data or {})
	if game.activity_type == "poll" and not await rate_limit.allow(
		"poll",
		request.player_id,
		limit=settings.poll_answer_rate_limit,
		window_seconds=settings.poll_answer_rate_window_seconds,
	):
		logger.warning("poll answer rate limited", extra={"game_id": game_id, "player_id": request.player_id})
		raise FunctionError("resource-exhausted", "Too many requests. Please try again shortly.")
	if game.state not in ANSWERING_STATES:
		raise FunctionError("failed-precondition", "Question is not accepting answers")
	if request.question_index != game.current_question_index:
		raise FunctionError("failed-precondition", "Question is no longer active")
	if request.question_index >= game.question_count:
		raise FunctionError("invalid-argument", "Invalid question index")

	question = await load_question(store, game_id, game.questions, request.question_index)
	handler = handlers.get_question_handler(question)
	time_limit = handler.time_limit_for(question)
	try:
		value = validate_question_data(request, question.type)
		validate_time_remaining(request.time_remaining, time_limit)
	except InputValidationError as exc:
		raise FunctionError("invalid-argument", exc.detail) from exc

	result = handler.evaluate(value, question, request.time_remaining, time_limit)
	timestamp = store.now_ms()
	outcome: Dict[str, Any] = {}

	def _record_answer(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
		if current is None:
			raise FunctionError("not-found", "Player not found")
		answers = list(current.get("answers") or [])
		if any(answer.get("questionIndex") == request.question_index for answer in answers):
			raise FunctionError("failed-precondition", "Player already answered this question")
		streak = scoring.calculate_streak(question.type, result.is_correct, int(current.get("currentStreak") or 0))
		new_score = int(current.get("score") or 0) + result.points
		record: Dict[str, Any] = {
			"questionIndex": request.question_index,
			"questionType": question.type,
			"timestamp": timestamp,
			"points": result.points,
			"isCorrect": result.is_correct,
			"wasTimeout": request.time_remaining == 0,
		}
		field_name = ANSWER_FIELDS[question.type]
		record[_STORED_FIELD[field_name]] = value
		answers.append(record)
		current.update({"answers": answers, "score": new_score, "currentStreak": streak})
		outcome.update(new_score=new_score, streak=streak, name=str(current.get("name", "")))
		return current

	await store.transaction(player_path, _record_answer)

	players = await store.list(f"games/{game_id}/players")
	total_players = len(players)
	rank = rank_for_score((int(snap.get("score") or 0) for snap in players), outcome["new_score"])
	await apply_scoring_event(
		store,
		game_id,
		ScoringEvent(
			player_id=request.player_id,
			player_name=outcome["name"],
			question_index=request.question_index,
			question_type=question.type,
			points=result.points,
			new_score=outcome["new_score"],
			current_streak=outcome["streak"],
			achieved_at=timestamp,
			selected_options=handler.selected_options(value),
		),
		total_players=total_players,
	)
	logger.info(
		"answer scored",
		extra={
			"game_id": game_id,
			"player_id": request.player_id,
			"question_index": request.question_index,
			"points": result.points,
		},
	)
	return {
		"success": True,
		"isCorrect": result.is_correct,
		"isPartiallyCorrect": result.is_partially_correct,
		"points": result.points,
		"newScore": outcome["new_score"],
		"currentStreak": outcome["streak"],
		"rank": rank,
		"totalPlayers": total_players,
	}
