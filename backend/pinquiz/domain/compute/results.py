"""Per-question results (``computeQuestionResults``).

Runs once when the host finishes a question: recomputes standings, the answer
distribution and every player's streak from the player records, then rewrites
the leaderboard aggregate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from pinquiz.domain.leaderboards.aggregate import aggregate_path, compute_standings
from pinquiz.domain.questions.scoring import calculate_streak
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore
from pinquiz.infra.functions import FunctionError

logger = logging.getLogger(__name__)


def streak_through(answers: Iterable[Mapping[str, Any]], question_index: int) -> int:
	"""Streak after ``question_index``, replayed from the answer history.

	Replaying keeps the result stable when results are computed more than once.
	"""
	by_index = {int(answer.get("questionIndex", -1)): answer for answer in answers}
	streak = 0
	for index in range(question_index + 1):
		answer = by_index.get(index)
		if answer is None:
			streak = 0
			continue
		streak = calculate_streak(str(answer.get("questionType", "")), bool(answer.get("isCorrect")), streak)
	return streak


async def compute_question_results(
	store: DocumentStore,
	payload: Mapping[str, Any],
	user: Optional[AuthenticatedUser] = None,
) -> Dict[str, Any]:
	if user is None:
		raise FunctionError("unauthenticated", "You must be signed in to compute results")
	game_id = payload.get("gameId")
	question_index = payload.get("questionIndex")
	if not game_id or not isinstance(question_index, int) or isinstance(question_index, bool):
		raise FunctionError("invalid-argument", "gameId and questionIndex are required")

	game = await store.get(f"games/{game_id}")
	if not game.exists:
		raise FunctionError("not-found", "Game not found")
	if game.get("hostId") != user.id:
		raise FunctionError("permission-denied", "Only the game host can compute results")

	snapshots = await store.list(f"games/{game_id}/players")
	players = [{**(snap.data or {}), "id": snap.id} for snap in snapshots]
	streaks = {player["id"]: streak_through(player.get("answers") or [], question_index) for player in players}
	standings = compute_standings(players, question_index, streaks)

	data = standings.to_mapping()
	data.pop("processedEvents", None)
	data["playerStreaks"] = streaks
	data["liveAnswerCounts"] = {}
	data["lastUpdated"] = SERVER_TIMESTAMP
	# merge keeps processedEvents so late duplicate events stay no-ops
	await store.set(aggregate_path(game_id), data, merge=True)
	for player_id, streak in streaks.items():
		await store.update(f"games/{game_id}/players/{player_id}", {"currentStreak": streak})

	logger.info(
		"question results computed",
		extra={
			"game_id": game_id,
			"question_index": question_index,
			"total_players": standings.total_players,
			"total_answered": standings.total_answered,
		},
	)
	return {"success": True}
