"""Crowdsourced questions: player submissions, locking and AI evaluation.

A crowdsourced quiz moves through ``open -> locked -> evaluated -> selected``
while the session is still in its lobby. Locking happens before evaluation so
no submission can arrive while the evaluator reads the set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from pinquiz.domain.crowdsource import models
from pinquiz.domain.games import policy
from pinquiz.domain.games.models import ACTIVITY_COLLECTIONS, Game
from pinquiz.domain.questions.validation import MAX_QUESTION_TEXT_LENGTH
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore, get_document_store
from pinquiz.infra.functions import FunctionsClient, RemoteCallError
from pinquiz.settings import settings

logger = logging.getLogger(__name__)


class CrowdsourceError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


def validate_submission(question_text: str, answers: Sequence[str], correct_answer_index: int) -> None:
	if not question_text.strip():
		raise CrowdsourceError("invalid_submission", message="Question text is required")
	if len(question_text) > MAX_QUESTION_TEXT_LENGTH:
		raise CrowdsourceError(
			"invalid_submission",
			message=f"Question text must be {MAX_QUESTION_TEXT_LENGTH} characters or less",
		)
	if len(answers) != models.ANSWERS_PER_SUBMISSION or any(not str(answer).strip() for answer in answers):
		raise CrowdsourceError("invalid_submission", message="Exactly 4 non-empty answers are required")
	if not 0 <= correct_answer_index < models.ANSWERS_PER_SUBMISSION:
		raise CrowdsourceError("invalid_submission", message="Correct answer index must be between 0 and 3")


def toggle_selection(selection: Iterable[str], submission_id: str) -> set[str]:
	updated = set(selection)
	if submission_id in updated:
		updated.remove(submission_id)
	else:
		updated.add(submission_id)
	return updated


def review_order(submissions: Iterable[models.Submission]) -> List[models.Submission]:
	"""AI-selected first, then by score (unscored last)."""
	return sorted(
		submissions,
		key=lambda sub: (
			0 if sub.ai_selected else 1,
			-(sub.ai_score if sub.ai_score is not None else -1),
			sub.submitted_at,
		),
	)


def integrate_questions(
	questions: Sequence[BaseModel],
	submissions: Sequence[models.Submission],
	mode: str = "append",
) -> List[BaseModel]:
	"""Merge selected submissions into the quiz; no selection leaves it unchanged."""
	crowdsourced = [submission.to_question() for submission in submissions]
	if not crowdsourced:
		return list(questions)
	if mode == "prepend":
		return [*crowdsourced, *questions]
	if mode == "replace":
		return crowdsourced
	return [*questions, *crowdsourced]


def _submissions_path(game_id: str) -> str:
	return f"games/{game_id}/submissions"


class CrowdsourceService:
	def __init__(
		self,
		store: DocumentStore | None = None,
		functions: FunctionsClient | None = None,
		*,
		grace_seconds: float | None = None,
	) -> None:
		self._store = store or get_document_store()
		self._functions = functions
		self._grace_seconds = settings.crowdsource_grace_seconds if grace_seconds is None else grace_seconds

	def _client(self) -> FunctionsClient:
		if self._functions is None:
			from pinquiz.domain.compute.registry import get_functions_client

			self._functions = get_functions_client()
		return self._functions

	async def _load_game(self, game_id: str) -> Game:
		snapshot = await self._store.get(f"games/{game_id}")
		if not snapshot.exists:
			raise policy.GamePolicyError("not_found", status_code=404)
		return Game.from_mapping(game_id, snapshot.data or {})

	async def _load_config(self, game: Game) -> models.CrowdsourceConfig:
		collection = ACTIVITY_COLLECTIONS.get(game.activity_type, "quizzes")
		snapshot = await self._store.get(f"{collection}/{game.activity_id}")
		return models.CrowdsourceConfig.from_mapping((snapshot.data or {}).get("crowdsource"))

	async def list_submissions(self, game_id: str) -> List[models.Submission]:
		snapshots = await self._store.list(_submissions_path(game_id))
		return [models.Submission.from_mapping(snap.id, snap.data or {}) for snap in snapshots]

	async def submit_question(
		self,
		player: AuthenticatedUser,
		game_id: str,
		*,
		question_text: str,
		answers: Sequence[str],
		correct_answer_index: int,
		player_name: str | None = None,
	) -> models.Submission:
		game = await self._load_game(game_id)
		config = await self._load_config(game)
		if not config.enabled:
			raise CrowdsourceError("crowdsource_disabled", status_code=409)
		if game.crowdsource_state is not None and game.crowdsource_state.submissions_locked:
			raise CrowdsourceError("submissions_locked", status_code=409, message="Submissions are closed")
		validate_submission(question_text, answers, correct_answer_index)

		existing = await self._store.list(_submissions_path(game_id), where={"playerId": player.id})
		cap = config.max_submissions_per_player or settings.crowdsource_max_submissions_per_player
		if len(existing) >= cap:
			raise CrowdsourceError(
				"submission_limit",
				status_code=409,
				message=f"You can submit at most {cap} questions",
			)

		if player_name is None:
			player_snapshot = await self._store.get(f"games/{game_id}/players/{player.id}")
			player_name = str((player_snapshot.data or {}).get("name") or player.display_name or "")
		submission = models.Submission(
			id="",
			player_id=player.id,
			player_name=player_name,
			question_text=question_text.strip(),
			answers=[str(answer).strip() for answer in answers],
			correct_answer_index=correct_answer_index,
		)
		data = submission.to_mapping()
		data["submittedAt"] = SERVER_TIMESTAMP
		submission.id = await self._store.create(_submissions_path(game_id), data)
		logger.info("crowdsource submission", extra={"game_id": game_id, "player_id": player.id})
		return submission

	async def lock_and_evaluate(self, host: AuthenticatedUser, game_id: str) -> List[str]:
		"""Lock submissions, wait out in-flight writes, then run AI evaluation."""
		game = await self._load_game(game_id)
		policy.ensure_host(game, host)
		policy.ensure_state(game, "lobby")
		await self._store.update(f"games/{game_id}", {"crowdsourceState.submissionsLocked": True})
		logger.info("crowdsource submissions locked", extra={"game_id": game_id})
		if self._grace_seconds > 0:
			await asyncio.sleep(self._grace_seconds)
		return await self._evaluate(host, game)

	async def retry_evaluation(self, host: AuthenticatedUser, game_id: str) -> List[str]:
		game = await self._load_game(game_id)
		policy.ensure_host(game, host)
		if game.crowdsource_state is None or not game.crowdsource_state.submissions_locked:
			raise CrowdsourceError("not_locked", status_code=409)
		return await self._evaluate(host, game)

	async def _evaluate(self, host: AuthenticatedUser, game: Game) -> List[str]:
		config = await self._load_config(game)
		payload = {
			"gameId": game.id,
			"topicPrompt": config.topic_prompt,
			"questionsNeeded": config.questions_needed,
		}
		try:
			result = await self._client().call("evaluateSubmissions", payload, user=host)
		except RemoteCallError as exc:
			# The lock stays in place; the host retries with retry_evaluation.
			logger.warning(
				"crowdsource evaluation failed",
				extra={"game_id": game.id, "code": exc.code},
			)
			raise CrowdsourceError("evaluation_failed", status_code=502, message=exc.detail) from exc
		submissions = await self.list_submissions(game.id)
		selected = [sub.id for sub in submissions if sub.ai_selected]
		logger.info(
			"crowdsource evaluation complete",
			extra={
				"game_id": game.id,
				"evaluated": result.get("evaluatedCount"),
				"selected": len(selected),
			},
		)
		return selected

	async def save_selection(self, host: AuthenticatedUser, game_id: str, selected_ids: Iterable[str]) -> int:
		game = await self._load_game(game_id)
		policy.ensure_host(game, host)
		selection = set(selected_ids)
		submissions = await self.list_submissions(game_id)
		for submission in submissions:
			await self._store.update(
				f"{_submissions_path(game_id)}/{submission.id}",
				{"aiSelected": submission.id in selection},
			)
		count = sum(1 for submission in submissions if submission.id in selection)
		await self._store.update(f"games/{game_id}", {"crowdsourceState.selectedCount": count})
		return count

	async def selected_submissions(self, game_id: str) -> List[models.Submission]:
		snapshots = await self._store.list(_submissions_path(game_id), where={"aiSelected": True})
		return [models.Submission.from_mapping(snap.id, snap.data or {}) for snap in snapshots]


def parse_config(activity: Optional[Mapping[str, Any]]) -> models.CrowdsourceConfig:
	return models.CrowdsourceConfig.from_mapping((activity or {}).get("crowdsource"))
