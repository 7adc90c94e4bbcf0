"""Answer key storage.

Live session documents only embed sanitized questions; the correctness fields
sit in ``games/{id}/aggregates/answerKey`` which only trusted code reads.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence, Tuple

from pydantic import BaseModel

from pinquiz.domain.questions import models
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore


def answer_key_path(game_id: str) -> str:
	return f"games/{game_id}/aggregates/answerKey"


def split_questions(questions: Sequence[BaseModel]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
	"""Return the sanitized question list and the matching answer key document."""
	sanitized = [models.sanitize_question(question) for question in questions]
	key = {
		"questions": [models.answer_key_entry(question) for question in questions],
		"updatedAt": SERVER_TIMESTAMP,
	}
	return sanitized, key


async def write_answer_key(store: DocumentStore, game_id: str, key: Mapping[str, Any]) -> None:
	await store.set(answer_key_path(game_id), dict(key))


async def load_questions(
	store: DocumentStore,
	game_id: str,
	sanitized: Sequence[Mapping[str, Any]],
) -> List[models.Question]:
	snapshot = await store.get(answer_key_path(game_id))
	entries = list((snapshot.data or {}).get("questions") or [])
	restored: List[models.Question] = []
	for index, question in enumerate(sanitized):
		entry = entries[index] if index < len(entries) else None
		restored.append(models.restore_question(question, entry))
	return restored


async def load_question(
	store: DocumentStore,
	game_id: str,
	sanitized: Sequence[Mapping[str, Any]],
	question_index: int,
) -> models.Question:
	snapshot = await store.get(answer_key_path(game_id))
	entries = list((snapshot.data or {}).get("questions") or [])
	entry = entries[question_index] if question_index < len(entries) else None
	return models.restore_question(sanitized[question_index], entry)
