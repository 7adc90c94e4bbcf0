"""Topic grouping for thoughts-gathering sessions (``extractTopics``)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from pinquiz.domain.compute.ai import TextGenerator, function_error_for, get_text_generator, parse_json_reply
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore
from pinquiz.infra.functions import FunctionError

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are grouping free-form text submissions from participants who answered a prompt.

Group the submissions into DISTINCT categories based on their specific content.
Do not create groups that simply restate the collection prompt.

Respond ONLY with valid JSON in this exact format:
{
  "topics": [
    {
      "topic": "Customer Service Chatbots",
      "description": "Two or three sentences on what this group covers.",
      "count": 5,
      "variations": ["AI chatbot for support tickets", "Virtual assistant for FAQ"],
      "submissionIds": ["id1", "id2"]
    }
  ]
}

Create 3-15 groups, ordered by count (highest first). A submission may belong to several groups."""

DEFAULT_COLLECTION_PROMPT = "Share your thoughts"


def parse_extraction_response(text: str) -> List[Dict[str, Any]]:
	try:
		entries = parse_json_reply(text, "topics")
	except ValueError as exc:
		raise FunctionError("internal", "Failed to parse AI topic extraction response") from exc
	topics = []
	for entry in entries:
		topic = str(entry.get("topic") or "").strip()
		if not topic:
			continue
		topics.append(
			{
				"topic": topic,
				"description": str(entry.get("description") or ""),
				"count": int(entry.get("count") or 1),
				"variations": [str(item) for item in entry.get("variations") or [topic]],
				"submissionIds": [str(item) for item in entry.get("submissionIds") or []],
			}
		)
	return topics


def build_extraction_prompt(collection_prompt: str, submissions: List[Mapping[str, Any]]) -> str:
	return (
		f'The participants were asked: "{collection_prompt}"\n\n'
		f"Group these {len(submissions)} responses into distinct categories.\n\n"
		f"{json.dumps(submissions, indent=2)}"
	)


async def extract_topics(
	store: DocumentStore,
	payload: Mapping[str, Any],
	user: Optional[AuthenticatedUser] = None,
	*,
	generator: TextGenerator | None = None,
) -> Dict[str, Any]:
	if user is None:
		raise FunctionError("unauthenticated", "You must be signed in to extract topics")
	game_id = payload.get("gameId")
	if not game_id or not isinstance(game_id, str):
		raise FunctionError("invalid-argument", "Game ID is required")

	game = await store.get(f"games/{game_id}")
	if not game.exists:
		raise FunctionError("not-found", "Game not found")
	if game.get("hostId") != user.id:
		raise FunctionError("permission-denied", "Only the game host can process submissions")
	if game.get("activityType") != "thoughts-gathering":
		raise FunctionError("failed-precondition", "This game is not a Thoughts Gathering activity")

	activity = await store.get(f"activities/{game.get('activityId')}")
	config = activity.get("config") or {}
	snapshots = await store.list(f"games/{game_id}/submissions")
	topics_path = f"games/{game_id}/aggregates/topics"

	if not snapshots:
		await store.set(topics_path, {"topics": [], "totalSubmissions": 0, "processedAt": SERVER_TIMESTAMP})
		await store.update(f"games/{game_id}", {"state": "display"})
		return {"success": True, "topicCount": 0, "submissionCount": 0}

	listing = [
		{"submissionId": snap.id, "playerName": snap.get("playerName", ""), "text": snap.get("rawText", "")}
		for snap in snapshots
	]
	try:
		reply = await (generator or get_text_generator()).generate(
			system=EXTRACTION_PROMPT,
			prompt=build_extraction_prompt(str(config.get("prompt") or DEFAULT_COLLECTION_PROMPT), listing),
			temperature=0.5,
			max_output_tokens=65536,
		)
		topics = parse_extraction_response(reply)
	except FunctionError:
		raise
	except Exception as exc:
		logger.warning("topic extraction failed", extra={"game_id": game_id, "error": str(exc)})
		raise function_error_for(exc, "extract topics") from exc

	await store.set(
		topics_path,
		{"topics": topics, "totalSubmissions": len(snapshots), "processedAt": SERVER_TIMESTAMP},
	)
	await store.update(f"games/{game_id}", {"state": "display"})
	logger.info(
		"topics extracted",
		extra={"game_id": game_id, "topics": len(topics), "submissions": len(snapshots)},
	)
	return {"success": True, "topicCount": len(topics), "submissionCount": len(snapshots)}
