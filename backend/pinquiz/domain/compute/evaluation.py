"""AI scoring of crowdsourced questions (``evaluateSubmissions``)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pinquiz.domain.compute.ai import TextGenerator, function_error_for, get_text_generator, parse_json_reply
from pinquiz.domain.crowdsource.models import Submission
from pinquiz.domain.questions.scoring import round_half_up
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import DocumentStore
from pinquiz.infra.functions import FunctionError

logger = logging.getLogger(__name__)

EVALUATION_PROMPT = """You are evaluating trivia questions submitted by players for a live quiz game.

Score each question from 0-100 using these criteria:
- Topic relevance (0-25): how well the question matches the specified topic.
- Clarity (0-20): whether the question is clear and unambiguous.
- Difficulty balance (0-15): challenging but fair.
- Answer correctness (0-25): whether the marked correct answer is actually correct.
- Distractor quality (0-15): whether the wrong answers are plausible but clearly incorrect.

"correctAnswerIndex" is the 0-based index of the answer the player marked as correct.
Verify it. If the marked answer is wrong, score the question 20 or lower.

Respond ONLY with valid JSON in this exact format:
{
  "evaluations": [
    {"submissionId": "id1", "score": 85, "reasoning": "Clear, on topic, correct answer verified"}
  ]
}"""

DEFAULT_REASONING = "Could not evaluate this submission"


@dataclass(frozen=True, slots=True)
class Evaluation:
	submission_id: str
	score: int
	reasoning: str = ""


def parse_evaluation_response(text: str) -> List[Evaluation]:
	try:
		entries = parse_json_reply(text, "evaluations")
		return [
			Evaluation(
				submission_id=str(entry.get("submissionId", "")),
				score=min(100, max(0, round_half_up(float(entry.get("score") or 0)))),
				reasoning=str(entry.get("reasoning") or ""),
			)
			for entry in entries
		]
	except (TypeError, ValueError) as exc:
		logger.warning("evaluation reply unparseable", extra={"reply_length": len(text)})
		raise FunctionError("internal", "Failed to parse AI evaluation response") from exc


def build_evaluation_prompt(topic_prompt: str, submissions: List[Submission]) -> str:
	listing = [
		{
			"submissionId": sub.id,
			"questionText": sub.question_text,
			"answers": sub.answers,
			"correctAnswerIndex": sub.correct_answer_index,
			"playerName": sub.player_name,
		}
		for sub in submissions
	]
	return (
		f'Topic: "{topic_prompt}"\n\n'
		f"Evaluate these {len(submissions)} question submissions:\n\n"
		f"{json.dumps(listing, indent=2)}\n\n"
		"Score each question from 0-100 based on how well it fits the topic and quiz quality criteria."
	)


def select_top(submissions: List[Submission], scores: Mapping[str, Evaluation], needed: int) -> set[str]:
	ordered = sorted(submissions, key=lambda sub: scores[sub.id].score if sub.id in scores else 0, reverse=True)
	return {sub.id for sub in ordered[:needed]}


async def evaluate_submissions(
	store: DocumentStore,
	payload: Mapping[str, Any],
	user: Optional[AuthenticatedUser] = None,
	*,
	generator: TextGenerator | None = None,
) -> Dict[str, Any]:
	if user is None:
		raise FunctionError("unauthenticated", "You must be signed in to evaluate submissions")
	game_id = payload.get("gameId")
	topic_prompt = payload.get("topicPrompt")
	needed = payload.get("questionsNeeded")
	if not game_id or not isinstance(game_id, str):
		raise FunctionError("invalid-argument", "Game ID is required")
	if not topic_prompt or not isinstance(topic_prompt, str):
		raise FunctionError("invalid-argument", "Topic prompt is required")
	if not isinstance(needed, int) or isinstance(needed, bool) or needed < 1:
		raise FunctionError("invalid-argument", "Questions needed must be a positive number")

	game = await store.get(f"games/{game_id}")
	if not game.exists:
		raise FunctionError("not-found", "Game not found")
	if game.get("hostId") != user.id:
		raise FunctionError("permission-denied", "Only the game host can evaluate submissions")

	snapshots = await store.list(f"games/{game_id}/submissions")
	if not snapshots:
		await store.update(
			f"games/{game_id}",
			{"crowdsourceState.evaluationComplete": True, "crowdsourceState.selectedCount": 0},
		)
		return {"success": True, "evaluatedCount": 0, "selectedCount": 0}

	submissions = [Submission.from_mapping(snap.id, snap.data or {}) for snap in snapshots]
	try:
		reply = await (generator or get_text_generator()).generate(
			system=EVALUATION_PROMPT,
			prompt=build_evaluation_prompt(topic_prompt, submissions),
			temperature=0.3,
			max_output_tokens=4096,
		)
		evaluations = {evaluation.submission_id: evaluation for evaluation in parse_evaluation_response(reply)}
	except FunctionError:
		raise
	except Exception as exc:
		logger.warning("submission evaluation failed", extra={"game_id": game_id, "error": str(exc)})
		raise function_error_for(exc, "evaluate submissions") from exc

	selected = select_top(submissions, evaluations, needed)
	for sub in submissions:
		evaluation = evaluations.get(sub.id)
		await store.update(
			f"games/{game_id}/submissions/{sub.id}",
			{
				"aiScore": evaluation.score if evaluation else 0,
				"aiReasoning": (evaluation.reasoning if evaluation else "") or DEFAULT_REASONING,
				"aiSelected": sub.id in selected,
			},
		)
	await store.update(
		f"games/{game_id}",
		{"crowdsourceState.evaluationComplete": True, "crowdsourceState.selectedCount": len(selected)},
	)
	logger.info(
		"submissions evaluated",
		extra={"game_id": game_id, "evaluated": len(submissions), "selected": len(selected)},
	)
	return {"success": True, "evaluatedCount": len(submissions), "selectedCount": len(selected)}
