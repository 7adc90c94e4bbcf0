"""Crowdsourced question submissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Literal, Mapping, MutableMapping, Optional

from pinquiz.domain.questions.models import AnswerOption, SingleChoiceQuestion

IntegrationMode = Literal["append", "prepend", "replace"]

INTEGRATION_MODES: tuple[str, ...] = ("append", "prepend", "replace")
ANSWERS_PER_SUBMISSION = 4
CROWDSOURCED_TIME_LIMIT = 20


@dataclass(slots=True)
class CrowdsourceConfig:
	enabled: bool = False
	topic_prompt: str = ""
	questions_needed: int = 0
	max_submissions_per_player: int = 0
	integration_mode: str = "append"

	@classmethod
	def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "CrowdsourceConfig":
		mapping = mapping or {}
		return cls(
			enabled=bool(mapping.get("enabled", False)),
			topic_prompt=str(mapping.get("topicPrompt") or ""),
			questions_needed=int(mapping.get("questionsNeeded") or 0),
			max_submissions_per_player=int(mapping.get("maxSubmissionsPerPlayer") or 0),
			integration_mode=str(mapping.get("integrationMode") or "append"),
		)


@dataclass(slots=True)
class Submission:
	"""Player-authored question (``games/{id}/submissions/{sid}``)."""

	id: str
	player_id: str
	player_name: str
	question_text: str
	answers: List[str] = field(default_factory=list)
	correct_answer_index: int = 0
	submitted_at: int = 0
	ai_score: Optional[int] = None
	ai_selected: Optional[bool] = None
	ai_reasoning: Optional[str] = None

	@property
	def evaluated(self) -> bool:
		return self.ai_score is not None

	def to_question(self) -> SingleChoiceQuestion:
		return SingleChoiceQuestion(
			text=self.question_text,
			answers=[AnswerOption(text=text) for text in self.answers],
			correct_answer_index=self.correct_answer_index,
			time_limit=CROWDSOURCED_TIME_LIMIT,
			submitted_by=self.player_name,
		)

	@classmethod
	def from_mapping(cls, submission_id: str, mapping: Mapping[str, Any]) -> "Submission":
		score = mapping.get("aiScore")
		return cls(
			id=submission_id,
			player_id=str(mapping.get("playerId", "")),
			player_name=str(mapping.get("playerName", "")),
			question_text=str(mapping.get("questionText", "")),
			answers=[str(answer) for answer in mapping.get("answers") or []],
			correct_answer_index=int(mapping.get("correctAnswerIndex") or 0),
			submitted_at=int(mapping.get("submittedAt") or 0),
			ai_score=int(score) if score is not None else None,
			ai_selected=mapping.get("aiSelected"),
			ai_reasoning=mapping.get("aiReasoning"),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		data: MutableMapping[str, Any] = {
			"playerId": self.player_id,
			"playerName": self.player_name,
			"questionText": self.question_text,
			"answers": list(self.answers),
			"correctAnswerIndex": self.correct_answer_index,
			"submittedAt": self.submitted_at,
		}
		if self.ai_score is not None:
			data["aiScore"] = self.ai_score
		if self.ai_selected is not None:
			data["aiSelected"] = self.ai_selected
		if self.ai_reasoning is not None:
			data["aiReasoning"] = self.ai_reasoning
		return data
