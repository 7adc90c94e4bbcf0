"""Domain models for live game sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

ActivityType = str
GameState = str

ACTIVITY_TYPES: tuple[ActivityType, ...] = (
	"quiz",
	"poll",
	"ranking",
	"thoughts-gathering",
	"presentation",
)

# Activity documents live in a per-type collection.
ACTIVITY_COLLECTIONS: Dict[ActivityType, str] = {
	"quiz": "quizzes",
	"poll": "polls",
	"presentation": "presentations",
	"ranking": "activities",
	"thoughts-gathering": "activities",
}

INITIAL_STATES: Dict[ActivityType, GameState] = {
	"quiz": "lobby",
	"poll": "lobby",
	"presentation": "lobby",
	"ranking": "collecting",
	"thoughts-gathering": "collecting",
}

TERMINAL_STATES = frozenset({"ended"})

# Subcollections removed together with a game document.
GAME_SUBCOLLECTIONS: tuple[str, ...] = ("players", "submissions", "aggregates", "items", "ratings")


@dataclass(slots=True)
class CrowdsourceState:
	submissions_locked: bool = False
	evaluation_complete: bool = False
	selected_count: int = 0

	@classmethod
	def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "CrowdsourceState":
		mapping = mapping or {}
		return cls(
			submissions_locked=bool(mapping.get("submissionsLocked", False)),
			evaluation_complete=bool(mapping.get("evaluationComplete", False)),
			selected_count=int(mapping.get("selectedCount") or 0),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		return {
			"submissionsLocked": self.submissions_locked,
			"evaluationComplete": self.evaluation_complete,
			"selectedCount": self.selected_count,
		}


@dataclass(slots=True)
class Game:
	"""Persisted session record (``games/{id}``)."""

	id: str
	activity_id: str
	activity_type: ActivityType
	host_id: str
	state: GameState
	game_pin: str
	created_at: int
	current_question_index: int = 0
	current_slide_index: int = 0
	question_start_time: Optional[int] = None
	submissions_open: Optional[bool] = None
	item_submissions_open: Optional[bool] = None
	questions: List[Dict[str, Any]] = field(default_factory=list)
	crowdsource_state: Optional[CrowdsourceState] = None
	results_error: Optional[str] = None
	title: str = ""

	@property
	def is_terminal(self) -> bool:
		return self.state in TERMINAL_STATES

	@property
	def question_count(self) -> int:
		return len(self.questions)

	@property
	def is_last_question(self) -> bool:
		return self.current_question_index >= len(self.questions) - 1

	def current_question(self) -> Optional[Dict[str, Any]]:
		if 0 <= self.current_question_index < len(self.questions):
			return self.questions[self.current_question_index]
		return None

	@classmethod
	def from_mapping(cls, game_id: str, mapping: Mapping[str, Any]) -> "Game":
		crowdsource = mapping.get("crowdsourceState")
		return cls(
			id=game_id,
			activity_id=str(mapping.get("activityId", "")),
			activity_type=str(mapping.get("activityType", "quiz")),
			host_id=str(mapping.get("hostId", "")),
			state=str(mapping.get("state", "")),
			game_pin=str(mapping.get("gamePin", "")),
			created_at=int(mapping.get("createdAt") or 0),
			current_question_index=int(mapping.get("currentQuestionIndex") or 0),
			current_slide_index=int(mapping.get("currentSlideIndex") or 0),
			question_start_time=mapping.get("questionStartTime"),
			submissions_open=mapping.get("submissionsOpen"),
			item_submissions_open=mapping.get("itemSubmissionsOpen"),
			questions=list(mapping.get("questions") or []),
			crowdsource_state=CrowdsourceState.from_mapping(crowdsource) if crowdsource is not None else None,
			results_error=mapping.get("resultsError"),
			title=str(mapping.get("title", "")),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		data: Dict[str, Any] = {
			"activityId": self.activity_id,
			"activityType": self.activity_type,
			"hostId": self.host_id,
			"state": self.state,
			"gamePin": self.game_pin,
			"createdAt": self.created_at,
			"currentQuestionIndex": self.current_question_index,
			"currentSlideIndex": self.current_slide_index,
			"questionStartTime": self.question_start_time,
			"questions": list(self.questions),
			"resultsError": self.results_error,
			"title": self.title,
		}
		if self.submissions_open is not None:
			data["submissionsOpen"] = self.submissions_open
		if self.item_submissions_open is not None:
			data["itemSubmissionsOpen"] = self.item_submissions_open
		if self.crowdsource_state is not None:
			data["crowdsourceState"] = self.crowdsource_state.to_mapping()
		return data


@dataclass(slots=True)
class Player:
	"""Participant record (``games/{id}/players/{player_id}``)."""

	id: str
	name: str
	score: int = 0
	current_streak: int = 0
	answers: List[Dict[str, Any]] = field(default_factory=list)
	joined_at: int = 0

	def answer_for(self, question_index: int) -> Optional[Dict[str, Any]]:
		return next((answer for answer in self.answers if answer.get("questionIndex") == question_index), None)

	def has_answered(self, question_index: int) -> bool:
		return self.answer_for(question_index) is not None

	@classmethod
	def from_mapping(cls, player_id: str, mapping: Mapping[str, Any]) -> "Player":
		return cls(
			id=player_id,
			name=str(mapping.get("name", "")),
			score=int(mapping.get("score") or 0),
			current_streak=int(mapping.get("currentStreak") or 0),
			answers=list(mapping.get("answers") or []),
			joined_at=int(mapping.get("joinedAt") or 0),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		return {
			"id": self.id,
			"name": self.name,
			"score": self.score,
			"currentStreak": self.current_streak,
			"answers": list(self.answers),
			"joinedAt": self.joined_at,
		}
