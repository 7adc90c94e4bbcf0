"""Question variants.

``Question`` is a closed union discriminated on ``type``. Stored documents use
camelCase field names; attributes are snake_case with aliases.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

QuestionType = Literal[
	"single-choice",
	"multiple-choice",
	"slider",
	"free-response",
	"poll-single",
	"poll-multiple",
	"slide",
]

QUESTION_TYPES: tuple[str, ...] = (
	"single-choice",
	"multiple-choice",
	"slider",
	"free-response",
	"poll-single",
	"poll-multiple",
	"slide",
)

SCORED_TYPES = frozenset({"single-choice", "multiple-choice", "slider", "free-response"})
CHOICE_TYPES = frozenset({"single-choice", "multiple-choice", "poll-single", "poll-multiple"})

# Fields that reveal the answer; never embedded in a live session document.
CORRECTNESS_FIELDS: Dict[str, tuple[str, ...]] = {
	"single-choice": ("correctAnswerIndex",),
	"multiple-choice": ("correctAnswerIndices",),
	"slider": ("correctValue", "acceptableError"),
	"free-response": ("correctAnswer", "alternativeAnswers"),
}


def _question_id() -> str:
	return uuid.uuid4().hex


class AnswerOption(BaseModel):
	text: str


class _QuestionBase(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore")

	id: str = Field(default_factory=_question_id)
	text: str
	time_limit: Optional[int] = Field(default=None, alias="timeLimit", gt=0)
	image_url: Optional[str] = Field(default=None, alias="imageUrl")
	submitted_by: Optional[str] = Field(default=None, alias="submittedBy")


class SingleChoiceQuestion(_QuestionBase):
	type: Literal["single-choice"] = "single-choice"
	answers: List[AnswerOption]
	correct_answer_index: int = Field(alias="correctAnswerIndex", ge=0)


class MultipleChoiceQuestion(_QuestionBase):
	type: Literal["multiple-choice"] = "multiple-choice"
	answers: List[AnswerOption]
	correct_answer_indices: List[int] = Field(alias="correctAnswerIndices")
	show_answer_count: bool = Field(default=False, alias="showAnswerCount")


class SliderQuestion(_QuestionBase):
	type: Literal["slider"] = "slider"
	min_value: float = Field(alias="minValue")
	max_value: float = Field(alias="maxValue")
	correct_value: float = Field(alias="correctValue")
	step: Optional[float] = None
	unit: Optional[str] = None
	acceptable_error: Optional[float] = Field(default=None, alias="acceptableError", ge=0)


class FreeResponseQuestion(_QuestionBase):
	type: Literal["free-response"] = "free-response"
	correct_answer: str = Field(alias="correctAnswer")
	alternative_answers: List[str] = Field(default_factory=list, alias="alternativeAnswers")
	case_sensitive: bool = Field(default=False, alias="caseSensitive")
	allow_typos: bool = Field(default=True, alias="allowTypos")


class PollSingleQuestion(_QuestionBase):
	type: Literal["poll-single"] = "poll-single"
	answers: List[AnswerOption]


class PollMultipleQuestion(_QuestionBase):
	type: Literal["poll-multiple"] = "poll-multiple"
	answers: List[AnswerOption]


class SlideQuestion(_QuestionBase):
	type: Literal["slide"] = "slide"
	description: Optional[str] = None


Question = Annotated[
	Union[
		SingleChoiceQuestion,
		MultipleChoiceQuestion,
		SliderQuestion,
		FreeResponseQuestion,
		PollSingleQuestion,
		PollMultipleQuestion,
		SlideQuestion,
	],
	Field(discriminator="type"),
]

_QUESTION_ADAPTER: TypeAdapter = TypeAdapter(Question)


def parse_question(data: Mapping[str, Any]) -> Question:
	return _QUESTION_ADAPTER.validate_python(dict(data))


def dump_question(question: BaseModel) -> Dict[str, Any]:
	return question.model_dump(by_alias=True, exclude_none=True, mode="json")


def has_correct_answer(question_type: str) -> bool:
	return question_type in SCORED_TYPES


def sanitize_question(question: BaseModel) -> Dict[str, Any]:
	"""Dump a question without the fields that give its answer away."""
	data = dump_question(question)
	for field_name in CORRECTNESS_FIELDS.get(data["type"], ()):
		data.pop(field_name, None)
	return data


def answer_key_entry(question: BaseModel) -> Dict[str, Any]:
	"""The correctness fields of one question, keyed like the stored document."""
	data = dump_question(question)
	entry: Dict[str, Any] = {"type": data["type"]}
	for field_name in CORRECTNESS_FIELDS.get(data["type"], ()):
		if field_name in data:
			entry[field_name] = data[field_name]
	return entry


def restore_question(sanitized: Mapping[str, Any], key_entry: Optional[Mapping[str, Any]]) -> Question:
	"""Rebuild a full question from its sanitized copy and answer key entry."""
	merged = dict(sanitized)
	if key_entry:
		merged.update({k: v for k, v in key_entry.items() if k != "type"})
	return parse_question(merged)
