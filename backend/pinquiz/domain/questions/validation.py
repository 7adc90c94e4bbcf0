"""Validation for authored questions and submitted answers."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pinquiz.domain.questions import handlers
from pinquiz.domain.questions.models import CHOICE_TYPES
from pinquiz.infra.errors import InputValidationError

MAX_TEXT_ANSWER_LENGTH = 200
MAX_QUESTION_TEXT_LENGTH = 500
MIN_CHOICE_ANSWERS = 2
MIN_MULTIPLE_CORRECT = 2

ANSWER_FIELDS = {
	"single-choice": "answer_index",
	"multiple-choice": "answer_indices",
	"slider": "slider_value",
	"free-response": "text_answer",
	"poll-single": "answer_index",
	"poll-multiple": "answer_indices",
}


class QuestionValidationError(InputValidationError):
	def __init__(self, errors: List[str]) -> None:
		super().__init__("invalid_question", message="; ".join(errors))
		self.errors = errors


class AnswerValidationError(InputValidationError):
	def __init__(self, message: str) -> None:
		super().__init__("invalid_answer", message=message)


# --- authoring -------------------------------------------------------------


def question_errors(question: Any) -> List[str]:
	errors: List[str] = []
	if not question.text or not question.text.strip():
		errors.append("question text is required")
	elif len(question.text) > MAX_QUESTION_TEXT_LENGTH:
		errors.append(f"question text exceeds {MAX_QUESTION_TEXT_LENGTH} characters")

	if question.type in CHOICE_TYPES:
		answers = question.answers
		if len(answers) < MIN_CHOICE_ANSWERS:
			errors.append(f"at least {MIN_CHOICE_ANSWERS} answers are required")
		if any(not answer.text.strip() for answer in answers):
			errors.append("answers cannot be empty")

	if question.type == "single-choice":
		if question.correct_answer_index >= len(question.answers):
			errors.append("correct answer index is out of range")
	elif question.type == "multiple-choice":
		indices = question.correct_answer_indices
		if len(set(indices)) != len(indices):
			errors.append("correct answers contain duplicates")
		if any(index < 0 or index >= len(question.answers) for index in indices):
			errors.append("correct answer index is out of range")
		if len(set(indices)) < MIN_MULTIPLE_CORRECT:
			errors.append(f"multiple-choice questions need at least {MIN_MULTIPLE_CORRECT} correct answers")
	elif question.type == "slider":
		if question.min_value >= question.max_value:
			errors.append("slider minimum must be below maximum")
		elif not question.min_value <= question.correct_value <= question.max_value:
			errors.append("slider correct value must lie within the range")
		if question.step is not None and question.step <= 0:
			errors.append("slider step must be positive")
	elif question.type == "free-response":
		if not question.correct_answer.strip():
			errors.append("a correct answer is required")
		elif len(question.correct_answer) > MAX_TEXT_ANSWER_LENGTH:
			errors.append(f"correct answer exceeds {MAX_TEXT_ANSWER_LENGTH} characters")
	return errors


def validate_question(question: Any) -> None:
	handlers.get_question_handler(question)
	errors = question_errors(question)
	if errors:
		raise QuestionValidationError(errors)


def validate_questions(questions: List[Any]) -> None:
	errors: List[str] = []
	for idx, question in enumerate(questions):
		handlers.get_question_handler(question)
		errors.extend(f"question {idx + 1}: {message}" for message in question_errors(question))
	if errors:
		raise QuestionValidationError(errors)


def adjust_indices_after_removal(indices: List[int], removed_index: int) -> List[int]:
	"""Drop ``removed_index`` and shift later indices down by one.

	No indices are invented when the result gets too short; validation
	reports that to the author instead.
	"""
	return [index - 1 if index > removed_index else index for index in indices if index != removed_index]


# --- submissions -----------------------------------------------------------


class SubmitAnswerRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore")

	game_id: str = Field(alias="gameId", min_length=1)
	player_id: str = Field(alias="playerId", min_length=1)
	question_index: int = Field(alias="questionIndex", ge=0)
	time_remaining: float = Field(alias="timeRemaining", ge=0)
	answer_index: Optional[int] = Field(default=None, alias="answerIndex")
	answer_indices: Optional[List[int]] = Field(default=None, alias="answerIndices")
	slider_value: Optional[float] = Field(default=None, alias="sliderValue")
	text_answer: Optional[str] = Field(default=None, alias="textAnswer")


def validate_basic_fields(payload: Mapping[str, Any]) -> SubmitAnswerRequest:
	for required in ("gameId", "playerId", "questionIndex"):
		if payload.get(required) in (None, ""):
			raise AnswerValidationError("Missing required fields: gameId, playerId, questionIndex")
	if all(payload.get(field) is None for field in ("answerIndex", "answerIndices", "sliderValue", "textAnswer")):
		raise AnswerValidationError("Missing answer: must provide answerIndex, answerIndices, sliderValue, or textAnswer")
	time_remaining = payload.get("timeRemaining")
	if time_remaining is None or isinstance(time_remaining, bool) or not isinstance(time_remaining, (int, float)) or time_remaining < 0:
		raise AnswerValidationError("Invalid timeRemaining value")
	try:
		return SubmitAnswerRequest.model_validate(dict(payload))
	except ValidationError as exc:
		raise AnswerValidationError(f"Malformed answer submission: {exc.error_count()} invalid field(s)") from exc


def validate_question_data(request: SubmitAnswerRequest, question_type: str) -> Any:
	"""Check the payload for ``question_type`` and return the answer value."""
	field_name = ANSWER_FIELDS.get(question_type)
	if field_name is None:
		raise AnswerValidationError(f"Question type {question_type} does not accept answers")
	value = getattr(request, field_name)
	if value is None:
		raise AnswerValidationError(f"{question_type} question requires {field_name}")

	if question_type == "single-choice":
		# -1 records a timeout without a selection
		if value != -1 and value < 0:
			raise AnswerValidationError("Invalid answer index")
	elif question_type == "free-response":
		if len(value) > MAX_TEXT_ANSWER_LENGTH:
			raise AnswerValidationError(f"textAnswer exceeds maximum length of {MAX_TEXT_ANSWER_LENGTH} characters")
	elif not handlers.get_question_handler(question_type).validate_answer(value):
		raise AnswerValidationError(f"Invalid {field_name} for {question_type} question")
	return value


def validate_time_remaining(time_remaining: float, time_limit: float) -> None:
	if time_remaining > time_limit:
		raise AnswerValidationError("Time remaining cannot exceed time limit")
