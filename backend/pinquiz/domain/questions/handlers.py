"""Per-type question handlers and the registry that dispatches to them.

Adding a question variant means adding its model, one handler class and one
entry in ``_HANDLER_CLASSES``; the import-time check below refuses to load a
registry that misses a declared type.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence

from pinquiz.domain.questions import matching, scoring
from pinquiz.domain.questions.models import QUESTION_TYPES
from pinquiz.infra.errors import InputValidationError

AnswerValue = Any


class UnsupportedQuestionTypeError(InputValidationError):
	def __init__(self, question_type: Any) -> None:
		super().__init__(
			"unsupported_question_type",
			message=f"No handler found for question type: {question_type}",
		)
		self.question_type = question_type


def _is_index(value: Any) -> bool:
	return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_index_list(value: Any) -> bool:
	return isinstance(value, (list, tuple)) and all(_is_index(item) for item in value)


def _is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class QuestionHandler(ABC):
	type: ClassVar[str]
	default_time_limit: ClassVar[int] = scoring.DEFAULT_TIME_LIMIT

	@abstractmethod
	def validate_answer(self, raw: Any) -> bool:
		...

	@abstractmethod
	def get_default_answer(self, question: Any) -> AnswerValue:
		...

	def has_correct_answer(self) -> bool:
		return True

	@abstractmethod
	def get_correct_answers(self, question: Any) -> AnswerValue | None:
		...

	@abstractmethod
	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		...

	@abstractmethod
	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		...

	def time_limit_for(self, question: Any) -> int:
		return getattr(question, "time_limit", None) or self.default_time_limit

	def calculate_score(self, answer: AnswerValue, question: Any, time_remaining: float) -> int:
		return self.evaluate(answer, question, time_remaining, self.time_limit_for(question)).points

	def selected_options(self, answer: AnswerValue) -> List[int]:
		"""Option indices an answer counts toward in the distribution."""
		return []


class SingleChoiceHandler(QuestionHandler):
	type = "single-choice"

	def validate_answer(self, raw: Any) -> bool:
		return _is_index(raw)

	def get_default_answer(self, question: Any) -> int:
		return -1

	def get_correct_answers(self, question: Any) -> List[int]:
		return [question.correct_answer_index]

	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		return _is_index(answer) and answer == question.correct_answer_index

	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		correct = self.is_correct_answer(answer, question)
		return scoring.ScoringResult(scoring.calculate_time_based_score(correct, time_remaining, time_limit), correct)

	def selected_options(self, answer: AnswerValue) -> List[int]:
		return [answer] if _is_index(answer) else []


class MultipleChoiceHandler(QuestionHandler):
	type = "multiple-choice"

	def validate_answer(self, raw: Any) -> bool:
		return _is_index_list(raw)

	def get_default_answer(self, question: Any) -> List[int]:
		return []

	def get_correct_answers(self, question: Any) -> List[int]:
		return sorted(question.correct_answer_indices)

	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		return _is_index_list(answer) and sorted(answer) == sorted(question.correct_answer_indices)

	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		selected = set(answer) if _is_index_list(answer) else set()
		expected = set(question.correct_answer_indices)
		correct_count = len(selected & expected)
		wrong_count = len(selected - expected)
		points = scoring.calculate_proportional_score(correct_count, wrong_count, len(expected), time_remaining, time_limit)
		is_correct = bool(expected) and correct_count == len(expected) and wrong_count == 0
		multiplier = scoring.proportional_multiplier(correct_count, wrong_count, len(expected))
		return scoring.ScoringResult(points, is_correct, not is_correct and multiplier > 0)

	def selected_options(self, answer: AnswerValue) -> List[int]:
		return list(answer) if _is_index_list(answer) else []


class SliderHandler(QuestionHandler):
	type = "slider"

	def validate_answer(self, raw: Any) -> bool:
		return _is_number(raw)

	def get_default_answer(self, question: Any) -> float:
		return (question.min_value + question.max_value) / 2

	def get_correct_answers(self, question: Any) -> float:
		return question.correct_value

	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		if not _is_number(answer):
			return False
		tolerance = scoring.slider_tolerance(question.min_value, question.max_value, question.acceptable_error)
		return abs(answer - question.correct_value) <= tolerance

	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		if not _is_number(answer):
			return scoring.ScoringResult(0, False)
		points, is_correct = scoring.calculate_slider_score(
			answer,
			question.correct_value,
			question.min_value,
			question.max_value,
			time_remaining,
			time_limit,
			question.acceptable_error,
		)
		return scoring.ScoringResult(points, is_correct)


class FreeResponseHandler(QuestionHandler):
	type = "free-response"
	default_time_limit = 30

	def validate_answer(self, raw: Any) -> bool:
		return isinstance(raw, str)

	def get_default_answer(self, question: Any) -> str:
		return ""

	def get_correct_answers(self, question: Any) -> List[str]:
		return [question.correct_answer, *question.alternative_answers]

	def match(self, answer: AnswerValue, question: Any) -> matching.MatchResult:
		if not isinstance(answer, str):
			return matching.MatchResult(False, 0.0)
		return matching.check_free_response_answer(
			answer,
			question.correct_answer,
			question.alternative_answers,
			case_sensitive=question.case_sensitive,
			allow_typos=question.allow_typos,
		)

	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		return self.match(answer, question).is_correct

	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		correct = self.is_correct_answer(answer, question)
		return scoring.ScoringResult(scoring.calculate_time_based_score(correct, time_remaining, time_limit), correct)


class _NoCorrectAnswerHandler(QuestionHandler):
	def has_correct_answer(self) -> bool:
		return False

	def get_correct_answers(self, question: Any) -> None:
		return None

	def is_correct_answer(self, answer: AnswerValue, question: Any) -> bool:
		return False

	def evaluate(self, answer: AnswerValue, question: Any, time_remaining: float, time_limit: float) -> scoring.ScoringResult:
		return scoring.ScoringResult(scoring.calculate_poll_score(), False)


class PollSingleHandler(_NoCorrectAnswerHandler):
	type = "poll-single"

	def validate_answer(self, raw: Any) -> bool:
		return _is_index(raw)

	def get_default_answer(self, question: Any) -> int:
		return -1

	def selected_options(self, answer: AnswerValue) -> List[int]:
		return [answer] if _is_index(answer) else []


class PollMultipleHandler(_NoCorrectAnswerHandler):
	type = "poll-multiple"

	def validate_answer(self, raw: Any) -> bool:
		return _is_index_list(raw) and len(raw) > 0

	def get_default_answer(self, question: Any) -> List[int]:
		return []

	def selected_options(self, answer: AnswerValue) -> List[int]:
		return list(answer) if _is_index_list(answer) else []


class SlideHandler(_NoCorrectAnswerHandler):
	type = "slide"

	def validate_answer(self, raw: Any) -> bool:
		return True

	def get_default_answer(self, question: Any) -> None:
		return None


_HANDLER_CLASSES: Sequence[type[QuestionHandler]] = (
	SingleChoiceHandler,
	MultipleChoiceHandler,
	SliderHandler,
	FreeResponseHandler,
	PollSingleHandler,
	PollMultipleHandler,
	SlideHandler,
)

_HANDLERS: Dict[str, QuestionHandler] = {cls.type: cls() for cls in _HANDLER_CLASSES}


def _check_exhaustive() -> None:
	missing = [question_type for question_type in QUESTION_TYPES if question_type not in _HANDLERS]
	extra = [question_type for question_type in _HANDLERS if question_type not in QUESTION_TYPES]
	if missing or extra:
		raise RuntimeError(f"question handler registry out of sync: missing={missing} extra={extra}")


_check_exhaustive()


def _type_tag(question_or_type: Any) -> Optional[str]:
	if isinstance(question_or_type, str):
		return question_or_type
	if isinstance(question_or_type, Mapping):
		return question_or_type.get("type")
	return getattr(question_or_type, "type", None)


def get_question_handler(question_or_type: Any) -> QuestionHandler:
	tag = _type_tag(question_or_type)
	handler = _HANDLERS.get(tag) if isinstance(tag, str) else None
	if handler is None:
		raise UnsupportedQuestionTypeError(tag)
	return handler


def get_all_handlers() -> List[QuestionHandler]:
	return [_HANDLERS[question_type] for question_type in QUESTION_TYPES]


def get_available_question_types() -> List[str]:
	return list(QUESTION_TYPES)


def score_answer(
	question: Any,
	answer: AnswerValue,
	time_remaining: float,
	time_limit: float | None = None,
) -> scoring.ScoringResult:
	"""Score one answer through the registry; used for previews and by the authoritative scorer."""
	handler = get_question_handler(question)
	limit = time_limit or handler.time_limit_for(question)
	return handler.evaluate(answer, question, time_remaining, limit)
