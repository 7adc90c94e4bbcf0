"""Point calculations shared by score previews and the authoritative scorer.

Everything here is pure. Rounding is half-up (``floor(x + 0.5)``) rather than
Python's banker's rounding so previews computed elsewhere agree with the
persisted result.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple

DEFAULT_TIME_LIMIT = 20

ACCURACY_POINTS = 500
SPEED_POINTS = 500
WRONG_ANSWER_PENALTY = 0.2
SLIDER_DEFAULT_TOLERANCE = 0.05

POLL_TYPES = frozenset({"poll-single", "poll-multiple"})
STREAK_NEUTRAL_TYPES = POLL_TYPES | {"slide"}


@dataclass(frozen=True, slots=True)
class ScoringConfig:
	base_points: int = 100
	max_bonus_points: int = 900
	max_total_points: int = 1000


DEFAULT_SCORING = ScoringConfig()


@dataclass(frozen=True, slots=True)
class ScoringResult:
	points: int
	is_correct: bool
	is_partially_correct: bool = False


class SliderScore(NamedTuple):
	points: int
	is_correct: bool


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def time_ratio(time_remaining: float, time_limit: float) -> float:
	"""Fraction of the time limit left, clamped to [0, 1]."""
	limit = time_limit if time_limit and time_limit > 0 else DEFAULT_TIME_LIMIT
	return max(0.0, min(1.0, float(time_remaining) / float(limit)))


def calculate_time_based_score(
	is_correct: bool,
	time_remaining: float,
	time_limit: float,
	config: ScoringConfig = DEFAULT_SCORING,
) -> int:
	if not is_correct:
		return 0
	bonus = round_half_up(time_ratio(time_remaining, time_limit) * config.max_bonus_points)
	return min(config.max_total_points, config.base_points + bonus)


def proportional_multiplier(correct_count: int, wrong_count: int, total_correct: int) -> float:
	if total_correct <= 0:
		return 0.0
	accuracy = correct_count / total_correct
	return max(0.0, accuracy - wrong_count * WRONG_ANSWER_PENALTY)


def calculate_proportional_score(
	correct_count: int,
	wrong_count: int,
	total_correct: int,
	time_remaining: float,
	time_limit: float,
) -> int:
	multiplier = proportional_multiplier(correct_count, wrong_count, total_correct)
	accuracy_component = round_half_up(ACCURACY_POINTS * multiplier)
	speed_component = round_half_up(SPEED_POINTS * time_ratio(time_remaining, time_limit))
	return accuracy_component + speed_component


def slider_tolerance(min_value: float, max_value: float, acceptable_error: float | None = None) -> float:
	if acceptable_error is not None:
		return float(acceptable_error)
	return (max_value - min_value) * SLIDER_DEFAULT_TOLERANCE


def calculate_slider_score(
	value: float,
	correct_value: float,
	min_value: float,
	max_value: float,
	time_remaining: float,
	time_limit: float,
	acceptable_error: float | None = None,
) -> SliderScore:
	span = max_value - min_value
	distance = abs(value - correct_value)
	if span > 0:
		accuracy = max(0.0, 1 - distance / span)
	else:
		accuracy = 1.0 if distance == 0 else 0.0
	multiplier = accuracy ** 2
	points = round_half_up(ACCURACY_POINTS * multiplier) + round_half_up(
		SPEED_POINTS * time_ratio(time_remaining, time_limit)
	)
	is_correct = distance <= slider_tolerance(min_value, max_value, acceptable_error)
	return SliderScore(points, is_correct)


def calculate_poll_score() -> int:
	return 0


def calculate_streak(question_type: str, is_correct: bool, current_streak: int) -> int:
	"""Polls and slides leave the streak alone; wrong answers and timeouts reset it."""
	if question_type in STREAK_NEUTRAL_TYPES:
		return current_streak
	if is_correct:
		return current_streak + 1
	return 0
