"""Typo-tolerant matching for free-response answers."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class MatchResult:
	is_correct: bool
	similarity: float
	matched_answer: Optional[str] = None


def levenshtein_distance(left: str, right: str) -> int:
	if left == right:
		return 0
	if not left:
		return len(right)
	if not right:
		return len(left)
	previous = list(range(len(right) + 1))
	for i, lch in enumerate(left, start=1):
		current = [i]
		for j, rch in enumerate(right, start=1):
			if lch == rch:
				current.append(previous[j - 1])
			else:
				current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
		previous = current
	return previous[-1]


def similarity_ratio(left: str, right: str) -> float:
	if left == right:
		return 1.0
	if not left or not right:
		return 0.0
	return 1 - levenshtein_distance(left, right) / max(len(left), len(right))


def normalize_answer(text: str, case_sensitive: bool = False) -> str:
	decomposed = unicodedata.normalize("NFD", text.strip())
	stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
	collapsed = _WHITESPACE.sub(" ", stripped)
	return collapsed if case_sensitive else collapsed.lower()


def typo_threshold(shortest_answer_length: int) -> float:
	if shortest_answer_length <= 5:
		return 0.80
	if shortest_answer_length <= 10:
		return 0.85
	return 0.90


def check_free_response_answer(
	player_answer: str,
	correct_answer: str,
	alternative_answers: Iterable[str] = (),
	*,
	case_sensitive: bool = False,
	allow_typos: bool = True,
) -> MatchResult:
	normalized_player = normalize_answer(player_answer, case_sensitive)
	if not normalized_player:
		return MatchResult(False, 0.0)

	candidates = [correct_answer, *alternative_answers]
	best_similarity = 0.0
	best_match: Optional[str] = None
	for candidate in candidates:
		normalized = normalize_answer(candidate, case_sensitive)
		if normalized_player == normalized:
			return MatchResult(True, 1.0, candidate)
		similarity = similarity_ratio(normalized_player, normalized)
		if similarity > best_similarity:
			best_similarity = similarity
			best_match = candidate

	if allow_typos:
		shortest = min(len(candidate) for candidate in candidates)
		if best_similarity >= typo_threshold(shortest):
			return MatchResult(True, best_similarity, best_match)
	return MatchResult(False, best_similarity, best_match)
