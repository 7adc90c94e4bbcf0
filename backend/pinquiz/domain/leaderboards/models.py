"""Leaderboard aggregate records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional


def _as_int(raw: Any, default: int = 0) -> int:
	if raw is None:
		return default
	try:
		return int(raw)
	except (TypeError, ValueError):
		return default


@dataclass(slots=True)
class LeaderboardEntry:
	"""One ranked player in the top-N list."""

	id: str
	name: str
	score: int
	current_streak: int = 0
	last_question_points: int = 0
	achieved_at: int = 0

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "LeaderboardEntry":
		return cls(
			id=str(mapping.get("id", "")),
			name=str(mapping.get("name", "")),
			score=_as_int(mapping.get("score")),
			current_streak=_as_int(mapping.get("currentStreak")),
			last_question_points=_as_int(mapping.get("lastQuestionPoints")),
			achieved_at=_as_int(mapping.get("achievedAt")),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		return {
			"id": self.id,
			"name": self.name,
			"score": self.score,
			"currentStreak": self.current_streak,
			"lastQuestionPoints": self.last_question_points,
			"achievedAt": self.achieved_at,
		}

	def sort_key(self) -> tuple[int, int, str]:
		return (-self.score, self.achieved_at, self.id)


@dataclass(slots=True)
class PlayerRank:
	rank: int
	total_players: int

	def to_mapping(self) -> MutableMapping[str, int]:
		return {"rank": self.rank, "totalPlayers": self.total_players}


@dataclass(slots=True)
class ScoringEvent:
	"""A single scored answer, as reported by the authoritative scorer."""

	player_id: str
	player_name: str
	question_index: int
	question_type: str
	points: int
	new_score: int
	current_streak: int
	achieved_at: int
	selected_options: List[int] = field(default_factory=list)

	@property
	def key(self) -> str:
		return f"{self.player_id}:{self.question_index}"


@dataclass(slots=True)
class LeaderboardAggregate:
	top_players: List[LeaderboardEntry] = field(default_factory=list)
	total_players: int = 0
	total_answered: int = 0
	answer_counts: List[int] = field(default_factory=list)
	player_ranks: Dict[str, PlayerRank] = field(default_factory=dict)
	processed_events: List[str] = field(default_factory=list)
	last_updated: Optional[int] = None

	@classmethod
	def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "LeaderboardAggregate":
		if not mapping:
			return cls()
		ranks = {
			str(player_id): PlayerRank(_as_int(info.get("rank")), _as_int(info.get("totalPlayers")))
			for player_id, info in (mapping.get("playerRanks") or {}).items()
		}
		return cls(
			top_players=[LeaderboardEntry.from_mapping(item) for item in mapping.get("topPlayers") or []],
			total_players=_as_int(mapping.get("totalPlayers")),
			total_answered=_as_int(mapping.get("totalAnswered")),
			answer_counts=[_as_int(count) for count in mapping.get("answerCounts") or []],
			player_ranks=ranks,
			processed_events=[str(key) for key in mapping.get("processedEvents") or []],
			last_updated=mapping.get("lastUpdated"),
		)

	def to_mapping(self) -> MutableMapping[str, Any]:
		return {
			"topPlayers": [entry.to_mapping() for entry in self.top_players],
			"totalPlayers": self.total_players,
			"totalAnswered": self.total_answered,
			"answerCounts": list(self.answer_counts),
			"playerRanks": {player_id: rank.to_mapping() for player_id, rank in self.player_ranks.items()},
			"processedEvents": list(self.processed_events),
			"lastUpdated": self.last_updated,
		}
