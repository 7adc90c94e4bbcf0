"""Leaderboard aggregate maintenance.

The aggregate at ``games/{id}/aggregates/leaderboard`` lets hosts and players
read standings from one document instead of subscribing to every player.
Only the trusted compute functions write it; session transitions may
initialise or reset it before a phase opens.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional

from pinquiz.domain.leaderboards.models import LeaderboardAggregate, LeaderboardEntry, PlayerRank, ScoringEvent
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore
from pinquiz.settings import settings

logger = logging.getLogger(__name__)


def aggregate_path(game_id: str) -> str:
	return f"games/{game_id}/aggregates/leaderboard"


def extend_counts(counts: List[int], options: Iterable[int]) -> List[int]:
	result = list(counts)
	for option in options:
		if option < 0:
			continue
		while len(result) <= option:
			result.append(0)
		result[option] += 1
	return result


def _event_question(key: str) -> Optional[int]:
	_, _, index = key.rpartition(":")
	return int(index) if index.isdigit() else None


def rank_for_score(scores: Iterable[int], score: int) -> int:
	"""1-based rank: players with a strictly higher score, plus one."""
	return sum(1 for other in scores if other > score) + 1


def merge_top_players(
	top_players: List[LeaderboardEntry],
	entry: LeaderboardEntry,
	top_n: int,
) -> List[LeaderboardEntry]:
	merged = list(top_players)
	existing = next((idx for idx, item in enumerate(merged) if item.id == entry.id), None)
	if existing is not None:
		previous = merged[existing]
		if previous.score == entry.score:
			entry.achieved_at = previous.achieved_at
		merged[existing] = entry
	elif len(merged) < top_n or entry.sort_key() < merged[-1].sort_key():
		merged.append(entry)
	merged.sort(key=LeaderboardEntry.sort_key)
	return merged[:top_n]


async def read_aggregate(store: DocumentStore, game_id: str) -> LeaderboardAggregate:
	snapshot = await store.get(aggregate_path(game_id))
	return LeaderboardAggregate.from_mapping(snapshot.data)


async def initialize_aggregate(store: DocumentStore, game_id: str, total_players: int) -> None:
	aggregate = LeaderboardAggregate(total_players=total_players)
	data = aggregate.to_mapping()
	data["lastUpdated"] = SERVER_TIMESTAMP
	await store.set(aggregate_path(game_id), data)
	logger.info("leaderboard initialised", extra={"game_id": game_id, "total_players": total_players})


async def reset_question_distribution(store: DocumentStore, game_id: str) -> None:
	"""Clear per-question tallies while keeping standings."""
	await store.set(
		aggregate_path(game_id),
		{
			"answerCounts": [],
			"liveAnswerCounts": {},
			"totalAnswered": 0,
			"processedEvents": [],
			"lastUpdated": SERVER_TIMESTAMP,
		},
		merge=True,
	)


async def apply_scoring_event(
	store: DocumentStore,
	game_id: str,
	event: ScoringEvent,
	*,
	total_players: Optional[int] = None,
	top_n: Optional[int] = None,
) -> LeaderboardAggregate:
	"""Fold one scoring event into the aggregate.

	Applying the same ``(player_id, question_index)`` twice changes nothing.
	"""
	limit = top_n or settings.leaderboard_top_n
	outcome: dict[str, LeaderboardAggregate] = {}

	def _mutate(current: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
		aggregate = LeaderboardAggregate.from_mapping(current)
		if event.key in aggregate.processed_events:
			outcome["aggregate"] = aggregate
			return None
		entry = LeaderboardEntry(
			id=event.player_id,
			name=event.player_name,
			score=event.new_score,
			current_streak=event.current_streak,
			last_question_points=event.points,
			achieved_at=event.achieved_at,
		)
		aggregate.top_players = merge_top_players(aggregate.top_players, entry, limit)
		aggregate.answer_counts = extend_counts(aggregate.answer_counts, event.selected_options)
		aggregate.total_answered += 1
		# only the open question can still receive answers
		aggregate.processed_events = [
			key for key in aggregate.processed_events if _event_question(key) == event.question_index
		]
		aggregate.processed_events.append(event.key)
		if total_players is not None:
			aggregate.total_players = total_players
		else:
			aggregate.total_players = max(aggregate.total_players, len(aggregate.top_players))
		aggregate.last_updated = store.now_ms()
		outcome["aggregate"] = aggregate
		data = dict(current or {})
		data.update(aggregate.to_mapping())
		return data

	await store.transaction(aggregate_path(game_id), _mutate)
	return outcome["aggregate"]


def compute_standings(
	players: Iterable[Mapping[str, Any]],
	question_index: int,
	streaks: Mapping[str, int],
	*,
	top_n: Optional[int] = None,
) -> LeaderboardAggregate:
	"""Full recomputation of standings and distribution from player records."""
	limit = top_n or settings.leaderboard_top_n
	entries: List[LeaderboardEntry] = []
	answer_counts: List[int] = []
	total_answered = 0
	for player in players:
		answers = player.get("answers") or []
		answer = next((item for item in answers if item.get("questionIndex") == question_index), None)
		if answer is not None:
			total_answered += 1
			if answer.get("answerIndex") is not None:
				answer_counts = extend_counts(answer_counts, [int(answer["answerIndex"])])
			elif answer.get("answerIndices"):
				answer_counts = extend_counts(answer_counts, [int(idx) for idx in answer["answerIndices"]])
		player_id = str(player.get("id"))
		scored = [item for item in answers if int(item.get("points") or 0) > 0]
		last_scored = max(scored, key=lambda item: item.get("timestamp") or 0, default=None)
		entries.append(
			LeaderboardEntry(
				id=player_id,
				name=str(player.get("name", "")),
				score=int(player.get("score") or 0),
				current_streak=streaks.get(player_id, int(player.get("currentStreak") or 0)),
				last_question_points=int(answer.get("points") or 0) if answer else 0,
				achieved_at=int((last_scored or {}).get("timestamp") or player.get("joinedAt") or 0),
			)
		)
	entries.sort(key=LeaderboardEntry.sort_key)
	total = len(entries)
	ranks = {entry.id: PlayerRank(idx + 1, total) for idx, entry in enumerate(entries)}
	return LeaderboardAggregate(
		top_players=entries[:limit],
		total_players=total,
		total_answered=total_answered,
		answer_counts=answer_counts,
		player_ranks=ranks,
	)
