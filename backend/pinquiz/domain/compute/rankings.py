"""Ranking/evaluation results (``computeRankingResults``).

Aggregates every participant's ratings into per-metric statistics, a weighted
overall score, a consensus level and a final rank per item. Failures are
reported in the result (``success: false``) rather than raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence

from pinquiz.domain.questions.scoring import round_half_up
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)

HIGH_CONSENSUS_THRESHOLD = 0.15
MEDIUM_CONSENSUS_THRESHOLD = 0.3


@dataclass(slots=True)
class Metric:
	id: str
	name: str
	scale_min: int = 1
	scale_max: int = 5
	weight: float = 1.0
	lower_is_better: bool = False

	@property
	def scale_range(self) -> int:
		return self.scale_max - self.scale_min

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "Metric":
		return cls(
			id=str(mapping.get("id", "")),
			name=str(mapping.get("name", "")),
			scale_min=int(mapping.get("scaleMin", 1)),
			scale_max=int(mapping.get("scaleMax", 5)),
			weight=float(mapping.get("weight", 1.0)),
			lower_is_better=bool(mapping.get("lowerIsBetter", False)),
		)


@dataclass(slots=True)
class MetricScore:
	raw_average: float = 0.0
	normalized_average: float = 0.5
	median: float = 0.0
	std_dev: float = 0.0
	distribution: List[int] = field(default_factory=list)
	response_count: int = 0

	def to_mapping(self) -> MutableMapping[str, Any]:
		return {
			"rawAverage": self.raw_average,
			"normalizedAverage": self.normalized_average,
			"median": self.median,
			"stdDev": self.std_dev,
			"distribution": list(self.distribution),
			"responseCount": self.response_count,
		}


@dataclass(slots=True)
class ItemResult:
	item_id: str
	item_text: str
	overall_score: float
	metric_scores: Dict[str, MetricScore]
	consensus_level: str
	item_description: Optional[str] = None
	rank: int = 0

	def to_mapping(self) -> MutableMapping[str, Any]:
		data: MutableMapping[str, Any] = {
			"itemId": self.item_id,
			"itemText": self.item_text,
			"overallScore": self.overall_score,
			"rank": self.rank,
			"metricScores": {metric_id: score.to_mapping() for metric_id, score in self.metric_scores.items()},
			"consensusLevel": self.consensus_level,
		}
		if self.item_description:
			data["itemDescription"] = self.item_description
		return data


def median(values: Sequence[float]) -> float:
	if not values:
		return 0.0
	ordered = sorted(values)
	mid = len(ordered) // 2
	if len(ordered) % 2 == 0:
		return (ordered[mid - 1] + ordered[mid]) / 2
	return float(ordered[mid])


def population_std_dev(values: Sequence[float], average: float) -> float:
	if len(values) <= 1:
		return 0.0
	return math.sqrt(sum((value - average) ** 2 for value in values) / len(values))


def normalize_score(score: float, scale_min: float, scale_max: float, lower_is_better: bool) -> float:
	if scale_max == scale_min:
		return 0.5
	if lower_is_better:
		return (scale_max - score) / (scale_max - scale_min)
	return (score - scale_min) / (scale_max - scale_min)


def distribution(scores: Sequence[float], scale_min: int, scale_max: int) -> List[int]:
	buckets = [0] * max(0, scale_max - scale_min + 1)
	for score in scores:
		index = round_half_up(score) - scale_min
		if 0 <= index < len(buckets):
			buckets[index] += 1
	return buckets


def consensus_level(average_std_dev: float, scale_range: float) -> str:
	normalized = average_std_dev / scale_range if scale_range else 0.0
	if normalized < HIGH_CONSENSUS_THRESHOLD:
		return "high"
	if normalized < MEDIUM_CONSENSUS_THRESHOLD:
		return "medium"
	return "low"


def score_item(item_id: str, item: Mapping[str, Any], metrics: Sequence[Metric], ratings: Sequence[Mapping[str, Any]]) -> ItemResult:
	metric_scores: Dict[str, MetricScore] = {}
	weighted_total = 0.0
	total_weight = 0.0
	std_devs: List[float] = []
	scale_ranges: List[int] = []

	for metric in metrics:
		scores: List[float] = []
		for player_ratings in ratings:
			value = ((player_ratings.get("ratings") or {}).get(item_id) or {}).get(metric.id)
			if isinstance(value, (int, float)) and not isinstance(value, bool):
				scores.append(float(value))

		if not scores:
			metric_scores[metric.id] = MetricScore(distribution=[0] * (metric.scale_range + 1))
			continue

		average = mean(scores)
		std_dev = population_std_dev(scores, average)
		normalized = normalize_score(average, metric.scale_min, metric.scale_max, metric.lower_is_better)
		metric_scores[metric.id] = MetricScore(
			raw_average=average,
			normalized_average=normalized,
			median=median(scores),
			std_dev=std_dev,
			distribution=distribution(scores, metric.scale_min, metric.scale_max),
			response_count=len(scores),
		)
		weighted_total += normalized * metric.weight
		total_weight += metric.weight
		std_devs.append(std_dev)
		scale_ranges.append(metric.scale_range)

	average_std_dev = mean(std_devs) if std_devs else 0.0
	average_scale_range = mean(scale_ranges) if scale_ranges else 1
	return ItemResult(
		item_id=item_id,
		item_text=str(item.get("text", "")),
		item_description=item.get("description") or None,
		overall_score=weighted_total / total_weight if total_weight > 0 else 0.0,
		metric_scores=metric_scores,
		consensus_level=consensus_level(average_std_dev, average_scale_range),
	)


def rank_items(results: List[ItemResult]) -> List[ItemResult]:
	ordered = sorted(results, key=lambda result: result.overall_score, reverse=True)
	for index, result in enumerate(ordered):
		result.rank = index + 1
	return ordered


async def compute_ranking_results(
	store: DocumentStore,
	payload: Mapping[str, Any],
	user: Optional[AuthenticatedUser] = None,
) -> Dict[str, Any]:
	game_id = payload.get("gameId")
	if not game_id:
		return {"success": False, "message": "Missing gameId"}

	try:
		game = await store.get(f"games/{game_id}")
		if not game.exists:
			return {"success": False, "message": "Game not found"}
		if game.get("activityType") != "ranking":
			return {"success": False, "message": "Not a ranking game"}

		activity = await store.get(f"activities/{game.get('activityId')}")
		if not activity.exists:
			return {"success": False, "message": "Activity not found"}
		config = activity.get("config") or {}
		metrics = [Metric.from_mapping(raw) for raw in config.get("metrics") or []]

		items = await store.list(f"games/{game_id}/items", where={"approved": True})
		items.sort(key=lambda snap: (snap.get("order", 0), snap.id))
		if not items:
			return {"success": False, "message": "No items to rank"}

		ratings = [snap.data or {} for snap in await store.list(f"games/{game_id}/ratings")]
		players = await store.list(f"games/{game_id}/players")

		ranked = rank_items([score_item(snap.id, snap.data or {}, metrics, ratings) for snap in items])
		await store.set(
			f"games/{game_id}/aggregates/rankings",
			{
				"items": [result.to_mapping() for result in ranked],
				"totalParticipants": len(players),
				"participantsWhoRated": len(ratings),
				"processedAt": SERVER_TIMESTAMP,
			},
		)
		await store.update(f"games/{game_id}", {"state": "results"})
	except Exception as exc:
		logger.exception("ranking results failed", extra={"game_id": game_id})
		return {"success": False, "message": f"Error computing results: {exc}"}

	logger.info("ranking results computed", extra={"game_id": game_id, "items": len(ranked)})
	return {
		"success": True,
		"message": "Ranking results computed successfully",
		"results": {"totalItems": len(ranked), "totalParticipants": len(ratings)},
	}
