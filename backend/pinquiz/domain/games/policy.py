"""Guards and transition tables for game sessions."""

from __future__ import annotations

from typing import Dict, FrozenSet

from pinquiz.domain.games import models
from pinquiz.infra.auth import AuthenticatedUser


class GamePolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


def _table(**edges: tuple[str, ...]) -> Dict[str, FrozenSet[str]]:
	return {state: frozenset(targets) for state, targets in edges.items()}


TRANSITIONS: Dict[models.ActivityType, Dict[str, FrozenSet[str]]] = {
	"quiz": _table(
		lobby=("preparing", "ended"),
		preparing=("question", "ended"),
		question=("leaderboard", "ended"),
		leaderboard=("preparing", "ended"),
	),
	"poll": _table(
		lobby=("question", "ended"),
		question=("results", "ended"),
		results=("question", "ended"),
	),
	"presentation": _table(
		lobby=("presenting", "ended"),
		presenting=("ended",),
	),
	"thoughts-gathering": _table(
		collecting=("processing", "ended"),
		processing=("display", "collecting", "ended"),
		display=("collecting", "ended"),
	),
	"ranking": _table(
		collecting=("ranking", "ended"),
		ranking=("analyzing", "ended"),
		analyzing=("results", "ranking", "ended"),
		results=("ended",),
	),
}


def ensure_host(game: models.Game, user: AuthenticatedUser) -> None:
	if game.host_id != user.id:
		raise GamePolicyError("not_host", status_code=403)


def ensure_activity_type(game: models.Game, *activity_types: str) -> None:
	if game.activity_type not in activity_types:
		raise GamePolicyError("wrong_activity_type", status_code=409)


def ensure_state(game: models.Game, *states: str) -> None:
	if game.state not in states:
		raise GamePolicyError("invalid_state", status_code=409, message=f"invalid_state:{game.state}")


def ensure_not_terminal(game: models.Game) -> None:
	if game.is_terminal:
		raise GamePolicyError("invalid_state", status_code=409, message=f"invalid_state:{game.state}")


def can_transition(activity_type: str, current: str, target: str) -> bool:
	return target in TRANSITIONS.get(activity_type, {}).get(current, frozenset())


def ensure_transition(game: models.Game, target: str) -> None:
	if not can_transition(game.activity_type, game.state, target):
		raise GamePolicyError(
			"invalid_state",
			status_code=409,
			message=f"invalid_state:{game.state}->{target}",
		)
