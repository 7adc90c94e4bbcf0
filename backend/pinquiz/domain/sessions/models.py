"""Session pointers kept in the local key-value cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

HOST_SESSION_KEY = "pinquiz:host_session"
PLAYER_SESSION_KEY = "pinquiz:player_session"


def session_key(base: str, owner: str) -> str:
	"""One pointer per signed-in host or player."""
	return f"{base}:{owner}"


def default_return_path(activity_type: str, game_id: str, game_state: Optional[str]) -> str:
	view = "lobby" if game_state == "lobby" else "game"
	return f"/host/{activity_type}/{view}/{game_id}"


@dataclass(slots=True)
class HostSession:
	game_id: str
	game_pin: str
	activity_id: str
	activity_title: str
	host_id: str
	timestamp: int
	activity_type: str = "quiz"
	game_state: Optional[str] = None
	return_path: str = ""

	def __post_init__(self) -> None:
		if not self.return_path:
			self.return_path = default_return_path(self.activity_type, self.game_id, self.game_state)

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "HostSession":
		"""Raises KeyError/TypeError/ValueError on malformed input."""
		return cls(
			game_id=str(mapping["gameId"]),
			game_pin=str(mapping["gamePin"]),
			activity_id=str(mapping["activityId"]),
			activity_title=str(mapping.get("activityTitle") or ""),
			host_id=str(mapping["hostId"]),
			timestamp=int(mapping["timestamp"]),
			activity_type=str(mapping.get("activityType") or "quiz"),
			game_state=mapping.get("gameState"),
			return_path=str(mapping.get("returnPath") or ""),
		)

	def to_mapping(self) -> Dict[str, Any]:
		return {
			"gameId": self.game_id,
			"gamePin": self.game_pin,
			"activityId": self.activity_id,
			"activityTitle": self.activity_title,
			"hostId": self.host_id,
			"timestamp": self.timestamp,
			"activityType": self.activity_type,
			"gameState": self.game_state,
			"returnPath": self.return_path,
		}


@dataclass(slots=True)
class PlayerSession:
	player_id: str
	game_id: str
	game_pin: str
	nickname: str
	timestamp: int

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "PlayerSession":
		return cls(
			player_id=str(mapping["playerId"]),
			game_id=str(mapping["gameId"]),
			game_pin=str(mapping["gamePin"]),
			nickname=str(mapping.get("nickname") or ""),
			timestamp=int(mapping["timestamp"]),
		)

	def to_mapping(self) -> Dict[str, Any]:
		return {
			"playerId": self.player_id,
			"gameId": self.game_id,
			"gamePin": self.game_pin,
			"nickname": self.nickname,
			"timestamp": self.timestamp,
		}
