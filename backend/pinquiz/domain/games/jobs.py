from __future__ import annotations

import logging
from typing import Dict, Optional

from pinquiz.domain.games.models import GAME_SUBCOLLECTIONS
from pinquiz.domain.games.service import game_path
from pinquiz.infra.documents import DocumentStore, get_document_store
from pinquiz.settings import settings

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
BATCH_LIMIT = 100


async def cleanup_old_games(
	store: DocumentStore,
	*,
	now_ms: Optional[int] = None,
	retention_days: Optional[int] = None,
	limit: int = BATCH_LIMIT,
) -> Dict[str, int]:
	"""Delete games (and everything under them) created before the retention window."""
	days = settings.game_retention_days if retention_days is None else retention_days
	cutoff = (store.now_ms() if now_ms is None else now_ms) - days * DAY_MS
	counts: Dict[str, int] = {"games": 0, **{name: 0 for name in GAME_SUBCOLLECTIONS}}

	games = await store.list("games")
	stale = [snap for snap in games if isinstance(snap.get("createdAt"), int) and snap.get("createdAt") < cutoff]
	for snapshot in stale[:limit]:
		for name in GAME_SUBCOLLECTIONS:
			counts[name] += len(await store.list(f"{game_path(snapshot.id)}/{name}"))
		await store.delete_tree(game_path(snapshot.id))
		counts["games"] += 1

	logger.info("old games cleaned up", extra={"cutoff": cutoff, **counts})
	return counts


async def run_cleanup() -> Dict[str, int]:
	"""Scheduled entry point over the process-wide document store."""
	return await cleanup_old_games(get_document_store())
