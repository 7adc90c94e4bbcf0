"""Process-wide error event emitter.

Store and remote-call layers publish classified errors here so a single
listener (API layer, host controller) can present them uniformly instead of
each subscriber handling them locally.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger(__name__)

PERMISSION_ERROR = "permission-error"

Listener = Callable[[Any], None]


class ErrorEmitter:
	def __init__(self) -> None:
		self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

	def on(self, event: str, listener: Listener) -> Callable[[], None]:
		self._listeners[event].append(listener)

		def _unsubscribe() -> None:
			self.off(event, listener)

		return _unsubscribe

	def off(self, event: str, listener: Listener) -> None:
		listeners = self._listeners.get(event)
		if listeners and listener in listeners:
			listeners.remove(listener)

	def emit(self, event: str, error: Any) -> None:
		for listener in list(self._listeners.get(event, ())):
			try:
				listener(error)
			except Exception:
				logger.exception("error listener failed", extra={"event": event})

	def listener_count(self, event: str) -> int:
		return len(self._listeners.get(event, ()))

	def clear(self) -> None:
		self._listeners.clear()


error_emitter = ErrorEmitter()
