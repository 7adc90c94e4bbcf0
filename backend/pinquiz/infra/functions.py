"""Remote compute ("callable function") invocation.

A call sends ``{"data": payload}`` to a named function and receives
``{"result": {...}}`` or ``{"error": {"status": code, "message": ...}}``.
Failures always surface as :class:`RemoteCallError`.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.obs import logging as obs_logging

logger = logging.getLogger(__name__)

_STATUS_BY_CODE: Dict[str, int] = {
	"invalid-argument": 400,
	"failed-precondition": 412,
	"unauthenticated": 401,
	"permission-denied": 403,
	"not-found": 404,
	"already-exists": 409,
	"aborted": 409,
	"resource-exhausted": 429,
	"cancelled": 499,
	"unavailable": 503,
	"deadline-exceeded": 504,
	"internal": 500,
}


def status_for_code(code: str) -> int:
	return _STATUS_BY_CODE.get(code, 500)


def code_for_status(status_code: int) -> str:
	for code, value in _STATUS_BY_CODE.items():
		if value == status_code:
			return code
	return "internal"


class FunctionError(RuntimeError):
	"""Raised by function handlers; the code travels back to the caller."""

	def __init__(self, code: str, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_for_code(code)
		self.detail = message or code


class RemoteCallError(RuntimeError):
	def __init__(self, code: str = "internal", message: str | None = None, *, function: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.function = function
		self.status_code = 502 if code == "internal" else status_for_code(code)
		self.detail = message or code


Handler = Callable[[Dict[str, Any], Optional[AuthenticatedUser]], Awaitable[Dict[str, Any]]]


class FunctionsRegistry:
	def __init__(self) -> None:
		self._handlers: Dict[str, Handler] = {}

	def register(self, name: str, handler: Handler) -> None:
		self._handlers[name] = handler

	def get(self, name: str) -> Handler | None:
		return self._handlers.get(name)

	def names(self) -> list[str]:
		return sorted(self._handlers)

	async def invoke(self, name: str, payload: Mapping[str, Any], user: AuthenticatedUser | None = None) -> Dict[str, Any]:
		"""Run a handler, normalising every failure into FunctionError."""
		handler = self._handlers.get(name)
		if handler is None:
			raise FunctionError("not-found", f"function {name} is not registered")
		game_id = payload.get("gameId")
		tokens = obs_logging.bind_context(
			user_id=user.id if user is not None else None,
			game_id=str(game_id) if game_id else None,
		)
		try:
			return await handler(dict(payload), user)
		except FunctionError:
			raise
		except Exception as exc:
			logger.exception("function failed", extra={"function": name})
			raise FunctionError("internal", f"An error occurred in {name}") from exc
		finally:
			obs_logging.reset_context(tokens)


class FunctionsClient(ABC):
	@abstractmethod
	async def call(self, name: str, payload: Mapping[str, Any], *, user: AuthenticatedUser | None = None) -> Dict[str, Any]:
		...


class LocalFunctionsClient(FunctionsClient):
	"""Dispatch to handlers in the same process.

	Payloads are JSON round-tripped so handlers see exactly what the HTTP
	transport would deliver.
	"""

	def __init__(self, registry: FunctionsRegistry | None = None) -> None:
		self.registry = registry or FunctionsRegistry()

	def register(self, name: str, handler: Handler) -> None:
		self.registry.register(name, handler)

	async def call(self, name: str, payload: Mapping[str, Any], *, user: AuthenticatedUser | None = None) -> Dict[str, Any]:
		wire = json.loads(json.dumps(dict(payload)))
		try:
			result = await self.registry.invoke(name, wire, user)
		except FunctionError as exc:
			raise RemoteCallError(exc.code, exc.detail, function=name) from exc
		return json.loads(json.dumps(result))


class HttpFunctionsClient(FunctionsClient):
	def __init__(
		self,
		base_url: str,
		*,
		timeout: float = 30.0,
		token_provider: Callable[[AuthenticatedUser], str] | None = None,
		transport: httpx.AsyncBaseTransport | None = None,
	) -> None:
		self._base_url = base_url.rstrip("/")
		self._timeout = timeout
		self._token_provider = token_provider
		self._transport = transport

	def _headers(self, user: AuthenticatedUser | None) -> Dict[str, str]:
		headers = {"Content-Type": "application/json"}
		if user is None:
			return headers
		if self._token_provider is not None:
			headers["Authorization"] = f"Bearer {self._token_provider(user)}"
		else:
			headers["X-User-Id"] = user.id
		return headers

	async def call(self, name: str, payload: Mapping[str, Any], *, user: AuthenticatedUser | None = None) -> Dict[str, Any]:
		url = f"{self._base_url}/{name}"
		try:
			async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
				response = await client.post(url, json={"data": dict(payload)}, headers=self._headers(user))
		except httpx.TimeoutException as exc:
			raise RemoteCallError("deadline-exceeded", f"{name} timed out", function=name) from exc
		except httpx.TransportError as exc:
			raise RemoteCallError("unavailable", str(exc), function=name) from exc

		try:
			body = response.json()
		except ValueError:
			body = {}
		if response.is_success and isinstance(body, dict) and "result" in body:
			return body["result"] or {}
		error = body.get("error") if isinstance(body, dict) else None
		if isinstance(error, dict):
			raise RemoteCallError(str(error.get("status") or "internal"), error.get("message"), function=name)
		raise RemoteCallError(code_for_status(response.status_code), f"{name} failed with HTTP {response.status_code}", function=name)
