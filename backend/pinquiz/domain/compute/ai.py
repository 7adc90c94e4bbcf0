"""Text generation client for the AI-backed functions."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from pinquiz.infra.functions import FunctionError
from pinquiz.settings import settings

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
	async def generate(self, *, system: str, prompt: str, temperature: float, max_output_tokens: int) -> str:
		...


class TextGenerationError(RuntimeError):
	pass


class HttpTextGenerator:
	"""POSTs ``{system, prompt, temperature, maxOutputTokens}`` and reads ``{"text": ...}``."""

	def __init__(
		self,
		url: str | None = None,
		*,
		timeout: float | None = None,
		transport: httpx.AsyncBaseTransport | None = None,
	) -> None:
		self._url = url or settings.ai_generate_url
		self._timeout = settings.ai_timeout_seconds if timeout is None else timeout
		self._transport = transport

	async def generate(self, *, system: str, prompt: str, temperature: float, max_output_tokens: int) -> str:
		if not self._url:
			raise TextGenerationError("AI generation endpoint is not configured")
		body = {
			"system": system,
			"prompt": prompt,
			"temperature": temperature,
			"maxOutputTokens": max_output_tokens,
		}
		try:
			async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
				response = await client.post(self._url, json=body)
				response.raise_for_status()
		except httpx.HTTPStatusError as exc:
			if exc.response.status_code == 429:
				raise TextGenerationError("quota exceeded") from exc
			raise TextGenerationError(f"generation failed with HTTP {exc.response.status_code}") from exc
		except httpx.HTTPError as exc:
			raise TextGenerationError(str(exc)) from exc
		text = (response.json() or {}).get("text")
		if not text:
			raise FunctionError("internal", "No response received from AI model")
		return str(text)


def strip_code_fences(text: str) -> str:
	cleaned = text.strip()
	if cleaned.startswith("```json"):
		cleaned = cleaned[7:]
	elif cleaned.startswith("```"):
		cleaned = cleaned[3:]
	if cleaned.endswith("```"):
		cleaned = cleaned[:-3]
	return cleaned.strip()


def parse_json_reply(text: str, key: str) -> list[Dict[str, Any]]:
	"""Parse a (possibly fenced) JSON reply and return its ``key`` list."""
	try:
		parsed = json.loads(strip_code_fences(text))
	except ValueError as exc:
		raise ValueError(f"reply is not valid JSON: {exc}") from exc
	entries = parsed.get(key) if isinstance(parsed, dict) else None
	if not isinstance(entries, list):
		raise ValueError(f"reply has no {key} list")
	return [entry for entry in entries if isinstance(entry, dict)]


def function_error_for(exc: Exception, action: str) -> FunctionError:
	"""Map a generation failure onto a callable error code."""
	message = str(exc).lower()
	if "quota" in message:
		return FunctionError("resource-exhausted", "AI quota exceeded. Please try again later.")
	if "safety" in message:
		return FunctionError("invalid-argument", "Some submissions were flagged by content safety filters.")
	return FunctionError("internal", f"Failed to {action}. Please try again.")


_default_generator: Optional[TextGenerator] = None


def get_text_generator() -> TextGenerator:
	global _default_generator
	if _default_generator is None:
		_default_generator = HttpTextGenerator()
	return _default_generator


def set_text_generator(generator: TextGenerator | None) -> None:
	global _default_generator
	_default_generator = generator
