"""Join PIN generation."""

from __future__ import annotations

import secrets
from typing import Awaitable, Callable

from pinquiz.domain.games.policy import GamePolicyError

# No 0/O, 1/I; everything left reads unambiguously on a projector.
PIN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MIN_PIN_LENGTH = 6
MAX_PIN_LENGTH = 8


def generate_pin(length: int = MIN_PIN_LENGTH) -> str:
	if not MIN_PIN_LENGTH <= length <= MAX_PIN_LENGTH:
		raise ValueError(f"pin length must be between {MIN_PIN_LENGTH} and {MAX_PIN_LENGTH}")
	return "".join(secrets.choice(PIN_ALPHABET) for _ in range(length))


def normalize_pin(raw: str) -> str:
	return "".join(raw.split()).upper()


def is_valid_pin(raw: str) -> bool:
	pin = normalize_pin(raw)
	return MIN_PIN_LENGTH <= len(pin) <= MAX_PIN_LENGTH and all(ch in PIN_ALPHABET for ch in pin)


async def allocate_pin(
	is_taken: Callable[[str], Awaitable[bool]],
	*,
	length: int = MIN_PIN_LENGTH,
	max_attempts: int = 10,
) -> str:
	for _ in range(max_attempts):
		pin = generate_pin(length)
		if not await is_taken(pin):
			return pin
	raise GamePolicyError("pin_unavailable", status_code=503)
