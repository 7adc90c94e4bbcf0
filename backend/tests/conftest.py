import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from pinquiz.domain.compute import ai, registry
from pinquiz.infra import documents
from pinquiz.infra.auth import AuthenticatedUser
from pinquiz.infra.documents import MemoryDocumentStore
from pinquiz.main import app
from pinquiz.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from pinquiz.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode. Remote compute stays in-process.
	"""
	original_env = settings.environment
	original_functions_url = settings.functions_base_url
	settings.environment = "dev"
	settings.functions_base_url = None
	try:
		yield
	finally:
		settings.environment = original_env
		settings.functions_base_url = original_functions_url


@pytest.fixture(autouse=True)
def store():
	"""Process-wide memory store; trusted functions and services resolve it lazily."""
	memory = MemoryDocumentStore()
	documents.set_document_store(memory)
	registry.set_functions_client(None)
	try:
		yield memory
	finally:
		documents.set_document_store(None)
		registry.set_functions_client(None)
		ai.set_text_generator(None)


@pytest.fixture
def host():
	return AuthenticatedUser(id="host-1", display_name="Host")


@pytest.fixture
def player():
	return AuthenticatedUser(id="player-1", display_name="Ada")


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


class FakeFunctions:
	"""Records calls; answers from ``responses`` or raises ``error``."""

	def __init__(self) -> None:
		self.calls = []
		self.responses = {}
		self.error = None
		self.on_call = None

	async def call(self, name, payload, *, user=None):
		self.calls.append((name, dict(payload)))
		if self.on_call is not None:
			await self.on_call(name, payload)
		if self.error is not None:
			raise self.error
		return self.responses.get(name, {"success": True})


class FakeGenerator:
	def __init__(self, reply: str = "", error: Exception | None = None) -> None:
		self.reply = reply
		self.error = error
		self.prompts = []

	async def generate(self, *, system, prompt, temperature, max_output_tokens):
		self.prompts.append(prompt)
		if self.error is not None:
			raise self.error
		return self.reply


@pytest.fixture
def fake_functions():
	return FakeFunctions()


@pytest.fixture
def fake_generator():
	return FakeGenerator()
