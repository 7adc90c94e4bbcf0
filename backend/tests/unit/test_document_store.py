import copy

import pytest

from pinquiz.infra.documents import (
	SERVER_TIMESTAMP,
	DocumentNotFoundError,
	MemoryDocumentStore,
	PermissionDeniedError,
	RedisDocumentStore,
	apply_field_updates,
	is_collection_path,
	parent_collection,
)
from pinquiz.infra.emitter import PERMISSION_ERROR, ErrorEmitter, error_emitter


def test_paths():
	assert is_collection_path("games")
	assert is_collection_path("games/g1/players")
	assert not is_collection_path("games/g1")
	assert parent_collection("games/g1/players/p1") == "games/g1/players"
	assert parent_collection("games") is None
	with pytest.raises(ValueError):
		is_collection_path("/")


def test_apply_field_updates_creates_nested_maps():
	updated = apply_field_updates({"a": 1, "nested": "flat"}, {"nested.inner": 2, "b": SERVER_TIMESTAMP}, 42)
	assert updated == {"a": 1, "nested": {"inner": 2}, "b": 42}


def test_server_timestamp_survives_deep_copies():
	payload = copy.deepcopy({"createdAt": SERVER_TIMESTAMP, "nested": [SERVER_TIMESTAMP]})
	assert payload["createdAt"] is SERVER_TIMESTAMP
	assert payload["nested"][0] is SERVER_TIMESTAMP
	assert copy.copy(SERVER_TIMESTAMP) is SERVER_TIMESTAMP


@pytest.fixture(params=["memory", "redis"])
def any_store(request, fake_redis):
	clock = lambda: 1_000  # noqa: E731
	if request.param == "memory":
		return MemoryDocumentStore(clock=clock)
	return RedisDocumentStore(clock=clock, client=fake_redis)


# ============================================================================
# Behaviour shared by both stores
# ============================================================================


class TestDocumentStore:
	@pytest.mark.asyncio
	async def test_set_get_and_timestamps(self, any_store):
		await any_store.set("games/g1", {"state": "lobby", "createdAt": SERVER_TIMESTAMP})
		snapshot = await any_store.get("games/g1")
		assert snapshot.exists
		assert snapshot.id == "g1"
		assert snapshot.get("createdAt") == 1_000
		assert not (await any_store.get("games/missing")).exists

	@pytest.mark.asyncio
	async def test_update_and_merge(self, any_store):
		await any_store.set("games/g1", {"state": "lobby", "crowdsourceState": {"submissionsLocked": False}})
		await any_store.update("games/g1", {"crowdsourceState.submissionsLocked": True})
		await any_store.set("games/g1", {"title": "Space"}, merge=True)
		snapshot = await any_store.get("games/g1")
		assert snapshot.data == {"state": "lobby", "crowdsourceState": {"submissionsLocked": True}, "title": "Space"}

	@pytest.mark.asyncio
	async def test_update_missing_document(self, any_store):
		with pytest.raises(DocumentNotFoundError):
			await any_store.update("games/nope", {"state": "question"})

	@pytest.mark.asyncio
	async def test_list_filters_and_orders(self, any_store):
		await any_store.set("games/g1/players/b", {"name": "B", "team": "red"})
		await any_store.set("games/g1/players/a", {"name": "A", "team": "red"})
		await any_store.set("games/g1/players/c", {"name": "C", "team": "blue"})
		await any_store.set("games/g1/players/a/answers/x", {"ignored": True})

		assert [snap.id for snap in await any_store.list("games/g1/players")] == ["a", "b", "c"]
		assert [snap.id for snap in await any_store.list("games/g1/players", where={"team": "red"})] == ["a", "b"]

	@pytest.mark.asyncio
	async def test_create_assigns_id(self, any_store):
		doc_id = await any_store.create("games/g1/submissions", {"questionText": "Q"})
		assert (await any_store.get(f"games/g1/submissions/{doc_id}")).get("questionText") == "Q"

	@pytest.mark.asyncio
	async def test_transaction(self, any_store):
		await any_store.set("games/g1", {"count": 1})

		def bump(current):
			current["count"] += 1
			return current

		assert await any_store.transaction("games/g1", bump) == {"count": 2}
		assert await any_store.transaction("games/g1", lambda current: None) is None
		assert (await any_store.get("games/g1")).get("count") == 2

	@pytest.mark.asyncio
	async def test_transaction_and_merge_resolve_timestamps(self, any_store):
		await any_store.transaction("games/g1", lambda current: {"createdAt": SERVER_TIMESTAMP, "meta": {"seenAt": SERVER_TIMESTAMP}})
		await any_store.set("games/g1/aggregates/leaderboard", {"lastUpdated": SERVER_TIMESTAMP}, merge=True)
		await any_store.set("games/g1/aggregates/leaderboard", {"totalAnswered": 2, "lastUpdated": SERVER_TIMESTAMP}, merge=True)

		assert (await any_store.get("games/g1")).data == {"createdAt": 1_000, "meta": {"seenAt": 1_000}}
		assert (await any_store.get("games/g1/aggregates/leaderboard")).data == {"lastUpdated": 1_000, "totalAnswered": 2}

	@pytest.mark.asyncio
	async def test_transaction_error_aborts(self, any_store):
		await any_store.set("games/g1", {"count": 1})

		def explode(current):
			raise ValueError("stop")

		with pytest.raises(ValueError):
			await any_store.transaction("games/g1", explode)
		assert (await any_store.get("games/g1")).get("count") == 1

	@pytest.mark.asyncio
	async def test_delete_tree(self, any_store):
		await any_store.set("games/g1", {"state": "ended"})
		await any_store.set("games/g1/players/p1", {"name": "A"})
		await any_store.set("games/g1/players/p1/answers/a1", {"points": 0})
		await any_store.set("games/g2", {"state": "lobby"})

		assert await any_store.delete_tree("games/g1") == 3
		assert not (await any_store.get("games/g1/players/p1")).exists
		assert [snap.id for snap in await any_store.list("games")] == ["g2"]


# ============================================================================
# Subscriptions
# ============================================================================


class TestWatch:
	@pytest.mark.asyncio
	async def test_document_watch_receives_initial_and_changes(self):
		store = MemoryDocumentStore()
		await store.set("games/g1", {"state": "lobby"})
		async with await store.watch("games/g1") as subscription:
			first = await subscription.next(timeout=1)
			await store.update("games/g1", {"state": "question"})
			second = await subscription.next(timeout=1)
		assert first.get("state") == "lobby"
		assert second.get("state") == "question"
		assert subscription.closed

	@pytest.mark.asyncio
	async def test_collection_watch_sees_child_writes(self):
		store = MemoryDocumentStore()
		subscription = await store.watch("games/g1/players")
		assert await subscription.next(timeout=1) == []
		await store.set("games/g1/players/p1", {"name": "A"})
		players = await subscription.next(timeout=1)
		assert [snap.id for snap in players] == ["p1"]
		subscription.close()

		await store.set("games/g1/players/p2", {"name": "B"})
		with pytest.raises(StopAsyncIteration):
			await subscription.next(timeout=1)

	@pytest.mark.asyncio
	async def test_closed_subscription_stops_iteration(self):
		store = MemoryDocumentStore()
		subscription = await store.watch("games/g1")
		subscription.close()
		seen = [snapshot async for snapshot in subscription]
		assert len(seen) == 1


# ============================================================================
# Access rules and the error emitter
# ============================================================================


class TestAccessRules:
	@pytest.mark.asyncio
	async def test_denied_operation_raises_and_is_emitted(self):
		seen = []
		unsubscribe = error_emitter.on(PERMISSION_ERROR, seen.append)
		store = MemoryDocumentStore(rules=lambda operation, path: not (operation == "update" and path.startswith("games/")))
		try:
			await store.set("games/g1", {"state": "lobby"})
			with pytest.raises(PermissionDeniedError) as excinfo:
				await store.update("games/g1", {"state": "question"})
		finally:
			unsubscribe()

		assert excinfo.value.code == "permission_denied"
		assert excinfo.value.context == {
			"path": "games/g1",
			"operation": "update",
			"requestResourceData": {"state": "question"},
		}
		assert seen == [excinfo.value]
		assert (await store.get("games/g1")).get("state") == "lobby"


class TestErrorEmitter:
	def test_failing_listener_does_not_block_others(self):
		emitter = ErrorEmitter()
		seen = []

		def broken(error):
			raise RuntimeError("listener bug")

		emitter.on(PERMISSION_ERROR, broken)
		emitter.on(PERMISSION_ERROR, seen.append)
		emitter.emit(PERMISSION_ERROR, "boom")
		assert seen == ["boom"]

	def test_unsubscribe(self):
		emitter = ErrorEmitter()
		seen = []
		unsubscribe = emitter.on(PERMISSION_ERROR, seen.append)
		assert emitter.listener_count(PERMISSION_ERROR) == 1
		unsubscribe()
		emitter.emit(PERMISSION_ERROR, "boom")
		assert seen == []
		assert emitter.listener_count(PERMISSION_ERROR) == 0


@pytest.mark.asyncio
async def test_redis_merge_runs_inside_watched_transaction(fake_redis, monkeypatch):
	store = RedisDocumentStore(clock=lambda: 1_000, client=fake_redis)
	await store.set("games/g1/aggregates/leaderboard", {"totalAnswered": 1, "topPlayers": []})
	paths = []
	original = store.transaction

	async def recording(path, mutate):
		paths.append(path)
		return await original(path, mutate)

	monkeypatch.setattr(store, "transaction", recording)
	await store.set("games/g1/aggregates/leaderboard", {"topPlayers": [{"id": "p1"}], "lastUpdated": SERVER_TIMESTAMP}, merge=True)

	assert paths == ["games/g1/aggregates/leaderboard"]
	assert (await store.get("games/g1/aggregates/leaderboard")).data == {
		"totalAnswered": 1,
		"topPlayers": [{"id": "p1"}],
		"lastUpdated": 1_000,
	}
