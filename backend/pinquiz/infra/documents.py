"""Path-addressed document store with change subscriptions.

Documents live at even-length paths (``games/abc``), collections at odd-length
paths (``games/abc/players``). Every store supports conditional
read-modify-write through :meth:`DocumentStore.transaction` and push-style
subscriptions through :meth:`DocumentStore.watch`.

Two implementations are provided: an in-process memory store (tests, local
runs) and a Redis-backed store that keeps JSON documents under ``doc:{path}``
and fans change notifications out over pub/sub.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from redis import exceptions as redis_exceptions

from pinquiz.infra.emitter import PERMISSION_ERROR, error_emitter
from pinquiz.infra.redis import redis_client

logger = logging.getLogger(__name__)

CHANGE_CHANNEL = "docs:changed"
MAX_TRANSACTION_ATTEMPTS = 5


class _ServerTimestamp:
	def __repr__(self) -> str:
		return "SERVER_TIMESTAMP"

	def __copy__(self) -> "_ServerTimestamp":
		return self

	def __deepcopy__(self, memo: Dict[int, Any]) -> "_ServerTimestamp":
		return self


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(RuntimeError):
	def __init__(self, code: str = "store_error", *, status_code: int = 500, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class DocumentNotFoundError(StoreError):
	def __init__(self, path: str) -> None:
		super().__init__("not_found", status_code=404, message=f"document not found: {path}")
		self.path = path


class ConflictError(StoreError):
	def __init__(self, path: str) -> None:
		super().__init__("aborted", status_code=409, message=f"transaction contention on {path}")
		self.path = path


class PermissionDeniedError(StoreError):
	"""Raised when the backing store refuses an operation."""

	def __init__(self, path: str, operation: str, request_data: Optional[Mapping[str, Any]] = None) -> None:
		super().__init__("permission_denied", status_code=403, message=f"missing permission for {operation} on {path}")
		self.path = path
		self.operation = operation
		self.request_data = dict(request_data) if request_data is not None else None

	@property
	def context(self) -> Dict[str, Any]:
		return {"path": self.path, "operation": self.operation, "requestResourceData": self.request_data}


@dataclass(slots=True)
class DocumentSnapshot:
	path: str
	data: Optional[Dict[str, Any]]

	@property
	def id(self) -> str:
		return self.path.rsplit("/", 1)[-1]

	@property
	def exists(self) -> bool:
		return self.data is not None

	def get(self, field: str, default: Any = None) -> Any:
		if self.data is None:
			return default
		return self.data.get(field, default)


Snapshot = Union[DocumentSnapshot, List[DocumentSnapshot]]
Mutator = Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]
AccessRule = Callable[[str, str], bool]


def _segments(path: str) -> List[str]:
	parts = [part for part in path.strip("/").split("/") if part]
	if not parts:
		raise ValueError("empty document path")
	return parts


def is_collection_path(path: str) -> bool:
	return len(_segments(path)) % 2 == 1


def parent_collection(path: str) -> Optional[str]:
	parts = _segments(path)
	if len(parts) % 2 == 1:
		return None
	return "/".join(parts[:-1])


def _ensure_document_path(path: str) -> str:
	if is_collection_path(path):
		raise ValueError(f"expected a document path, got collection {path}")
	return "/".join(_segments(path))


def _ensure_collection_path(path: str) -> str:
	if not is_collection_path(path):
		raise ValueError(f"expected a collection path, got document {path}")
	return "/".join(_segments(path))


def _resolve_sentinels(value: Any, now_ms: int) -> Any:
	if value is SERVER_TIMESTAMP:
		return now_ms
	if isinstance(value, dict):
		return {key: _resolve_sentinels(item, now_ms) for key, item in value.items()}
	if isinstance(value, list):
		return [_resolve_sentinels(item, now_ms) for item in value]
	return value


def apply_field_updates(data: Dict[str, Any], fields: Mapping[str, Any], now_ms: int) -> Dict[str, Any]:
	"""Apply ``fields`` to ``data``; dotted keys address nested maps."""
	result = copy.deepcopy(data)
	for key, value in fields.items():
		resolved = _resolve_sentinels(value, now_ms)
		parts = key.split(".")
		target = result
		for part in parts[:-1]:
			nested = target.get(part)
			if not isinstance(nested, dict):
				nested = {}
				target[part] = nested
			target = nested
		target[parts[-1]] = resolved
	return result


def _matches(data: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
	if not where:
		return True
	return all(data.get(field) == expected for field, expected in where.items())


def _now_ms() -> int:
	return int(time.time() * 1000)


class Subscription:
	"""Async iterator of snapshots for a single path.

	The first item is the state at subscription time; later items follow every
	change. ``close()`` is the single cleanup path.
	"""

	_CLOSED = object()

	def __init__(self, store: "DocumentStore", path: str) -> None:
		self.path = path
		self._store = store
		self._queue: asyncio.Queue = asyncio.Queue()
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	def _push(self, snapshot: Snapshot) -> None:
		if not self._closed:
			self._queue.put_nowait(snapshot)

	async def next(self, timeout: float | None = None) -> Snapshot:
		item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
		if item is self._CLOSED:
			raise StopAsyncIteration
		return item

	def __aiter__(self) -> "Subscription":
		return self

	async def __anext__(self) -> Snapshot:
		if self._closed and self._queue.empty():
			raise StopAsyncIteration
		return await self.next()

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._store._unwatch(self)
		self._queue.put_nowait(self._CLOSED)

	async def __aenter__(self) -> "Subscription":
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		self.close()


class DocumentStore(ABC):
	def __init__(self, *, clock: Callable[[], int] | None = None) -> None:
		self._clock = clock or _now_ms
		self._watchers: Dict[str, Set[Subscription]] = defaultdict(set)

	def now_ms(self) -> int:
		return self._clock()

	@abstractmethod
	async def get(self, path: str) -> DocumentSnapshot:
		...

	@abstractmethod
	async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
		...

	@abstractmethod
	async def update(self, path: str, fields: Mapping[str, Any]) -> None:
		"""Patch an existing document; raises DocumentNotFoundError if absent."""

	@abstractmethod
	async def delete(self, path: str) -> None:
		...

	@abstractmethod
	async def delete_tree(self, path: str) -> int:
		"""Delete a document and every document beneath it. Returns the count removed."""

	@abstractmethod
	async def list(self, collection: str, *, where: Optional[Mapping[str, Any]] = None) -> List[DocumentSnapshot]:
		...

	@abstractmethod
	async def transaction(self, path: str, mutate: Mutator) -> Optional[Dict[str, Any]]:
		"""Conditionally rewrite one document.

		``mutate`` receives a copy of the current data (or None) and returns
		the replacement; returning None leaves the document untouched.
		Exceptions raised by ``mutate`` abort without writing.
		"""

	async def create(self, collection: str, data: Mapping[str, Any], *, doc_id: str | None = None) -> str:
		doc_id = doc_id or uuid.uuid4().hex
		await self.set(f"{_ensure_collection_path(collection)}/{doc_id}", data)
		return doc_id

	async def watch(self, path: str) -> Subscription:
		path = "/".join(_segments(path))
		subscription = Subscription(self, path)
		self._watchers[path].add(subscription)
		subscription._push(await self._read(path))
		return subscription

	def _unwatch(self, subscription: Subscription) -> None:
		watchers = self._watchers.get(subscription.path)
		if watchers is not None:
			watchers.discard(subscription)
			if not watchers:
				self._watchers.pop(subscription.path, None)

	async def _read(self, path: str) -> Snapshot:
		if is_collection_path(path):
			return await self.list(path)
		return await self.get(path)

	async def _notify(self, paths: Iterable[str]) -> None:
		targets: List[str] = []
		for path in paths:
			targets.append(path)
			parent = parent_collection(path)
			if parent:
				targets.append(parent)
		for target in dict.fromkeys(targets):
			watchers = list(self._watchers.get(target, ()))
			if not watchers:
				continue
			snapshot = await self._read(target)
			for subscription in watchers:
				subscription._push(copy.deepcopy(snapshot))

	def _denied(self, path: str, operation: str, data: Optional[Mapping[str, Any]] = None) -> PermissionDeniedError:
		error = PermissionDeniedError(path, operation, data)
		logger.warning("store permission denied", extra={"path": path, "operation": operation})
		error_emitter.emit(PERMISSION_ERROR, error)
		return error


class MemoryDocumentStore(DocumentStore):
	"""In-process store guarded by an asyncio lock.

	``rules`` mirrors server-side security rules: it receives the operation
	(``get``, ``list``, ``create``, ``update``, ``delete``) and the path and
	returns whether the call is allowed.
	"""

	def __init__(self, *, clock: Callable[[], int] | None = None, rules: AccessRule | None = None) -> None:
		super().__init__(clock=clock)
		self._docs: Dict[str, Dict[str, Any]] = {}
		self._lock = asyncio.Lock()
		self._rules = rules

	def _check(self, operation: str, path: str, data: Optional[Mapping[str, Any]] = None) -> None:
		if self._rules is not None and not self._rules(operation, path):
			raise self._denied(path, operation, data)

	async def get(self, path: str) -> DocumentSnapshot:
		path = _ensure_document_path(path)
		self._check("get", path)
		async with self._lock:
			data = self._docs.get(path)
			return DocumentSnapshot(path, copy.deepcopy(data) if data is not None else None)

	async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
		path = _ensure_document_path(path)
		async with self._lock:
			existing = self._docs.get(path)
			self._check("update" if existing is not None else "create", path, data)
			if merge and existing is not None:
				self._docs[path] = apply_field_updates(existing, data, self.now_ms())
			else:
				self._docs[path] = copy.deepcopy(_resolve_sentinels(dict(data), self.now_ms()))
		await self._notify([path])

	async def update(self, path: str, fields: Mapping[str, Any]) -> None:
		path = _ensure_document_path(path)
		async with self._lock:
			existing = self._docs.get(path)
			self._check("update", path, fields)
			if existing is None:
				raise DocumentNotFoundError(path)
			self._docs[path] = apply_field_updates(existing, fields, self.now_ms())
		await self._notify([path])

	async def delete(self, path: str) -> None:
		path = _ensure_document_path(path)
		self._check("delete", path)
		async with self._lock:
			removed = self._docs.pop(path, None)
		if removed is not None:
			await self._notify([path])

	async def delete_tree(self, path: str) -> int:
		path = _ensure_document_path(path)
		self._check("delete", path)
		prefix = f"{path}/"
		async with self._lock:
			doomed = [key for key in self._docs if key == path or key.startswith(prefix)]
			for key in doomed:
				del self._docs[key]
		if doomed:
			await self._notify(doomed)
		return len(doomed)

	async def list(self, collection: str, *, where: Optional[Mapping[str, Any]] = None) -> List[DocumentSnapshot]:
		collection = _ensure_collection_path(collection)
		self._check("list", collection)
		depth = len(_segments(collection)) + 1
		prefix = f"{collection}/"
		async with self._lock:
			results = [
				DocumentSnapshot(key, copy.deepcopy(value))
				for key, value in self._docs.items()
				if key.startswith(prefix) and len(key.split("/")) == depth and _matches(value, where)
			]
		results.sort(key=lambda snap: snap.id)
		return results

	async def transaction(self, path: str, mutate: Mutator) -> Optional[Dict[str, Any]]:
		path = _ensure_document_path(path)
		async with self._lock:
			current = self._docs.get(path)
			self._check("update" if current is not None else "create", path)
			updated = mutate(copy.deepcopy(current) if current is not None else None)
			if updated is None:
				return None
			resolved = copy.deepcopy(_resolve_sentinels(updated, self.now_ms()))
			self._docs[path] = resolved
		await self._notify([path])
		return copy.deepcopy(resolved)

	async def reset(self) -> None:
		async with self._lock:
			self._docs.clear()


def _doc_key(path: str) -> str:
	return f"doc:{path}"


def _collection_key(collection: str) -> str:
	return f"col:{collection}"


class RedisDocumentStore(DocumentStore):
	"""JSON documents in Redis with WATCH-based transactions."""

	def __init__(self, *, clock: Callable[[], int] | None = None, client: Any = None) -> None:
		super().__init__(clock=clock)
		self._client = client if client is not None else redis_client
		self._origin = uuid.uuid4().hex
		self._listener: asyncio.Task | None = None

	async def _guard(self, operation: str, path: str, call: Callable[[], Awaitable[Any]], data: Optional[Mapping[str, Any]] = None) -> Any:
		try:
			return await call()
		except redis_exceptions.NoPermissionError as exc:
			raise self._denied(path, operation, data) from exc
		except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as exc:
			raise StoreError("unavailable", status_code=503, message=str(exc)) from exc
		except redis_exceptions.RedisError as exc:
			raise StoreError(message=str(exc)) from exc

	async def get(self, path: str) -> DocumentSnapshot:
		path = _ensure_document_path(path)
		raw = await self._guard("get", path, lambda: self._client.get(_doc_key(path)))
		return DocumentSnapshot(path, json.loads(raw) if raw else None)

	async def _write(self, path: str, data: Mapping[str, Any]) -> None:
		parent = parent_collection(path)
		doc_id = path.rsplit("/", 1)[-1]

		async def _call() -> None:
			async with self._client.pipeline(transaction=True) as pipe:
				pipe.set(_doc_key(path), json.dumps(data))
				if parent:
					pipe.sadd(_collection_key(parent), doc_id)
				await pipe.execute()

		await self._guard("update", path, _call, data)

	async def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
		path = _ensure_document_path(path)
		if merge:

			def _merge(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
				if current is None:
					return dict(data)
				return apply_field_updates(current, data, self.now_ms())

			await self.transaction(path, _merge)
			return
		await self._write(path, _resolve_sentinels(dict(data), self.now_ms()))
		await self._changed([path])

	async def update(self, path: str, fields: Mapping[str, Any]) -> None:
		path = _ensure_document_path(path)

		def _mutate(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
			if current is None:
				raise DocumentNotFoundError(path)
			return apply_field_updates(current, fields, self.now_ms())

		await self.transaction(path, _mutate)

	async def delete(self, path: str) -> None:
		path = _ensure_document_path(path)
		parent = parent_collection(path)
		doc_id = path.rsplit("/", 1)[-1]

		async def _call() -> int:
			async with self._client.pipeline(transaction=True) as pipe:
				pipe.delete(_doc_key(path))
				if parent:
					pipe.srem(_collection_key(parent), doc_id)
				removed, *_ = await pipe.execute()
			return int(removed)

		if await self._guard("delete", path, _call):
			await self._changed([path])

	async def delete_tree(self, path: str) -> int:
		path = _ensure_document_path(path)

		parent = parent_collection(path)
		doc_id = path.rsplit("/", 1)[-1]

		async def _call() -> List[str]:
			doomed: List[str] = []
			if await self._client.exists(_doc_key(path)):
				doomed.append(_doc_key(path))
			async for key in self._client.scan_iter(match=f"doc:{path}/*"):
				doomed.append(key)
			collections: List[str] = []
			async for key in self._client.scan_iter(match=f"col:{path}/*"):
				collections.append(key)
			if doomed or collections:
				await self._client.delete(*doomed, *collections)
			if parent:
				await self._client.srem(_collection_key(parent), doc_id)
			return [key[len("doc:"):] for key in doomed]

		removed = await self._guard("delete", path, _call)
		if removed:
			await self._changed(removed)
		return len(removed)

	async def list(self, collection: str, *, where: Optional[Mapping[str, Any]] = None) -> List[DocumentSnapshot]:
		collection = _ensure_collection_path(collection)

		async def _call() -> List[DocumentSnapshot]:
			ids = sorted(await self._client.smembers(_collection_key(collection)))
			if not ids:
				return []
			raws = await self._client.mget([_doc_key(f"{collection}/{doc_id}") for doc_id in ids])
			snapshots = []
			for doc_id, raw in zip(ids, raws):
				if not raw:
					continue
				data = json.loads(raw)
				if _matches(data, where):
					snapshots.append(DocumentSnapshot(f"{collection}/{doc_id}", data))
			return snapshots

		return await self._guard("list", collection, _call)

	async def transaction(self, path: str, mutate: Mutator) -> Optional[Dict[str, Any]]:
		path = _ensure_document_path(path)
		key = _doc_key(path)
		parent = parent_collection(path)
		doc_id = path.rsplit("/", 1)[-1]

		async def _attempt() -> tuple[bool, Optional[Dict[str, Any]]]:
			async with self._client.pipeline(transaction=True) as pipe:
				try:
					await pipe.watch(key)
					raw = await pipe.get(key)
					updated = mutate(json.loads(raw) if raw else None)
					if updated is None:
						await pipe.unwatch()
						return True, None
					resolved = _resolve_sentinels(updated, self.now_ms())
					pipe.multi()
					pipe.set(key, json.dumps(resolved))
					if parent:
						pipe.sadd(_collection_key(parent), doc_id)
					await pipe.execute()
					return True, resolved
				except redis_exceptions.WatchError:
					return False, None

		for _ in range(MAX_TRANSACTION_ATTEMPTS):
			done, result = await self._guard("update", path, _attempt)
			if done:
				if result is not None:
					await self._changed([path])
				return result
		raise ConflictError(path)

	async def _changed(self, paths: List[str]) -> None:
		await self._notify(paths)
		message = json.dumps({"origin": self._origin, "paths": paths})
		await self._guard("publish", CHANGE_CHANNEL, lambda: self._client.publish(CHANGE_CHANNEL, message))

	async def watch(self, path: str) -> Subscription:
		if self._listener is None or self._listener.done():
			self._listener = asyncio.create_task(self._listen())
		return await super().watch(path)

	async def _listen(self) -> None:
		pubsub = self._client.pubsub()
		await pubsub.subscribe(CHANGE_CHANNEL)
		try:
			while self._watchers:
				message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
				if not message:
					continue
				try:
					payload = json.loads(message["data"])
				except (TypeError, ValueError):
					continue
				if payload.get("origin") == self._origin:
					continue
				await self._notify(payload.get("paths", []))
		finally:
			await pubsub.unsubscribe(CHANGE_CHANNEL)
			await pubsub.aclose()

	async def close(self) -> None:
		for watchers in list(self._watchers.values()):
			for subscription in list(watchers):
				subscription.close()
		if self._listener is not None:
			self._listener.cancel()
			try:
				await self._listener
			except asyncio.CancelledError:
				pass
			self._listener = None


_default_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
	global _default_store
	if _default_store is None:
		_default_store = RedisDocumentStore()
	return _default_store


def set_document_store(store: DocumentStore | None) -> None:
	global _default_store
	_default_store = store
