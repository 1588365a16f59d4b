"""
Query cache with tag-based invalidation.

Reads (queries) are cached per operation name + parameters and shared by
every consumer asking for the same key; concurrent identical reads share one
request. Writes (mutations) invalidate the tags they declare, which marks
dependent reads stale and refetches the ones somebody is watching.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Iterable

from estate_client.endpoints import (
    OPERATIONS,
    MutationOperation,
    Operation,
    QueryOperation,
    Tag,
    normalize_tag,
    resolve_tags,
)
from estate_client.utils.api import ApiClient, ApiError
from estate_client.utils.signals import Listeners

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]


@dataclass(frozen=True)
class QueryError:
    status: int | None
    data: Any
    message: str

    @classmethod
    def from_api_error(cls, exc: ApiError) -> "QueryError":
        return cls(status=exc.status, data=exc.data, message=exc.message)


@dataclass(frozen=True)
class QueryResult:
    data: Any = None
    error: QueryError | None = None
    is_loading: bool = False
    is_fetching: bool = False
    is_stale: bool = False
    refetch: Callable[[], "Future[QueryResult]"] | None = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class MutationResult:
    data: Any = None
    error: QueryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def cache_key(name: str, arg: Any = None) -> CacheKey:
    return (name, json.dumps(arg, sort_keys=True, default=str, separators=(",", ":")))


class TagIndex:
    """Bipartite index: cache key -> provided tags and tag -> dependent keys."""

    def __init__(self) -> None:
        self._tags_by_key: dict[CacheKey, set[Tag]] = {}
        self._keys_by_tag: dict[Tag, set[CacheKey]] = defaultdict(set)

    def set(self, key: CacheKey, tags: Iterable[Tag]) -> None:
        self.discard(key)
        tags = set(tags)
        self._tags_by_key[key] = tags
        for tag in tags:
            self._keys_by_tag[tag].add(key)

    def discard(self, key: CacheKey) -> None:
        for tag in self._tags_by_key.pop(key, set()):
            keys = self._keys_by_tag.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._keys_by_tag[tag]

    def tags_for(self, key: CacheKey) -> set[Tag]:
        return set(self._tags_by_key.get(key, set()))

    def keys_for(self, tags: Iterable[Tag]) -> set[CacheKey]:
        """
        A bare type tag `(T, None)` matches every `T` tag; `(T, id)` matches
        only entries providing that exact id.
        """
        found: set[CacheKey] = set()
        for kind, ident in tags:
            if ident is None:
                for (t_kind, _), keys in self._keys_by_tag.items():
                    if t_kind == kind:
                        found |= keys
            else:
                found |= self._keys_by_tag.get((kind, ident), set())
        return found


@dataclass
class CacheEntry:
    key: CacheKey
    operation: QueryOperation
    arg: Any
    data: Any = None
    error: QueryError | None = None
    fetched: bool = False
    stale: bool = False
    in_flight: Future | None = None
    refetch_pending: bool = False
    subscriber_count: int = 0
    listeners: Listeners = field(default_factory=Listeners)

    @property
    def is_fresh(self) -> bool:
        return self.fetched and not self.stale and self.error is None and self.in_flight is None


class QuerySubscription:
    """A mounted consumer of one cache entry."""

    def __init__(self, client: "QueryClient", entry: CacheEntry, listener: Callable[[QueryResult], None] | None) -> None:
        self._client = client
        self._entry = entry
        self._listener = listener
        self._active = True

    @property
    def key(self) -> CacheKey:
        return self._entry.key

    @property
    def result(self) -> QueryResult:
        return self._client._result(self._entry)

    def refetch(self) -> "Future[QueryResult]":
        return self._client._start_fetch(self._entry)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._client._release(self._entry, self._listener)

    def __enter__(self) -> "QuerySubscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class QueryClient:
    def __init__(
        self,
        api: ApiClient,
        operations: dict[str, Operation] | None = None,
        *,
        executor: Executor | None = None,
    ) -> None:
        self._api = api
        self._operations = operations if operations is not None else OPERATIONS
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="estate-query")
        self._lock = RLock()
        self._notify_lock = RLock()
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._index = TagIndex()

    # -----------------------
    # Reads
    # -----------------------
    def fetch(self, name: str, arg: Any = None) -> "Future[QueryResult]":
        """Start (or join) a request for this key."""
        return self._start_fetch(self._entry(name, arg))

    def query(self, name: str, arg: Any = None, *, timeout: float | None = None) -> QueryResult:
        """Cached result when fresh, otherwise wait for a (shared) fetch."""
        entry = self._entry(name, arg)
        with self._lock:
            if entry.is_fresh:
                return self._result(entry)
        return self._start_fetch(entry).result(timeout)

    def state(self, name: str, arg: Any = None) -> QueryResult:
        with self._lock:
            entry = self._entries.get(cache_key(name, arg))
            if entry is None:
                return QueryResult()
            return self._result(entry)

    def subscribe(
        self,
        name: str,
        arg: Any = None,
        listener: Callable[[QueryResult], None] | None = None,
    ) -> QuerySubscription:
        entry = self._entry(name, arg)
        with self._lock:
            entry.subscriber_count += 1
            if listener is not None:
                entry.listeners.add(listener)
            need_fetch = entry.in_flight is None and not entry.is_fresh
        if need_fetch:
            self._start_fetch(entry)
        return QuerySubscription(self, entry, listener)

    def tags_for(self, name: str, arg: Any = None) -> set[Tag]:
        with self._lock:
            return self._index.tags_for(cache_key(name, arg))

    # -----------------------
    # Writes
    # -----------------------
    def mutate(self, name: str, arg: Any = None) -> MutationResult:
        op = self._operation(name, MutationOperation)
        req = op.build(arg)
        try:
            payload = self._api.request(
                req.method, req.url, params=req.params, json=req.json, data=req.data, files=req.files
            )
        except ApiError as exc:
            logger.info("Mutation %s failed: %s", name, exc.message)
            return MutationResult(error=QueryError.from_api_error(exc))
        tags = resolve_tags(op.invalidates, payload, None, arg)
        if tags:
            self.invalidate_tags(tags)
        return MutationResult(data=payload)

    def invalidate_tags(self, tags: Iterable[Any]) -> set[CacheKey]:
        """
        Mark every entry providing one of `tags` stale.

        Watched entries are refetched (requested before this returns);
        unwatched ones are dropped so they can never be served stale.
        """
        wanted = {normalize_tag(t) for t in tags}
        refetch: list[CacheEntry] = []
        with self._lock:
            keys = self._index.keys_for(wanted)
            for key in keys:
                entry = self._entries.get(key)
                if entry is None:
                    self._index.discard(key)
                    continue
                entry.stale = True
                if entry.in_flight is not None:
                    entry.refetch_pending = True
                elif entry.subscriber_count > 0:
                    refetch.append(entry)
                else:
                    del self._entries[key]
                    self._index.discard(key)
        if keys:
            logger.debug("Invalidated %s -> %d entries", sorted(wanted, key=str), len(keys))
        for entry in refetch:
            self._start_fetch(entry)
        return keys

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # -----------------------
    # Internals
    # -----------------------
    def _operation(self, name: str, kind: type) -> Any:
        op = self._operations.get(name)
        if not isinstance(op, kind):
            raise KeyError(f"Unknown {kind.__name__}: {name}")
        return op

    def _entry(self, name: str, arg: Any) -> CacheEntry:
        op = self._operation(name, QueryOperation)
        key = cache_key(name, arg)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = CacheEntry(key=key, operation=op, arg=arg, listeners=Listeners(f"query:{name}"))
                self._entries[key] = entry
                self._index.set(key, resolve_tags(op.provides, None, None, arg))
            return entry

    def _result(self, entry: CacheEntry) -> QueryResult:
        with self._lock:
            fetching = entry.in_flight is not None
            return QueryResult(
                data=entry.data,
                error=entry.error,
                is_loading=fetching and not entry.fetched,
                is_fetching=fetching,
                is_stale=entry.stale,
                refetch=lambda: self._start_fetch(entry),
            )

    def _notify(self, entry: CacheEntry) -> None:
        with self._notify_lock:
            entry.listeners.emit(self._result(entry))

    def _release(self, entry: CacheEntry, listener: Callable[[QueryResult], None] | None) -> None:
        with self._lock:
            entry.subscriber_count = max(0, entry.subscriber_count - 1)
            if listener is not None:
                entry.listeners.remove(listener)

    def _start_fetch(self, entry: CacheEntry) -> "Future[QueryResult]":
        with self._lock:
            current = self._entries.get(entry.key)
            if current is None:
                # Evicted while a consumer still held a refetch handle.
                self._entries[entry.key] = entry
                self._index.set(entry.key, resolve_tags(entry.operation.provides, None, None, entry.arg))
            elif current is not entry:
                entry = current
            if entry.in_flight is not None:
                return entry.in_flight
            future: Future[QueryResult] = Future()
            entry.in_flight = future
        self._notify(entry)
        self._executor.submit(self._run_fetch, entry, future)
        return future

    def _run_fetch(self, entry: CacheEntry, future: "Future[QueryResult]") -> None:
        op = entry.operation
        payload: Any = None
        error: QueryError | None = None
        try:
            req = op.build(entry.arg)
            payload = self._api.request(
                req.method, req.url, params=req.params, json=req.json, data=req.data, files=req.files
            )
        except ApiError as exc:
            error = QueryError.from_api_error(exc)
        except Exception:
            logger.exception("Query %s crashed", op.name)
            error = QueryError(status=None, data=None, message="Request failed")

        with self._lock:
            entry.in_flight = None
            if error is None:
                entry.data = payload
                entry.error = None
                entry.fetched = True
            else:
                entry.error = error
            entry.stale = entry.refetch_pending
            again = entry.refetch_pending and entry.subscriber_count > 0
            entry.refetch_pending = False
            if entry.key in self._entries:
                self._index.set(entry.key, resolve_tags(op.provides, payload, error, entry.arg))
            result = self._result(entry)

        if error is not None:
            logger.info("Query %s failed: %s", op.name, error.message)
        future.set_result(result)
        self._notify(entry)
        if again:
            self._start_fetch(entry)
