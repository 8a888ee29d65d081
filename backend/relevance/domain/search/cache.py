"""Query result cache with request coalescing.

Each key moves through ``empty -> pending -> fresh -> stale -> pending ...``.
At most one computation per key is in flight; concurrent callers for the same
key await that computation instead of starting another. Stale entries are
recomputed, never served. Failed or timed-out computations leave the cache as
it was.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, Optional, TypeVar

from relevance.domain.search import exceptions
from relevance.domain.search.policy import normalize_query
from relevance.obs import metrics as obs_metrics
from relevance.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheState(str, enum.Enum):
	EMPTY = "empty"
	PENDING = "pending"
	FRESH = "fresh"
	STALE = "stale"


@dataclass(slots=True)
class CacheEntry(Generic[T]):
	query: str
	value: T
	computed_at: float
	ttl: float

	def is_fresh(self, now: float) -> bool:
		return now - self.computed_at < self.ttl


def _consume_exception(task: asyncio.Task) -> None:
	# Waiters may all have gone away; keep asyncio from warning about it.
	if not task.cancelled():
		task.exception()


class QueryCache:
	"""In-process cache keyed by normalized query plus filter signature."""

	def __init__(
		self,
		*,
		ttl_seconds: Optional[float] = None,
		max_entries: Optional[int] = None,
		timeout_seconds: Optional[float] = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.ttl = float(ttl_seconds if ttl_seconds is not None else settings.search_cache_ttl_seconds)
		self.max_entries = max(1, int(max_entries if max_entries is not None else settings.search_cache_max_entries))
		self.timeout = timeout_seconds if timeout_seconds is not None else settings.search_timeout_seconds
		self._clock = clock
		self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
		self._inflight: dict[str, asyncio.Task] = {}
		self._hits = 0
		self._misses = 0
		self._coalesced = 0

	@staticmethod
	def key(query: str, filters: Optional[Mapping[str, Any]] = None, **extra: Any) -> str:
		payload: dict[str, Any] = {"query": normalize_query(query), "filters": dict(filters or {})}
		if extra:
			payload["options"] = extra
		return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)

	@staticmethod
	def _query_of(key: str) -> str:
		try:
			return str(json.loads(key).get("query", ""))
		except (ValueError, AttributeError):
			return key

	def state(self, key: str) -> CacheState:
		if key in self._inflight:
			return CacheState.PENDING
		entry = self._entries.get(key)
		if entry is None:
			return CacheState.EMPTY
		if entry.is_fresh(self._clock()):
			return CacheState.FRESH
		return CacheState.STALE

	def peek(self, key: str) -> Optional[Any]:
		"""Return the fresh value for `key` without computing anything."""

		entry = self._entries.get(key)
		if entry is None or not entry.is_fresh(self._clock()):
			return None
		return entry.value

	async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
		entry = self._entries.get(key)
		if entry is not None and entry.is_fresh(self._clock()):
			self._entries.move_to_end(key)
			self._hits += 1
			obs_metrics.inc_cache_event("hit")
			return entry.value

		task = self._inflight.get(key)
		if task is not None:
			self._coalesced += 1
			obs_metrics.inc_cache_event("coalesced")
		else:
			self._misses += 1
			obs_metrics.inc_cache_event("stale" if entry is not None else "miss")
			task = asyncio.create_task(self._run(key, compute), name=f"search-cache:{self._query_of(key)[:32]}")
			task.add_done_callback(_consume_exception)
			self._inflight[key] = task
			obs_metrics.set_cache_inflight(len(self._inflight))
		# Shielded so one waiter giving up does not cancel the shared computation.
		return await asyncio.shield(task)

	async def _run(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
		try:
			try:
				if self.timeout and self.timeout > 0:
					value = await asyncio.wait_for(compute(), timeout=self.timeout)
				else:
					value = await compute()
			except asyncio.TimeoutError as exc:
				obs_metrics.inc_cache_event("timeout")
				logger.warning("search.cache.timeout", extra={"query": self._query_of(key)[:64], "timeout_s": self.timeout})
				raise exceptions.SearchTimeoutError() from exc
			if self._owns(key):
				self._store(key, value)
			else:
				# Invalidated while computing; waiters still get the value.
				obs_metrics.inc_cache_event("discarded")
			return value
		finally:
			if self._owns(key):
				del self._inflight[key]
			obs_metrics.set_cache_inflight(len(self._inflight))

	def _owns(self, key: str) -> bool:
		task = self._inflight.get(key)
		return task is not None and task is asyncio.current_task()

	def _detach(self, keys: Iterable[str]) -> None:
		for key in list(keys):
			self._inflight.pop(key, None)
		obs_metrics.set_cache_inflight(len(self._inflight))

	def _store(self, key: str, value: Any) -> None:
		self._entries[key] = CacheEntry(query=self._query_of(key), value=value, computed_at=self._clock(), ttl=self.ttl)
		self._entries.move_to_end(key)
		while len(self._entries) > self.max_entries:
			self._entries.popitem(last=False)
			obs_metrics.inc_cache_event("evicted")

	def invalidate(self, pattern: Optional[str] = None) -> int:
		"""Drop every entry, or those whose query contains `pattern`.

		Matching computations still in flight are detached: their waiters get
		the result, but it is not stored and new callers compute afresh.
		Returns the number of stored entries removed.
		"""

		if not pattern:
			removed = len(self._entries)
			self._entries.clear()
			self._detach(self._inflight)
			return removed
		needle = pattern.lower()
		doomed = [key for key, entry in self._entries.items() if needle in entry.query]
		for key in doomed:
			del self._entries[key]
		self._detach(key for key in self._inflight if needle in self._query_of(key))
		return len(doomed)

	def clear(self) -> None:
		self._entries.clear()
		self._detach(self._inflight)
		self._hits = self._misses = self._coalesced = 0

	def stats(self) -> dict[str, Any]:
		lookups = self._hits + self._misses + self._coalesced
		return {
			"size": len(self._entries),
			"max_size": self.max_entries,
			"hits": self._hits,
			"misses": self._misses,
			"coalesced": self._coalesced,
			"inflight": len(self._inflight),
			"hit_rate": (self._hits / lookups) if lookups else 0.0,
			"queries": [entry.query for entry in self._entries.values()],
		}

	async def preload(
		self,
		queries: Iterable[str],
		fetcher: Callable[[str], Awaitable[Any]],
		*,
		key_for: Optional[Callable[[str], str]] = None,
	) -> int:
		"""Warm entries for common queries; returns how many ended up fresh."""

		make_key = key_for or (lambda q: self.key(q))
		queries = list(queries)
		jobs: dict[str, Awaitable[Any]] = {}
		for query in queries:
			key = make_key(query)
			if key in jobs or self.state(key) is CacheState.FRESH:
				continue
			jobs[key] = self.get_or_compute(key, lambda q=query: fetcher(q))
		if jobs:
			outcomes = await asyncio.gather(*jobs.values(), return_exceptions=True)
			for key, outcome in zip(jobs, outcomes):
				if isinstance(outcome, BaseException):
					obs_metrics.inc_cache_event("preload_failed")
					logger.warning(
						"search.cache.preload_failed",
						extra={"query": self._query_of(key)[:64], "error": type(outcome).__name__},
					)
				else:
					obs_metrics.inc_cache_event("preload")
		return sum(1 for key in {make_key(query) for query in queries} if self.state(key) is CacheState.FRESH)
