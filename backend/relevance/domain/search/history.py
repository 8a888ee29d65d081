"""Search history, trending terms and metric events backed by Redis."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Any, Awaitable, Mapping, Optional
from uuid import uuid4

from relevance.domain.search import models
from relevance.domain.search.policy import normalize_query
from relevance.infra.redis import redis_client
from relevance.obs import metrics as obs_metrics
from relevance.settings import settings

logger = logging.getLogger(__name__)

TRENDING_KEY = "search:trending"
TRENDING_UPDATED_KEY = "search:trending:last_updated"
METRICS_STREAM = "search:metrics"
METRICS_STREAM_MAXLEN = 10_000
HISTORY_MAX_RECORDS = 100

_SECONDS_PER_HOUR = 3600.0


def _history_key(user_id: str) -> str:
	return f"search:history:{user_id}"


def _category_key(category: str) -> str:
	return f"search:trending:cat:{category}"


def _meta_key(term: str) -> str:
	return f"search:trending:meta:{term}"


def _encode_record(record: models.SearchHistoryRecord) -> str:
	return json.dumps(
		{
			"id": record.record_id,
			"user_id": record.user_id,
			"query": record.query,
			"timestamp": record.timestamp,
			"result_count": record.result_count,
			"clicked_results": record.clicked_results,
		},
		separators=(",", ":"),
	)


def _decode_record(payload: str) -> Optional[models.SearchHistoryRecord]:
	try:
		data = json.loads(payload)
		return models.SearchHistoryRecord(
			record_id=str(data["id"]),
			user_id=str(data["user_id"]),
			query=str(data["query"]),
			timestamp=float(data.get("timestamp") or 0.0),
			result_count=int(data.get("result_count") or 0),
			clicked_results=[str(value) for value in data.get("clicked_results") or []],
		)
	except (ValueError, KeyError, TypeError):
		logger.warning("search.history.corrupt_record", extra={"payload": str(payload)[:120]})
		return None


class SearchAnalytics:
	"""Append-only analytics fed by searches and clicks.

	Trend counters use ZINCRBY and ZADD GT so concurrent writers never lose
	increments or move `last_updated` backwards.
	"""

	def __init__(self) -> None:
		self._redis = redis_client

	async def record_search(
		self,
		user_id: Optional[str],
		query: str,
		result_count: int,
		timestamp: Optional[float] = None,
		*,
		category: Optional[str] = None,
		response_time_ms: Optional[float] = None,
		filters: Optional[Mapping[str, Any]] = None,
	) -> Optional[models.SearchHistoryRecord]:
		term = normalize_query(query)
		if not term:
			return None
		ts = time.time() if timestamp is None else float(timestamp)
		record: Optional[models.SearchHistoryRecord] = None
		if user_id:
			record = models.SearchHistoryRecord(
				record_id=uuid4().hex,
				user_id=user_id,
				query=query.strip(),
				timestamp=ts,
				result_count=max(0, int(result_count)),
			)
			key = _history_key(user_id)
			await self._redis.lpush(key, _encode_record(record))
			await self._redis.ltrim(key, 0, HISTORY_MAX_RECORDS - 1)

		await self._redis.zincrby(TRENDING_KEY, 1, term)
		await self._redis.zadd_max(TRENDING_UPDATED_KEY, term, ts)
		if category:
			await self._redis.zincrby(_category_key(category), 1, term)
			await self._redis.hset(_meta_key(term), mapping={"category": category})
		obs_metrics.inc_trending_increment()

		await self._emit(
			{
				"type": "search",
				"query": term,
				"user_id": user_id,
				"result_count": result_count,
				"response_time_ms": response_time_ms,
				"filters": json.dumps(dict(filters), sort_keys=True, default=str) if filters else None,
				"timestamp": ts,
			}
		)
		return record

	async def record_click(
		self,
		user_id: Optional[str],
		query: str,
		result_id: str,
		result_kind: str,
		position: int,
		timestamp: Optional[float] = None,
	) -> bool:
		"""Attach a click to the latest matching history record.

		Returns True when a record was updated. The click event is emitted
		either way.
		"""

		term = normalize_query(query)
		ts = time.time() if timestamp is None else float(timestamp)
		updated = False
		if user_id and term:
			key = _history_key(user_id)
			rows = await self._redis.lrange(key, 0, HISTORY_MAX_RECORDS - 1)
			for index, payload in enumerate(rows):
				record = _decode_record(payload)
				if record is None or normalize_query(record.query) != term:
					continue
				record.clicked_results.append(result_id)
				await self._redis.lset(key, index, _encode_record(record))
				updated = True
				break

		await self._emit(
			{
				"type": "click",
				"query": term,
				"user_id": user_id,
				"clicked_result_id": result_id,
				"clicked_result_type": result_kind,
				"click_position": position,
				"timestamp": ts,
			}
		)
		return updated

	async def record_error(self, query: str, error: str, user_id: Optional[str] = None) -> None:
		await self._emit(
			{
				"type": "error",
				"query": normalize_query(query),
				"user_id": user_id,
				"error": error,
				"timestamp": time.time(),
			}
		)

	async def _emit(self, fields: Mapping[str, Any]) -> None:
		payload = {name: str(value) for name, value in fields.items() if value is not None}
		await self._redis.xadd(METRICS_STREAM, payload, maxlen=METRICS_STREAM_MAXLEN, approximate=True)

	async def recent_events(self, count: int = 50) -> list[dict[str, str]]:
		rows = await self._redis.xrevrange(METRICS_STREAM, count=count)
		return [dict(fields) for _, fields in rows]

	async def get_trending(
		self,
		limit: int = 10,
		category: Optional[str] = None,
		*,
		now: Optional[float] = None,
	) -> list[models.TrendingTerm]:
		if limit <= 0:
			return []
		window = max(limit, settings.trending_candidate_window)
		key = _category_key(category) if category else TRENDING_KEY
		rows = await self._redis.zrevrange(key, 0, window - 1, withscores=True)
		if not rows:
			return []
		terms = [term for term, _ in rows]
		updated = await self._redis.zmscore(TRENDING_UPDATED_KEY, terms)
		current = time.time() if now is None else now
		tau = settings.trending_recency_tau_hours
		weight = settings.trending_recency_weight

		ranked: list[tuple[float, models.TrendingTerm]] = []
		for (term, count), last in zip(rows, updated):
			last_updated = float(last) if last is not None else 0.0
			boost = 0.0
			if last is not None and tau > 0:
				age_hours = max(0.0, current - last_updated) / _SECONDS_PER_HOUR
				boost = weight * math.exp(-age_hours / tau)
			term_category = category or await self._redis.hget(_meta_key(term), "category")
			entry = models.TrendingTerm(
				term=term,
				count=int(count),
				last_updated=last_updated,
				category=term_category,
			)
			ranked.append((float(count) + boost, entry))
		ranked.sort(key=lambda pair: pair[0], reverse=True)
		return [entry for _, entry in ranked[:limit]]

	async def get_records(self, user_id: str, limit: Optional[int] = None) -> list[models.SearchHistoryRecord]:
		stop = (limit if limit is not None else HISTORY_MAX_RECORDS) - 1
		if stop < 0:
			return []
		rows = await self._redis.lrange(_history_key(user_id), 0, stop)
		records = [_decode_record(payload) for payload in rows]
		return [record for record in records if record is not None]

	async def get_history(self, user_id: str, limit: Optional[int] = None) -> list[str]:
		"""Distinct recent queries, newest first."""

		cap = settings.search_history_limit if limit is None else limit
		seen: set[str] = set()
		queries: list[str] = []
		for record in await self.get_records(user_id):
			if len(queries) >= cap:
				break
			term = normalize_query(record.query)
			if not term or term in seen:
				continue
			seen.add(term)
			queries.append(record.query)
		return queries

	async def clear_history(self, user_id: str) -> int:
		key = _history_key(user_id)
		removed = await self._redis.llen(key)
		await self._redis.delete(key)
		return int(removed or 0)


class AnalyticsRecorder:
	"""Runs analytics writes off the request path.

	Failures are logged and counted; they never reach the caller.
	"""

	def __init__(self) -> None:
		self._tasks: set[asyncio.Task] = set()

	@property
	def pending(self) -> int:
		return len(self._tasks)

	def schedule(self, op: str, work: Awaitable[Any]) -> asyncio.Task:
		task = asyncio.create_task(self._guard(op, work), name=f"search-record:{op}")
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	async def _guard(self, op: str, work: Awaitable[Any]) -> None:
		try:
			await work
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			obs_metrics.inc_record_failure(op)
			logger.warning("search.record.failed", extra={"op": op, "error": type(exc).__name__}, exc_info=True)

	async def drain(self) -> None:
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)
