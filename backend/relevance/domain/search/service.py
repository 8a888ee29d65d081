"""Service layer for search ranking, suggestions and analytics."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from redis.exceptions import RedisError

from relevance.domain.search import exceptions, models, policy, ranking, repo, schemas
from relevance.domain.search.actions import suggest_actions
from relevance.domain.search.cache import QueryCache
from relevance.domain.search.debounce import SearchSession
from relevance.domain.search.fuzzy import fuzzy_match
from relevance.domain.search.history import AnalyticsRecorder, SearchAnalytics
from relevance.domain.search.query import ParsedQuery, parse_search_query
from relevance.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

BUCKET_ORDER: tuple[str, ...] = ("item", "user", "tag", "action", "review")
_FETCHED_KINDS = ("item", "user", "tag", "review")
TYPEAHEAD_CAPS = {"item": 5, "user": 3, "tag": 5, "action": 3}
RECENT_SUGGESTIONS = 5
TRENDING_SUGGESTIONS = 5
POPULAR_TAG_SUGGESTIONS = 8
_EPOCH_START = date(1970, 1, 1)


@dataclass(slots=True)
class _Criteria:
	"""Fine-grained filters merged from request filters and inline operators."""

	text: str
	phrases: list[str] = field(default_factory=list)
	excluded: list[str] = field(default_factory=list)
	tags: set[str] = field(default_factory=set)
	creators: set[str] = field(default_factory=set)
	username: Optional[str] = None
	min_rating: Optional[float] = None
	max_rating: Optional[float] = None
	start_ts: Optional[float] = None
	end_ts: Optional[float] = None

	@classmethod
	def build(cls, parsed: ParsedQuery, filters: Optional[schemas.SearchFilters]) -> "_Criteria":
		criteria = cls(
			text=parsed.search_text,
			phrases=[phrase.lower() for phrase in parsed.exact_phrases],
			excluded=[term.lower() for term in parsed.excluded_terms],
		)
		criteria.tags = {tag.lower() for tag in (filters.tags if filters else ())}
		criteria.tags.update(tag.lower() for tag in parsed.tags)

		if filters and filters.creators:
			criteria.creators = {creator.lower() for creator in filters.creators}
		elif parsed.filters.user:
			criteria.creators = {parsed.filters.user.lower()}
		criteria.username = parsed.filters.user.lower() if parsed.filters.user else None

		criteria.min_rating = filters.min_rating if filters and filters.min_rating is not None else parsed.filters.min_rating
		criteria.max_rating = filters.max_rating if filters and filters.max_rating is not None else parsed.filters.max_rating

		if filters and filters.date_range:
			start, end = filters.date_range.start, filters.date_range.end
		elif parsed.filters.date_after or parsed.filters.date_before:
			start = parsed.filters.date_after or _EPOCH_START
			end = parsed.filters.date_before or datetime.now(timezone.utc).date()
		else:
			start = end = None
		if start is not None and end is not None:
			criteria.start_ts = datetime.combine(start, dt_time.min, tzinfo=timezone.utc).timestamp()
			criteria.end_ts = datetime.combine(end, dt_time.max, tzinfo=timezone.utc).timestamp()
		return criteria

	def excludes(self, *texts: Optional[str]) -> bool:
		if not self.excluded:
			return False
		haystacks = [text.lower() for text in texts if text]
		return any(term in haystack for term in self.excluded for haystack in haystacks)

	def rating_ok(self, rating: Optional[float]) -> bool:
		if self.min_rating is None and self.max_rating is None:
			return True
		if rating is None:
			return False
		if self.min_rating is not None and rating < self.min_rating:
			return False
		if self.max_rating is not None and rating > self.max_rating:
			return False
		return True

	def date_ok(self, created_at: Optional[models.Timestamp]) -> bool:
		if self.start_ts is None or self.end_ts is None:
			return True
		created = ranking.to_epoch_seconds(created_at)
		return created is not None and self.start_ts <= created <= self.end_ts

	def text_matches(self, *texts: Optional[str]) -> bool:
		if self.phrases:
			lowered = [text.lower() for text in texts if text]
			return all(any(phrase in text for text in lowered) for phrase in self.phrases)
		if not self.text:
			return True
		return any(fuzzy_match(text, self.text) for text in texts if text)


def _as_datetime(value: Optional[models.Timestamp]) -> Optional[datetime]:
	seconds = ranking.to_epoch_seconds(value)
	if seconds is None:
		return None
	return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _sort_value(result: Any, name: str) -> Any:
	return getattr(result, name, None)


def _sorted_present(results: list[Any], name: str, *, descending: bool, convert: Callable[[Any], Any] = lambda v: v) -> list[Any]:
	present = [result for result in results if _sort_value(result, name) is not None]
	missing = [result for result in results if _sort_value(result, name) is None]
	present.sort(key=lambda result: convert(_sort_value(result, name)), reverse=descending)
	return present + missing


def _apply_sort(kind: str, results: list[Any], sort: str) -> list[Any]:
	"""Reorder a relevance-ranked bucket according to the requested sort."""

	if sort == "relevance" or kind == "action" or not results:
		return results
	if sort == "name":
		return sorted(results, key=lambda result: result.title.casefold())
	if kind not in ("item", "review"):
		return results
	if sort in ("recent", "creation_date"):
		return _sorted_present(results, "created_at", descending=True)
	if sort == "oldest":
		return _sorted_present(results, "created_at", descending=False)
	if sort == "updated_date":
		return _sorted_present(results, "updated_at", descending=True)
	if sort in ("rating_desc", "top_rated"):
		return _sorted_present(results, "rating", descending=True)
	if sort == "rating_asc":
		return _sorted_present(results, "rating", descending=False)
	if sort == "most_rated":
		return _sorted_present(results, "rating_count", descending=True)
	return results


def _paginate(buckets: dict[str, list[Any]], options: schemas.SearchOptions) -> tuple[dict[str, list[Any]], int]:
	offset = (options.page - 1) * options.limit
	end = offset + options.limit
	if options.include_types and len(options.include_types) == 1:
		only = options.include_types[0]
		paged = {kind: (results[offset:end] if kind == only else []) for kind, results in buckets.items()}
		return paged, len(buckets.get(only, []))
	combined = [(kind, result) for kind in BUCKET_ORDER for result in buckets.get(kind, [])]
	paged = {kind: [] for kind in BUCKET_ORDER}
	for kind, result in combined[offset:end]:
		paged[kind].append(result)
	return paged, len(combined)


class SearchService:
	def __init__(
		self,
		*,
		source: Optional[repo.CandidateSource] = None,
		cache: Optional[QueryCache] = None,
		analytics: Optional[SearchAnalytics] = None,
		recorder: Optional[AnalyticsRecorder] = None,
		config: Optional[schemas.SearchConfig] = None,
	) -> None:
		self._source = source or repo.memory_store()
		self.cache = cache or QueryCache(ttl_seconds=config.ttl if config else None)
		self.analytics = analytics or SearchAnalytics()
		self.recorder = recorder or AnalyticsRecorder()
		self.config = config or schemas.SearchConfig.from_settings()

	# Ranked search -----------------------------------------------------------

	@staticmethod
	def _weights(options: schemas.SearchOptions) -> models.ScoringWeights:
		try:
			return models.DEFAULT_WEIGHTS.merged(options.weights)
		except ValueError as exc:
			raise exceptions.QueryValidationError(str(exc)) from exc

	@staticmethod
	def _cache_key(
		normalized: str,
		filters: Optional[schemas.SearchFilters],
		options: schemas.SearchOptions,
		*,
		mode: str = "search",
	) -> str:
		# Blank filters and no filters share one key.
		signature = filters.model_dump(mode="json", exclude_defaults=True) if filters else None
		return QueryCache.key(
			normalized,
			signature or None,
			mode=mode,
			limit=options.limit,
			page=options.page,
			types=list(options.include_types or ()),
			weights=dict(sorted((options.weights or {}).items())),
		)

	async def search(
		self,
		query: str,
		filters: Optional[schemas.SearchFilters] = None,
		options: Optional[schemas.SearchOptions] = None,
	) -> schemas.SearchResponse:
		start = time.perf_counter()
		options = options or schemas.SearchOptions()
		normalized = ""
		try:
			try:
				normalized = policy.normalize_query(policy.ensure_query_allowed((query or "").strip()))
				if not policy.should_search(normalized, filters, min_length=self.config.min_query_length):
					obs_metrics.inc_search_query("skipped")
					return schemas.SearchResponse()
				weights = self._weights(options)
				key = self._cache_key(normalized, filters, options)
				response = await self.cache.get_or_compute(
					key,
					lambda: self._compute(normalized, filters, options, weights),
				)
			except exceptions.SearchError as exc:
				obs_metrics.inc_search_failure(type(exc).__name__)
				if normalized:
					self.recorder.schedule("error", self.analytics.record_error(normalized, exc.detail, options.user_id))
				raise

			obs_metrics.inc_search_query("search")
			for bucket, results in (
				("item", response.items),
				("user", response.users),
				("tag", response.tags),
				("action", response.actions),
				("review", response.reviews),
			):
				obs_metrics.set_bucket_results(bucket, len(results))
			self.recorder.schedule(
				"search",
				self.analytics.record_search(
					options.user_id,
					normalized,
					response.total_count,
					category=filters.category if filters else None,
					response_time_ms=round((time.perf_counter() - start) * 1000.0, 3),
					filters=filters.model_dump(mode="json", exclude_defaults=True) if filters else None,
				),
			)
			logger.info("search.query query=%s results=%d", normalized[:24], response.total_count)
			return response
		finally:
			obs_metrics.observe_search_latency("search", time.perf_counter() - start)

	async def _fetch(
		self,
		filters: Optional[schemas.SearchFilters],
		kinds: Sequence[str],
	) -> models.CandidateBatch:
		wanted = [kind for kind in kinds if kind in _FETCHED_KINDS]
		if not wanted:
			return models.CandidateBatch()
		try:
			return await self._source.fetch_candidates(filters, wanted)
		except exceptions.SearchError:
			raise
		except Exception as exc:
			logger.warning("search.fetch_failed kinds=%s", ",".join(wanted), exc_info=True)
			raise exceptions.SearchBackendError() from exc

	async def _rank_all(
		self,
		normalized: str,
		filters: Optional[schemas.SearchFilters],
		kinds: Sequence[str],
		weights: models.ScoringWeights,
	) -> dict[str, list[Any]]:
		parsed = parse_search_query(normalized)
		criteria = _Criteria.build(parsed, filters)
		batch = await self._fetch(filters, kinds)
		now = time.time()
		builders: dict[str, Callable[[], list[Any]]] = {
			"item": lambda: self._rank_items(batch.items, criteria, weights, now),
			"user": lambda: self._rank_users(batch.users, criteria, weights),
			"tag": lambda: self._rank_tags(batch.tags, criteria, weights),
			"action": lambda: suggest_actions(normalized),
			"review": lambda: self._rank_reviews(batch.reviews, criteria, weights, now),
		}
		buckets: dict[str, list[Any]] = {kind: [] for kind in BUCKET_ORDER}
		for kind in kinds:
			buckets[kind] = self._rank_bucket(kind, builders[kind])
		return buckets

	async def _compute(
		self,
		normalized: str,
		filters: Optional[schemas.SearchFilters],
		options: schemas.SearchOptions,
		weights: models.ScoringWeights,
	) -> schemas.SearchResponse:
		kinds = [kind for kind in BUCKET_ORDER if options.includes(kind)]
		buckets = await self._rank_all(normalized, filters, kinds, weights)
		sort = filters.sort if filters else "relevance"
		ordered = {kind: _apply_sort(kind, results, sort) for kind, results in buckets.items()}
		paged, total = _paginate(ordered, options)
		return schemas.SearchResponse(
			items=paged["item"],
			users=paged["user"],
			tags=paged["tag"],
			actions=paged["action"],
			reviews=paged["review"],
			total_count=total,
		)

	@staticmethod
	def _rank_bucket(bucket: str, build: Callable[[], list[Any]]) -> list[Any]:
		"""Rank one bucket; a failure empties only that bucket."""

		try:
			return ranking.sort_by_score(build())
		except Exception:
			obs_metrics.inc_bucket_failure(bucket)
			logger.warning("search.bucket_failed bucket=%s", bucket, exc_info=True)
			return []

	@staticmethod
	def _rank_items(
		items: Iterable[models.ItemCandidate],
		criteria: _Criteria,
		weights: models.ScoringWeights,
		now: float,
	) -> list[schemas.ItemResult]:
		results: list[schemas.ItemResult] = []
		for item in items:
			tags = list(item.tags or [])
			if criteria.excludes(item.title, item.description, *tags):
				continue
			if not criteria.text_matches(item.title, item.description, *tags):
				continue
			if criteria.tags and not criteria.tags.intersection(tag.lower() for tag in tags):
				continue
			if criteria.creators and not criteria.creators.intersection(
				value.lower() for value in (item.created_by_id, item.created_by_name) if value
			):
				continue
			if not criteria.rating_ok(item.rating) or not criteria.date_ok(item.created_at):
				continue
			creator = None
			if item.created_by_id:
				creator = schemas.CreatorRef(id=item.created_by_id, name=item.created_by_name or "Unknown")
			results.append(
				schemas.ItemResult(
					id=item.item_id,
					title=item.title,
					subtitle=item.created_by_name or "Unknown creator",
					image=item.image,
					description=item.description or "",
					tags=tags,
					category=item.category,
					status=item.status,
					created_at=_as_datetime(item.created_at),
					updated_at=_as_datetime(item.updated_at),
					rating=item.rating,
					rating_count=item.rating_count,
					created_by=creator,
					score=ranking.score_item(item, criteria.text, weights, now=now),
				)
			)
		return results

	@staticmethod
	def _rank_users(
		users: Iterable[models.UserCandidate],
		criteria: _Criteria,
		weights: models.ScoringWeights,
	) -> list[schemas.UserResult]:
		results: list[schemas.UserResult] = []
		for user in users:
			if criteria.excludes(user.username, user.full_name, user.bio):
				continue
			if not criteria.text_matches(user.username, user.full_name, user.bio):
				continue
			if criteria.username and (user.username or "").lower() != criteria.username:
				continue
			results.append(
				schemas.UserResult(
					id=user.user_id,
					title=user.username or user.full_name or "Unknown user",
					subtitle=user.full_name or None,
					image=user.image,
					username=user.username or "unknown",
					item_count=user.item_count or 0,
					score=ranking.score_user(user, criteria.text, weights),
				)
			)
		return results

	@staticmethod
	def _rank_tags(
		tags: Iterable[models.TagCandidate],
		criteria: _Criteria,
		weights: models.ScoringWeights,
	) -> list[schemas.TagResult]:
		results: list[schemas.TagResult] = []
		if not criteria.text and not criteria.phrases:
			return results
		for tag in tags:
			if criteria.excludes(tag.name) or not criteria.text_matches(tag.name):
				continue
			results.append(
				schemas.TagResult(
					id=tag.name,
					title=tag.name,
					subtitle=f"{tag.count} item{'' if tag.count == 1 else 's'}",
					count=tag.count,
					score=ranking.score_tag(tag, criteria.text, weights),
				)
			)
		return results

	@staticmethod
	def _rank_reviews(
		reviews: Iterable[models.ReviewCandidate],
		criteria: _Criteria,
		weights: models.ScoringWeights,
		now: float,
	) -> list[schemas.ReviewResult]:
		results: list[schemas.ReviewResult] = []
		for review in reviews:
			if criteria.excludes(review.item_title, review.body):
				continue
			if not criteria.text_matches(review.item_title, review.body):
				continue
			if not criteria.rating_ok(review.rating) or not criteria.date_ok(review.created_at):
				continue
			as_item = models.ItemCandidate(
				item_id=review.review_id,
				title=review.item_title,
				description=review.body,
				created_at=review.created_at,
				rating=review.rating,
			)
			results.append(
				schemas.ReviewResult(
					id=review.review_id,
					title=review.item_title or "Review",
					subtitle=review.author_name,
					item_id=review.item_id,
					body=review.body,
					rating=review.rating,
					author_id=review.author_id,
					created_at=_as_datetime(review.created_at),
					score=ranking.score_item(as_item, criteria.text, weights, now=now),
				)
			)
		return results

	# Typeahead & re-ranking --------------------------------------------------

	async def typeahead(self, query: str) -> schemas.TypeaheadResponse:
		"""Capped quick results for a command palette; not recorded in history."""

		start = time.perf_counter()
		try:
			normalized = policy.normalize_query(policy.ensure_query_allowed((query or "").strip()))
			if not normalized:
				return schemas.TypeaheadResponse()
			options = schemas.SearchOptions(include_types=("item", "user", "tag", "action"))
			key = self._cache_key(normalized, None, options, mode="typeahead")

			async def _build() -> schemas.TypeaheadResponse:
				buckets = await self._rank_all(normalized, None, options.include_types, models.DEFAULT_WEIGHTS)
				return schemas.TypeaheadResponse(
					**{f"{kind}s": buckets[kind][:cap] for kind, cap in TYPEAHEAD_CAPS.items()}
				)

			response = await self.cache.get_or_compute(key, _build)
			obs_metrics.inc_search_query("typeahead")
			return response
		finally:
			obs_metrics.observe_search_latency("typeahead", time.perf_counter() - start)

	def rerank(
		self,
		results: Iterable[Any],
		query: str,
		weights: Optional[Mapping[str, float]] = None,
	) -> list[Any]:
		start = time.perf_counter()
		try:
			try:
				resolved = models.DEFAULT_WEIGHTS.merged(weights)
			except ValueError as exc:
				raise exceptions.QueryValidationError(str(exc)) from exc
			ordered = ranking.rerank(results, query, resolved)
			obs_metrics.inc_search_query("rerank")
			return ordered
		finally:
			obs_metrics.observe_search_latency("rerank", time.perf_counter() - start)

	# Suggestions, history & trending ----------------------------------------

	async def suggestions_response(self, user_id: Optional[str] = None) -> schemas.SuggestionsResponse:
		try:
			recent = await self.analytics.get_history(user_id, RECENT_SUGGESTIONS) if user_id else []
			trending = [term.term for term in await self.analytics.get_trending(TRENDING_SUGGESTIONS)]
		except RedisError as exc:
			logger.warning("search.suggestions.analytics_unavailable", exc_info=True)
			raise exceptions.SearchBackendError("analytics_unavailable") from exc
		batch = await self._fetch(None, ("tag",))
		ranked_tags = sorted(batch.tags, key=lambda tag: tag.count, reverse=True)
		popular = [tag.name for tag in ranked_tags[:POPULAR_TAG_SUGGESTIONS]]

		merged: list[str] = []
		seen: set[str] = set()
		for value in [*recent, *trending, *popular]:
			marker = policy.normalize_query(value)
			if marker and marker not in seen:
				seen.add(marker)
				merged.append(value)
		obs_metrics.inc_search_query("suggestions")
		return schemas.SuggestionsResponse(
			suggestions=merged,
			recent_searches=recent,
			trending_searches=trending,
			popular_tags=popular,
		)

	async def get_suggestions(self, user_id: Optional[str] = None) -> list[str]:
		"""Recent searches, then trending terms, then popular tags, de-duplicated."""

		response = await self.suggestions_response(user_id)
		return response.suggestions

	async def get_history(self, user_id: str, limit: Optional[int] = None) -> list[str]:
		try:
			return await self.analytics.get_history(user_id, limit)
		except RedisError as exc:
			raise exceptions.SearchBackendError("analytics_unavailable") from exc

	async def clear_history(self, user_id: str) -> int:
		try:
			removed = await self.analytics.clear_history(user_id)
		except RedisError as exc:
			raise exceptions.SearchBackendError("analytics_unavailable") from exc
		logger.info("search.history.cleared removed=%d", removed)
		return removed

	def track_click(self, event: schemas.ClickEvent, user_id: Optional[str] = None) -> None:
		"""Record a click without making the caller wait for Redis.

		Only `user_id` (the authenticated caller) links the click to history.
		"""

		self.recorder.schedule(
			"click",
			self.analytics.record_click(
				user_id,
				event.query,
				event.result_id,
				event.result_type,
				event.position,
			),
		)

	async def get_trending(self, limit: int = 10, category: Optional[str] = None) -> list[models.TrendingTerm]:
		try:
			return await self.analytics.get_trending(limit, category)
		except RedisError as exc:
			raise exceptions.SearchBackendError("analytics_unavailable") from exc

	# Cache maintenance & sessions --------------------------------------------

	async def preload(
		self,
		queries: Iterable[str],
		filters: Optional[schemas.SearchFilters] = None,
		options: Optional[schemas.SearchOptions] = None,
	) -> int:
		"""Warm the cache for common queries; returns how many are now fresh."""

		options = options or schemas.SearchOptions()
		weights = self._weights(options)
		eligible: list[str] = []
		for query in queries:
			normalized = policy.normalize_query(query)
			if len(normalized) <= policy.MAX_QUERY_LEN and policy.should_search(
				normalized, filters, min_length=self.config.min_query_length
			):
				eligible.append(normalized)
		warmed = await self.cache.preload(
			eligible,
			lambda normalized: self._compute(normalized, filters, options, weights),
			key_for=lambda normalized: self._cache_key(normalized, filters, options),
		)
		logger.info("search.cache.preloaded requested=%d fresh=%d", len(eligible), warmed)
		return warmed

	def invalidate(self, pattern: Optional[str] = None) -> int:
		return self.cache.invalidate(pattern)

	def session(
		self,
		filters: Optional[schemas.SearchFilters] = None,
		options: Optional[schemas.SearchOptions] = None,
	) -> SearchSession[schemas.SearchResponse]:
		return SearchSession(
			lambda text: self.search(text, filters, options),
			debounce_ms=self.config.debounce_ms,
			instant_search=self.config.instant_search,
		)

	async def drain(self) -> None:
		await self.recorder.drain()
