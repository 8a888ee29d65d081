"""Central registry for Prometheus metrics used by the search engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

REQUEST_COUNTER = Counter(
	"relevance_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"relevance_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SEARCH_QUERIES = Counter(
	"relevance_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"relevance_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

SEARCH_RESULTS = Gauge(
	"relevance_search_results",
	"Results returned by the last search per bucket",
	["bucket"],
)

SEARCH_FAILURES = Counter(
	"relevance_search_failures_total",
	"Searches that surfaced a failure to the caller",
	["reason"],
)

SEARCH_BUCKET_FAILURES = Counter(
	"relevance_search_bucket_failures_total",
	"Buckets degraded to empty because ranking raised",
	["bucket"],
)

CACHE_EVENTS = Counter(
	"relevance_search_cache_events_total",
	"Query cache lookups and maintenance events",
	["event"],
)

CACHE_INFLIGHT = Gauge(
	"relevance_search_cache_inflight",
	"Computations currently in flight in the query cache",
)

DEBOUNCE_DISCARDS = Counter(
	"relevance_search_debounce_discards_total",
	"Session results dropped because a newer input superseded them",
)

RECORD_FAILURES = Counter(
	"relevance_search_record_failures_total",
	"History/trend recording failures swallowed off the ranking path",
	["op"],
)

TRENDING_INCREMENTS = Counter(
	"relevance_trending_increments_total",
	"Trending term increments applied",
)

REDIS_UP = Gauge("relevance_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("relevance_redis_latency_seconds", "Redis ping latency (seconds)")


def observe_request(route: str, method: str, status: int, latency_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(latency_seconds)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def set_bucket_results(bucket: str, count: int) -> None:
	SEARCH_RESULTS.labels(bucket=bucket).set(count)


def inc_search_failure(reason: str) -> None:
	SEARCH_FAILURES.labels(reason=reason).inc()


def inc_bucket_failure(bucket: str) -> None:
	SEARCH_BUCKET_FAILURES.labels(bucket=bucket).inc()


def inc_cache_event(event: str) -> None:
	CACHE_EVENTS.labels(event=event).inc()


def set_cache_inflight(count: int) -> None:
	CACHE_INFLIGHT.set(count)


def inc_debounce_discard() -> None:
	DEBOUNCE_DISCARDS.inc()


def inc_record_failure(op: str) -> None:
	RECORD_FAILURES.labels(op=op).inc()


def inc_trending_increment() -> None:
	TRENDING_INCREMENTS.inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)
