import asyncio

import pytest

from relevance.domain.search.history import (
	METRICS_STREAM,
	TRENDING_KEY,
	TRENDING_UPDATED_KEY,
	AnalyticsRecorder,
	SearchAnalytics,
)

NOW = 1_700_000_000.0
USER_ID = "u-alice"


@pytest.mark.asyncio
async def test_trending_counts_every_search_and_keeps_latest_timestamp(fake_redis):
	analytics = SearchAnalytics()
	for offset in (30.0, 10.0, 50.0, 20.0):
		await analytics.record_search(None, "Cat Toys", 3, timestamp=NOW + offset)

	assert await fake_redis.zscore(TRENDING_KEY, "cat toys") == 4
	assert await fake_redis.zscore(TRENDING_UPDATED_KEY, "cat toys") == NOW + 50.0

	trending = await analytics.get_trending(5, now=NOW + 60.0)
	assert [(term.term, term.count, term.last_updated) for term in trending] == [("cat toys", 4, NOW + 50.0)]


@pytest.mark.asyncio
async def test_concurrent_searches_do_not_lose_increments(fake_redis):
	analytics = SearchAnalytics()
	await asyncio.gather(*(analytics.record_search(None, "dog bed", 1, timestamp=NOW + i) for i in range(20)))

	assert await fake_redis.zscore(TRENDING_KEY, "dog bed") == 20
	assert await fake_redis.zscore(TRENDING_UPDATED_KEY, "dog bed") == NOW + 19


@pytest.mark.asyncio
async def test_trending_orders_by_count_then_recency():
	analytics = SearchAnalytics()
	for _ in range(3):
		await analytics.record_search(None, "cat", 1, timestamp=NOW)
	await analytics.record_search(None, "dog", 1, timestamp=NOW - 7200)
	await analytics.record_search(None, "bird", 1, timestamp=NOW)

	trending = await analytics.get_trending(10, now=NOW)
	assert [term.term for term in trending] == ["cat", "bird", "dog"]
	assert [term.term for term in await analytics.get_trending(1, now=NOW)] == ["cat"]
	assert await analytics.get_trending(0) == []


@pytest.mark.asyncio
async def test_trending_by_category_reports_category():
	analytics = SearchAnalytics()
	await analytics.record_search(None, "cat tower", 2, timestamp=NOW, category="pets")
	await analytics.record_search(None, "shelf", 2, timestamp=NOW, category="home")

	pets = await analytics.get_trending(10, category="pets", now=NOW)
	assert [(term.term, term.category) for term in pets] == [("cat tower", "pets")]

	overall = {term.term: term.category for term in await analytics.get_trending(10, now=NOW)}
	assert overall == {"cat tower": "pets", "shelf": "home"}


@pytest.mark.asyncio
async def test_anonymous_searches_skip_history_but_count_towards_trending(fake_redis):
	analytics = SearchAnalytics()
	record = await analytics.record_search(None, "lamp", 4, timestamp=NOW)

	assert record is None
	assert await fake_redis.keys("search:history:*") == []
	assert await fake_redis.zscore(TRENDING_KEY, "lamp") == 1


@pytest.mark.asyncio
async def test_blank_queries_are_ignored(fake_redis):
	analytics = SearchAnalytics()
	assert await analytics.record_search(USER_ID, "   ", 0) is None
	assert await fake_redis.exists(TRENDING_KEY) == 0
	assert await fake_redis.exists(METRICS_STREAM) == 0


@pytest.mark.asyncio
async def test_history_is_distinct_and_newest_first():
	analytics = SearchAnalytics()
	for offset, query in enumerate(["cat", "Dog", "cat", "bird"]):
		await analytics.record_search(USER_ID, query, 1, timestamp=NOW + offset)

	assert await analytics.get_history(USER_ID) == ["bird", "cat", "Dog"]
	assert await analytics.get_history(USER_ID, limit=2) == ["bird", "cat"]
	records = await analytics.get_records(USER_ID)
	assert [record.query for record in records] == ["bird", "cat", "Dog", "cat"]
	assert await analytics.get_history("u-nobody") == []


@pytest.mark.asyncio
async def test_click_attaches_to_latest_matching_record():
	analytics = SearchAnalytics()
	await analytics.record_search(USER_ID, "cat", 2, timestamp=NOW)
	await analytics.record_search(USER_ID, "cat", 2, timestamp=NOW + 1)
	await analytics.record_search(USER_ID, "dog", 2, timestamp=NOW + 2)

	assert await analytics.record_click(USER_ID, "CAT", "i1", "item", 0) is True
	records = await analytics.get_records(USER_ID)
	assert [record.clicked_results for record in records] == [[], ["i1"], []]

	events = await analytics.recent_events(1)
	assert events[0]["type"] == "click"
	assert events[0]["clicked_result_id"] == "i1"
	assert events[0]["click_position"] == "0"


@pytest.mark.asyncio
async def test_click_without_history_still_emits_event():
	analytics = SearchAnalytics()
	assert await analytics.record_click(USER_ID, "never searched", "i9", "item", 3) is False
	assert await analytics.record_click(None, "cat", "i1", "item", 0) is False

	events = await analytics.recent_events(10)
	assert [event["type"] for event in events] == ["click", "click"]
	assert "user_id" not in events[0]


@pytest.mark.asyncio
async def test_search_and_error_events_land_on_metrics_stream():
	analytics = SearchAnalytics()
	await analytics.record_search(
		USER_ID,
		"cat",
		3,
		timestamp=NOW,
		response_time_ms=12.5,
		filters={"category": "pets"},
	)
	await analytics.record_error("cat", "SearchBackendError", user_id=USER_ID)

	error, search = await analytics.recent_events(2)
	assert error["type"] == "error"
	assert error["error"] == "SearchBackendError"
	assert search["type"] == "search"
	assert search["result_count"] == "3"
	assert search["response_time_ms"] == "12.5"
	assert search["filters"] == '{"category": "pets"}'


@pytest.mark.asyncio
async def test_clear_history_reports_removed_records():
	analytics = SearchAnalytics()
	await analytics.record_search(USER_ID, "cat", 1, timestamp=NOW)
	await analytics.record_search(USER_ID, "dog", 1, timestamp=NOW + 1)

	assert await analytics.clear_history(USER_ID) == 2
	assert await analytics.get_history(USER_ID) == []
	assert await analytics.clear_history(USER_ID) == 0


@pytest.mark.asyncio
async def test_corrupt_history_rows_are_skipped(fake_redis):
	analytics = SearchAnalytics()
	await analytics.record_search(USER_ID, "cat", 1, timestamp=NOW)
	await fake_redis.lpush(f"search:history:{USER_ID}", "{not json")

	assert await analytics.get_history(USER_ID) == ["cat"]


@pytest.mark.asyncio
async def test_recorder_swallows_failures_and_drains():
	recorder = AnalyticsRecorder()
	done: list[str] = []

	async def ok():
		await asyncio.sleep(0)
		done.append("ok")

	async def broken():
		raise RuntimeError("redis down")

	recorder.schedule("search", ok())
	failing = recorder.schedule("click", broken())
	assert recorder.pending == 2

	await recorder.drain()

	assert done == ["ok"]
	assert failing.exception() is None
	assert recorder.pending == 0
