import pytest

from relevance.api import search as search_api
from relevance.domain.search import models
from relevance.domain.search.repo import seed_memory_store
from relevance.domain.search.service import SearchService
from relevance.main import app

USER_ME = "u-me"


async def _seed():
	await seed_memory_store(
		items=[
			models.ItemCandidate(
				item_id="i1",
				title="Cat Tower",
				description="Sturdy climbing tower for cats",
				tags=["cats", "furniture"],
				category="pets",
				created_by_id="u-alice",
				created_by_name="alice",
				rating=4.5,
				rating_count=12,
			),
			models.ItemCandidate(item_id="i2", title="Dog House", tags=["dogs"], category="pets"),
		],
		users=[models.UserCandidate(user_id="u-alice", username="alice", full_name="Alice Smith")],
	)


class BrokenSource:
	async def fetch_candidates(self, filters, include_types):
		raise ConnectionError("database unreachable")


@pytest.mark.asyncio
async def test_search_endpoint_returns_ranked_buckets(api_client):
	await _seed()
	response = await api_client.get("/search", params={"q": "cat"}, headers={"X-Request-Id": "req-123"})

	assert response.status_code == 200
	assert response.headers["X-Request-Id"] == "req-123"
	payload = response.json()
	assert [item["id"] for item in payload["items"]] == ["i1"]
	assert payload["items"][0]["type"] == "item"
	assert payload["items"][0]["score"] > 0
	assert [tag["id"] for tag in payload["tags"]] == ["cats"]
	assert payload["total_count"] == 2


@pytest.mark.asyncio
async def test_search_endpoint_filters_and_types(api_client):
	await _seed()
	response = await api_client.get(
		"/search",
		params={"q": "cat", "category": "pets", "tags": ["furniture"], "type": "item,tag"},
	)

	assert response.status_code == 200
	payload = response.json()
	assert [item["id"] for item in payload["items"]] == ["i1"]
	assert payload["users"] == []
	assert payload["reviews"] == []


@pytest.mark.asyncio
async def test_short_query_returns_empty_response(api_client):
	await _seed()
	response = await api_client.get("/search", params={"q": "c"})

	assert response.status_code == 200
	assert response.json()["total_count"] == 0


@pytest.mark.asyncio
async def test_unknown_result_type_is_rejected(api_client):
	response = await api_client.get("/search", params={"q": "cat", "type": "planet"})

	assert response.status_code == 400
	payload = response.json()
	assert payload["detail"] == "unknown_type"
	assert payload["retryable"] is False
	assert payload["request_id"]


@pytest.mark.asyncio
async def test_backend_failure_maps_to_retryable_503(api_client):
	app.dependency_overrides[search_api.get_service] = lambda: SearchService(source=BrokenSource())
	response = await api_client.get("/search", params={"q": "cat"})

	assert response.status_code == 503
	assert response.json()["retryable"] is True
	assert response.headers["Retry-After"] == "1"


@pytest.mark.asyncio
async def test_rerank_endpoint_orders_mixed_results(api_client):
	response = await api_client.post(
		"/search/rerank",
		json={
			"query": "alice",
			"results": [
				{"type": "item", "id": "i1", "title": "Cat Tower"},
				{"type": "user", "id": "u1", "title": "alice", "username": "alice"},
			],
		},
	)

	assert response.status_code == 200
	results = response.json()["results"]
	assert [result["id"] for result in results] == ["u1", "i1"]
	assert results[0]["score"] > results[1]["score"]


@pytest.mark.asyncio
async def test_rerank_rejects_unknown_weights(api_client):
	response = await api_client.post("/search/rerank", json={"query": "cat", "results": [], "weights": {"bogus": 2}})

	assert response.status_code == 422
	assert response.json()["retryable"] is False


@pytest.mark.asyncio
async def test_config_endpoint(api_client):
	response = await api_client.get("/search/config")

	assert response.status_code == 200
	assert response.json() == {"debounce_ms": 200, "min_query_length": 2, "instant_search": True, "ttl": 300.0}


@pytest.mark.asyncio
async def test_history_click_and_clear(api_client):
	await _seed()
	headers = {"X-User-Id": USER_ME}
	await api_client.get("/search", params={"q": "cat"}, headers=headers)
	await search_api.get_service().drain()

	history = await api_client.get("/search/history", headers=headers)
	assert history.json() == {"queries": ["cat"]}

	click = await api_client.post(
		"/search/click",
		json={"query": "cat", "result_id": "i1", "result_type": "item", "position": 0},
		headers=headers,
	)
	assert click.status_code == 202
	assert click.json() == {"status": "accepted"}
	await search_api.get_service().drain()
	records = await search_api.get_service().analytics.get_records(USER_ME)
	assert records[0].clicked_results == ["i1"]

	anonymous = await api_client.get("/search/history")
	assert anonymous.json() == {"queries": []}

	denied = await api_client.delete("/search/history")
	assert denied.status_code == 401
	assert denied.json()["detail"] == "user_required"

	cleared = await api_client.delete("/search/history", headers=headers)
	assert cleared.json() == {"removed": 1}


@pytest.mark.asyncio
async def test_trending_and_suggestions(api_client):
	await _seed()
	for _ in range(2):
		await api_client.get("/search", params={"q": "cat", "category": "pets"})
	await search_api.get_service().drain()

	trending = await api_client.get("/search/trending", params={"limit": 5})
	assert trending.status_code == 200
	terms = trending.json()
	assert terms[0]["term"] == "cat"
	assert terms[0]["count"] == 2
	assert terms[0]["category"] == "pets"

	suggestions = await api_client.get("/search/suggestions")
	payload = suggestions.json()
	assert payload["trending_searches"] == ["cat"]
	assert payload["recent_searches"] == []
	assert payload["suggestions"][0] == "cat"
	assert "furniture" in payload["popular_tags"]


@pytest.mark.asyncio
async def test_typeahead_endpoint(api_client):
	await _seed()
	response = await api_client.get("/search/typeahead", params={"q": "create"})

	assert response.status_code == 200
	payload = response.json()
	assert [action["id"] for action in payload["actions"]] == ["create-item"]
	assert "reviews" not in payload


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
	live = await api_client.get("/health/live")
	assert live.json() == {"status": "ok"}

	ready = await api_client.get("/health/ready")
	assert ready.status_code == 200
	assert ready.json()["checks"]["redis"]["ok"] is True

	await api_client.get("/search", params={"q": "cat"})
	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert "relevance_search_queries_total" in metrics.text


@pytest.mark.asyncio
async def test_anonymous_click_cannot_write_another_users_history(api_client):
	await _seed()
	await api_client.get("/search", params={"q": "cat"}, headers={"X-User-Id": USER_ME})
	await search_api.get_service().drain()

	click = await api_client.post(
		"/search/click",
		json={"query": "cat", "result_id": "i1", "result_type": "item", "position": 0, "user_id": USER_ME},
	)
	assert click.status_code == 202
	await search_api.get_service().drain()

	records = await search_api.get_service().analytics.get_records(USER_ME)
	assert records[0].clicked_results == []
	events = await search_api.get_service().analytics.recent_events(1)
	assert events[0]["type"] == "click"
	assert "user_id" not in events[0]
