import pytest

from relevance.api.search import get_service
from relevance.domain.search import models
from relevance.domain.search.repo import seed_memory_store
from relevance.settings import settings

ADMIN = {"X-Admin-Token": "ops-secret"}


@pytest.fixture
def admin_token(monkeypatch):
	monkeypatch.setattr(settings, "obs_admin_token", "ops-secret")


@pytest.mark.asyncio
async def test_cache_controls_require_admin_token(api_client):
	response = await api_client.get("/ops/search/cache")

	assert response.status_code == 403
	assert response.json()["detail"] == "admin_token_not_configured"


@pytest.mark.asyncio
async def test_wrong_token_is_forbidden(api_client, admin_token):
	response = await api_client.get("/ops/search/cache", headers={"Authorization": "Bearer nope"})

	assert response.status_code == 403
	assert response.json()["detail"] == "forbidden"


@pytest.mark.asyncio
async def test_preload_stats_and_invalidate(api_client, admin_token):
	await seed_memory_store(items=[models.ItemCandidate(item_id="i1", title="Cat Tower")])

	preload = await api_client.post("/ops/search/cache/preload", json={"queries": ["cat", "tower", "x"]}, headers=ADMIN)
	assert preload.json() == {"fresh": 2}

	stats = await api_client.get("/ops/search/cache", headers={"Authorization": "Bearer ops-secret"})
	assert stats.status_code == 200
	assert sorted(stats.json()["queries"]) == ["cat", "tower"]

	invalidate = await api_client.post("/ops/search/cache/invalidate", json={"pattern": "tow"}, headers=ADMIN)
	assert invalidate.json() == {"removed": 1}

	cleared = await api_client.post("/ops/search/cache/invalidate", json={}, headers=ADMIN)
	assert cleared.json() == {"removed": 1}


@pytest.mark.asyncio
async def test_recent_events_lists_search_activity(api_client, admin_token):
	await seed_memory_store(items=[models.ItemCandidate(item_id="i1", title="Cat Tower")])
	await api_client.get("/search", params={"q": "cat"})
	await get_service().drain()
	response = await api_client.get("/ops/search/events", params={"count": 5}, headers=ADMIN)

	assert response.status_code == 200
	events = response.json()
	assert events[0]["type"] == "search"
	assert events[0]["query"] == "cat"


@pytest.mark.asyncio
async def test_private_metrics_need_token(api_client, admin_token, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)

	assert (await api_client.get("/metrics")).status_code == 403
	assert (await api_client.get("/metrics", headers=ADMIN)).status_code == 200


@pytest.mark.asyncio
async def test_preloaded_query_serves_http_search(api_client, admin_token):
	await seed_memory_store(items=[models.ItemCandidate(item_id="i1", title="Cat Tower")])
	preload = await api_client.post("/ops/search/cache/preload", json={"queries": ["cat"]}, headers=ADMIN)
	assert preload.json() == {"fresh": 1}
	before = (await api_client.get("/ops/search/cache", headers=ADMIN)).json()

	response = await api_client.get("/search", params={"q": "cat"})
	assert response.status_code == 200
	assert [item["id"] for item in response.json()["items"]] == ["i1"]

	after = (await api_client.get("/ops/search/cache", headers=ADMIN)).json()
	assert after["hits"] == before["hits"] + 1
	assert after["misses"] == before["misses"]
	assert after["size"] == 1
