import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from relevance.api import search as search_api
from relevance.domain.search import reset_memory_state
from relevance.main import app
from relevance.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from relevance.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		service = search_api.get_service()
		await service.drain()
		service.cache.clear()
		await reset_memory_state()
		app.dependency_overrides.clear()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Pin the knobs tests rely on regardless of the local environment."""
	original = (
		settings.environment,
		settings.search_min_query_length,
		settings.search_debounce_ms,
		settings.search_instant,
	)
	settings.environment = "test"
	settings.search_min_query_length = 2
	settings.search_debounce_ms = 200
	settings.search_instant = True
	try:
		yield
	finally:
		(
			settings.environment,
			settings.search_min_query_length,
			settings.search_debounce_ms,
			settings.search_instant,
		) = original


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
