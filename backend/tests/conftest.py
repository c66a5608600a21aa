import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from nearby.domain.activities.models import Activity, Place
from nearby.gateway import reset_memory_state
from nearby.infra import postgres
from nearby.main import app
from nearby.settings import settings

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from nearby.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Memory gateway and dev auth (X-User-Id) for every test."""
	original_env = settings.environment
	original_backend = settings.gateway_backend
	settings.environment = "dev"
	settings.gateway_backend = "memory"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.gateway_backend = original_backend


@pytest.fixture(autouse=True)
def reset_gateway():
	reset_memory_state()
	yield
	reset_memory_state()


@pytest.fixture
def base_time():
	return BASE_TIME


@pytest.fixture
def make_activity():
	def _make(activity_id: str, *, minutes: int = 0, creator_id: str = "creator", **overrides) -> Activity:
		fields = {
			"id": activity_id,
			"creator_id": creator_id,
			"title": f"Invite {activity_id}",
			"created_at": BASE_TIME + timedelta(minutes=minutes),
			"place": Place(name="Cafe", address="1 Main St"),
		}
		fields.update(overrides)
		return Activity(**fields)

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
