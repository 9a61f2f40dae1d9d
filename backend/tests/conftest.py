import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from intake.feedback.domain import container
from intake.feedback.domain.events import InMemoryEventSink
from intake.feedback.domain.identity import StaticIdentityContext
from intake.feedback.domain.rate_limiter import InMemoryRateLimitStore
from intake.feedback.domain.repository import InMemoryFeedbackRepository
from intake.infra import postgres
from intake.main import app
from intake.settings import settings

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from intake.infra.redis import redis_client, set_redis_client
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
	"""API tests authenticate via X-User-Id/X-User-Roles headers, which are only accepted in dev mode."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def repository() -> InMemoryFeedbackRepository:
	return InMemoryFeedbackRepository()


@pytest.fixture
def events_sink() -> InMemoryEventSink:
	return InMemoryEventSink()


@pytest.fixture
def identity() -> StaticIdentityContext:
	return StaticIdentityContext()


@pytest.fixture(autouse=True)
def feedback_container(repository, events_sink, identity):
	"""Fresh in-process collaborators for every test."""
	service = container.configure(
		repository=repository,
		identity=identity,
		events_sink=events_sink,
		rate_limit_store=InMemoryRateLimitStore(),
	)
	try:
		yield service
	finally:
		container.reset()


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
