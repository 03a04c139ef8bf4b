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

from dsync.domain.chat import container
from dsync.domain.chat.service import ChatService
from dsync.domain.chat.store import MemoryChatStore
from dsync.domain.chat.sync import MessageSyncCore
from dsync.domain.presence.broker import RecordingBroker
from dsync.domain.presence.registry import MemoryLastSeenStore, PresenceRegistry
from dsync.infra import postgres
from dsync.infra.attachments import MemoryAttachmentStore
from dsync.main import app
from dsync.settings import settings


class StepClock:
	"""Deterministic clock advancing one second per call."""

	def __init__(self, start: datetime | None = None) -> None:
		self.now = start or datetime.now(timezone.utc)

	def __call__(self) -> datetime:
		self.now = self.now + timedelta(seconds=1)
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from dsync.infra.redis import redis_client, set_redis_client
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
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id headers, which are only accepted in
	dev mode.
	"""
	original_env = settings.environment
	original_trust = settings.presence_trust_client_identity
	original_relay = settings.sync_echo_relay_enabled
	settings.environment = "dev"
	settings.presence_trust_client_identity = True
	settings.sync_echo_relay_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.presence_trust_client_identity = original_trust
		settings.sync_echo_relay_enabled = original_relay


@pytest.fixture
def broker():
	return RecordingBroker()


@pytest.fixture
def attachments():
	return MemoryAttachmentStore()


@pytest.fixture
def registry():
	return PresenceRegistry(MemoryLastSeenStore())


@pytest.fixture(autouse=True)
def chat_container(broker, attachments, registry):
	"""Fresh in-memory wiring for every test."""
	container.configure(store=MemoryChatStore(), broker=broker, attachments=attachments, registry=registry)
	yield container
	container.reset()


@pytest.fixture
def clock():
	return StepClock()


@pytest.fixture
def store():
	return MemoryChatStore()


@pytest.fixture
def core(store, broker, attachments, clock):
	return MessageSyncCore(store, broker, attachments, clock=clock)


@pytest.fixture
def chat_service(store, core):
	return ChatService(store, core)


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
