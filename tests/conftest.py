# tests/conftest.py
"""
Shared fixtures for fleetauth tests.

Mock-first: no real Redis, Weaviate, blob store or Stripe is needed. Redis is
replaced by an in-memory double that also implements pub/sub, so two fleet
members can share one bus inside a single test. The relational store is a
throwaway SQLite file.
"""

import asyncio
import json
import time
from collections import defaultdict
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi import WebSocketDisconnect

from fleetauth.core.config import Settings
from fleetauth.core.fabric import build_fabric
from fleetauth.services.blob_service import BlobService
from fleetauth.services.document_service import DocumentService
from fleetauth.services.identity_repository import IdentityRepository
from fleetauth.services.payment_service import PaymentService
from fleetauth.services.redis_service import RedisConfig, RedisService
from fleetauth.sessions.codec import SessionCodec
from fleetauth.sessions.store import SessionStore

TEST_SECRET = "test-session-secret-0123456789abcdef"
OLD_PICTURE = "https://storage.googleapis.com/fleetauth-media/avatars/old.png"


# =============================================================================
# REDIS DOUBLE
# =============================================================================

class FakeBus:
    """Pub/sub bus shared by every FakeRedis built on it"""

    def __init__(self):
        self.subscribers: Dict[str, List["FakePubSub"]] = defaultdict(list)

    def publish(self, channel: str, message: str) -> int:
        receivers = list(self.subscribers.get(channel, []))
        for pubsub in receivers:
            pubsub.deliver(channel, message)
        return len(receivers)


class FakePubSub:
    def __init__(self, bus: FakeBus):
        self.bus = bus
        self.channels = set()
        self.queue: asyncio.Queue = asyncio.Queue()

    async def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self.bus.subscribers[channel].append(self)
            self.channels.add(channel)

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels:
            if self in self.bus.subscribers.get(channel, []):
                self.bus.subscribers[channel].remove(self)
            self.channels.discard(channel)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self) -> None:
        await self.unsubscribe(*list(self.channels))

    def deliver(self, channel: str, data: str) -> None:
        self.queue.put_nowait({"type": "message", "channel": channel, "data": data})


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the fabric, with key expiry"""

    def __init__(self, bus: Optional[FakeBus] = None):
        self.bus = bus or FakeBus()
        self.data: Dict[str, Any] = {}
        self.sets: Dict[str, set] = {}
        self.expiry: Dict[str, float] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise ConnectionError("Connection refused")

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data or key in self.sets

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str):
        self._check()
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key: str, value: Any, ex: Optional[int] = None, xx: bool = False):
        self._check()
        if xx and not self._alive(key):
            return None
        self.data[key] = value
        if ex:
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if not self._alive(key):
            return False
        self.expiry[key] = time.monotonic() + seconds
        return True

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        self._alive(key)
        members_set = self.sets.setdefault(key, set())
        before = len(members_set)
        members_set.update(members)
        return len(members_set) - before

    async def srem(self, key: str, *members: str) -> int:
        self._check()
        if not self._alive(key):
            return 0
        members_set = self.sets[key]
        before = len(members_set)
        members_set.difference_update(members)
        return before - len(members_set)

    async def smembers(self, key: str) -> set:
        self._check()
        return set(self.sets.get(key, set())) if self._alive(key) else set()

    async def publish(self, channel: str, message: str) -> int:
        self._check()
        return self.bus.publish(channel, message)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self.bus)

    async def info(self) -> Dict[str, Any]:
        self._check()
        return {"redis_version": "7.2.0", "connected_clients": 1}

    async def aclose(self) -> None:
        pass


# =============================================================================
# WEBSOCKET DOUBLE
# =============================================================================

class FakeWebSocket:
    """Records what the server does with a socket; the test plays the client"""

    def __init__(self, cookies: Optional[Dict[str, str]] = None, fail_sends: bool = False):
        self.cookies = cookies or {}
        self.fail_sends = fail_sends
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.incoming.put_nowait(None)

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail_sends or self.closed:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def receive_text(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise WebSocketDisconnect(code=self.close_code or 1000)
        return item

    def client_send(self, payload: Dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps(payload))

    def client_disconnect(self) -> None:
        self.incoming.put_nowait(None)


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true or the timeout passes"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file"""
    return Settings(
        _env_file=None,
        SESSION_SECRET=TEST_SECRET,
        REDIS_URL="redis://fake:6379/0",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'fleetauth-test.db'}",
        WEAVIATE_URL="https://weaviate.test",
        STRIPE_SECRET_KEY="sk_test_0123456789",
        FLEET_MEMBER_ID="member-a",
        FANOUT_POLL_SECONDS=0.05,
        RATE_LIMIT_ENABLED=False,
        DOCUMENT_COLLECTIONS=["ArticlesView", "ArticleStats"],
    )


@pytest.fixture
def fake_bus():
    return FakeBus()


@pytest.fixture
def fake_redis(fake_bus):
    return FakeRedis(fake_bus)


@pytest.fixture
async def redis_service(fake_redis):
    service = RedisService(RedisConfig(url="redis://fake:6379/0"), client=fake_redis)
    await service.initialize()
    return service


@pytest.fixture
def session_store(redis_service, settings):
    return SessionStore(redis_service, settings.SESSION_TTL_SECONDS, settings.SESSION_KEY_PREFIX)


@pytest.fixture
def codec():
    return SessionCodec([TEST_SECRET])


@pytest.fixture
async def identities(settings):
    repo = IdentityRepository(settings.DATABASE_URL)
    await repo.create_schema()
    yield repo
    await repo.dispose()


@pytest.fixture
async def identity(identities):
    return await identities.create(
        email="ada@example.com",
        first_name="Ada",
        last_name="Lovelace",
        picture=OLD_PICTURE,
    )


@pytest.fixture
def mock_documents():
    documents = AsyncMock(spec=DocumentService)
    documents.delete_owned_documents.return_value = 0
    documents.health_check.return_value = {"healthy": True, "status": "connected"}
    return documents


@pytest.fixture
def mock_blobs():
    blobs = AsyncMock(spec=BlobService)
    blobs.upload.return_value = "https://storage.googleapis.com/fleetauth-media/avatars/new.png"
    blobs.delete.return_value = True
    blobs.health_check.return_value = {"healthy": True, "status": "ready"}
    return blobs


@pytest.fixture
def mock_payments():
    payments = Mock(spec=PaymentService)
    payments.create_customer = AsyncMock(return_value="cus_123")
    payments.create_card = AsyncMock(return_value="card_456")
    payments.health_summary.return_value = {"healthy": True, "status": "configured"}
    return payments


@pytest.fixture
async def fabric(settings, redis_service, identities, mock_documents, mock_blobs, mock_payments):
    fabric = build_fabric(
        settings,
        redis=redis_service,
        identities=identities,
        documents=mock_documents,
        blobs=mock_blobs,
        payments=mock_payments,
    )
    await fabric.start()
    yield fabric
    await fabric.stop()


@pytest.fixture
def app(settings, fabric):
    from fleetauth.main import create_app
    return create_app(settings=settings, services=fabric)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
async def logged_in(fabric, identity):
    """A live session for `identity`, with ready-made request headers"""
    session, cookie = await fabric.gate.login(identity.id)
    token = fabric.csrf.issue_token(session)
    headers = {
        "Cookie": f"{fabric.settings.SESSION_COOKIE_NAME}={cookie}",
        "X-XSRF-TOKEN": token,
    }
    return SimpleNamespace(identity=identity, session=session, cookie=cookie, csrf=token, headers=headers)
