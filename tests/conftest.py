"""
Shared pytest fixtures.

Uses a SQLite database file so no Postgres or Redis is required for tests.
Provider APIs are replaced by FakeGateway (user-authorized calls) and a
MockTransport-backed Discord REST API (bot calls).
"""
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_area.db")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("RESTORE_ON_STARTUP", "false")
os.environ.setdefault("LOG_LEVEL", "warning")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from area_engine.core.config import Settings
from area_engine.core.errors import ProviderNotLinkedError
from area_engine.db.base import Base, get_db
from area_engine.main import app
from area_engine.services.cache import MemoryCache
from area_engine.services.engine import Engine, get_engine
from area_engine.services.gateway import DEFAULT_PROVIDER, AuthorizationGateway, DiscordBotClient, RequestSpec
from area_engine.services.repository import BindingRepository
from area_engine.services.watermark import WatermarkStore

SQLITE_URL = "sqlite:///./test_area.db"
DISCORD_API = "https://discord.test/api/v10"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeGateway(AuthorizationGateway):
    """
    Canned provider responses keyed by (method, url).

    A route is either (status, json_body), an exception instance to raise,
    or a callable taking the RequestSpec and returning (status, json_body).
    """

    def __init__(self, linked=()):
        self.linked = set(linked)
        self.routes = {}
        self.requests = []

    def link(self, *providers):
        self.linked.update(providers)

    def route(self, url, response, method="GET"):
        self.routes[(method, url)] = response

    async def has_linked_provider(self, user_id, provider):
        return provider == DEFAULT_PROVIDER or provider in self.linked

    async def linked_providers(self, user_id):
        return set(self.linked)

    async def authenticated_request(self, provider, user_id, spec: RequestSpec):
        self.requests.append((provider, user_id, spec))
        if provider not in self.linked:
            raise ProviderNotLinkedError(provider)
        handler = self.routes.get((spec.method, spec.url))
        if handler is None:
            raise AssertionError(f"unexpected request {spec.method} {spec.url}")
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            handler = handler(spec)
        status_code, payload = handler
        response = httpx.Response(
            status_code, json=payload, request=httpx.Request(spec.method, spec.url)
        )
        response.raise_for_status()
        return response


class FakeDiscordAPI:
    """In-memory stand-in for the Discord channel messages endpoints."""

    def __init__(self):
        self.channels = {}
        self.sent = []
        self.status_override = None

    def post(self, channel_id, message_id, timestamp, content="hello", **extra):
        message = {
            "id": message_id,
            "channel_id": channel_id,
            "content": content,
            "timestamp": timestamp,
            "author": {"id": "42", "username": "alice", "discriminator": "0001"},
            **extra,
        }
        self.channels.setdefault(channel_id, []).append(message)
        return message

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.status_override is not None:
            return httpx.Response(self.status_override, json={"message": "error"})
        parts = request.url.path.rstrip("/").split("/")
        channel_id = parts[-2]
        if request.method == "GET":
            newest_first = list(reversed(self.channels.get(channel_id, [])))
            limit = int(request.url.params.get("limit", 50))
            return httpx.Response(200, json=newest_first[:limit])
        body = json.loads(request.content)
        sent = {"id": f"sent-{len(self.sent) + 1}", "channel_id": channel_id, **body}
        self.sent.append(sent)
        return httpx.Response(200, json=sent)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    db = TestingSessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Engine pieces
# ---------------------------------------------------------------------------

@pytest.fixture()
def cache():
    return MemoryCache()


@pytest.fixture()
def watermarks(cache):
    return WatermarkStore(cache)


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def discord_api():
    return FakeDiscordAPI()


@pytest.fixture()
def http(discord_api):
    return httpx.AsyncClient(transport=httpx.MockTransport(discord_api.handler))


@pytest.fixture()
def bot(http):
    return DiscordBotClient(http, "test-bot-token", DISCORD_API)


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def repository():
    return BindingRepository(TestingSessionLocal)


@pytest.fixture()
def test_settings():
    return Settings(
        DATABASE_URL=SQLITE_URL,
        REDIS_URL="",
        DISCORD_BOT_TOKEN="test-bot-token",
        DISCORD_API_BASE=DISCORD_API,
        SPOTIFY_POLL_INTERVAL_SECONDS=3600,
        GMAIL_POLL_INTERVAL_SECONDS=3600,
        RESTORE_ON_STARTUP=False,
    )


@pytest.fixture()
def runtime(test_settings, cache, http, gateway):
    return Engine(
        test_settings,
        session_factory=TestingSessionLocal,
        cache=cache,
        http=http,
        auth=gateway,
    )


@pytest.fixture()
def client(db, runtime):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: runtime
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
async def orchestrator(runtime):
    yield runtime.orchestrator
    await runtime.registry.stop_all()
