"""Shared test fixtures for chatrelay."""

import httpx
import pytest

from chatrelay import config
from chatrelay.db import store
from chatrelay.main import create_app
from chatrelay.routers.chat import get_adapter_factory, get_content_lookup
from chatrelay.routers.health import get_service_transport
from tests.factories import FakeAdapter, FakeLookup, simple_turn


@pytest.fixture(autouse=True)
def relay_config(monkeypatch: pytest.MonkeyPatch):
    """Fresh default config and no real provider credentials for every test."""
    for name in ("GROQ_API_KEY", "CONTENTSTACK_API_KEY", "CONTENTSTACK_DELIVERY_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    cfg = config.ChatRelayConfig()
    config.set_config(cfg)
    yield cfg
    config.set_config(None)


@pytest.fixture(autouse=True)
def db_path(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point the message store at a per-test SQLite file."""
    path = tmp_path / "chatrelay-test.db"
    monkeypatch.setattr(store, "_db_path", path)
    return path


@pytest.fixture
async def initialized_db(db_path):
    await store.init_db()
    return db_path


@pytest.fixture
def lookup():
    return FakeLookup([{"uid": "blt1", "title": "Laptop Pro 14"}])


@pytest.fixture
def adapter():
    return FakeAdapter(simple_turn("Hi", " there"))


@pytest.fixture
def service_status():
    """HTTP status each upstream host answers health checks with."""
    return {"api.groq.com": 200, "cdn.contentstack.io": 200}


@pytest.fixture
def app(adapter, lookup, service_status):
    """Application with the upstream adapter, content lookup and health-check network replaced by fakes."""
    services = httpx.MockTransport(lambda r: httpx.Response(service_status.get(r.url.host, 404), json={}))
    application = create_app()
    application.dependency_overrides[get_service_transport] = lambda: services
    application.dependency_overrides[get_adapter_factory] = lambda: (lambda provider=None, model=None: adapter)
    application.dependency_overrides[get_content_lookup] = lambda: lookup
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
