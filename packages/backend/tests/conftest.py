"""Test fixtures — a throwaway SQLite database per test.

Learn: Testing pattern for the realtime listing server:

1. Each test gets its own SQLite file under tmp_path, schema created with
   init_db(), engine disposed afterwards — no cross-test pollution.
2. Processor and registry tests use RecordingSession stand-ins instead of
   sockets, so the frames each "client" would have received can be
   asserted directly.
3. End-to-end tests build a real app with create_app() against the test
   database and talk to it through Starlette's TestClient WebSockets.
"""

import json

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from marketsync.config import Settings
from marketsync.db.engine import init_db, make_session_factory
from marketsync.main import create_app
from marketsync.realtime.commands import ListingCommandProcessor
from marketsync.realtime.registry import SessionRegistry
from marketsync.services.image_store import ImageStore


class RecordingSession:
    """Stands in for a connected Session; remembers every frame delivered to it."""

    def __init__(self, name: str):
        self.id = name
        self.frames: list[dict] = []

    def deliver(self, message) -> bool:
        self.frames.append(json.loads(message) if isinstance(message, str) else message)
        return True

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]

    def last(self) -> dict:
        return self.frames[-1]


def listing_payload(**overrides) -> dict:
    """A complete, valid create_listing body."""
    payload = {
        "name": "Camera",
        "category": "Electronics",
        "price": 180000,
        "description": "Mirrorless body, two lenses",
        "condition": "New",
        "negotiable": True,
        "location": "Lagos",
        "paymentOption": "Cash",
        "sellerContact": "08012345678",
        "sellerId": "u1",
        "imageRef": "/img/a.jpg",
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'listings.db'}")
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def registry():
    return SessionRegistry()


@pytest.fixture()
def images(tmp_path):
    return ImageStore(tmp_path / "uploads", url_prefix="/uploads", max_bytes=1024)


@pytest.fixture()
def processor(registry, session_factory, images):
    return ListingCommandProcessor(registry, session_factory, images=images)


@pytest_asyncio.fixture()
async def clients(registry):
    """Two connected clients, alice and bob."""
    alice, bob = RecordingSession("alice"), RecordingSession("bob")
    await registry.register(alice)
    await registry.register(bob)
    return alice, bob


@pytest.fixture()
def app_settings(tmp_path):
    static_dir = tmp_path / "public"
    static_dir.mkdir()
    (static_dir / "index.html").write_text("<h1>Marketplace</h1>")
    return Settings(
        static_dir=str(static_dir),
        uploads_dir=str(tmp_path / "uploads"),
        max_image_bytes=1024,
    )


@pytest.fixture()
def client(tmp_path, app_settings):
    """TestClient for an app backed by its own SQLite file.

    Learn: The engine is created here but first connects inside the app's
    lifespan, i.e. on TestClient's event loop, and is disposed at shutdown.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    app = create_app(engine=engine, settings=app_settings)
    with TestClient(app) as test_client:
        yield test_client
