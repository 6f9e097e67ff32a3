"""Shared fixtures for signal-relay tests."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from signal_relay.api.http_server import RelayAPI
from signal_relay.infra.database import Database
from signal_relay.infra.repository import SqlRecordStore
from signal_relay.services.message_service import MessageService
from signal_relay.services.signal_service import TradeSignalService


@pytest_asyncio.fixture
async def database():
    """In-memory database with the schema created."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.connect()
    await db.create_schema()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database):
    return SqlRecordStore(database)


@pytest.fixture
def message_service(store):
    return MessageService(store)


@pytest.fixture
def signal_service(store):
    return TradeSignalService(store)


@pytest.fixture
def faults():
    """Collects exceptions reported through the fault callback."""
    return []


@pytest.fixture
def api(store, message_service, signal_service, faults):
    relay_api = RelayAPI(
        store=store,
        message_service=message_service,
        signal_service=signal_service,
        environment="test",
        on_fault=faults.append
    )
    relay_api.port = 3000
    return relay_api


@pytest_asyncio.fixture
async def client(api):
    transport = ASGITransport(app=api.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
