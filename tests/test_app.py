"""Application lifecycle: port binding, startup failures and draining."""

import asyncio
import socket

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from signal_relay.app import (
    EXIT_FAILURE,
    EXIT_OK,
    LifecycleState,
    RelayApplication,
    bind_socket,
)
from signal_relay.config import (
    AppConfig,
    DatabaseConfig,
    LifecycleConfig,
    ServerConfig,
    TelegramConfig,
)
from signal_relay.domain.ports import ChatTransport, StartupError, TransportError
from signal_relay.infra.models import Base


MEMORY_URL = "sqlite+aiosqlite:///:memory:"


class FakeTransport(ChatTransport):

    def __init__(self, events, fail=False, stop_delay=0.0):
        self.events = events
        self.fail = fail
        self.stop_delay = stop_delay
        self.handlers = None
        self._running = False

    @property
    def is_running(self):
        return self._running

    async def start(self, handlers):
        if self.fail:
            raise TransportError("Bot launch failed after 3 attempts: Unauthorized")
        self.handlers = handlers
        self._running = True

    async def stop(self):
        await asyncio.sleep(self.stop_delay)
        self._running = False
        self.events.append("transport")


class FakeDatabase:

    def __init__(self, events):
        self.events = events

    async def close(self):
        self.events.append("database")


class FakeServer:

    def __init__(self):
        self.should_exit = False

    async def serve(self, events):
        while not self.should_exit:
            await asyncio.sleep(0.01)
        events.append("server")


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_config(create_schema=True, with_bot=True, timeout=5.0):
    telegram = TelegramConfig(target_id="123")
    if with_bot:
        telegram = TelegramConfig(target_id="123", bot_token="123:abc", api_id=1, api_hash="hash")
    return AppConfig(
        server=ServerConfig(host="127.0.0.1", port=free_port()),
        telegram=telegram,
        database=DatabaseConfig(url=MEMORY_URL, create_schema=create_schema),
        lifecycle=LifecycleConfig(shutdown_timeout_seconds=timeout)
    )


class TestBindSocket:

    def test_binds_preferred_port(self):
        port = free_port()
        sock = bind_socket("127.0.0.1", port, 3)
        try:
            assert sock.getsockname()[1] == port
        finally:
            sock.close()

    def test_moves_to_next_port_when_taken(self):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]
        try:
            sock = bind_socket("127.0.0.1", port, 5)
            try:
                assert sock.getsockname()[1] > port
            finally:
                sock.close()
        finally:
            occupied.close()

    def test_gives_up_after_attempts(self):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]
        try:
            with pytest.raises(StartupError):
                bind_socket("127.0.0.1", port, 1)
        finally:
            occupied.close()


class TestStartupFailures:

    @pytest.mark.asyncio
    async def test_missing_tables_fail_startup(self):
        app = RelayApplication(make_config(create_schema=False))

        with pytest.raises(StartupError):
            await app.startup()

        await app._release()
        assert app.server is None

    @pytest.mark.asyncio
    async def test_run_returns_failure_exit_code(self):
        app = RelayApplication(make_config(create_schema=False))

        assert await app.run() == EXIT_FAILURE
        assert app.state is LifecycleState.FAILED

    @pytest.mark.asyncio
    async def test_bot_launch_failure_is_fatal(self):
        events = []
        app = RelayApplication(
            make_config(),
            transport_factory=lambda telegram, on_fault: FakeTransport(events, fail=True)
        )

        assert await app.run() == EXIT_FAILURE
        assert app.state is LifecycleState.FAILED
        assert app.database.is_connected is False

    @pytest.mark.asyncio
    async def test_schema_creation_failure_is_fatal(self, monkeypatch):
        def fail(*args, **kwargs):
            raise OperationalError("CREATE TABLE", {}, Exception("disk is full"))

        monkeypatch.setattr(Base.metadata, "create_all", fail)
        app = RelayApplication(make_config())

        assert await app.run() == EXIT_FAILURE
        assert app.state is LifecycleState.FAILED
        assert app.database.is_connected is False


class TestDrain:

    @pytest.mark.asyncio
    async def test_drain_order(self):
        events = []
        app = RelayApplication(make_config())
        app.server = FakeServer()
        app._server_task = asyncio.create_task(app.server.serve(events))
        app.transport = FakeTransport(events)
        app.database = FakeDatabase(events)

        assert await app.shutdown() == EXIT_OK
        assert events == ["server", "transport", "database"]
        assert app.state is LifecycleState.STOPPED

    @pytest.mark.asyncio
    async def test_deadline_forces_exit(self):
        events = []
        exits = []
        app = RelayApplication(make_config(timeout=0.05), force_exit=exits.append)
        app.transport = FakeTransport(events, stop_delay=10)

        assert await app.shutdown() == EXIT_FAILURE
        assert exits == [EXIT_FAILURE]
        assert app.state is LifecycleState.FAILED

    @pytest.mark.asyncio
    async def test_shutdown_request_is_idempotent(self):
        app = RelayApplication(make_config())

        app.request_shutdown("SIGTERM")
        app.request_shutdown("SIGINT")

        assert app._shutdown_reason == "SIGTERM"

    @pytest.mark.asyncio
    async def test_fault_requests_shutdown(self):
        app = RelayApplication(make_config())

        app.report_fault(RuntimeError("boom"))

        assert app._shutdown_event.is_set()
        assert app._shutdown_reason == "fault"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_lifecycle():
    events = []
    transports = []

    def factory(telegram, on_fault):
        transport = FakeTransport(events)
        transports.append(transport)
        return transport

    app = RelayApplication(make_config(), transport_factory=factory)
    await app.startup()

    try:
        assert app.state is LifecycleState.READY
        assert transports[0].is_running
        assert set(transports[0].handlers) == {"message", "channel_post"}

        async with AsyncClient(base_url=f"http://127.0.0.1:{app.api.port}", trust_env=False) as client:
            health = await client.get("/")
            ready = await client.get("/readyz")

        assert health.json()["port"] == app.api.port
        assert ready.status_code == 200
    finally:
        app.request_shutdown("test")
        exit_code = await app.shutdown()

    assert exit_code == EXIT_OK
    assert events == ["transport"]
    assert app.state is LifecycleState.STOPPED
    assert app.database.is_connected is False


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ingestion_disabled_without_credentials():
    app = RelayApplication(make_config(with_bot=False))
    await app.startup()

    try:
        assert app.transport is None
        assert app.state is LifecycleState.READY
    finally:
        await app.shutdown()
