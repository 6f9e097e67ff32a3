"""
Main application module for signal-relay service.
Composes the record store, HTTP API and chat ingestion, and owns their lifecycle.

States: INIT -> CONNECTING -> READY -> DRAINING -> STOPPED, or FAILED if
the store, the listener or the bot cannot be brought up.
"""

import asyncio
import contextlib
import errno
import logging
import os
import signal
import socket
import sys
from enum import Enum
from typing import Any, Callable, Optional

import uvicorn

from .config import load_config, AppConfig, TelegramConfig
from .telemetry.logger import setup_logging
from .domain.ports import (
    ChatTransport,
    ConfigurationError,
    RelayError,
    StartupError,
    TransportError,
)
from .infra.database import Database
from .infra.repository import SqlRecordStore
from .services.ingestion_service import MessageIngestionService
from .services.message_service import MessageService
from .services.signal_service import TradeSignalService
from .adapters.telethon_client import TelethonBotTransport
from .api.http_server import RelayAPI


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class LifecycleState(str, Enum):
    INIT = "INIT"
    CONNECTING = "CONNECTING"
    READY = "READY"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


class ManagedServer(uvicorn.Server):
    """Uvicorn server whose signals are handled by the application instead."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def bind_socket(host: str, port: int, max_attempts: int = 10) -> socket.socket:
    """
    Bind a listening socket, moving to the next port while the address is in use.

    Args:
        host: Interface to bind
        port: Preferred port
        max_attempts: Ports tried, starting at the preferred one

    Returns:
        Bound socket

    Raises:
        StartupError: If no port could be bound or binding failed for another reason
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET

    for attempt in range(max_attempts):
        candidate = port + attempt
        if candidate > 65535:
            break

        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, candidate))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                logger.warning(
                    f"Port {candidate} already in use, trying {candidate + 1}",
                    extra={"component": "app", "port": candidate, "attempt": attempt + 1}
                )
                continue
            if e.errno == errno.EACCES:
                raise StartupError(f"Port {candidate} requires elevated privileges") from e
            raise StartupError(f"Failed to bind {host}:{candidate}: {e}") from e

        return sock

    raise StartupError(
        f"No free port found after {max_attempts} attempts starting at {port}"
    )


def default_transport_factory(
    telegram: TelegramConfig,
    on_fault: Callable[[BaseException], None]
) -> ChatTransport:
    return TelethonBotTransport(
        api_id=telegram.api_id,
        api_hash=telegram.api_hash,
        bot_token=telegram.bot_token,
        session=telegram.session,
        launch_attempts=telegram.launch_attempts,
        launch_backoff_seconds=telegram.launch_backoff_seconds,
        handler_timeout_seconds=telegram.handler_timeout_seconds,
        on_fault=on_fault
    )


class RelayApplication:
    """
    Main application class that composes all dependencies.
    Follows Dependency Inversion Principle and manages service lifecycle.
    """

    def __init__(
        self,
        config: AppConfig,
        transport_factory: Optional[
            Callable[[TelegramConfig, Callable[[BaseException], None]], ChatTransport]
        ] = None,
        force_exit: Callable[[int], Any] = os._exit
    ):
        """
        Initialize application with configuration.

        Args:
            config: Application configuration
            transport_factory: Builds the chat transport
            force_exit: Called when draining overruns its deadline
        """
        self.config = config
        self.transport_factory = transport_factory or default_transport_factory
        self.force_exit = force_exit

        self.state = LifecycleState.INIT

        # Dependencies (will be initialized in startup)
        self.database: Optional[Database] = None
        self.store: Optional[SqlRecordStore] = None
        self.ingestion_service: Optional[MessageIngestionService] = None
        self.transport: Optional[ChatTransport] = None
        self.api: Optional[RelayAPI] = None
        self.server: Optional[ManagedServer] = None
        self._server_task: Optional[asyncio.Task] = None

        # Lifecycle management
        self._shutdown_event = asyncio.Event()
        self._shutdown_reason: Optional[str] = None

    def _setup_signal_handlers(self) -> None:
        """Route SIGTERM and SIGINT into the drain path."""
        loop = asyncio.get_running_loop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self.request_shutdown, signal.Signals(signum).name)
            except (NotImplementedError, RuntimeError):
                signal.signal(
                    signum,
                    lambda received, frame: loop.call_soon_threadsafe(
                        self.request_shutdown, signal.Signals(received).name
                    )
                )

    def request_shutdown(self, reason: str) -> None:
        """Begin draining; repeated requests are ignored."""
        if self._shutdown_event.is_set():
            return

        logger.info(
            f"Shutdown requested: {reason}",
            extra={"component": "app", "reason": reason, "state": self.state.value}
        )
        self._shutdown_reason = reason
        self._shutdown_event.set()

    def report_fault(self, exc: BaseException) -> None:
        """Unexpected failure in request or event handling; drain instead of crashing."""
        logger.error(
            f"Uncaught fault, initiating shutdown: {exc!r}",
            extra={"component": "app", "state": self.state.value}
        )
        self.request_shutdown("fault")

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None:
            exc = RuntimeError(context.get("message", "unknown event loop error"))
        self.report_fault(exc)

    async def startup(self) -> None:
        """
        Connect the store, open the listener and start ingestion.

        Raises:
            StartupError: If the store or listener cannot be brought up
            TransportError: If the bot cannot be launched
        """
        self.state = LifecycleState.CONNECTING
        logger.info("Setting up signal-relay application")

        # Store
        self.database = Database(
            url=self.config.database.url,
            echo=self.config.database.echo,
            pool_size=self.config.database.pool_size,
            max_overflow=self.config.database.max_overflow
        )
        await self.database.connect()
        if self.config.database.create_schema:
            await self.database.create_schema()
        await self.database.verify_schema()

        self.store = SqlRecordStore(self.database)

        # Services
        message_service = MessageService(
            self.store,
            default_limit=self.config.query.default_limit,
            max_limit=self.config.query.max_limit
        )
        signal_service = TradeSignalService(self.store)
        self.ingestion_service = MessageIngestionService(
            self.store,
            capture_mode=self.config.telegram.capture_mode,
            target_id=self.config.telegram.target_id
        )

        # HTTP listener
        self.api = RelayAPI(
            store=self.store,
            message_service=message_service,
            signal_service=signal_service,
            environment=self.config.server.environment,
            state_provider=lambda: self.state.value,
            stats_provider=self.ingestion_service.get_stats,
            on_fault=self.report_fault
        )
        await self._start_server()

        # Chat ingestion
        await self._start_ingestion()

        self.state = LifecycleState.READY
        logger.info(
            "Application started successfully",
            extra={
                "component": "app",
                "port": self.api.port,
                "ingestion_enabled": self.transport is not None,
                "capture_mode": self.config.telegram.capture_mode.value
            }
        )

    async def _start_server(self) -> None:
        sock = bind_socket(
            self.config.server.host,
            self.config.server.port,
            self.config.server.port_retry_attempts
        )
        self.api.port = sock.getsockname()[1]

        server_config = uvicorn.Config(
            app=self.api.app,
            host=self.config.server.host,
            port=self.api.port,
            log_level=self.config.server.log_level,
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=int(self.config.lifecycle.shutdown_timeout_seconds)
        )
        self.server = ManagedServer(server_config)
        self._server_task = asyncio.create_task(self.server.serve(sockets=[sock]))
        self._server_task.add_done_callback(self._on_server_exit)

        while not self.server.started:
            if self._server_task.done():
                raise StartupError("HTTP server exited during startup")
            await asyncio.sleep(0.05)

        logger.info(
            f"API listening on http://{self.config.server.host}:{self.api.port}",
            extra={"component": "app", "port": self.api.port}
        )

    def _on_server_exit(self, task: asyncio.Task) -> None:
        if self.state in (LifecycleState.DRAINING, LifecycleState.STOPPED):
            return
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.report_fault(exc)
        else:
            self.request_shutdown("server exited")

    async def _start_ingestion(self) -> None:
        telegram = self.config.telegram

        if not telegram.ingestion_configured:
            error = ConfigurationError(
                "BOT_TOKEN, TELEGRAM_API_ID and TELEGRAM_API_HASH are required for ingestion"
            )
            logger.error(
                f"{error.error}: {error.details}; chat ingestion disabled",
                extra={"component": "app"}
            )
            return

        self.transport = self.transport_factory(telegram, self.report_fault)
        await self.transport.start(self.ingestion_service.handlers())

    async def run(self) -> int:
        """
        Run until a termination signal or fault, then drain.

        Returns:
            Process exit code
        """
        self._setup_signal_handlers()
        asyncio.get_running_loop().set_exception_handler(self._handle_loop_exception)

        try:
            await self.startup()
        except (StartupError, TransportError) as e:
            logger.error(
                f"Fatal startup error: {e}",
                extra={"component": "app", "error_type": type(e).__name__}
            )
            self.state = LifecycleState.FAILED
            await self._release()
            return EXIT_FAILURE

        await self._shutdown_event.wait()
        return await self.shutdown()

    async def shutdown(self) -> int:
        """
        Drain within the configured deadline.

        Returns:
            EXIT_OK after a complete drain, EXIT_FAILURE if the deadline passed
        """
        self.state = LifecycleState.DRAINING
        timeout = self.config.lifecycle.shutdown_timeout_seconds
        logger.info(
            "Starting graceful shutdown",
            extra={"component": "app", "reason": self._shutdown_reason, "timeout_s": timeout}
        )

        drain_task = asyncio.create_task(self._drain())
        done, _ = await asyncio.wait({drain_task}, timeout=timeout)

        if drain_task not in done:
            logger.error(
                f"Forced shutdown after {timeout}s timeout",
                extra={"component": "app"}
            )
            self.state = LifecycleState.FAILED
            self.force_exit(EXIT_FAILURE)
            drain_task.cancel()
            return EXIT_FAILURE

        if drain_task.exception() is not None:
            logger.error(f"Error during shutdown: {drain_task.exception()}")

        self.state = LifecycleState.STOPPED
        logger.info("Shutdown complete", extra={"component": "app"})
        return EXIT_OK

    async def _drain(self) -> None:
        """Stop intake, then ingestion, then the store, in that order."""
        if self.server is not None:
            self.server.should_exit = True
            if self._server_task is not None:
                try:
                    await self._server_task
                except Exception as e:
                    logger.error(f"HTTP server stopped with error: {e}")
            logger.info("HTTP server closed")

        if self.transport is not None:
            await self.transport.stop()
            logger.info("Chat ingestion stopped")

        if self.ingestion_service is not None:
            stats = await self.ingestion_service.get_stats()
            logger.info(
                "Final ingestion statistics",
                extra={"component": "app", "final_stats": stats.model_dump()}
            )

        if self.database is not None:
            await self.database.close()

    async def _release(self) -> None:
        """Best-effort cleanup after a failed startup."""
        try:
            await self._drain()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


async def main() -> int:
    """
    Main entry point for the application.
    """
    try:
        config = load_config()
    except (ValueError, RelayError) as e:
        logging.basicConfig()
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FAILURE

    setup_logging(
        level=config.logging.level,
        service_name="signal-relay",
        enable_json=config.logging.json_format,
        enable_correlation=config.logging.enable_correlation
    )

    logger.info("Starting signal-relay service")
    return await RelayApplication(config).run()


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")


if __name__ == "__main__":
    cli()
