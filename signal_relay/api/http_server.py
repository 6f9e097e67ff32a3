"""
HTTP server for signal-relay service using FastAPI.
Provides REST API for reading messages and trade signals and for
submitting new ones.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..domain.ports import PersistenceError, RecordStore, ValidationError
from ..domain.schema import HealthStatus, IngestionStats
from ..services.message_service import MessageService
from ..services.signal_service import TradeSignalService
from ..telemetry.logger import CORRELATION_HEADER, MetricsLogger, new_correlation_id


logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal server error"


class RelayAPI:
    """
    FastAPI application for signal-relay.
    Read endpoints fail closed; write endpoints report validation errors inline.
    """

    def __init__(
        self,
        store: RecordStore,
        message_service: MessageService,
        signal_service: TradeSignalService,
        environment: Optional[str] = None,
        state_provider: Optional[Callable[[], str]] = None,
        stats_provider: Optional[Callable[[], Awaitable[IngestionStats]]] = None,
        on_fault: Optional[Callable[[BaseException], None]] = None,
        title: str = "Signal Relay",
        version: str = "1.0.0"
    ):
        """
        Initialize FastAPI application.

        Args:
            store: Record store, checked by the readiness route
            message_service: Message operations
            signal_service: Trade signal submission
            environment: Environment label shown on the healthcheck
            state_provider: Returns the current lifecycle state name
            stats_provider: Returns ingestion statistics
            on_fault: Called with unexpected exceptions escaping a request
            title: API title
            version: API version
        """
        self.store = store
        self.message_service = message_service
        self.signal_service = signal_service
        self.environment = environment
        self.state_provider = state_provider
        self.stats_provider = stats_provider
        self.on_fault = on_fault
        self.metrics = MetricsLogger()

        # Bound port, set once the listener is open
        self.port: Optional[int] = None

        self.app = FastAPI(
            title=title,
            version=version,
            description="HTTP API for Telegram messages and trade signals",
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self._setup_middleware()
        self._setup_routes()
        self._setup_exception_handlers()

    def _setup_middleware(self) -> None:
        """Setup FastAPI middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["*"]
        )

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            start_time = time.time()
            correlation_id = new_correlation_id("http")

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Unhandled error: {e}",
                    exc_info=True,
                    extra={
                        "component": "http_server",
                        "method": request.method,
                        "path": request.url.path
                    }
                )
                if self.on_fault:
                    self.on_fault(e)
                response = JSONResponse(status_code=500, content={"error": INTERNAL_ERROR})

            response.headers[CORRELATION_HEADER] = correlation_id

            self.metrics.log_http_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
                client_ip=request.client.host if request.client else None
            )

            return response

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""

        @self.app.get("/", summary="Health Check")
        async def health_check() -> dict:
            """Basic health check - always returns OK if service is running."""
            body = {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
            if self.environment:
                body["environment"] = self.environment
            if self.port is not None:
                body["port"] = self.port
            return body

        @self.app.get("/readyz", summary="Readiness Check")
        async def readiness_check() -> JSONResponse:
            """
            Detailed readiness check.

            Returns 503 unless the store answers and the service is READY.
            """
            checks = {}
            state = self.state_provider() if self.state_provider else "READY"

            store_ok = await self.store.check_health()
            checks["store"] = "ok" if store_ok else "failed"
            checks["lifecycle"] = state

            ingestion = None
            if self.stats_provider:
                ingestion = (await self.stats_provider()).model_dump()

            healthy = store_ok and state == "READY"
            status = HealthStatus(
                status="healthy" if healthy else "unhealthy",
                state=state,
                checks=checks,
                ingestion=ingestion
            )

            if not healthy:
                logger.warning(
                    f"Service not ready: {state}",
                    extra={"component": "http_server", "checks": checks}
                )

            return JSONResponse(
                status_code=200 if healthy else 503,
                content=status.model_dump(mode="json")
            )

        @self.app.get("/messages", summary="List Messages")
        async def list_messages(page: Optional[str] = None, limit: Optional[str] = None) -> dict:
            """Newest messages first, wrapped with pagination details."""
            result = await self.message_service.list_page(page=page, limit=limit)
            return result.model_dump(mode="json", by_alias=True)

        @self.app.get("/messages/text", summary="List Message Texts")
        async def list_message_texts() -> list:
            return await self.message_service.list_texts()

        @self.app.post("/messages", status_code=201, summary="Create Messages")
        async def create_messages(request: Request) -> JSONResponse:
            """Create one message from an object or several from an array."""
            payload = await self._read_json(request)
            created = await self.message_service.create(payload)

            if isinstance(created, list):
                content = [message.model_dump(mode="json", by_alias=True) for message in created]
            else:
                content = created.model_dump(mode="json", by_alias=True)

            return JSONResponse(status_code=201, content=content)

        @self.app.get("/trades", summary="List Trade Signals")
        async def list_trades() -> list:
            signals = await self.store.list_trade_signals(limit=self.message_service.default_limit)
            return [signal.model_dump(mode="json", by_alias=True) for signal in signals]

        @self.app.post("/trades", status_code=201, summary="Submit Trade Signals")
        async def submit_trades(request: Request) -> JSONResponse:
            """
            Submit one signal or an array of signals.

            Invalid items are reported under "errors"; the request still succeeds.
            """
            payload = await self._read_json(request)
            result = await self.signal_service.submit(payload)
            return JSONResponse(status_code=201, content=result.to_response())

    def _setup_exception_handlers(self) -> None:
        """Setup custom exception handlers."""

        @self.app.exception_handler(ValidationError)
        async def validation_exception_handler(request: Request, exc: ValidationError):
            logger.warning(
                f"Validation error: {exc}",
                extra={"component": "http_server", "path": request.url.path}
            )
            return JSONResponse(status_code=400, content=exc.to_dict())

        @self.app.exception_handler(PersistenceError)
        async def persistence_exception_handler(request: Request, exc: PersistenceError):
            logger.error(
                f"Store error on {request.method} {request.url.path}: {exc}",
                extra={"component": "http_server", "path": request.url.path}
            )
            content = {"error": INTERNAL_ERROR}
            if exc.details:
                content["details"] = exc.details
            return JSONResponse(status_code=500, content=content)

    @staticmethod
    async def _read_json(request: Request) -> Any:
        body = await request.body()
        try:
            return json.loads(body or b"null")
        except ValueError as e:
            raise ValidationError(f"Malformed JSON body: {e}") from e
