"""
Chat ingestion service for signal-relay.
Applies the capture mode and target-chat filter, then writes accepted
events to the record store.

Pipeline: Transport → Dispatch → Filter → Store
"""

import logging
import time
from typing import Dict, Optional

from ..domain.ports import (
    ConfigurationError,
    EventHandler,
    PersistenceError,
    RecordStore,
    ValidationError,
)
from ..domain.schema import CaptureMode, ChatEvent, IngestionStats
from ..telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)


class MessageIngestionService:
    """
    Translates inbound chat events into stored messages.

    Delivery is at-most-once: an event whose write fails is logged and dropped.
    """

    def __init__(
        self,
        store: RecordStore,
        capture_mode: CaptureMode = CaptureMode.TARGETED,
        target_id: Optional[str] = None,
        metrics: Optional[MetricsLogger] = None
    ):
        """
        Initialize ingestion service.

        Args:
            store: Record store for accepted events
            capture_mode: TARGETED stores text from one chat, OPEN stores every chat with sender tags
            target_id: Chat identifier accepted in TARGETED mode
            metrics: Optional metrics logger
        """
        self.store = store
        self.capture_mode = CaptureMode(capture_mode)
        self.target_id = str(target_id).strip() if target_id is not None and str(target_id).strip() else None
        self.metrics = metrics or MetricsLogger()

        self._stats = IngestionStats()

        if self.capture_mode is CaptureMode.TARGETED and self.target_id is None:
            error = ConfigurationError("TARGET_ID is not set; every chat event will be discarded")
            logger.error(
                f"{error.error}: {error.details}",
                extra={"component": "ingestion_service", "capture_mode": self.capture_mode.value}
            )

    @property
    def is_accepting(self) -> bool:
        """Whether any event can pass the filter rule."""
        return self.capture_mode is CaptureMode.OPEN or self.target_id is not None

    def handlers(self) -> Dict[str, EventHandler]:
        """Dispatch table handed to the chat transport."""
        return {
            "message": self.handle_message,
            "channel_post": self.handle_channel_post,
        }

    async def handle_message(self, event: ChatEvent) -> None:
        await self._ingest(event)

    async def handle_channel_post(self, event: ChatEvent) -> None:
        await self._ingest(event)

    async def get_stats(self) -> IngestionStats:
        return self._stats.model_copy()

    def accepts(self, event: ChatEvent) -> bool:
        """
        Apply the filter rule.

        Returns:
            True if the event should be stored
        """
        if not event.text or not event.text.strip():
            return False

        if self.capture_mode is CaptureMode.OPEN:
            return True

        if self.target_id is None:
            return False

        return event.chat_id is not None and str(event.chat_id) == self.target_id

    async def _ingest(self, event: ChatEvent) -> None:
        self._stats.increment_received()

        if not self.accepts(event):
            self._stats.increment_filtered()
            logger.debug(
                f"Event discarded from chat {event.chat_id}",
                extra={
                    "component": "ingestion_service",
                    "kind": event.kind,
                    "chat_id": event.chat_id,
                    "target_id": self.target_id
                }
            )
            return

        start_time = time.time()
        try:
            if self.capture_mode is CaptureMode.OPEN:
                message = await self.store.create_message(
                    event.text,
                    user_id=event.user_id,
                    chat_id=event.chat_id
                )
            else:
                message = await self.store.create_message(event.text)

        except (PersistenceError, ValidationError) as e:
            self._stats.increment_errors()
            logger.error(
                f"Failed to store chat event: {e}",
                extra={
                    "component": "ingestion_service",
                    "kind": event.kind,
                    "chat_id": event.chat_id,
                    "error": str(e)
                }
            )
            return

        self._stats.increment_stored()
        self.metrics.log_event_ingested(
            kind=event.kind,
            chat_id=event.chat_id,
            message_id=message.id,
            processing_time_ms=(time.time() - start_time) * 1000
        )
