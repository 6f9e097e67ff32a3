"""
Telethon bot transport for signal-relay.
Logs in with a bot token, dispatches new messages and channel posts by
kind, and keeps the subscription alive across transport errors.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from telethon import TelegramClient, events

from ..domain.ports import ChatTransport, EventHandler, TransportError
from ..telemetry.logger import new_correlation_id
from .mapper import TelethonMessageMapper


logger = logging.getLogger(__name__)


class TelethonBotTransport(ChatTransport):
    """
    Telethon-based implementation of the chat transport.
    """

    def __init__(
        self,
        api_id: int,
        api_hash: str,
        bot_token: str,
        session: str = "signal-relay-bot",
        launch_attempts: int = 3,
        launch_backoff_seconds: float = 5.0,
        handler_timeout_seconds: float = 90.0,
        mapper: Optional[TelethonMessageMapper] = None,
        on_fault: Optional[Callable[[BaseException], None]] = None,
        client: Optional[Any] = None
    ):
        """
        Initialize Telethon bot transport.

        Args:
            api_id: Telegram API ID
            api_hash: Telegram API hash
            bot_token: Bot token from BotFather
            session: Session name or path
            launch_attempts: Login attempts before giving up
            launch_backoff_seconds: Pause between login attempts
            handler_timeout_seconds: Upper bound for handling one event
            mapper: Message mapper
            on_fault: Called with unexpected handler exceptions
            client: Pre-built client (tests)
        """
        self.bot_token = bot_token
        self.launch_attempts = launch_attempts
        self.launch_backoff_seconds = launch_backoff_seconds
        self.handler_timeout_seconds = handler_timeout_seconds
        self.mapper = mapper or TelethonMessageMapper()
        self.on_fault = on_fault

        self.client = client or TelegramClient(session, api_id, api_hash)

        self._handlers: Dict[str, EventHandler] = {}
        self._running = False
        self._supervisor_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, handlers: Dict[str, EventHandler]) -> None:
        """
        Log in and start dispatching events.

        Raises:
            TransportError: If every launch attempt fails
        """
        if self._running:
            logger.warning("Transport already running")
            return

        self._handlers = dict(handlers)

        await self._launch()

        self.client.add_event_handler(self._on_new_message, events.NewMessage())
        self._running = True
        self._supervisor_task = asyncio.create_task(self._supervise())

        logger.info(
            "Chat subscription started",
            extra={"component": "telethon_client", "event_kinds": sorted(self._handlers)}
        )

    async def stop(self) -> None:
        """Stop dispatching and disconnect from Telegram."""
        if not self._running:
            return

        self._running = False
        self.client.remove_event_handler(self._on_new_message)

        if self._supervisor_task and not self._supervisor_task.done():
            self._supervisor_task.cancel()
            try:
                await self._supervisor_task
            except asyncio.CancelledError:
                pass

        try:
            if self.client.is_connected():
                await self.client.disconnect()
            logger.info("Disconnected from Telegram")
        except Exception as e:
            logger.error(f"Error during disconnect: {e}")

    async def _launch(self) -> None:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.launch_attempts + 1):
            try:
                await self.client.start(bot_token=self.bot_token)
                me = await self.client.get_me()
                logger.info(
                    f"Connected to Telegram as @{getattr(me, 'username', None)}",
                    extra={
                        "component": "telethon_client",
                        "bot_id": getattr(me, "id", None),
                        "attempt": attempt
                    }
                )
                return

            except Exception as e:
                last_error = e
                logger.warning(
                    f"Bot launch attempt {attempt}/{self.launch_attempts} failed: {e}",
                    extra={"component": "telethon_client", "attempt": attempt}
                )

            if attempt < self.launch_attempts:
                await asyncio.sleep(self.launch_backoff_seconds)

        raise TransportError(
            f"Bot launch failed after {self.launch_attempts} attempts: {last_error}"
        )

    async def _on_new_message(self, event: Any) -> None:
        chat_event = self.mapper.map_message(getattr(event, "message", None))
        if chat_event is None:
            return

        handler = self._handlers.get(chat_event.kind)
        if handler is None:
            logger.debug(f"No handler for event kind {chat_event.kind}")
            return

        new_correlation_id("tg")
        try:
            await asyncio.wait_for(handler(chat_event), timeout=self.handler_timeout_seconds)

        except asyncio.TimeoutError:
            logger.error(
                f"Event handling timed out after {self.handler_timeout_seconds}s",
                extra={
                    "component": "telethon_client",
                    "kind": chat_event.kind,
                    "chat_id": chat_event.chat_id
                }
            )

        except Exception as e:
            logger.error(
                f"Error in message handler: {e}",
                exc_info=True,
                extra={
                    "component": "telethon_client",
                    "kind": chat_event.kind,
                    "chat_id": chat_event.chat_id,
                    "message_id": chat_event.message_id
                }
            )
            if self.on_fault:
                self.on_fault(e)

    async def _supervise(self) -> None:
        """Wait on the connection; log transport errors and reconnect."""
        while self._running:
            try:
                await self.client.disconnected
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Telegram connection error: {e}",
                    extra={"component": "telethon_client", "error": str(e)}
                )

            if not self._running:
                break

            logger.warning("Telegram connection lost, reconnecting")
            await asyncio.sleep(self.launch_backoff_seconds)

            try:
                await self.client.connect()
            except Exception as e:
                logger.error(
                    f"Reconnect failed: {e}",
                    extra={"component": "telethon_client", "error": str(e)}
                )
