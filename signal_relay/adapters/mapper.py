"""
Message mapper converting Telethon messages into transport-independent chat events.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..domain.schema import ChatEvent


logger = logging.getLogger(__name__)


class TelethonMessageMapper:
    """Maps Telethon Message objects to ChatEvent."""

    def map_message(self, message: Any) -> Optional[ChatEvent]:
        """
        Convert a Telethon message.

        Args:
            message: Telethon Message

        Returns:
            ChatEvent, or None for service messages without text
        """
        if message is None or getattr(message, "action", None) is not None:
            return None

        text = getattr(message, "message", None)
        if not isinstance(text, str):
            text = None

        # Channel broadcasts are flagged as posts and carry no sender user
        kind = "channel_post" if getattr(message, "post", False) else "message"

        return ChatEvent(
            kind=kind,
            chat_id=self._as_id(getattr(message, "chat_id", None)),
            user_id=self._as_id(getattr(message, "sender_id", None)),
            text=text,
            message_id=getattr(message, "id", None),
            received_at=self._get_message_timestamp(message)
        )

    @staticmethod
    def _as_id(value: Any) -> Optional[str]:
        return str(value) if value is not None else None

    @staticmethod
    def _get_message_timestamp(message: Any) -> datetime:
        date = getattr(message, "date", None)
        if isinstance(date, datetime):
            if date.tzinfo is None:
                return date.replace(tzinfo=timezone.utc)
            return date
        return datetime.now(timezone.utc)
