"""
Ports (interfaces) for signal-relay service.
Following Dependency Inversion Principle - high-level modules depend on abstractions.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .schema import ChatEvent, Message, TradeSignal


EventHandler = Callable[[ChatEvent], Awaitable[None]]


class RecordStore(ABC):
    """
    Append-only persistence for messages and trade signals.
    Can be implemented with any relational backend.
    """

    @abstractmethod
    async def create_message(
        self,
        text: str,
        user_id: Optional[str] = None,
        chat_id: Optional[str] = None
    ) -> Message:
        """
        Persist a message.

        Raises:
            ValidationError: If text is empty or missing
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def create_trade_signal(
        self,
        symbol: str,
        type: str,
        entry: Any,
        sl: Any,
        tp: Any,
        text: Optional[str] = None
    ) -> TradeSignal:
        """
        Persist a trade signal.

        Raises:
            ValidationError: If a field is missing, the type is unknown or a price is not finite
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def list_messages(self, page: int = 1, limit: int = 100) -> Tuple[List[Message], int]:
        """
        List messages newest first.

        Returns:
            The requested page of messages and the total message count
        """
        pass

    @abstractmethod
    async def list_message_texts(self, limit: int = 100) -> List[str]:
        """List message texts newest first."""
        pass

    @abstractmethod
    async def list_trade_signals(self, limit: int = 100) -> List[TradeSignal]:
        """List trade signals newest first."""
        pass

    @abstractmethod
    async def count_messages(self) -> int:
        pass

    @abstractmethod
    async def count_trade_signals(self) -> int:
        pass

    @abstractmethod
    async def check_health(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if healthy, False otherwise
        """
        pass


class ChatTransport(ABC):
    """
    Interface for the chat transport delivering inbound events.
    Abstracts away the specific Telegram library.
    """

    @abstractmethod
    async def start(self, handlers: Dict[str, EventHandler]) -> None:
        """
        Launch the transport and start dispatching events.

        Args:
            handlers: Dispatch table mapping event kind tags to handlers

        Raises:
            TransportError: If the transport cannot be launched
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop dispatching events and disconnect."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        pass


# Custom exceptions
class RelayError(Exception):
    """Base error carrying a stable error string and optional details."""

    error = "Internal server error"

    def __init__(self, details: Optional[str] = None, **extra: Any):
        super().__init__(details or self.error)
        self.details = details
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "type": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class ValidationError(RelayError):
    """Raised when input fields are missing or invalid."""
    error = "Validation failed"


class MissingFieldsError(ValidationError):
    """Raised when a required field is absent or empty."""
    error = "Missing required fields"

    def __init__(self, required: Sequence[str], received: Any):
        super().__init__(
            f"Required fields: {', '.join(required)}",
            required=list(required),
            received=received
        )


class InvalidTypeError(ValidationError):
    """Raised when a signal type is not one of the allowed values."""
    error = "Invalid signal type"

    def __init__(self, allowed: Sequence[str], received: Any):
        super().__init__(
            f"Type must be one of: {', '.join(allowed)}",
            allowed=list(allowed),
            received=received
        )


class InvalidNumberError(ValidationError):
    """Raised when a price field is not a finite number."""
    error = "Invalid numeric value"

    def __init__(self, field: str, received: Any):
        super().__init__(
            f"Field '{field}' must be a valid number",
            field=field,
            received=received
        )


class PersistenceError(RelayError):
    """Raised when a store read or write fails."""
    error = "Database operation failed"


class ConfigurationError(RelayError):
    """Raised when a required configuration value is missing."""
    error = "Invalid configuration"


class TransportError(RelayError):
    """Raised when the chat transport fails to deliver or launch."""
    error = "Chat transport failure"


class StartupError(RelayError):
    """Raised when the service cannot reach the ready state."""
    error = "Startup failed"
