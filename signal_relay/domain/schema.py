"""
Domain schemas for signal-relay service.
Defines the stored records, inbound chat events and API envelopes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


def utc_now() -> datetime:
    """Current UTC timestamp."""
    return datetime.now(timezone.utc)


class SignalType(str, Enum):
    """Direction of a trade signal, stored with its localized token."""
    BUY = "COMPRA"
    SELL = "VENDA"

    @classmethod
    def aliases(cls) -> Dict[str, "SignalType"]:
        """Accepted uppercase spellings mapped to members."""
        return {
            "COMPRA": cls.BUY,
            "VENDA": cls.SELL,
            "BUY": cls.BUY,
            "SELL": cls.SELL,
        }

    @classmethod
    def allowed_values(cls) -> List[str]:
        return [member.value for member in cls]


class CaptureMode(str, Enum):
    """Ingestion operating mode."""
    TARGETED = "targeted"
    OPEN = "open"


class Message(BaseModel):
    """Text record ingested from the chat or created through the API."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int = Field(..., description="Store-assigned identifier")
    text: str = Field(..., min_length=1, description="Message text")
    user_id: Optional[str] = Field(None, alias="userId", description="Originating user id")
    chat_id: Optional[str] = Field(None, alias="chatId", description="Originating chat id")
    created_at: datetime = Field(..., alias="createdAt", description="Write timestamp")


class TradeSignal(BaseModel):
    """Trading instruction with its entry, stop-loss and take-profit prices."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int = Field(..., description="Store-assigned identifier")
    symbol: str = Field(..., min_length=1, description="Uppercase instrument symbol")
    type: SignalType = Field(..., description="COMPRA or VENDA")
    entry: float = Field(..., description="Entry price")
    sl: float = Field(..., description="Stop-loss price")
    tp: float = Field(..., description="Take-profit price")
    text: str = Field(..., description="Free-text description")
    created_at: datetime = Field(..., alias="createdAt", description="Write timestamp")


class NormalizedSignal(BaseModel):
    """A submission that passed validation, ready to be persisted."""
    model_config = ConfigDict(extra='forbid')

    symbol: str
    type: SignalType
    entry: float
    sl: float
    tp: float
    text: Optional[str] = None


class ChatEvent(BaseModel):
    """Inbound chat event, independent of the transport library."""
    model_config = ConfigDict(extra='forbid')

    kind: str = Field(..., description="Event kind tag: message or channel_post")
    chat_id: Optional[str] = Field(None, description="Chat identifier as string")
    user_id: Optional[str] = Field(None, description="Sender identifier as string")
    text: Optional[str] = Field(None, description="Text content, if any")
    message_id: Optional[int] = Field(None, description="Transport message id")
    received_at: datetime = Field(default_factory=utc_now)


class Pagination(BaseModel):
    """Pagination block of the message listing envelope."""
    total: int
    page: int
    pages: int
    limit: int


class MessagePage(BaseModel):
    """One page of messages plus pagination details."""
    data: List[Message]
    pagination: Pagination


class BatchMetadata(BaseModel):
    total: int = Field(..., description="Number of signals created")
    errors: int = Field(..., description="Number of rejected items")
    timestamp: datetime = Field(default_factory=utc_now)


class SignalBatchResult(BaseModel):
    """Outcome of processing one or many signal submissions."""
    data: List[TradeSignal] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: BatchMetadata

    def to_response(self) -> Dict[str, Any]:
        """Serialize for the HTTP boundary; errors are omitted when empty."""
        body: Dict[str, Any] = {
            "data": [signal.model_dump(mode="json", by_alias=True) for signal in self.data],
            "metadata": self.metadata.model_dump(mode="json"),
        }
        if self.errors:
            body["errors"] = self.errors
        return body


class HealthStatus(BaseModel):
    """Readiness check response."""
    status: str = Field(..., description="overall status: healthy, unhealthy")
    state: str = Field(..., description="Lifecycle state")
    timestamp: datetime = Field(default_factory=utc_now)
    checks: Dict[str, str] = Field(default_factory=dict, description="Individual check results")
    ingestion: Optional[Dict[str, Any]] = None


class IngestionStats(BaseModel):
    """Counters for chat event ingestion."""

    total_received: int = Field(default=0, description="Events delivered by the transport")
    total_stored: int = Field(default=0, description="Events written to the store")
    total_filtered: int = Field(default=0, description="Events discarded by the filter rule")
    total_errors: int = Field(default=0, description="Events dropped on store failure")

    def increment_received(self) -> None:
        self.total_received += 1

    def increment_stored(self) -> None:
        self.total_stored += 1

    def increment_filtered(self) -> None:
        self.total_filtered += 1

    def increment_errors(self) -> None:
        self.total_errors += 1
