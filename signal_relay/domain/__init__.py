"""
Domain layer for signal-relay service.

Contains record models, validation rules and interfaces.
"""

from .schema import (
    CaptureMode,
    ChatEvent,
    IngestionStats,
    Message,
    SignalType,
    TradeSignal,
)
from .ports import ChatTransport, RecordStore

__all__ = [
    "CaptureMode",
    "ChatEvent",
    "IngestionStats",
    "Message",
    "SignalType",
    "TradeSignal",
    "ChatTransport",
    "RecordStore",
]
