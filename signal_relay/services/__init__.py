"""
Service layer for signal-relay.

Contains ingestion, signal submission and message operations.
"""

from .ingestion_service import MessageIngestionService
from .message_service import MessageService
from .signal_service import TradeSignalService

__all__ = ["MessageIngestionService", "MessageService", "TradeSignalService"]
