"""
Infrastructure layer for signal-relay service.

Contains the relational implementation of the record store.
"""

from .database import Database
from .repository import SqlRecordStore

__all__ = [
    "Database",
    "SqlRecordStore"
]
