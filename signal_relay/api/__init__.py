"""
API layer for signal-relay service.

Contains the HTTP endpoints over messages and trade signals.
"""

from .http_server import RelayAPI

__all__ = ["RelayAPI"]
