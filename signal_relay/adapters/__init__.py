"""
Adapters layer for signal-relay.

Contains the Telethon-based chat transport and message mapping.
"""

from .mapper import TelethonMessageMapper
from .telethon_client import TelethonBotTransport

__all__ = [
    "TelethonMessageMapper",
    "TelethonBotTransport"
]
