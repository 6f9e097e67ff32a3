"""
Signal Relay Service

Relays a Telegram chat's messages into a relational table and serves
messages and trade signals over a small REST API.
"""

__version__ = "1.0.0"
__description__ = "Telegram message relay and trade signal API"
