"""
Telemetry and observability for signal-relay service.

Contains logging and metrics helpers.
"""

from .logger import setup_logging, new_correlation_id, CorrelationFilter, JSONFormatter, MetricsLogger

__all__ = [
    "setup_logging",
    "new_correlation_id",
    "CorrelationFilter",
    "JSONFormatter",
    "MetricsLogger"
]
