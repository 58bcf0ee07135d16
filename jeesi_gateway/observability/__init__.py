"""
Observability module - Logging, Metrics, and Tracing.
"""

from jeesi_gateway.observability.logging import get_logger, log_context, setup_logging
from jeesi_gateway.observability.metrics import metrics
from jeesi_gateway.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
