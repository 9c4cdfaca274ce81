"""
Observability module - Logging, Metrics, and Tracing.
"""

from sacavia_ledger.observability.logging import get_logger, log_context, setup_logging
from sacavia_ledger.observability.metrics import metrics
from sacavia_ledger.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
