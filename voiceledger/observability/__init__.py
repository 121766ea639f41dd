"""
Observability module - Logging and Metrics.
"""

from voiceledger.observability.logging import get_logger, log_context, setup_logging
from voiceledger.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
