"""
Metrics Collection with Prometheus.

Business metrics for the credit ledger.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from time import perf_counter

from prometheus_client import Counter, Histogram, Info

from voiceledger.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    OPERATION = "operation"
    OPERATION_TYPE = "operation_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the ledger.

    Covers:
    - Credit grants (by operation type)
    - Transcriptions recorded
    - Referral redemptions (by outcome) and code issuance
    - Ledger transaction duration and store errors
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""
        self.service_info = Info(
            "voiceledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.service_version,
                "service_name": settings.service_name,
            }
        )

        self.credits_added_total = Counter(
            "voiceledger_credits_added_total",
            "Total credits granted to users",
            [MetricLabels.OPERATION_TYPE.value],
        )

        self.transcriptions_recorded_total = Counter(
            "voiceledger_transcriptions_recorded_total",
            "Total transcriptions written to the ledger",
        )

        self.referral_redemptions_total = Counter(
            "voiceledger_referral_redemptions_total",
            "Referral code redemption attempts",
            [MetricLabels.OUTCOME.value],
        )

        self.referral_codes_issued_total = Counter(
            "voiceledger_referral_codes_issued_total",
            "Referral codes issued or regenerated",
        )

        self.store_errors_total = Counter(
            "voiceledger_store_errors_total",
            "Ledger store failures",
            [MetricLabels.ERROR_TYPE.value],
        )

        self.transaction_duration_seconds = Histogram(
            "voiceledger_transaction_duration_seconds",
            "Ledger operation duration in seconds",
            [MetricLabels.OPERATION.value],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

    @contextmanager
    def track(self, operation: str) -> Iterator[None]:
        """Observe the duration of a ledger operation."""
        if not settings.metrics_enabled:
            yield
            return
        started = perf_counter()
        try:
            yield
        finally:
            self.transaction_duration_seconds.labels(operation=operation).observe(
                perf_counter() - started
            )


# Global metrics instance
metrics = LedgerMetrics()
