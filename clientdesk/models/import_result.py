from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime

from .error_record import ErrorRecord

"""Result models for the client import commit.

ImportResult is the final ``{created, failed}`` tally handed back to the
caller, enriched with the collected per-row errors and batch timing
statistics used for the SUMMARY line.
"""

__all__ = [
    "BatchMetrics",
    "BatchStatsAccumulator",
    "ImportResult",
]


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics for a single committed batch."""
    batch_index: int  # 0-based batch number
    batch_size: int  # rows in this batch
    created: int
    failed: int
    fell_back: bool  # True when bulk create failed and rows were created one by one
    elapsed_seconds: float


@dataclass(frozen=True)
class ImportResult:
    """Aggregated outcome of an import commit.

    No rollback is ever performed: ``created`` rows stay created even when
    later rows fail.
    """
    created: int
    failed: int
    total_rows: int
    batches: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    fallback_batches: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return (self.created + self.failed) / self.elapsed_seconds

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


class BatchStatsAccumulator:
    """Collects per-batch timing and computes summary statistics."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []
        self.fallbacks = 0

    def add(self, metrics: BatchMetrics) -> None:
        self.batch_times.append(metrics.elapsed_seconds)
        if metrics.fell_back:
            self.fallbacks += 1

    def get_stats(self) -> tuple[int, float, float]:
        """Return ``(total_batches, avg_batch_seconds, p95_batch_seconds)``."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 19th of 20 inclusive quantiles
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
