"""Post grouped metric values to Mackerel in bounded batches."""

import logging
import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, TypeVar

from .aggregator import GroupedMetrics
from .errors import PublishFailure
from .mackerel import MackerelClient

logger = logging.getLogger("cw2mkr.publisher")

# Mackerel accepts at most 100 values per tsdb request
BATCH_SIZE = 100

T = TypeVar("T")


def chunked(values: Sequence[T], size: int = BATCH_SIZE) -> Iterator[Tuple[int, int, List[T]]]:
    """Yield (start, end, values[start:end]) slices of at most size values."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(values), size):
        end = min(start + size, len(values))
        yield start, end, list(values[start:end])


@dataclass
class PublishSummary:
    posted: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0


class BatchPublisher:
    """
    Posts service and host metric values, one request per batch.

    A failed batch is logged and the remaining batches are still posted.
    Nothing is retried.
    """

    def __init__(self, client: MackerelClient, logger: logging.Logger = logger, batch_size: int = BATCH_SIZE):
        if not 0 < batch_size <= BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {BATCH_SIZE}")
        self.client = client
        self.logger = logger
        self.batch_size = batch_size

    def publish(self, grouped: GroupedMetrics, cancel_event: Optional[threading.Event] = None) -> PublishSummary:
        summary = PublishSummary()

        for service, values in grouped.service_metrics.items():
            for start, end, batch in chunked(values, self.batch_size):
                if self._cancelled(cancel_event, summary, len(values) - start):
                    break
                self.logger.info("PostServiceMetricValues %s values[%d:%d]", service, start, end)
                try:
                    self.client.post_service_metric_values(service, batch)
                    summary.posted += len(batch)
                except PublishFailure as e:
                    summary.failed += len(batch)
                    self.logger.warning("failed to PostServiceMetricValues service:%s %s", service, e)

        values = grouped.host_metrics
        for start, end, batch in chunked(values, self.batch_size):
            if self._cancelled(cancel_event, summary, len(values) - start):
                break
            self.logger.info("PostHostMetricValues values[%d:%d]", start, end)
            try:
                self.client.post_host_metric_values(batch)
                summary.posted += len(batch)
            except PublishFailure as e:
                summary.failed += len(batch)
                self.logger.warning("failed to PostHostMetricValues %s", e)

        return summary

    def _cancelled(self, cancel_event: Optional[threading.Event], summary: PublishSummary, remaining: int) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        if remaining > 0:
            self.logger.warning("publish cancelled, %d value(s) not posted", remaining)
        summary.skipped += remaining
        return True
