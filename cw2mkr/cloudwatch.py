"""
CloudWatch fetcher.

Runs GetMetricData for the whole query list, follows NextToken until the
last page and collects the results per label. Labels with the emit_zero
option get a 0 for every expected period that CloudWatch returned no
data for.

All pages are held in memory until the fetch completes; there is no
streaming of large result sets.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .errors import FetchCancelled, FetchFailure
from .label import ParsedLabel, parse_label
from .schemas import MetricDataQuery

logger = logging.getLogger("cw2mkr.cloudwatch")

DEFAULT_WINDOW = timedelta(minutes=3)


def as_utc(ts: datetime) -> datetime:
    """Timezone-aware UTC datetime. Naive values are taken as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))

    @classmethod
    def default(cls, now: Optional[datetime] = None) -> "TimeWindow":
        """The last three minutes."""
        now = now or datetime.now(timezone.utc)
        return cls(now - DEFAULT_WINDOW, now)

    def ticks(self, period: timedelta) -> Iterator[datetime]:
        """Expected sample times: start truncated to the minute, stepping by period, end exclusive."""
        if period <= timedelta(0):
            return
        t = self.start.replace(second=0, microsecond=0)
        while t < self.end:
            yield t
            t += period


@dataclass
class FetchResult:
    """Data points of one label, ordered by timestamp, one value per timestamp."""
    label: str
    parsed: ParsedLabel
    timestamps: List[datetime] = field(default_factory=list)
    values: List[float] = field(default_factory=list)

    def points(self) -> List[Tuple[datetime, float]]:
        return list(zip(self.timestamps, self.values))

    def merge(self, timestamps: List[datetime], values: List[float]) -> None:
        """Add points from another page. A repeated timestamp keeps the newer value."""
        merged = dict(self.points())
        for ts, value in zip(timestamps, values):
            merged[as_utc(ts)] = float(value)
        ordered = sorted(merged.items())
        self.timestamps = [ts for ts, _ in ordered]
        self.values = [v for _, v in ordered]

    def fill_zero(self, window: TimeWindow, period: timedelta) -> int:
        """
        Add a 0 for every expected tick of the window without a data point.

        A label with no data at all still gets points; when the window
        yields no ticks a single 0 is placed at the window end.

        Returns:
            Number of points added
        """
        present = set(self.timestamps)
        missing = [t for t in window.ticks(period) if t not in present]
        if not missing and not self.timestamps:
            missing = [window.end.replace(microsecond=0)]
        if missing:
            self.merge(missing, [0.0] * len(missing))
        return len(missing)


class CloudWatchFetcher:
    """Fetches metric data from CloudWatch with GetMetricData."""

    def __init__(self, client: Any, logger: logging.Logger = logger):
        """
        Args:
            client: boto3 CloudWatch client
            logger: destination for debug/warning output
        """
        self.client = client
        self.logger = logger

    def fetch(
        self,
        window: TimeWindow,
        queries: List[MetricDataQuery],
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, FetchResult]:
        """
        Fetch all pages for the queries and window, then fill gaps.

        Args:
            window: time range to query
            queries: parsed MetricDataQuery list
            cancel_event: checked before every page request

        Returns:
            FetchResult per label string, in first-seen order

        Raises:
            FetchFailure: any page failed; nothing is returned
            FetchCancelled: cancel_event was set during pagination
        """
        results = self._fetch_pages(window, queries, cancel_event)
        self._fill_missing(window, queries, results)
        return results

    def _fetch_pages(
        self,
        window: TimeWindow,
        queries: List[MetricDataQuery],
        cancel_event: Optional[threading.Event],
    ) -> Dict[str, FetchResult]:
        request_queries = [q.to_api() for q in queries]
        results: Dict[str, FetchResult] = {}
        next_token: Optional[str] = None
        page = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelled(f"GetMetricData cancelled after {page} page(s)")

            params: Dict[str, Any] = {
                "MetricDataQueries": request_queries,
                "StartTime": window.start,
                "EndTime": window.end,
            }
            if next_token:
                self.logger.debug("GetMetricData nextToken:%s", next_token)
                params["NextToken"] = next_token
            self.logger.debug("GetMetricData from %s to %s", window.start, window.end)

            try:
                res = self.client.get_metric_data(**params)
            except (BotoCoreError, ClientError) as e:
                raise FetchFailure(f"failed to GetMetricData: {e}") from e
            page += 1

            for r in res.get("MetricDataResults", []):
                label = r.get("Label", "")
                parsed, err = parse_label(label, self.logger)
                if err is not None:
                    self.logger.warning("%s, result dropped", err)
                    continue
                if r.get("StatusCode") not in (None, "Complete"):
                    self.logger.debug("result %s status %s", label, r.get("StatusCode"))

                result = results.get(label)
                if result is None:
                    result = results[label] = FetchResult(label=label, parsed=parsed)
                result.merge(r.get("Timestamps", []), r.get("Values", []))

            next_token = res.get("NextToken")
            if not next_token:
                break

        self.logger.debug("GetMetricData finished: %d page(s), %d label(s)", page, len(results))
        return results

    def _fill_missing(
        self,
        window: TimeWindow,
        queries: List[MetricDataQuery],
        results: Dict[str, FetchResult],
    ) -> None:
        for query in queries:
            if query.label is None:
                continue
            parsed, err = parse_label(query.label, self.logger)
            if err is not None:
                self.logger.warning("%s, query %s skipped", err, query.id)
                continue
            period = query.sampling_period()
            if not parsed.emit_zero or not period or period <= 0:
                continue
            if query.return_data is False:
                self.logger.debug("%s has ReturnData false, not filled", query.label)
                continue

            result = results.get(query.label)
            if result is None:
                self.logger.debug("no data points for %s", query.label)
                result = results[query.label] = FetchResult(label=query.label, parsed=parsed)
            self.logger.debug("filling missing data points for %s (period %ds)", query.label, period)
            added = result.fill_zero(window, timedelta(seconds=period))
            self.logger.debug("filled %d point(s) for %s", added, query.label)
