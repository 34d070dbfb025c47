"""
cw2mkr agent

Flow:
- resolve options (default time window, API key check) before any network call
- parse the MetricDataQuery JSON
- GetMetricData from CloudWatch, following NextToken, filling emit_zero gaps
- group values per Mackerel service / host
- post values to Mackerel in batches of 100
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError

from .aggregator import build_metrics
from .cloudwatch import CloudWatchFetcher, TimeWindow
from .errors import ConfigurationError
from .mackerel import DEFAULT_BASE_URL, MackerelClient
from .publisher import BatchPublisher, PublishSummary
from .schemas import parse_queries

logger = logging.getLogger("cw2mkr.agent")


@dataclass
class AgentOptions:
    """Inputs of one run. Unset times default to the last three minutes."""
    query: bytes
    api_key: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    mackerel_url: str = DEFAULT_BASE_URL
    timeout: int = 10

    def resolve(self, now: Optional[datetime] = None) -> "AgentOptions":
        """Return a copy with the time window filled in; validate credential and window."""
        if not self.api_key:
            raise ConfigurationError("API key is required (set MACKEREL_APIKEY)")
        default = TimeWindow.default(now)
        start = self.start_time or default.start
        end = self.end_time or default.end
        window = TimeWindow(start, end)
        if window.start >= window.end:
            raise ConfigurationError(f"start time {window.start} must be before end time {window.end}")
        return replace(self, start_time=window.start, end_time=window.end)

    @property
    def window(self) -> TimeWindow:
        if self.start_time is None or self.end_time is None:
            raise ConfigurationError("time window is not resolved")
        return TimeWindow(self.start_time, self.end_time)


def new_cloudwatch_client(opt: AgentOptions) -> Any:
    try:
        session = boto3.session.Session(region_name=opt.aws_region, profile_name=opt.aws_profile)
        return session.client("cloudwatch")
    except BotoCoreError as e:
        raise ConfigurationError(f"failed to create CloudWatch client: {e}") from e


def run(
    opt: AgentOptions,
    cloudwatch_client: Any = None,
    mackerel_client: Optional[MackerelClient] = None,
    cancel_event: Optional[threading.Event] = None,
    logger: logging.Logger = logger,
) -> PublishSummary:
    """
    Fetch metrics from CloudWatch by MetricDataQuery and post them to Mackerel.

    Args:
        opt: run options
        cloudwatch_client: boto3 CloudWatch client, created from a new session if None
        mackerel_client: Mackerel client, created from opt if None
        cancel_event: stops pagination (no publish) or the remaining publish batches
        logger: destination for all component logging

    Returns:
        Counts of posted, failed and skipped values

    Raises:
        ConfigurationError: missing API key, bad window or invalid query
        FetchFailure: GetMetricData failed or was cancelled
    """
    opt = opt.resolve()
    queries = parse_queries(opt.query)
    logger.debug("query %r", queries)

    if mackerel_client is None:
        mackerel_client = MackerelClient(opt.api_key, base_url=opt.mackerel_url, timeout=opt.timeout)
    if cloudwatch_client is None:
        cloudwatch_client = new_cloudwatch_client(opt)

    results = CloudWatchFetcher(cloudwatch_client, logger=logger).fetch(opt.window, queries, cancel_event)
    logger.debug("results %r", results)

    grouped = build_metrics(results, logger=logger)
    logger.debug("service metrics %r", grouped.service_metrics)
    logger.debug("host metrics %r", grouped.host_metrics)

    summary = BatchPublisher(mackerel_client, logger=logger).publish(grouped, cancel_event)
    logger.info(
        "posted %d value(s), %d failed, %d skipped", summary.posted, summary.failed, summary.skipped
    )
    return summary
