"""Group fetched data points by Mackerel destination."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .cloudwatch import FetchResult
from .schemas import HostMetricValue, MetricValue

logger = logging.getLogger("cw2mkr.aggregator")


@dataclass
class GroupedMetrics:
    """Service metric values keyed by service name, plus one list of host metric values."""
    service_metrics: Dict[str, List[MetricValue]] = field(default_factory=dict)
    host_metrics: List[HostMetricValue] = field(default_factory=list)

    def __len__(self) -> int:
        return sum(len(v) for v in self.service_metrics.values()) + len(self.host_metrics)


def build_metrics(results: Dict[str, FetchResult], logger: logging.Logger = logger) -> GroupedMetrics:
    """
    Convert fetch results into Mackerel metric values.

    Values keep the order of the results and of the points within each result.
    """
    grouped = GroupedMetrics()
    for label, result in results.items():
        parsed = result.parsed
        logger.debug("build metrics for %s", label)
        for ts, value in result.points():
            mv = MetricValue(name=parsed.name, time=int(ts.timestamp()), value=value)
            if parsed.is_service:
                grouped.service_metrics.setdefault(parsed.service, []).append(mv)
                logger.debug("service:%s metric:%s", parsed.service, mv)
            else:
                hv = HostMetricValue(host_id=parsed.host_id, name=mv.name, time=mv.time, value=mv.value)
                grouped.host_metrics.append(hv)
                logger.debug("host:%s metric:%s", parsed.host_id, hv)
    return grouped
