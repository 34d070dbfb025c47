"""Unit tests for batch publishing

Tests batching of metric values and failure isolation including:
- chunk sizes and order
- per-batch failures
- cancellation between batches
"""
import logging
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from cw2mkr.aggregator import GroupedMetrics
from cw2mkr.errors import PublishFailure
from cw2mkr.mackerel import MackerelClient
from cw2mkr.publisher import BATCH_SIZE, BatchPublisher, chunked
from cw2mkr.schemas import HostMetricValue, MetricValue


def service_values(n, name="foo"):
    return [MetricValue(name=name, time=1700000000 + i * 60, value=float(i)) for i in range(n)]


def host_values(n, host_id="i-1"):
    return [HostMetricValue(host_id=host_id, name="cpu", time=1700000000 + i * 60, value=float(i)) for i in range(n)]


def batch_sizes(mock_method, arg_index):
    return [len(c.args[arg_index]) for c in mock_method.call_args_list]


class TestChunked:
    """Test slicing of value lists"""

    def test_250_values(self):
        chunks = list(chunked(list(range(250)), 100))
        assert [(s, e) for s, e, _ in chunks] == [(0, 100), (100, 200), (200, 250)]
        assert [len(c) for _, _, c in chunks] == [100, 100, 50]

    def test_exact_multiple(self):
        assert [len(c) for _, _, c in chunked(list(range(200)), 100)] == [100, 100]

    def test_empty(self):
        assert list(chunked([], 100)) == []

    def test_order_preserved(self):
        flattened = [x for _, _, c in chunked(list(range(7)), 3) for x in c]
        assert flattened == list(range(7))

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))


class TestBatchPublisher:
    """Test posting grouped metrics"""

    def test_service_values_in_batches_of_100(self, mackerel_client):
        grouped = GroupedMetrics(service_metrics={"prod": service_values(250)})

        summary = BatchPublisher(mackerel_client).publish(grouped)

        assert batch_sizes(mackerel_client.post_service_metric_values, 1) == [100, 100, 50]
        assert all(c.args[0] == "prod" for c in mackerel_client.post_service_metric_values.call_args_list)
        assert summary.posted == 250
        assert summary.ok

    def test_each_service_batched_separately(self, mackerel_client):
        grouped = GroupedMetrics(service_metrics={"prod": service_values(120), "stg": service_values(30)})

        BatchPublisher(mackerel_client).publish(grouped)

        calls = mackerel_client.post_service_metric_values.call_args_list
        assert [(c.args[0], len(c.args[1])) for c in calls] == [("prod", 100), ("prod", 20), ("stg", 30)]

    def test_host_values_batched_across_hosts(self, mackerel_client):
        grouped = GroupedMetrics(host_metrics=host_values(60, "i-1") + host_values(60, "i-2"))

        BatchPublisher(mackerel_client).publish(grouped)

        assert batch_sizes(mackerel_client.post_host_metric_values, 0) == [100, 20]
        first = mackerel_client.post_host_metric_values.call_args_list[0].args[0]
        assert {v.host_id for v in first} == {"i-1", "i-2"}

    def test_no_batch_exceeds_limit(self, mackerel_client):
        grouped = GroupedMetrics(
            service_metrics={"a": service_values(1001), "b": service_values(99)},
            host_metrics=host_values(333),
        )
        BatchPublisher(mackerel_client).publish(grouped)

        sizes = batch_sizes(mackerel_client.post_service_metric_values, 1)
        sizes += batch_sizes(mackerel_client.post_host_metric_values, 0)
        assert max(sizes) <= BATCH_SIZE
        assert sum(sizes) == 1001 + 99 + 333

    def test_empty_grouped_posts_nothing(self, mackerel_client):
        summary = BatchPublisher(mackerel_client).publish(GroupedMetrics())
        mackerel_client.post_service_metric_values.assert_not_called()
        mackerel_client.post_host_metric_values.assert_not_called()
        assert summary.posted == 0

    def test_failed_batch_does_not_stop_others(self, mackerel_client, caplog):
        mackerel_client.post_service_metric_values.side_effect = [
            None,
            PublishFailure("HTTP 500 from /api/v0/services/prod/tsdb", status=500),
            None,
            None,
        ]
        grouped = GroupedMetrics(
            service_metrics={"prod": service_values(250), "stg": service_values(10)},
            host_metrics=host_values(5),
        )

        with caplog.at_level(logging.WARNING):
            summary = BatchPublisher(mackerel_client).publish(grouped)

        assert mackerel_client.post_service_metric_values.call_count == 4
        mackerel_client.post_host_metric_values.assert_called_once()
        assert summary.posted == 100 + 50 + 10 + 5
        assert summary.failed == 100
        assert not summary.ok
        assert "failed to PostServiceMetricValues service:prod" in caplog.text

    def test_failed_host_batch_is_logged(self, mackerel_client, caplog):
        mackerel_client.post_host_metric_values.side_effect = [PublishFailure("boom"), None]
        grouped = GroupedMetrics(host_metrics=host_values(150))

        summary = BatchPublisher(mackerel_client).publish(grouped)

        assert mackerel_client.post_host_metric_values.call_count == 2
        assert summary.failed == 100
        assert summary.posted == 50
        assert "failed to PostHostMetricValues" in caplog.text

    def test_cancel_stops_remaining_batches(self, mackerel_client):
        cancel = threading.Event()

        def post(service, values):
            cancel.set()

        mackerel_client.post_service_metric_values.side_effect = post
        grouped = GroupedMetrics(
            service_metrics={"prod": service_values(250), "stg": service_values(10)},
            host_metrics=host_values(5),
        )

        summary = BatchPublisher(mackerel_client).publish(grouped, cancel)

        assert mackerel_client.post_service_metric_values.call_count == 1
        mackerel_client.post_host_metric_values.assert_not_called()
        assert summary.posted == 100
        assert summary.skipped == 150 + 10 + 5

    def test_batch_size_limit(self, mackerel_client):
        with pytest.raises(ValueError):
            BatchPublisher(mackerel_client, batch_size=101)

    def test_smaller_batch_size(self, mackerel_client):
        grouped = GroupedMetrics(host_metrics=host_values(25))
        BatchPublisher(mackerel_client, batch_size=10).publish(grouped)
        assert batch_sizes(mackerel_client.post_host_metric_values, 0) == [10, 10, 5]


class TestBatchPublisherTransportErrors:
    """Test that transport errors of the real client stay per batch"""

    @patch('urllib.request.urlopen')
    def test_timeout_and_bad_body_do_not_stop_others(self, mock_urlopen, caplog):
        good = MagicMock()
        good.read.return_value = b'{"success": true}'
        good.__enter__.return_value = good
        bad_body = MagicMock()
        bad_body.read.return_value = b"<html>bad gateway</html>"
        bad_body.__enter__.return_value = bad_body
        mock_urlopen.side_effect = [socket.timeout("The read operation timed out"), bad_body, good]

        grouped = GroupedMetrics(
            service_metrics={"prod": service_values(10), "stg": service_values(10)},
            host_metrics=host_values(5),
        )
        with caplog.at_level(logging.WARNING):
            summary = BatchPublisher(MackerelClient(api_key="test_key")).publish(grouped)

        assert mock_urlopen.call_count == 3
        assert summary.failed == 20
        assert summary.posted == 5
        assert "failed to PostServiceMetricValues service:prod" in caplog.text
        assert "failed to PostServiceMetricValues service:stg" in caplog.text
