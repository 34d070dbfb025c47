"""Pytest configuration and shared fixtures"""
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from cw2mkr.cloudwatch import TimeWindow
from cw2mkr.mackerel import MackerelClient


T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def page(results, next_token=None):
    """Build a GetMetricData response page"""
    res = {"MetricDataResults": results, "Messages": []}
    if next_token:
        res["NextToken"] = next_token
    return res


def metric_id(label):
    return "m_" + "".join(c if c.isalnum() else "_" for c in label)


def result(label, points, status="Complete"):
    """Build one MetricDataResults entry from (offset_seconds, value) pairs"""
    return {
        "Id": metric_id(label),
        "Label": label,
        "Timestamps": [T0 + timedelta(seconds=s) for s, _ in points],
        "Values": [v for _, v in points],
        "StatusCode": status,
    }


def query(label, period=60, query_id=None):
    """Build one MetricDataQuery dict"""
    return {
        "Id": query_id or metric_id(label),
        "Label": label,
        "MetricStat": {
            "Metric": {
                "Namespace": "AWS/ELB",
                "MetricName": "RequestCount",
                "Dimensions": [{"Name": "LoadBalancerName", "Value": "prod"}],
            },
            "Period": period,
            "Stat": "Sum",
        },
    }


@pytest.fixture
def window():
    """Three minute window starting on a minute boundary"""
    return TimeWindow(T0, T0 + timedelta(seconds=180))


@pytest.fixture
def cloudwatch_client():
    """CloudWatch client mock; set get_metric_data.side_effect to a list of pages"""
    client = MagicMock()
    client.get_metric_data.return_value = page([])
    return client


@pytest.fixture
def mackerel_client():
    """Mackerel client mock with the real client's interface"""
    return MagicMock(spec=MackerelClient)


@pytest.fixture
def query_blob():
    return json.dumps([
        query("service=prod:elb.requests", query_id="q1"),
        query("host=i-0123:elb.requests;emit_zero", query_id="q2"),
    ]).encode()
