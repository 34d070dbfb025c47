#!/usr/bin/env python3
"""
cw2mkr Schemas - Pydantic models for CloudWatch queries and Mackerel payloads
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError


class MetricStat(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    metric: Optional[Dict[str, Any]] = Field(None, alias="Metric")
    period: Optional[int] = Field(None, alias="Period")
    stat: Optional[str] = Field(None, alias="Stat")
    unit: Optional[str] = Field(None, alias="Unit")


class MetricDataQuery(BaseModel):
    """One entry of the GetMetricData MetricDataQueries list.

    Fields not modelled here are kept and sent back to the API untouched.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., alias="Id")
    label: Optional[str] = Field(None, alias="Label")
    metric_stat: Optional[MetricStat] = Field(None, alias="MetricStat")
    expression: Optional[str] = Field(None, alias="Expression")
    period: Optional[int] = Field(None, alias="Period")
    return_data: Optional[bool] = Field(None, alias="ReturnData")

    def sampling_period(self) -> Optional[int]:
        """Period in seconds, MetricStat.Period taking precedence."""
        if self.metric_stat is not None and self.metric_stat.period is not None:
            return self.metric_stat.period
        return self.period

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_queries(blob: bytes) -> List[MetricDataQuery]:
    """Parse a JSON array of MetricDataQuery objects."""
    try:
        data = json.loads(blob)
    except (ValueError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"failed to parse query as MetricDataQuery: {e}") from e
    if not isinstance(data, list):
        raise ConfigurationError("failed to parse query as MetricDataQuery: JSON array required")
    try:
        return [MetricDataQuery.model_validate(q) for q in data]
    except ValidationError as e:
        raise ConfigurationError(f"failed to parse query as MetricDataQuery: {e}") from e


class MetricValue(BaseModel):
    name: str = Field(..., min_length=1)
    time: int
    value: float


class HostMetricValue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    host_id: str = Field(..., alias="hostId", min_length=1)
    name: str = Field(..., min_length=1)
    time: int
    value: float

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
