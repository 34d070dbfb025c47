"""
cw2mkr error types.

Label errors are contained per label, publish errors per chunk.
Fetch and configuration errors abort the run.
"""

from typing import Optional


class Cw2MkrError(Exception):
    """Base class for all cw2mkr errors."""


class ConfigurationError(Cw2MkrError):
    """Missing credential, unreadable or invalid query file, bad time window."""


class LabelError(Cw2MkrError, ValueError):
    """A label string could not be decoded."""

    def __init__(self, message: str, label: str):
        super().__init__(message)
        self.label = label


class InvalidLabelFormat(LabelError):
    def __init__(self, label: str):
        super().__init__(f"invalid label format: {label!r}", label)


class UnknownLabelType(LabelError):
    def __init__(self, label_type: str, label: str):
        super().__init__(f"unknown label type {label_type!r} in label {label!r}", label)
        self.label_type = label_type


class FetchFailure(Cw2MkrError):
    """GetMetricData failed; partial results are discarded."""


class FetchCancelled(FetchFailure):
    """Cancellation observed between pagination requests."""


class PublishFailure(Cw2MkrError):
    """A single write call to Mackerel failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
