"""
Structured metric labels.

A CloudWatch query label carries the Mackerel destination and metric name:

    service=<service>:<metric name>[;<option>]...
    host=<host id>:<metric name>[;<option>]...

Supported options:
    emit_zero   post 0 for every expected period that returned no data
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import InvalidLabelFormat, LabelError, UnknownLabelType

logger = logging.getLogger("cw2mkr.label")

OPTION_EMIT_ZERO = "emit_zero"


@dataclass(frozen=True)
class ParsedLabel:
    """Decoded label. Exactly one of service/host_id is set."""
    service: str = ""
    host_id: str = ""
    name: str = ""
    emit_zero: bool = False

    @property
    def is_service(self) -> bool:
        return self.service != ""

    def __str__(self) -> str:
        return encode_label(self)


def encode_label(label: ParsedLabel) -> str:
    """Serialize a ParsedLabel back to its string form."""
    if label.service:
        s = f"service={label.service}:{label.name}"
    else:
        s = f"host={label.host_id}:{label.name}"
    if label.emit_zero:
        s += ";" + OPTION_EMIT_ZERO
    return s


def decode_label(label: str, log: Optional[logging.Logger] = None) -> ParsedLabel:
    """
    Parse a label string.

    Args:
        label: label string as set on the MetricDataQuery
        log: logger receiving warnings about unknown or repeated options,
            which are dropped and so do not survive encode_label

    Returns:
        ParsedLabel

    Raises:
        InvalidLabelFormat: separators missing or type/id/name empty
        UnknownLabelType: type is neither "service" nor "host"
    """
    log = log or logger

    head, sep, name_with_opts = label.partition(":")
    if not sep:
        raise InvalidLabelFormat(label)
    label_type, sep, label_id = head.partition("=")
    if not sep:
        raise InvalidLabelFormat(label)

    name, *options = name_with_opts.split(";")
    if not label_type or not label_id or not name:
        raise InvalidLabelFormat(label)

    emit_zero = False
    for opt in options:
        if opt == OPTION_EMIT_ZERO and not emit_zero:
            emit_zero = True
        elif opt == OPTION_EMIT_ZERO:
            log.warning("duplicate option %s in label %s", opt, label)
        else:
            log.warning("unknown option %s in label %s", opt, label)

    if label_type == "service":
        return ParsedLabel(service=label_id, name=name, emit_zero=emit_zero)
    if label_type == "host":
        return ParsedLabel(host_id=label_id, name=name, emit_zero=emit_zero)
    raise UnknownLabelType(label_type, label)


def parse_label(
    label: str, log: Optional[logging.Logger] = None
) -> Tuple[Optional[ParsedLabel], Optional[LabelError]]:
    """Decode without raising. Returns (parsed, None) or (None, error)."""
    try:
        return decode_label(label, log), None
    except LabelError as e:
        return None, e
