"""cw2mkr - post CloudWatch metrics to Mackerel."""

__version__ = "0.3.0"

from .agent import AgentOptions, run  # noqa: E402
from .label import ParsedLabel, decode_label, encode_label, parse_label  # noqa: E402

__all__ = [
    "AgentOptions",
    "ParsedLabel",
    "decode_label",
    "encode_label",
    "parse_label",
    "run",
]
