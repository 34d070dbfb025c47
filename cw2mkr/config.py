import argparse
import logging
import os
import time
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .agent import AgentOptions
from .errors import ConfigurationError
from .mackerel import DEFAULT_BASE_URL

logger = logging.getLogger("cw2mkr.config")

API_KEY_ENV = "MACKEREL_APIKEY"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def parse_time_flag(value: Optional[int], now: Optional[float] = None) -> Optional[datetime]:
    """
    Convert a --start-time/--end-time value.

    Positive values are unix seconds, negative values are offsets in seconds
    from now, 0 or None means unset.
    """
    if not value:
        return None
    if value < 0:
        now = time.time() if now is None else now
        value = int(now) + value
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass
class AgentConfig:
    """Agent configuration with defaults"""
    log_level: str = "warn"
    api_key: str = ""
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    mackerel_url: str = DEFAULT_BASE_URL
    timeout: int = 10
    start_time: int = 0
    end_time: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
        """Create config from a dictionary, ignoring unknown keys"""
        known_fields = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known_fields)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known_fields})

    @classmethod
    def from_file(cls, config_path: Optional[Path]) -> "AgentConfig":
        """Load configuration from YAML file; no path means defaults"""
        if config_path is None:
            return cls()
        if not config_path.exists():
            raise ConfigurationError(f"config file not found: {config_path}")
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"failed to load config from {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {config_path} must contain a mapping")
        logger.debug(f"Loaded config from {config_path}: {sorted(data)}")
        return cls.from_dict(data)

    def override_with_args(self, args: argparse.Namespace) -> "AgentConfig":
        """Override config with command line arguments if provided"""
        self.log_level = args.log_level if args.log_level is not None else self.log_level
        self.aws_region = args.region if args.region is not None else self.aws_region
        self.aws_profile = args.profile if args.profile is not None else self.aws_profile
        self.start_time = args.start_time if args.start_time is not None else self.start_time
        self.end_time = args.end_time if args.end_time is not None else self.end_time
        return self

    def override_with_env(self, environ: Optional[Dict[str, str]] = None) -> "AgentConfig":
        """Take the API key from MACKEREL_APIKEY when the config file has none"""
        environ = os.environ if environ is None else environ
        if not self.api_key:
            self.api_key = environ.get(API_KEY_ENV, "")
        return self

    def log_level_value(self) -> int:
        try:
            return LOG_LEVELS[self.log_level.lower()]
        except KeyError:
            raise ConfigurationError(
                f"invalid log level {self.log_level!r} (choose from {', '.join(LOG_LEVELS)})"
            ) from None

    def to_options(self, query: bytes, now: Optional[float] = None) -> AgentOptions:
        return AgentOptions(
            query=query,
            api_key=self.api_key,
            start_time=parse_time_flag(self.start_time, now),
            end_time=parse_time_flag(self.end_time, now),
            aws_region=self.aws_region,
            aws_profile=self.aws_profile,
            mackerel_url=self.mackerel_url,
            timeout=self.timeout,
        )
