#!/usr/bin/env python3
"""
cw2mkr command line

    cw2mkr [--start-time N] [--end-time N] [--log-level LEVEL] [--config FILE] QUERY_FILE

QUERY_FILE is a JSON array of CloudWatch MetricDataQuery objects. The Mackerel
API key is read from MACKEREL_APIKEY (a .env file in the working directory is
honored) or from the config file.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .agent import run
from .config import LOG_LEVELS, AgentConfig
from .errors import ConfigurationError, Cw2MkrError

logger = logging.getLogger("cw2mkr")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cw2mkr", description="Post CloudWatch metrics to Mackerel"
    )
    parser.add_argument("query_file", type=Path,
                        help="MetricDataQuery JSON file")
    parser.add_argument("--start-time", dest="start_time", type=int,
                        help="start time (unix seconds, or negative seconds relative to now)")
    parser.add_argument("--end-time", dest="end_time", type=int,
                        help="end time (unix seconds, or negative seconds relative to now)")
    parser.add_argument("--log-level", dest="log_level", choices=list(LOG_LEVELS),
                        help="log level (default: warn)")
    parser.add_argument("--config", "-c", type=Path,
                        help="optional YAML configuration file")
    parser.add_argument("--region",
                        help="AWS region for CloudWatch")
    parser.add_argument("--profile",
                        help="AWS shared credentials profile")
    return parser


def setup_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from some libraries
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def read_query_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"MetricDataQuery JSON file required: {e}") from e


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def handler(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling...")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        config = AgentConfig.from_file(args.config).override_with_args(args).override_with_env()
        setup_logging(config.log_level_value())
        opt = config.to_options(read_query_file(args.query_file))

        cancel_event = threading.Event()
        install_signal_handlers(cancel_event)
        run(opt, cancel_event=cancel_event, logger=logger)
    except Cw2MkrError as e:
        print(str(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
