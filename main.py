#!/usr/bin/env python3
"""logsegment — group raw log lines into records and print them as NDJSON."""

import argparse
import logging
import os
import sys

from logsegment.config import ConfigError, load_config, load_yaml_config
from logsegment.formatter import format_json
from logsegment.segmenter import Segmenter
from logsegment.sources import SourceReadError, open_source

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="logsegment",
        description="Split a log into multi-line records and print them as NDJSON.",
    )
    parser.add_argument(
        "path",
        nargs="?",
        help="Log file to read (default: standard input, also '-')",
    )
    parser.add_argument(
        "--follow", "-f",
        action="store_true",
        default=None,
        help="Follow a growing file or live stream (like tail -f)",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        help="Bounded wait per read in follow mode before flushing (default: 50)",
    )
    parser.add_argument(
        "--backlog",
        type=int,
        help="Lines to show from the end of the file when following (default: 100)",
    )
    parser.add_argument(
        "--encoding",
        help="Input text encoding (default: utf-8)",
    )
    parser.add_argument(
        "--command",
        nargs=argparse.REMAINDER,
        help="Read the standard output of this command instead of a file",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--log-level",
        help="Diagnostics level on stderr (default: WARNING)",
    )
    return parser


def run(config) -> int:
    """Segment the configured source and write records to stdout."""
    if config.path not in (None, "-") and not config.follow and not os.path.isfile(config.path):
        logger.error("File not found: %s", config.path)
        return 1

    try:
        with open_source(config) as source:
            segmenter = Segmenter(source)
            for record in segmenter:
                print(format_json(record), flush=config.follow)
            logger.info("Done: %d records from %d lines",
                        segmenter.records_emitted, segmenter.lines_consumed)
    except SourceReadError as e:
        logger.error("Read failed: %s", e)
        return 2
    return 0


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    try:
        config = load_config(args, load_yaml_config(args.config))
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [SEGMENTER] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    return run(config)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
