"""Command-line entry for ics_aggregator.

Loads configuration from the environment, performs a single refresh of every
configured calendar and prints the query (or keyword search) result as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from . import init_logging
from .calendar.datetime_utils import parse_query_date, serialize_datetime_utc, utc_today
from .calendar.fetcher import ICSFetcher
from .core.config_manager import AggregatorSettings, ConfigManager
from .core.http_client import close_all_clients
from .core.logging_config import configure_logging
from .domain.event_store import DEFAULT_QUERY_LIMIT, EventStore
from .exceptions import ConfigurationError, InvalidQueryError

logger = logging.getLogger(__name__)

DEFAULT_QUERY_DAYS = 7


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the ics_aggregator CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="ics_aggregator",
        description="Fetch configured ICS calendars once and print events as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Calendars are configured with CALENDAR_<NAME>=<url> environment variables
(or a .env file in the current directory).

Examples:
  python -m ics_aggregator                                  # Next 7 days
  python -m ics_aggregator --start 2024-01-01 --end 2024-02-01 --limit 10
  python -m ics_aggregator --search standup                 # Keyword search
        """,
    )
    parser.add_argument("--start", metavar="DATE", help="Range start, ISO 8601 (default: today UTC)")
    parser.add_argument("--end", metavar="DATE", help="Range end, exclusive (default: start + 7 days)")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        metavar="N",
        help=f"Maximum number of events (default: {DEFAULT_QUERY_LIMIT} for range queries)",
    )
    parser.add_argument("--search", metavar="KEYWORD", help="Case-insensitive summary search")
    parser.add_argument("--env-file", type=Path, metavar="PATH", help="Path to .env file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


async def _run(args: argparse.Namespace, settings: AggregatorSettings) -> Any:
    try:
        async with ICSFetcher(settings) as fetcher:
            store = EventStore(settings, fetcher=fetcher)
            await store.refresh()

            if args.search:
                hits = store.search_by_keyword(args.search, args.start, args.end, args.limit)
                return [hit.model_dump(by_alias=True, mode="json") for hit in hits]

            start = args.start or serialize_datetime_utc(utc_today())
            end = args.end
            if end is None:
                end = serialize_datetime_utc(
                    parse_query_date(start, "start_date") + timedelta(days=DEFAULT_QUERY_DAYS)
                )
            limit = args.limit if args.limit is not None else DEFAULT_QUERY_LIMIT
            result = store.query(start, end, limit)
            return result.model_dump(by_alias=True, mode="json")
    finally:
        await close_all_clients()


def main(argv: Optional[list[str]] = None) -> int:
    """Run the ics_aggregator CLI.

    Returns:
        Process exit code: 0 on success, 2 on configuration or query errors
    """
    args = _create_parser().parse_args(argv)

    init_logging(os.environ.get("ICS_AGGREGATOR_LOG_LEVEL"))
    configure_logging(debug_mode=args.debug)

    try:
        settings = ConfigManager(args.env_file).load_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if not settings.sources:
        logger.warning("No calendars configured; set CALENDAR_<NAME>=<url>")

    try:
        payload = asyncio.run(_run(args, settings))
    except InvalidQueryError as e:
        print(f"Invalid query: {e}", file=sys.stderr)
        return 2

    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
