"""ics_aggregator - multi-source ICS calendar aggregation engine.

Fetches iCalendar feeds, expands recurring events per query window and answers
range and keyword queries against a periodically refreshed snapshot.
"""

__version__ = "0.1.0"

from typing import Optional

_LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def init_logging(level_name: Optional[str]) -> None:
    """Send log records to stderr with colorized level names.

    The handler is installed only when the root logger has none, so embedding
    applications keep their own setup; the root level is always applied.
    ICS_AGGREGATOR_DEBUG ("1", "true", "yes", "on") wins over ``level_name``.
    Unknown level names fall back to INFO.
    """
    import logging
    import sys

    from colorlog import ColoredFormatter

    from .core.logging_config import env_debug_enabled

    root = logging.getLogger()
    if not root.handlers:
        console = logging.StreamHandler(stream=sys.stderr)
        console.setFormatter(
            ColoredFormatter(
                "%(log_color)s%(levelname)-8s%(reset)s %(asctime)s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
                log_colors=_LEVEL_COLORS,
            )
        )
        root.addHandler(console)

    requested = "DEBUG" if env_debug_enabled() else (level_name or "INFO")
    level = logging.getLevelName(requested.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO
    root.setLevel(level)
    logging.getLogger(__name__).debug("Console logging at %s", logging.getLevelName(level))
