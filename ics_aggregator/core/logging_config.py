"""Central logging configuration for ics_aggregator.

Keeps the package's own loggers at the requested verbosity while quieting
third-party libraries whose DEBUG output drowns out refresh diagnostics.
"""

import logging
import os
from typing import Optional

DEBUG_ENV_VAR = "ICS_AGGREGATOR_DEBUG"
LOG_LEVEL_ENV_VAR = "ICS_AGGREGATOR_LOG_LEVEL"

NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}

PACKAGE_LOGGER = "ics_aggregator"


def env_debug_enabled() -> bool:
    """True when ICS_AGGREGATOR_DEBUG holds a truthy value."""
    return os.getenv(DEBUG_ENV_VAR, "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """Configure logger levels for the package and its dependencies.

    Args:
        debug_mode: Whether to enable debug logging for ics_aggregator modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        ICS_AGGREGATOR_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        ICS_AGGREGATOR_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or env_debug_enabled()

    root_level = logging.DEBUG if final_debug else logging.INFO
    env_log_level = os.getenv(LOG_LEVEL_ENV_VAR, "").strip().upper()
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    logging.getLogger().setLevel(root_level)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if final_debug else logging.INFO)

    if final_debug:
        logging.getLogger(__name__).debug(
            "Debug logging enabled for ics_aggregator; third-party debug logs suppressed"
        )


def get_logging_status() -> dict[str, str]:
    """Current level of the root, package and third-party loggers.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in (PACKAGE_LOGGER, *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
