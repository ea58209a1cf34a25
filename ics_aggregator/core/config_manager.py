"""Configuration management for the aggregation engine."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from ..calendar.models import CalendarSource
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SOURCE_ENV_PREFIX = "CALENDAR_"
SETTINGS_ENV_PREFIX = "ICS_AGGREGATOR_"

# env suffix -> (settings field, converter, minimum accepted value)
_NUMERIC_SETTINGS: dict[str, tuple[str, type, float]] = {
    "REFRESH_INTERVAL": ("refresh_interval_seconds", int, 1),
    "REQUEST_TIMEOUT": ("request_timeout", float, 0.1),
    "MAX_OCCURRENCES": ("max_occurrences_per_rule", int, 1),
    "SEARCH_LOOKBACK_DAYS": ("search_lookback_days", int, 0),
    "SEARCH_LOOKAHEAD_DAYS": ("search_lookahead_days", int, 0),
    "RETRY_BACKOFF_FACTOR": ("retry_backoff_factor", float, 1.0),
}


class AggregatorSettings(BaseModel):
    """Runtime settings for fetching, expansion and refresh scheduling."""

    sources: list[CalendarSource] = Field(default_factory=list)
    refresh_interval_seconds: int = Field(default=3600, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    max_occurrences_per_rule: int = Field(default=5000, gt=0)
    search_lookback_days: int = Field(default=30, ge=0)
    search_lookahead_days: int = Field(default=365, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1.0)
    log_level: str = "INFO"

    model_config = ConfigDict(validate_assignment=True)


def parse_env_file(path: Path) -> dict[str, str]:
    """Read ``KEY=VALUE`` pairs from a dotenv-style file.

    Blank lines, ``#`` comments and lines without ``=`` are skipped. A leading
    ``export`` is dropped and one layer of matching quotes is removed from the
    value. A missing or unreadable file yields an empty mapping.
    """
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return {}
    except OSError:
        logger.debug("Could not read env file %s; ignoring it", path, exc_info=True)
        return {}

    pairs: dict[str, str] = {}
    for line in (raw.strip() for raw in lines):
        if not line or line.startswith("#"):
            continue
        name, sep, value = line.partition("=")
        if not sep:
            continue
        name = name.removeprefix("export ").strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if name:
            pairs[name] = value
    return pairs


def _validate_source_url(name: str, url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigurationError(f"Calendar source '{name}' has an invalid URL: {url!r}")


def sources_from_env(environ: Mapping[str, str]) -> list[CalendarSource]:
    """Collect ``CALENDAR_<NAME>=<url>`` entries as calendar sources.

    Source names are the lower-cased suffix; sources are returned sorted by name.

    Raises:
        ConfigurationError: If a source URL is not an http(s) URL
    """
    sources = []
    for key in sorted(environ):
        if not key.startswith(SOURCE_ENV_PREFIX) or len(key) == len(SOURCE_ENV_PREFIX):
            continue
        url = environ[key].strip()
        if not url:
            logger.debug("Ignoring empty calendar source %s", key)
            continue
        name = key[len(SOURCE_ENV_PREFIX) :].lower()
        _validate_source_url(name, url)
        sources.append(CalendarSource(name=name, url=url))
    return sources


class ConfigManager:
    """Builds settings from environment variables and an optional .env file."""

    def __init__(self, env_file_path: Path | None = None, environ: MutableMapping[str, str] | None = None):
        """Create a manager.

        Args:
            env_file_path: dotenv file consulted for defaults (``./.env`` if omitted)
            environ: Mapping that is read and filled in (``os.environ`` if omitted)
        """
        self.env_file_path = env_file_path if env_file_path is not None else Path.cwd() / ".env"
        self.environ = environ if environ is not None else os.environ

    def load_env_file(self) -> list[str]:
        """Copy .env entries into the environment without overriding it.

        Returns:
            Names of the variables that were added
        """
        entries = parse_env_file(self.env_file_path)
        if not entries:
            logger.debug("No .env entries at %s", self.env_file_path)
            return []

        added = [name for name in entries if name not in self.environ]
        for name in added:
            self.environ[name] = entries[name]

        if added:
            logger.debug("Applied %d .env default(s): %s", len(added), ", ".join(added))
        return added

    def build_settings_from_env(self) -> AggregatorSettings:
        """Build settings from environment variables.

        Recognizes:
        - CALENDAR_<NAME> -> one calendar source per variable
        - ICS_AGGREGATOR_REFRESH_INTERVAL -> 'refresh_interval_seconds' (int)
        - ICS_AGGREGATOR_REQUEST_TIMEOUT -> 'request_timeout' (float seconds)
        - ICS_AGGREGATOR_MAX_OCCURRENCES -> 'max_occurrences_per_rule' (int)
        - ICS_AGGREGATOR_SEARCH_LOOKBACK_DAYS / _LOOKAHEAD_DAYS -> search window (int)
        - ICS_AGGREGATOR_RETRY_BACKOFF_FACTOR -> 'retry_backoff_factor' (float)
        - ICS_AGGREGATOR_LOG_LEVEL -> 'log_level'

        Invalid numeric values are logged and ignored.

        Returns:
            AggregatorSettings

        Raises:
            ConfigurationError: If a calendar source URL is invalid
        """
        values: dict[str, Any] = {"sources": sources_from_env(self.environ)}

        for suffix, (field_name, converter, minimum) in _NUMERIC_SETTINGS.items():
            env_key = SETTINGS_ENV_PREFIX + suffix
            raw = self.environ.get(env_key)
            if raw is None or not raw.strip():
                continue
            try:
                number = converter(raw.strip())
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_key, raw)
                continue
            if not number >= minimum:
                logger.warning("%s=%r is below the minimum of %s; ignoring", env_key, raw, minimum)
                continue
            values[field_name] = number

        log_level = self.environ.get(SETTINGS_ENV_PREFIX + "LOG_LEVEL")
        if log_level:
            values["log_level"] = log_level.strip().upper()

        settings = AggregatorSettings(**values)
        logger.debug(
            "Built settings: %d source(s), refresh every %ds",
            len(settings.sources),
            settings.refresh_interval_seconds,
        )
        return settings

    def load_settings(self) -> AggregatorSettings:
        """Load the .env file, then build settings from the environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return self.build_settings_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a dict or an attribute-style settings object."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
