"""
Unit tests for ics_aggregator logging setup

Covers:
- configure_logging levels for the package and third-party loggers
- ICS_AGGREGATOR_DEBUG / ICS_AGGREGATOR_LOG_LEVEL overrides
- init_logging level selection
"""

import logging
from collections.abc import Iterator

import pytest

from ics_aggregator import init_logging
from ics_aggregator.core.logging_config import (
    NOISY_LOGGERS,
    PACKAGE_LOGGER,
    configure_logging,
    env_debug_enabled,
    get_logging_status,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


@pytest.fixture(autouse=True)
def restore_levels(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("ICS_AGGREGATOR_DEBUG", raising=False)
    monkeypatch.delenv("ICS_AGGREGATOR_LOG_LEVEL", raising=False)
    names = ("", PACKAGE_LOGGER, *NOISY_LOGGERS)
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
def test_env_debug_enabled_when_truthy_then_true(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("ICS_AGGREGATOR_DEBUG", value)
    assert env_debug_enabled()


def test_env_debug_enabled_when_unset_then_false() -> None:
    assert not env_debug_enabled()


def test_configure_logging_when_default_then_info_and_quiet_dependencies() -> None:
    configure_logging()

    status = get_logging_status()
    assert status["root"] == "INFO"
    assert status[PACKAGE_LOGGER] == "INFO"
    assert status["httpx"] == "WARNING"
    assert status["icalendar"] == "INFO"


def test_configure_logging_when_debug_then_package_debug_only() -> None:
    configure_logging(debug_mode=True)

    assert logging.getLogger(PACKAGE_LOGGER).level == logging.DEBUG
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_configure_logging_when_force_debug_false_then_env_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICS_AGGREGATOR_DEBUG", "1")
    configure_logging(force_debug=False)

    assert logging.getLogger(PACKAGE_LOGGER).level == logging.INFO


def test_configure_logging_when_log_level_env_then_root_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICS_AGGREGATOR_LOG_LEVEL", "warning")
    configure_logging()

    assert logging.getLogger().level == logging.WARNING


def test_init_logging_when_level_name_then_root_level_set() -> None:
    init_logging("error")
    assert logging.getLogger().level == logging.ERROR

    init_logging("not-a-level")
    assert logging.getLogger().level == logging.INFO


def test_init_logging_when_debug_env_then_debug(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ICS_AGGREGATOR_DEBUG", "true")
    init_logging("ERROR")

    assert logging.getLogger().level == logging.DEBUG
