"""Background refresh scheduling for the event store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from ..core.config_manager import get_config_value

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 3600
DEFAULT_RETRY_BACKOFF_FACTOR = 2.0
MIN_RETRY_DELAY_SECONDS = 1.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3


class SchedulerState(str, Enum):
    """Refresh scheduler states."""

    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshScheduler:
    """Runs ``store.refresh()`` at startup and then on a fixed interval.

    At most one refresh is in flight; a trigger that arrives during a refresh
    is coalesced into the running one.
    """

    def __init__(
        self,
        store: Any,
        interval_seconds: Optional[float] = None,
        retry_backoff_factor: Optional[float] = None,
    ):
        """Initialize the scheduler.

        Args:
            store: Object with ``async refresh() -> RefreshOutcome``
            interval_seconds: Seconds between refreshes (defaults to the store
                settings' ``refresh_interval_seconds``)
            retry_backoff_factor: Base of the exponential retry delay after failures
        """
        settings = getattr(store, "settings", None)
        self.store = store
        self.interval_seconds = float(
            interval_seconds
            if interval_seconds is not None
            else get_config_value(settings, "refresh_interval_seconds", DEFAULT_REFRESH_INTERVAL_SECONDS)
        )
        self.retry_backoff_factor = float(
            retry_backoff_factor
            if retry_backoff_factor is not None
            else get_config_value(settings, "retry_backoff_factor", DEFAULT_RETRY_BACKOFF_FACTOR)
        )

        self.state = SchedulerState.IDLE
        self.consecutive_failures = 0
        self.last_success_at: Optional[datetime] = None
        self.last_outcome: Optional[Any] = None

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True while the background loop task is alive."""
        return self._task is not None and not self._task.done()

    async def trigger(self) -> bool:
        """Run one refresh unless one is already in flight.

        Returns:
            True if a refresh ran, False if the trigger was coalesced
        """
        if self.state is SchedulerState.REFRESHING:
            logger.debug("Refresh already in progress; trigger coalesced")
            return False

        self.state = SchedulerState.REFRESHING
        try:
            outcome = await self.store.refresh()
        except Exception:
            self.consecutive_failures += 1
            logger.exception("Refresh raised unexpectedly (failure #%d)", self.consecutive_failures)
        else:
            self.last_outcome = outcome
            published = getattr(outcome, "published", True)
            if published and not getattr(outcome, "total_failure", False):
                self.consecutive_failures = 0
                self.last_success_at = datetime.now(UTC)
                logger.info(
                    "Refresh succeeded: %d definition(s) from %d source(s), %d failed, %.2fs",
                    getattr(outcome, "definition_count", 0),
                    getattr(outcome, "source_count", 0),
                    len(getattr(outcome, "failed_sources", ())),
                    getattr(outcome, "duration_seconds", 0.0),
                )
            else:
                self.consecutive_failures += 1
                logger.error(
                    "Refresh failed for all sources (failure #%d); %s",
                    self.consecutive_failures,
                    "previous snapshot retained" if not published else "no events available",
                )
        finally:
            self.state = SchedulerState.IDLE
        return True

    def next_delay(self) -> float:
        """Seconds to wait before the next cycle.

        After failures the wait shrinks to an exponential backoff with jitter,
        never exceeding the normal interval.
        """
        if self.consecutive_failures == 0:
            return self.interval_seconds

        base = self.retry_backoff_factor ** self.consecutive_failures
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base  # nosec B311 - jitter not cryptographic
        return min(max(base + jitter, MIN_RETRY_DELAY_SECONDS), self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Start the background loop: refresh now, then once per interval.

        Returns:
            The loop task
        """
        if self.is_running:
            assert self._task is not None
            return self._task

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="ics-refresh-scheduler")
        logger.debug("Refresh scheduler started (interval=%.0fs)", self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        """Stop the loop.

        The pending timer wait ends immediately; a refresh already in flight
        is allowed to finish first.
        """
        self._stop_event.set()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.debug("Refresh scheduler stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.trigger()
            if self._stop_event.is_set():
                break

            delay = self.next_delay()
            logger.debug("Next refresh in %.1fs", delay)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
