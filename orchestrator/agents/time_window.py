"""Resolves the admission window for upcoming appointments."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional

from orchestrator.config import TimeWindowConfig


class TimeWindow(NamedTuple):
    """Closed interval ``[start, end]``."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_window(
    config: TimeWindowConfig, *, clock: Optional[Callable[[], datetime]] = None
) -> TimeWindow:
    """Return ``(start, start + hours_to_check)`` for the configured clock."""

    if config.use_test_time:
        start = config.test_time
    else:
        start = (clock or _utc_now)()
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return TimeWindow(start, start + timedelta(hours=config.hours_to_check))
