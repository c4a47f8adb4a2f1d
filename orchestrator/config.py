"""Run configuration for the intake notification workflow."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser

__all__ = [
    "ApiSettings",
    "DEFAULT_TEST_TIME",
    "PRODUCTION_HOURS_TO_CHECK",
    "TimeWindowConfig",
    "parse_timestamp",
]

PRODUCTION_HOURS_TO_CHECK = 1.0
DEFAULT_TEST_TIME = datetime(2025, 4, 24, 10, 0, tzinfo=timezone(timedelta(hours=-7)))
DEFAULT_TIMEOUT_SECONDS = 30.0

_TRUTHY = {"1", "true", "t", "yes", "y"}


def _normalize_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class TimeWindowConfig:
    """Controls which clock is used and how far ahead appointments are admitted."""

    use_test_time: bool = False
    hours_to_check: float = PRODUCTION_HOURS_TO_CHECK
    test_time: datetime = DEFAULT_TEST_TIME

    def __post_init__(self) -> None:
        if self.hours_to_check <= 0:
            raise ValueError("hours_to_check must be greater than zero")
        if self.test_time.tzinfo is None:
            object.__setattr__(self, "test_time", self.test_time.replace(tzinfo=timezone.utc))

    @property
    def is_production(self) -> bool:
        """True only for real-time mode with the one hour window."""

        return not self.use_test_time and self.hours_to_check == PRODUCTION_HOURS_TO_CHECK

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TimeWindowConfig":
        environ = os.environ if environ is None else environ
        kwargs = {}
        if environ.get("INTAKE_USE_TEST_TIME"):
            kwargs["use_test_time"] = _normalize_boolean(environ["INTAKE_USE_TEST_TIME"])
        if environ.get("INTAKE_HOURS_TO_CHECK"):
            try:
                kwargs["hours_to_check"] = float(environ["INTAKE_HOURS_TO_CHECK"])
            except ValueError as exc:
                raise ValueError("INTAKE_HOURS_TO_CHECK must be a number") from exc
        if environ.get("INTAKE_TEST_TIME"):
            kwargs["test_time"] = parse_timestamp(environ["INTAKE_TEST_TIME"])
        return cls(**kwargs)

    def override(
        self,
        *,
        use_test_time: Optional[bool] = None,
        hours_to_check: Optional[float] = None,
        test_time: Optional[datetime] = None,
    ) -> "TimeWindowConfig":
        changes = {}
        if use_test_time is not None:
            changes["use_test_time"] = use_test_time
        if hours_to_check is not None:
            changes["hours_to_check"] = hours_to_check
        if test_time is not None:
            changes["test_time"] = test_time
        return replace(self, **changes)


@dataclass(frozen=True)
class ApiSettings:
    """Connection settings for the Healthie gateway."""

    base_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ApiSettings":
        environ = os.environ if environ is None else environ
        timeout_raw = environ.get("HEALTHIE_TIMEOUT_SECONDS")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
        except ValueError as exc:
            raise ValueError("HEALTHIE_TIMEOUT_SECONDS must be a number") from exc
        return cls(
            base_url=environ.get("HEALTHIE_API_URL"),
            api_key=environ.get("HEALTHIE_API_KEY"),
            timeout=timeout,
        )
