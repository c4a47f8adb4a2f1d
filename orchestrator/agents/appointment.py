"""Appointment agent responsible for building the notification worklist."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dateutil import parser as date_parser

from .time_window import TimeWindow

logger = logging.getLogger(__name__)

# Healthie returns e.g. "2025-04-24 10:30:00 -0700"
HEALTHIE_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}(:\d{2})? ?(Z|[+-]\d{2}:?\d{2})?$")


class DataShapeError(ValueError):
    """Raised when an upstream appointment lacks an id or a usable date."""


class IntakeStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProviderRef:
    id: str
    first_name: str
    last_name: str
    doc_share_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class PatientRef:
    id: str
    first_name: str
    last_name: str
    has_completed_intake_forms: Optional[bool] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def intake_status(self) -> IntakeStatus:
        """Classify the intake flag; only literal booleans are trusted."""

        if self.has_completed_intake_forms is True:
            return IntakeStatus.COMPLETE
        if self.has_completed_intake_forms is False:
            return IntakeStatus.INCOMPLETE
        return IntakeStatus.UNKNOWN


@dataclass(frozen=True)
class AppointmentRecord:
    """An upcoming appointment joined with its patient and provider."""

    id: str
    date: datetime
    location: Optional[str]
    provider: Optional[ProviderRef]
    patient: Optional[PatientRef]

    @property
    def is_actionable(self) -> bool:
        return bool(self.patient and self.provider and self.provider.doc_share_id)


@dataclass
class CollectionStats:
    users: int = 0
    users_with_next_app: int = 0
    listed_appointments: int = 0
    collected: int = 0


def parse_appointment_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            moment = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            if not HEALTHIE_DATE_PATTERN.match(text):
                raise DataShapeError(f"Unparseable appointment date {value!r}") from None
            try:
                moment = date_parser.parse(text)
            except (ValueError, OverflowError) as exc:
                raise DataShapeError(f"Unparseable appointment date {value!r}") from exc
    else:
        raise DataShapeError("Appointment has no date")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _patient_from_user(user: Mapping[str, Any]) -> Optional[PatientRef]:
    if not user.get("id"):
        return None
    intake = user.get("has_completed_intake_forms")
    return PatientRef(
        id=str(user["id"]),
        first_name=_text(user.get("first_name")),
        last_name=_text(user.get("last_name")),
        has_completed_intake_forms=intake if isinstance(intake, bool) else None,
    )


def _provider_from_entry(entry: Any) -> Optional[ProviderRef]:
    if not isinstance(entry, Mapping):
        return None
    doc_share_id = entry.get("doc_share_id")
    return ProviderRef(
        id=_text(entry.get("id")),
        first_name=_text(entry.get("first_name")),
        last_name=_text(entry.get("last_name")),
        doc_share_id=str(doc_share_id) if doc_share_id else None,
    )


def build_record(entry: Any, patient: Optional[PatientRef]) -> AppointmentRecord:
    if not isinstance(entry, Mapping):
        raise DataShapeError("Appointment entry must be an object")
    if entry.get("id") in (None, ""):
        raise DataShapeError("Appointment has no id")
    location = entry.get("location")
    return AppointmentRecord(
        id=str(entry["id"]),
        date=parse_appointment_date(entry.get("date")),
        location=str(location) if location else None,
        provider=_provider_from_entry(entry.get("provider")),
        patient=patient,
    )


def collect_appointments(
    api_result: Mapping[str, Any],
    window_start: datetime,
    window_end: datetime,
    *,
    stats: Optional[CollectionStats] = None,
) -> List[AppointmentRecord]:
    """Return deduplicated appointments inside ``[window_start, window_end]``.

    ``next_app`` entries are considered for every user first, then each user's
    full ``appointments`` list. The first occurrence of an appointment id wins
    and the result is stably sorted by date, so ties keep discovery order.
    """

    stats = stats if stats is not None else CollectionStats()
    window = TimeWindow(window_start, window_end)
    users: List[Mapping[str, Any]] = [
        user for user in (api_result.get("users") or []) if isinstance(user, Mapping)
    ]
    stats.users = len(users)
    accumulator: Dict[str, AppointmentRecord] = {}

    def admit(entry: Any, patient: Optional[PatientRef]) -> None:
        try:
            record = build_record(entry, patient)
        except DataShapeError as exc:
            logger.debug("Ignoring appointment entry: %s", exc)
            return
        if record.id in accumulator or not window.contains(record.date):
            return
        accumulator[record.id] = record

    for user in users:
        entry = user.get("next_app")
        if not entry:
            continue
        stats.users_with_next_app += 1
        admit(entry, _patient_from_user(user))

    for user in users:
        entries: Iterable[Any] = user.get("appointments") or []
        patient = _patient_from_user(user)
        for entry in entries:
            stats.listed_appointments += 1
            admit(entry, patient)

    records = sorted(accumulator.values(), key=lambda record: record.date)
    stats.collected = len(records)
    return records


class AppointmentAgent:
    """Loads upcoming appointments that downstream agents act on."""

    def __init__(self, client) -> None:
        self._client = client
        self.stats = CollectionStats()

    def collect(self, window: TimeWindow) -> List[AppointmentRecord]:
        """Query Healthie and return the ordered worklist for ``window``."""

        logger.info("Fetching all users and their appointments")
        api_result = self._client.get_users_with_appointments()
        self.stats = CollectionStats()
        records = collect_appointments(api_result, window.start, window.end, stats=self.stats)
        logger.info(
            "Found %d users, %d with next_app set, %d listed appointments; %d within window",
            self.stats.users,
            self.stats.users_with_next_app,
            self.stats.listed_appointments,
            self.stats.collected,
        )
        return records
