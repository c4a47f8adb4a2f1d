"""Notification agent that alerts providers about incomplete intake forms."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from connector import HealthieClientError, UpstreamValidationError
from orchestrator.config import TimeWindowConfig

from .appointment import AppointmentRecord, IntakeStatus, PatientRef, ProviderRef

logger = logging.getLogger(__name__)

SUBJECT = "Incomplete Intake Form Reminder"
TEST_SUBJECT_PREFIX = "[TEST] "


class DispatchStatus(str, Enum):
    SENT = "sent"
    SATISFIED = "satisfied"
    SKIPPED = "skipped"
    INTAKE_UNKNOWN = "intake_unknown"
    DRY_RUN = "dry_run"
    FAILED_CONVERSATION = "failed_conversation"
    FAILED_NOTE = "failed_note"
    FAILED_ERROR = "failed_error"

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("failed_")


@dataclass(frozen=True)
class NotificationOutcome:
    appointment_id: str
    message: str


@dataclass
class DispatchResult:
    appointment_id: str
    status: DispatchStatus
    detail: str = ""
    conversation_id: Optional[str] = None

    def to_report_entry(self) -> Dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "status": self.status.value,
            "detail": self.detail,
            "conversation_id": self.conversation_id,
        }


@dataclass
class DispatchReport:
    results: List[DispatchResult] = field(default_factory=list)
    outcomes: List[NotificationOutcome] = field(default_factory=list)

    def count(self, *statuses: DispatchStatus) -> int:
        return sum(1 for result in self.results if result.status in statuses)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if result.status.is_failure)


def format_appointment_time(moment: datetime) -> str:
    """Format as ``Thursday, April 24, 2025 at 10:30 AM``."""

    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment:%A, %B} {moment.day}, {moment.year} at {hour}:{moment.minute:02d} {meridiem}"


def compose_message(
    provider: ProviderRef,
    patient: PatientRef,
    appointment_time: str,
    config: TimeWindowConfig,
) -> Tuple[str, str]:
    """Return ``(subject, body)``; anything but production defaults is labeled as a test."""

    paragraphs = [
        f"Hi Dr. {provider.last_name},",
        f"Your patient, {patient.full_name}, has not yet completed their intake form "
        f"for the upcoming appointment at {appointment_time}.",
    ]
    subject = SUBJECT
    if not config.is_production:
        subject = TEST_SUBJECT_PREFIX + SUBJECT
        paragraphs.append(f"[THIS IS A TEST MESSAGE - Using {config.hours_to_check:g} hour window]")
    paragraphs.extend(
        [
            "Please remind them at the beginning of the session to complete it.",
            "Thank you.",
        ]
    )
    return subject, "\n\n".join(paragraphs)


def describe_appointment(record: AppointmentRecord, position: int, total: int) -> str:
    provider = record.provider
    patient = record.patient
    lines = [
        f"APPOINTMENT {position} OF {total}",
        f"Appointment ID:   {record.id}",
        f"Date & Time:      {format_appointment_time(record.date)}",
        f"Location:         {record.location or 'Not specified'}",
        f"Provider:         {provider.full_name} (ID: {provider.id})" if provider else "Provider:         -",
        f"Patient:          {patient.full_name} (ID: {patient.id})" if patient else "Patient:          -",
    ]
    if patient is not None:
        lines.append(f"Intake Completed: {'Yes' if patient.has_completed_intake_forms else 'No'}")
    return "\n".join(lines)


class NotificationAgent:
    """Walks the worklist in order and runs the conversation/note workflow."""

    def __init__(self, client, config: TimeWindowConfig, *, dry_run: bool = False) -> None:
        self._client = client
        self._config = config
        self._dry_run = dry_run

    def dispatch(self, records: Sequence[AppointmentRecord], sender_id: str) -> List[NotificationOutcome]:
        """Notify providers and return the confirmed deliveries."""

        return self.dispatch_all(records, sender_id).outcomes

    def dispatch_all(self, records: Sequence[AppointmentRecord], sender_id: str) -> DispatchReport:
        report = DispatchReport()
        total = len(records)
        for position, record in enumerate(records, start=1):
            logger.info("\n%s", describe_appointment(record, position, total))
            try:
                result, outcome = self._process(record, sender_id)
            except Exception as exc:  # noqa: BLE001 - one bad record must not stop the run
                logger.exception("Unexpected error processing Appointment ID %s", record.id)
                result, outcome = DispatchResult(record.id, DispatchStatus.FAILED_ERROR, str(exc)), None
            report.results.append(result)
            if outcome is not None:
                report.outcomes.append(outcome)
        return report

    def _process(
        self, record: AppointmentRecord, sender_id: str
    ) -> Tuple[DispatchResult, Optional[NotificationOutcome]]:
        if not record.is_actionable:
            logger.warning(
                "Skipping appointment ID %s: missing patient or provider information", record.id
            )
            return DispatchResult(record.id, DispatchStatus.SKIPPED, "missing linkage"), None

        patient = record.patient
        provider = record.provider
        status = patient.intake_status
        if status is IntakeStatus.COMPLETE:
            logger.info(
                "No notification needed: Patient %s has completed their intake form", patient.full_name
            )
            return DispatchResult(record.id, DispatchStatus.SATISFIED), None
        if status is IntakeStatus.UNKNOWN:
            logger.warning(
                "Intake status unknown for patient %s (appointment %s); not notifying",
                patient.id,
                record.id,
            )
            return DispatchResult(record.id, DispatchStatus.INTAKE_UNKNOWN, "intake flag missing"), None

        appointment_time = format_appointment_time(record.date)
        subject, body = compose_message(provider, patient, appointment_time, self._config)

        if self._dry_run:
            logger.info("Dry run: would notify %s about appointment %s", provider.full_name, record.id)
            return DispatchResult(record.id, DispatchStatus.DRY_RUN, subject), None

        logger.info("Patient has not completed intake form. Notifying provider %s", provider.full_name)
        try:
            conversation_id = self._client.create_conversation(provider.doc_share_id, subject)
        except UpstreamValidationError as exc:
            logger.error(
                "Failed to create conversation for Appointment ID %s. Reason: %s", record.id, exc.detail
            )
            return DispatchResult(record.id, DispatchStatus.FAILED_CONVERSATION, exc.detail), None
        except HealthieClientError as exc:
            logger.exception("Error creating conversation for Appointment ID %s", record.id)
            return DispatchResult(record.id, DispatchStatus.FAILED_CONVERSATION, str(exc)), None

        logger.info("Sending message in conversation %s", conversation_id)
        try:
            self._client.create_note(sender_id, body, conversation_id)
        except UpstreamValidationError as exc:
            logger.error("Failed to send note for Appointment ID %s. Reason: %s", record.id, exc.detail)
            return (
                DispatchResult(record.id, DispatchStatus.FAILED_NOTE, exc.detail, conversation_id),
                None,
            )
        except HealthieClientError as exc:
            logger.exception("Error sending message for Appointment ID %s", record.id)
            return (
                DispatchResult(record.id, DispatchStatus.FAILED_ERROR, str(exc), conversation_id),
                None,
            )

        message = (
            f"Sent message to Provider {provider.full_name} about Patient {patient.full_name}'s "
            f"incomplete intake form for appointment on {appointment_time}"
        )
        logger.info("SUCCESS: %s", message)
        return (
            DispatchResult(record.id, DispatchStatus.SENT, message, conversation_id),
            NotificationOutcome(record.id, message),
        )
