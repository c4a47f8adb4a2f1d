"""Agent package exposing the collection and dispatch stages."""

from .appointment import AppointmentAgent, AppointmentRecord, PatientRef, ProviderRef, collect_appointments
from .notification import DispatchReport, DispatchStatus, NotificationAgent, NotificationOutcome
from .time_window import TimeWindow, resolve_window

__all__ = [
    "AppointmentAgent",
    "AppointmentRecord",
    "DispatchReport",
    "DispatchStatus",
    "NotificationAgent",
    "NotificationOutcome",
    "PatientRef",
    "ProviderRef",
    "TimeWindow",
    "collect_appointments",
    "resolve_window",
]
