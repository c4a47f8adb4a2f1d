"""Central orchestration entry point for the intake notification workflow."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from connector import HealthieClient, HealthieClientError
from orchestrator.agents.appointment import AppointmentAgent, AppointmentRecord
from orchestrator.agents.notification import DispatchReport, DispatchStatus, NotificationAgent
from orchestrator.agents.time_window import TimeWindow, resolve_window
from orchestrator.config import ApiSettings, TimeWindowConfig, parse_timestamp

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ConnectivityError(RuntimeError):
    """Raised when the connectivity probe against Healthie fails."""


class RunAbortedError(RuntimeError):
    """Raised when a fatal setup stage fails."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def execute_with_logging(stage_name: str, action: Callable[[], Any]) -> Any:
    """Run ``action`` while logging start, completion and failure of the stage."""

    started = time.monotonic()
    logger.debug("Stage %s started", stage_name)
    try:
        result = action()
    except Exception as exc:
        logger.error("Stage %s failed after %.2fs: %s", stage_name, time.monotonic() - started, exc)
        raise
    logger.debug("Stage %s completed in %.2fs", stage_name, time.monotonic() - started)
    return result


@dataclass
class RunSummary:
    """Outcome of a run that got past collection."""

    window: TimeWindow
    appointments_found: int
    report: DispatchReport = field(default_factory=DispatchReport)

    @property
    def sent_messages(self) -> List[str]:
        return [outcome.message for outcome in self.report.outcomes]

    def render(self) -> str:
        lines = [
            "=== NOTIFICATION PROCESS SUMMARY ===",
            f"Total appointments found: {self.appointments_found}",
            f"Total notifications sent: {len(self.sent_messages)}",
            f"Skipped (missing linkage): {self.report.count(DispatchStatus.SKIPPED)}",
            f"Failed: {self.report.failed}",
        ]
        if self.sent_messages:
            lines.append("")
            lines.append("Messages sent:")
            lines.extend(f"{index}. {message}" for index, message in enumerate(self.sent_messages, start=1))
        else:
            lines.append("")
            lines.append("No messages were required or sent.")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": _utc_now().isoformat(),
            "window": {"start": self.window.start.isoformat(), "end": self.window.end.isoformat()},
            "total_found": self.appointments_found,
            "total_sent": len(self.sent_messages),
            "total_skipped": self.report.count(DispatchStatus.SKIPPED),
            "total_failures": self.report.failed,
            "sent_messages": self.sent_messages,
            "results": [result.to_report_entry() for result in self.report.results],
        }

    def write(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle, indent=2, sort_keys=True)
        logger.info("Run report written to %s", path)


class IntakeNotificationRun:
    """Sequences setup, collection and dispatch for a single pass."""

    def __init__(
        self,
        client,
        config: TimeWindowConfig,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        dry_run: bool = False,
    ) -> None:
        self._client = client
        self._config = config
        self._clock = clock
        self._dry_run = dry_run
        self.window: Optional[TimeWindow] = None
        self.sender: Dict[str, Any] = {}
        self.records: List[AppointmentRecord] = []

    def setup_stages(self) -> Sequence[Tuple[str, Callable[[], None]]]:
        return (
            ("verify_connectivity", self.verify_connectivity),
            ("resolve_sender", self.resolve_sender),
            ("collect_appointments", self.collect),
        )

    def verify_connectivity(self) -> None:
        try:
            self._client.get_current_user()
        except HealthieClientError as exc:
            raise ConnectivityError(f"API connection/key verification failed: {exc}") from exc
        logger.info("API connection and key verified successfully.")

    def resolve_sender(self) -> None:
        try:
            user = self._client.get_current_user()
        except HealthieClientError as exc:
            raise RunAbortedError(f"Failed to get current user ID for sending messages: {exc}") from exc
        if not user.get("id"):
            raise RunAbortedError("Failed to get current user ID for sending messages")
        self.sender = user
        logger.info(
            "Authenticated as user: %s %s (ID: %s)",
            user.get("first_name", ""),
            user.get("last_name", ""),
            user["id"],
        )

    def collect(self) -> None:
        self.window = resolve_window(self._config, clock=self._clock)
        logger.info("Checking for appointments between %s and %s", self.window.start, self.window.end)
        if self._config.use_test_time:
            logger.info(
                "*** TEST MODE ENABLED - Using %g hour window and simulated time ***",
                self._config.hours_to_check,
            )
        try:
            self.records = AppointmentAgent(self._client).collect(self.window)
        except HealthieClientError as exc:
            raise RunAbortedError(f"Failed to fetch appointment data from API: {exc}") from exc

    def run(self) -> RunSummary:
        """Run every stage; setup failures propagate, dispatch failures stay per record."""

        for stage_name, action in self.setup_stages():
            execute_with_logging(stage_name, action)

        summary = RunSummary(window=self.window, appointments_found=len(self.records))
        if not self.records:
            logger.info("No upcoming appointments found within the configured time window.")
            return summary

        logger.info(
            "Found %d appointment(s) within the time window. Processing in chronological order...",
            len(self.records),
        )
        agent = NotificationAgent(self._client, self._config, dry_run=self._dry_run)
        summary.report = execute_with_logging(
            "dispatch_notifications", lambda: agent.dispatch_all(self.records, str(self.sender["id"]))
        )
        return summary


def notify_providers_of_incomplete_intake(
    client,
    config: TimeWindowConfig,
    *,
    clock: Optional[Callable[[], datetime]] = None,
    dry_run: bool = False,
) -> List[str]:
    """Run the workflow and return the sent-notification log strings.

    Connectivity and setup failures propagate as :class:`ConnectivityError` or
    :class:`RunAbortedError`; any other unexpected error yields an empty list.
    """

    try:
        summary = IntakeNotificationRun(client, config, clock=clock, dry_run=dry_run).run()
    except (ConnectivityError, RunAbortedError):
        raise
    except Exception:
        logger.exception("ERROR IN NOTIFICATION PROCESS")
        return []
    logger.info("\n%s", summary.render())
    return summary.sent_messages


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Notify providers about incomplete patient intake forms")
    parser.add_argument("--use-test-time", action="store_true", default=None, help="Use the fixed test instant as 'now'")
    parser.add_argument("--hours", type=float, help="Hours ahead to check for appointments")
    parser.add_argument("--test-time", type=parse_timestamp, help="ISO-8601 instant used with --use-test-time")
    parser.add_argument("--report", type=Path, help="Write a JSON run report to this path")
    parser.add_argument("--dry-run", action="store_true", help="Decide but do not send any messages")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    load_dotenv()

    try:
        config = TimeWindowConfig.from_env().override(
            use_test_time=args.use_test_time,
            hours_to_check=args.hours,
            test_time=args.test_time,
        )
        settings = ApiSettings.from_env()
        client = HealthieClient(base_url=settings.base_url, api_key=settings.api_key, timeout=settings.timeout)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    logger.info("=== INTAKE FORM NOTIFICATION SYSTEM ===")
    run = IntakeNotificationRun(client, config, dry_run=args.dry_run)
    try:
        summary = run.run()
    except ConnectivityError as exc:
        logger.error("Exiting: %s", exc)
        return 1
    except RunAbortedError as exc:
        logger.error("Aborting run: %s", exc)
        return 1
    except Exception:
        logger.exception("ERROR IN NOTIFICATION PROCESS")
        return 0

    logger.info("\n%s", summary.render())
    if args.report:
        summary.write(args.report)
    logger.info("Process completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
