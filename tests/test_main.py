import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from connector import UpstreamError, UpstreamTransportError
from orchestrator import main as orchestrator_main
from orchestrator.config import TimeWindowConfig
from orchestrator.main import (
    ConnectivityError,
    IntakeNotificationRun,
    RunAbortedError,
    notify_providers_of_incomplete_intake,
)

NOW = datetime(2025, 4, 24, 17, 0, tzinfo=timezone.utc)
PROVIDER = {"id": "p1", "first_name": "Ana", "last_name": "Lopez", "doc_share_id": "doc-1"}


def _appointment(appointment_id, minutes):
    return {
        "id": appointment_id,
        "date": (NOW + timedelta(minutes=minutes)).isoformat(),
        "location": None,
        "provider": dict(PROVIDER),
    }


def _client(users):
    client = MagicMock()
    client.get_current_user.return_value = {"id": "sender-9", "first_name": "Ops", "last_name": "Bot"}
    client.get_users_with_appointments.return_value = {"users": users}
    client.create_conversation.return_value = "conv-1"
    client.create_note.return_value = {"id": "note-1"}
    return client


class IntakeNotificationRunTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = TimeWindowConfig()
        self.clock = lambda: NOW

    def test_end_to_end_scenario(self) -> None:
        same = _appointment("1", 30)
        users = [
            {
                "id": "u1",
                "first_name": "Sam",
                "last_name": "Reed",
                "has_completed_intake_forms": False,
                "next_app": same,
                "appointments": [dict(same)],
            },
            {
                "id": "u2",
                "first_name": "Lee",
                "last_name": "Park",
                "has_completed_intake_forms": True,
                "next_app": None,
                "appointments": [_appointment("2", 10)],
            },
        ]
        client = _client(users)

        summary = IntakeNotificationRun(client, self.config, clock=self.clock).run()

        self.assertEqual([result.appointment_id for result in summary.report.results], ["2", "1"])
        self.assertEqual(summary.appointments_found, 2)
        self.assertEqual(len(summary.sent_messages), 1)
        client.create_conversation.assert_called_once()
        self.assertEqual(client.create_note.call_args.args[0], "sender-9")
        self.assertIn("Total notifications sent: 1", summary.render())

    def test_connectivity_failure_aborts_before_collection(self) -> None:
        client = _client([])
        client.get_current_user.side_effect = UpstreamTransportError("refused")

        with self.assertRaises(ConnectivityError):
            IntakeNotificationRun(client, self.config, clock=self.clock).run()

        client.get_users_with_appointments.assert_not_called()
        client.create_conversation.assert_not_called()

    def test_identity_failure_aborts_before_collection(self) -> None:
        client = _client([])
        client.get_current_user.side_effect = [{"id": "sender-9"}, UpstreamError(["forbidden"])]

        with self.assertRaises(RunAbortedError):
            IntakeNotificationRun(client, self.config, clock=self.clock).run()

        client.get_users_with_appointments.assert_not_called()

    def test_missing_sender_id_is_fatal(self) -> None:
        client = _client([])
        client.get_current_user.return_value = {}

        with self.assertRaises(RunAbortedError):
            IntakeNotificationRun(client, self.config, clock=self.clock).run()

    def test_collection_query_failure_is_fatal(self) -> None:
        client = _client([])
        client.get_users_with_appointments.side_effect = UpstreamError(["boom"])

        with self.assertRaises(RunAbortedError):
            IntakeNotificationRun(client, self.config, clock=self.clock).run()

    def test_empty_worklist_ends_without_dispatch(self) -> None:
        client = _client([])

        summary = IntakeNotificationRun(client, self.config, clock=self.clock).run()

        self.assertEqual(summary.appointments_found, 0)
        self.assertEqual(summary.sent_messages, [])
        self.assertIn("No messages were required or sent.", summary.render())
        client.create_conversation.assert_not_called()


class NotifyProvidersTests(unittest.TestCase):
    def test_unexpected_error_degrades_to_empty_result(self) -> None:
        client = _client([])
        client.get_users_with_appointments.return_value = None

        result = notify_providers_of_incomplete_intake(client, TimeWindowConfig(), clock=lambda: NOW)

        self.assertEqual(result, [])

    def test_setup_failure_propagates(self) -> None:
        client = _client([])
        client.get_current_user.side_effect = UpstreamTransportError("refused")

        with self.assertRaises(ConnectivityError):
            notify_providers_of_incomplete_intake(client, TimeWindowConfig(), clock=lambda: NOW)


class MainTests(unittest.TestCase):
    def setUp(self) -> None:
        self.env_patcher = patch.dict(
            "os.environ",
            {"HEALTHIE_API_URL": "https://api.example.test/graphql", "HEALTHIE_API_KEY": "secret"},
            clear=True,
        )
        self.dotenv_patcher = patch("orchestrator.main.load_dotenv")
        self.env_patcher.start()
        self.dotenv_patcher.start()

    def tearDown(self) -> None:
        self.dotenv_patcher.stop()
        self.env_patcher.stop()

    def test_missing_credentials_exit_nonzero(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            self.assertEqual(orchestrator_main.main([]), 1)

    def test_connectivity_failure_exit_nonzero(self) -> None:
        client = _client([])
        client.get_current_user.side_effect = UpstreamTransportError("refused")
        with patch("orchestrator.main.HealthieClient", return_value=client):
            self.assertEqual(orchestrator_main.main([]), 1)
        client.create_conversation.assert_not_called()

    def test_successful_run_writes_report(self) -> None:
        users = [
            {
                "id": "u1",
                "first_name": "Sam",
                "last_name": "Reed",
                "has_completed_intake_forms": False,
                "next_app": None,
                "appointments": [_appointment("1", 60 * 3)],
            }
        ]
        client = _client(users)
        with tempfile.TemporaryDirectory() as tmp:
            report_path = Path(tmp) / "report.json"
            argv = [
                "--use-test-time",
                "--test-time",
                NOW.isoformat(),
                "--hours",
                "24",
                "--report",
                str(report_path),
            ]
            with patch("orchestrator.main.HealthieClient", return_value=client) as factory:
                self.assertEqual(orchestrator_main.main(argv), 0)

            factory.assert_called_once_with(
                base_url="https://api.example.test/graphql", api_key="secret", timeout=30.0
            )
            report = json.loads(report_path.read_text(encoding="utf-8"))

        self.assertEqual(report["total_found"], 1)
        self.assertEqual(report["total_sent"], 1)
        self.assertEqual(report["results"][0]["status"], "sent")
        self.assertEqual(
            client.create_conversation.call_args.args[1], "[TEST] Incomplete Intake Form Reminder"
        )


if __name__ == "__main__":
    unittest.main()
