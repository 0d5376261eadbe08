"""
Unit tests for notifications/digest_runner.py

Tests window computation, threshold gating, ledger idempotency, fail-fast
recipient handling, dry runs, and recovery of abandoned runs.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from zoneinfo import ZoneInfo

from config.digest_settings import DigestSettings
from notifications.digest_runner import (
    DigestRunner,
    compute_window_key,
    compute_window_start,
    fetch_approved_tools,
)
from notifications.errors import LedgerError, WindowQueryError
from tests.fixtures.mock_helpers import FakeSupabase
from tests.fixtures.tool_factory import (
    create_test_ledger_row,
    create_test_tool,
    create_test_tools,
)
from tests.fixtures.user_factory import create_test_subscriber, create_test_user

LEDGER = "tool_notifications"
UTC = timezone.utc
CHICAGO = ZoneInfo("America/Chicago")
TRIGGER = datetime(2026, 1, 24, 21, 0, tzinfo=UTC)
MORNING = datetime(2026, 1, 24, 9, 0, tzinfo=UTC)


def _sender_ok():
    return Mock(return_value={"success": True, "email_id": "email_1"})


class TestComputeWindowStart(unittest.TestCase):
    """Tests for compute_window_start() and compute_window_key()."""

    def test_daily_starts_at_local_midnight(self):
        result = compute_window_start("daily", TRIGGER, ZoneInfo("UTC"))

        self.assertEqual(result, datetime(2026, 1, 24, 0, 0, tzinfo=UTC))

    def test_weekly_starts_seven_days_back(self):
        now = datetime(2026, 1, 26, 10, 0, tzinfo=UTC)

        result = compute_window_start("weekly", now, ZoneInfo("UTC"))

        self.assertEqual(result, datetime(2026, 1, 19, 0, 0, tzinfo=UTC))

    def test_daily_uses_configured_timezone(self):
        # 03:00 UTC on the 25th is still the evening of the 24th in Chicago
        now = datetime(2026, 1, 25, 3, 0, tzinfo=UTC)

        result = compute_window_start("daily", now, CHICAGO)

        self.assertEqual(result.astimezone(UTC), datetime(2026, 1, 24, 6, 0, tzinfo=UTC))
        self.assertEqual(compute_window_key(now, CHICAGO), "2026-01-24")

    def test_weekly_across_dst_change_is_local_midnight(self):
        # Clocks spring forward on 2026-03-08 in Chicago
        now = datetime(2026, 3, 10, 2, 0, tzinfo=UTC)

        result = compute_window_start("weekly", now, CHICAGO)

        self.assertEqual((result.month, result.day, result.hour), (3, 2, 0))
        self.assertEqual(result.utcoffset(), timedelta(hours=-6))

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ValueError):
            compute_window_start("monthly", TRIGGER, ZoneInfo("UTC"))


class TestFetchApprovedTools(unittest.TestCase):
    """Tests for fetch_approved_tools() window query."""

    def test_only_approved_tools_in_window_newest_first(self):
        supabase = FakeSupabase({
            "tools": [
                create_test_tool(tool_id="old", approved_at=datetime(2026, 1, 23, 23, 0, tzinfo=UTC)),
                create_test_tool(tool_id="a", approved_at=datetime(2026, 1, 24, 8, 0, tzinfo=UTC)),
                create_test_tool(tool_id="b", approved_at=datetime(2026, 1, 24, 15, 0, tzinfo=UTC)),
                create_test_tool(tool_id="pending", status="pending"),
            ],
        })

        tools = fetch_approved_tools(supabase, datetime(2026, 1, 24, tzinfo=UTC))

        self.assertEqual([t.id for t in tools], ["b", "a"])

    def test_malformed_rows_skipped(self):
        supabase = FakeSupabase({"tools": [create_test_tool(tool_id="ok"), create_test_tool(name="")]})

        tools = fetch_approved_tools(supabase, datetime(2026, 1, 24, tzinfo=UTC))

        self.assertEqual([t.id for t in tools], ["ok"])

    def test_integer_ids_become_strings(self):
        supabase = FakeSupabase({"tools": [create_test_tool(tool_id=42)]})

        tools = fetch_approved_tools(supabase, datetime(2026, 1, 24, tzinfo=UTC))

        self.assertEqual(tools[0].id, "42")

    def test_query_failure_raises(self):
        supabase = FakeSupabase()
        supabase.fail("tools")

        with self.assertRaises(WindowQueryError):
            fetch_approved_tools(supabase, datetime(2026, 1, 24, tzinfo=UTC))


class TestDigestRunner(unittest.TestCase):
    """Tests for DigestRunner.run()."""

    def _supabase(self, tool_count=3, subscriber_count=2, ledger_rows=None):
        return FakeSupabase({
            "tools": create_test_tools(tool_count, approved_at=MORNING),
            "subscribers": [
                create_test_subscriber(subscriber_id=f"sub-{i}", email=f"sub{i}@example.com")
                for i in range(subscriber_count)
            ],
            "users": [create_test_user(email="member@example.com")],
            LEDGER: ledger_rows or [],
        })

    def _runner(self, supabase, sender=None, **settings):
        settings.setdefault("send_delay_ms", 0)
        return DigestRunner(
            supabase,
            DigestSettings(**settings),
            sender=sender or _sender_ok(),
            sleep=Mock(),
            clock=lambda: TRIGGER,
        )

    def test_eligible_window_dispatches_and_completes(self):
        supabase = self._supabase(tool_count=3, subscriber_count=2)
        sender = _sender_ok()

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(outcome.tool_count, 3)
        self.assertEqual(outcome.recipient_count, 3)
        self.assertEqual(sender.call_count, 3)

        rows = supabase.rows(LEDGER)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "completed")
        self.assertEqual(rows[0]["tool_count"], 3)
        self.assertEqual(rows[0]["recipient_count"], 3)
        self.assertEqual(rows[0]["window_key"], "2026-01-24")

    def test_second_run_same_window_skipped(self):
        supabase = self._supabase()
        sender = _sender_ok()
        runner = self._runner(supabase, sender)

        first = runner.run("daily", now=TRIGGER)
        second = runner.run("daily", now=TRIGGER + timedelta(minutes=5))

        self.assertEqual(first.status, "completed")
        self.assertEqual(second.status, "skipped_duplicate")
        self.assertEqual(sender.call_count, 3)
        self.assertEqual(len(supabase.rows(LEDGER)), 1)

    def test_below_minimum_no_row_no_sends(self):
        supabase = self._supabase(tool_count=3)
        sender = _sender_ok()

        outcome = self._runner(supabase, sender, daily_min_tools=5).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "skipped_threshold")
        self.assertEqual(outcome.tool_count, 3)
        self.assertEqual(supabase.rows(LEDGER), [])
        sender.assert_not_called()

    def test_zero_tools_skipped(self):
        supabase = self._supabase(tool_count=0)

        outcome = self._runner(supabase).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "skipped_threshold")
        self.assertEqual(supabase.rows(LEDGER), [])

    def test_yesterdays_tools_not_carried_into_next_day(self):
        """Minimum 5: three tools plus a late fourth are never announced."""
        supabase = self._supabase(tool_count=3)
        runner = self._runner(supabase, daily_min_tools=5)

        today = runner.run("daily", now=TRIGGER)
        supabase.tables["tools"].append(
            create_test_tool(tool_id="late", approved_at=datetime(2026, 1, 24, 22, 0, tzinfo=UTC))
        )
        tomorrow = runner.run("daily", now=TRIGGER + timedelta(days=1))

        self.assertEqual(today.status, "skipped_threshold")
        self.assertEqual(tomorrow.status, "skipped_threshold")
        self.assertEqual(tomorrow.tool_count, 0)
        self.assertEqual(supabase.rows(LEDGER), [])

    def test_recipient_failure_marks_row_failed_without_sending(self):
        supabase = self._supabase()
        supabase.fail("users")
        sender = _sender_ok()

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "failed")
        sender.assert_not_called()
        rows = supabase.rows(LEDGER)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "failed")
        self.assertIn("users unavailable", rows[0]["error_message"])

    def test_failed_window_retried_on_next_trigger(self):
        supabase = self._supabase()
        supabase.fail("users")
        sender = _sender_ok()
        runner = self._runner(supabase, sender)

        runner.run("daily", now=TRIGGER)
        supabase.failures.clear()
        retry = runner.run("daily", now=TRIGGER + timedelta(minutes=30))

        self.assertEqual(retry.status, "completed")
        self.assertEqual(sender.call_count, 3)
        self.assertEqual(len(supabase.rows(LEDGER)), 1)
        self.assertEqual(supabase.rows(LEDGER)[0]["status"], "completed")

    def test_window_query_failure_no_row(self):
        supabase = self._supabase()
        supabase.fail("tools")
        sender = _sender_ok()

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "failed")
        self.assertEqual(supabase.rows(LEDGER), [])
        sender.assert_not_called()

    def test_ledger_unavailable_raises(self):
        supabase = self._supabase()
        supabase.fail(LEDGER, "select")

        with self.assertRaises(LedgerError):
            self._runner(supabase).run("daily", now=TRIGGER)

    def test_dry_run_writes_and_sends_nothing(self):
        supabase = self._supabase(tool_count=3, subscriber_count=2)
        sender = _sender_ok()

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER, dry_run=True)

        self.assertEqual(outcome.status, "dry_run")
        self.assertEqual(outcome.recipient_count, 3)
        self.assertEqual(supabase.rows(LEDGER), [])
        sender.assert_not_called()

    def test_stale_sending_row_retried_once(self):
        crashed = create_test_ledger_row(
            status="sending",
            opened_at=TRIGGER - timedelta(hours=3),
            updated_at=TRIGGER - timedelta(hours=3),
        )
        supabase = self._supabase(ledger_rows=[crashed])
        sender = _sender_ok()
        runner = self._runner(supabase, sender)

        retry = runner.run("daily", now=TRIGGER)
        again = runner.run("daily", now=TRIGGER + timedelta(minutes=1))

        self.assertEqual(retry.status, "completed")
        self.assertEqual(again.status, "skipped_duplicate")
        self.assertEqual(sender.call_count, 3)
        row = supabase.rows(LEDGER)[0]
        self.assertEqual(row["attempts"], 2)
        self.assertEqual(row["status"], "completed")

    def test_fresh_sending_row_blocks(self):
        in_flight = create_test_ledger_row(
            status="sending",
            opened_at=TRIGGER - timedelta(minutes=5),
            updated_at=TRIGGER - timedelta(minutes=5),
        )
        supabase = self._supabase(ledger_rows=[in_flight])
        sender = _sender_ok()

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "skipped_duplicate")
        sender.assert_not_called()

    def test_last_weeks_weekly_row_does_not_block(self):
        last_week = create_test_ledger_row(
            kind="weekly",
            window_key="2026-01-19",
            window_start=datetime(2026, 1, 12, tzinfo=UTC),
            opened_at=datetime(2026, 1, 19, 10, 0, tzinfo=UTC),
        )
        supabase = self._supabase(ledger_rows=[last_week])
        monday = datetime(2026, 1, 26, 10, 0, tzinfo=UTC)

        outcome = self._runner(supabase).run("weekly", now=monday)

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(len(supabase.rows(LEDGER)), 2)

    def test_partial_send_failures_still_complete(self):
        supabase = self._supabase(subscriber_count=2)
        sender = Mock(side_effect=[
            {"success": True, "email_id": "1"},
            {"success": False, "error": "bounced"},
            {"success": True, "email_id": "3"},
        ])

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(outcome.dispatch.failed, 1)
        row = supabase.rows(LEDGER)[0]
        self.assertEqual(row["recipient_count"], 3)
        self.assertEqual(row["succeeded_count"], 2)
        self.assertEqual(row["failed_count"], 1)

    def test_successful_sends_update_subscriber_last_sent_at(self):
        supabase = self._supabase(subscriber_count=2)

        self._runner(supabase).run("daily", now=TRIGGER)

        for row in supabase.rows("subscribers"):
            self.assertEqual(row["last_sent_at"], TRIGGER.isoformat())

    def test_long_runs_refresh_ledger_row(self):
        supabase = self._supabase(subscriber_count=25)
        supabase.tables["users"] = []

        self._runner(supabase).run("daily", now=TRIGGER)

        # mark_sending + one heartbeat + complete
        self.assertEqual(supabase.count_calls(LEDGER, "update"), 3)

    def test_long_runs_refresh_ledger_row_when_every_send_fails(self):
        supabase = self._supabase(subscriber_count=25)
        supabase.tables["users"] = []
        sender = Mock(return_value={"success": False, "error": "provider down"})

        outcome = self._runner(supabase, sender).run("daily", now=TRIGGER)

        self.assertEqual(outcome.dispatch.failed, 25)
        # mark_sending + one heartbeat + complete
        self.assertEqual(supabase.count_calls(LEDGER, "update"), 3)

    def test_empty_audience_skipped_without_blocking_the_day(self):
        supabase = self._supabase(subscriber_count=0)
        supabase.tables["users"] = []
        sender = _sender_ok()
        runner = self._runner(supabase, sender)

        outcome = runner.run("daily", now=TRIGGER)

        self.assertEqual(outcome.status, "skipped_no_recipients")
        sender.assert_not_called()
        self.assertEqual(supabase.rows(LEDGER)[0]["status"], "failed")

        supabase.tables["users"] = [create_test_user(email="member@example.com")]
        retry = runner.run("daily", now=TRIGGER + timedelta(minutes=30))

        self.assertEqual(retry.status, "completed")
        self.assertEqual(sender.call_count, 1)

    def test_subject_shows_local_run_date(self):
        supabase = self._supabase(subscriber_count=1)
        sender = _sender_ok()
        # 03:00 UTC on the 25th is still the evening of the 24th in Chicago
        now = datetime(2026, 1, 25, 3, 0, tzinfo=UTC)

        self._runner(supabase, sender, timezone="America/Chicago").run("daily", now=now)

        for call in sender.call_args_list:
            self.assertTrue(call.args[0]["subject"].endswith("- Jan 24"))

    def test_send_delay_applied_between_recipients(self):
        supabase = self._supabase(subscriber_count=2)
        runner = self._runner(supabase, send_delay_ms=800)

        runner.run("daily", now=TRIGGER)

        self.assertEqual(runner.sleep.call_count, 3)
        runner.sleep.assert_called_with(0.8)


if __name__ == "__main__":
    unittest.main()
