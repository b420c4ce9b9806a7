"""test_temp_log.py — Tests for the driver temp-log engine and session state machine.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_temp_log.py -v
"""

from __future__ import annotations

import datetime as dt
import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from memory_stores import InMemoryTempLogStore
from raptor_shared.errors import Forbidden, InvalidState, ValidationError
from raptor_shared.record_store import ConditionFailed
from raptor_shared.temp_log import TempLogEngine
from raptor_shared.temp_log_state import SessionStatus, require_open, status_of, transition

DRIVER_X = "7"
DRIVER_Y = "8"


class SessionStateTests(unittest.TestCase):
    def test_in_progress_may_complete(self):
        self.assertIs(
            transition(SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED),
            SessionStatus.COMPLETED,
        )

    def test_completed_is_terminal(self):
        for target in SessionStatus:
            with self.assertRaises(InvalidState):
                transition(SessionStatus.COMPLETED, target)

    def test_require_open_rejects_completed(self):
        with self.assertRaises(InvalidState) as ctx:
            require_open({"status": "completed"}, "closed")
        self.assertEqual(ctx.exception.message, "closed")

    def test_unknown_status_is_invalid_state(self):
        with self.assertRaises(InvalidState):
            status_of({"status": "archived"})


class _EngineTestCase(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryTempLogStore()
        self.engine = TempLogEngine(self.store)


class SessionLifecycleTests(_EngineTestCase):
    def test_create_session_defaults(self):
        session = self.engine.create_session(7, vehicle_id="VAN-2", notes="")
        self.assertEqual(session["status"], "in_progress")
        self.assertEqual(session["driver_id"], "7")
        self.assertEqual(session["vehicle_id"], "VAN-2")
        self.assertIsNone(session["notes"])
        self.assertEqual(session["last_stop_number"], 0)
        self.assertEqual(session["session_date"], dt.datetime.now(dt.timezone.utc).date().isoformat())
        self.assertIn(session["id"], self.store.sessions)

    def test_no_active_session(self):
        self.assertIsNone(self.engine.get_active_session(DRIVER_X))

    def test_active_session_is_newest_in_progress(self):
        older = self.engine.create_session(DRIVER_X)
        newer = self.engine.create_session(DRIVER_X)
        self.store.sessions[older["id"]]["created_at"] = "2026-01-01T00:00:00.000000Z"
        self.store.sessions[newer["id"]]["created_at"] = "2026-01-02T00:00:00.000000Z"
        active = self.engine.get_active_session(DRIVER_X)
        self.assertEqual(active["id"], newer["id"])
        self.assertEqual(active["entries"], [])

    def test_active_session_ignores_other_drivers(self):
        self.engine.create_session(DRIVER_Y)
        self.assertIsNone(self.engine.get_active_session(DRIVER_X))

    def test_active_session_entries_sorted_by_timestamp(self):
        session = self.engine.create_session(DRIVER_X)
        first = self.engine.add_entry(session["id"], DRIVER_X, "pickup", 34)
        second = self.engine.add_entry(session["id"], DRIVER_X, "delivery", 38)
        self.store.entries[first["id"]]["timestamp"] = "2026-01-01T10:00:00.000000Z"
        self.store.entries[second["id"]]["timestamp"] = "2026-01-01T09:00:00.000000Z"
        active = self.engine.get_active_session(DRIVER_X)
        self.assertEqual([e["id"] for e in active["entries"]], [second["id"], first["id"]])

    def test_multiple_in_progress_sessions_allowed_by_default(self):
        self.engine.create_session(DRIVER_X)
        self.engine.create_session(DRIVER_X)
        self.assertEqual(len(self.store.sessions), 2)

    def test_single_active_session_flag(self):
        engine = TempLogEngine(self.store, single_active_session=True)
        engine.create_session(DRIVER_X)
        with self.assertRaises(InvalidState):
            engine.create_session(DRIVER_X)
        engine.create_session(DRIVER_Y)

    def test_complete_session(self):
        session = self.engine.create_session(DRIVER_X)
        completed = self.engine.complete_session(session["id"], DRIVER_X)
        self.assertEqual(completed["status"], "completed")
        self.assertIn("completed_at", completed)

    def test_complete_session_requires_id(self):
        with self.assertRaises(ValidationError) as ctx:
            self.engine.complete_session(None, DRIVER_X)
        self.assertEqual(ctx.exception.message, "Session ID required")

    def test_complete_twice_is_invalid_state(self):
        session = self.engine.create_session(DRIVER_X)
        self.engine.complete_session(session["id"], DRIVER_X)
        with self.assertRaises(InvalidState):
            self.engine.complete_session(session["id"], DRIVER_X)

    def test_complete_missing_session_is_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.complete_session("missing", DRIVER_X)


class SessionHistoryTests(_EngineTestCase):
    def test_history_window_and_counts(self):
        recent = self.engine.create_session(DRIVER_X)
        old = self.engine.create_session(DRIVER_X)
        self.engine.add_entry(recent["id"], DRIVER_X, "pickup", 33.1)
        self.engine.add_entry(recent["id"], DRIVER_X, "delivery", 36.4)
        self.store.sessions[old["id"]]["session_date"] = "2000-01-01"

        history = self.engine.get_session_history(DRIVER_X)
        self.assertEqual([s["id"] for s in history], [recent["id"]])
        self.assertEqual(history[0]["entry_count"], 2)

    def test_history_newest_first(self):
        a = self.engine.create_session(DRIVER_X)
        b = self.engine.create_session(DRIVER_X)
        self.store.sessions[a["id"]]["created_at"] = "2026-01-03T00:00:00.000000Z"
        self.store.sessions[b["id"]]["created_at"] = "2026-01-01T00:00:00.000000Z"
        history = self.engine.get_session_history(DRIVER_X)
        self.assertEqual([s["id"] for s in history], [a["id"], b["id"]])
        self.assertEqual(history[1]["entry_count"], 0)

    def test_history_custom_window(self):
        session = self.engine.create_session(DRIVER_X)
        five_days_ago = dt.datetime.now(dt.timezone.utc).date() - dt.timedelta(days=5)
        self.store.sessions[session["id"]]["session_date"] = five_days_ago.isoformat()
        self.assertEqual(self.engine.get_session_history(DRIVER_X, window_days=3), [])
        self.assertEqual(len(self.engine.get_session_history(DRIVER_X, window_days="7")), 1)

    def test_history_rejects_bad_window(self):
        with self.assertRaises(ValidationError):
            self.engine.get_session_history(DRIVER_X, window_days=-1)

    def test_history_rejects_oversized_window(self):
        for days in (3651, 1000000, "1000000"):
            with self.assertRaises(ValidationError) as ctx:
                self.engine.get_session_history(DRIVER_X, window_days=days)
            self.assertEqual(ctx.exception.extra["field"], "windowDays")

    def test_history_accepts_largest_window(self):
        self.engine.create_session(DRIVER_X)
        self.assertEqual(len(self.engine.get_session_history(DRIVER_X, window_days=3650)), 1)

    def test_history_excludes_other_drivers(self):
        self.engine.create_session(DRIVER_Y)
        self.assertEqual(self.engine.get_session_history(DRIVER_X), [])


class AddEntryTests(_EngineTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.engine.create_session(DRIVER_X)

    def test_requires_fields(self):
        with self.assertRaises(ValidationError):
            self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", None)
        with self.assertRaises(ValidationError):
            self.engine.add_entry(self.session["id"], DRIVER_X, None, 35)
        with self.assertRaises(ValidationError):
            self.engine.add_entry("", DRIVER_X, "pickup", 35)

    def test_rejects_unknown_entry_type(self):
        with self.assertRaises(ValidationError) as ctx:
            self.engine.add_entry(self.session["id"], DRIVER_X, "transfer", 35)
        self.assertEqual(ctx.exception.message, "entryType must be pickup or delivery")

    def test_rejects_non_numeric_temperature(self):
        with self.assertRaises(ValidationError):
            self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", "cold")

    def test_temperature_coerced_to_float(self):
        entry = self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", "34.5")
        self.assertEqual(entry["temperature"], 34.5)
        self.assertIsInstance(entry["temperature"], float)

    def test_pickup_always_stop_zero(self):
        entry = self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", 34, stop_number=9)
        self.assertEqual(entry["stop_number"], 0)

    def test_deliveries_number_sequentially(self):
        self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", 34)
        stops = [
            self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38)["stop_number"]
            for _ in range(3)
        ]
        self.assertEqual(stops, [1, 2, 3])

    def test_stop_numbers_scoped_per_session(self):
        other = self.engine.create_session(DRIVER_X)
        self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38)
        entry = self.engine.add_entry(other["id"], DRIVER_X, "delivery", 38)
        self.assertEqual(entry["stop_number"], 1)

    def test_explicit_stop_number_used_and_continued(self):
        entry = self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, stop_number=5)
        self.assertEqual(entry["stop_number"], 5)
        nxt = self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38)
        self.assertEqual(nxt["stop_number"], 6)

    def test_explicit_lower_stop_number_keeps_counter(self):
        self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, stop_number=4)
        entry = self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, stop_number=2)
        self.assertEqual(entry["stop_number"], 2)
        self.assertEqual(self.store.sessions[self.session["id"]]["last_stop_number"], 4)

    def test_zero_stop_number_means_next(self):
        stops = [
            self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, stop_number=raw)["stop_number"]
            for raw in (0, "0", " 0 ", "")
        ]
        self.assertEqual(stops, [1, 2, 3, 4])

    def test_stop_counter_not_reused_after_delete(self):
        entries = [
            self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38) for _ in range(3)
        ]
        self.engine.delete_entry(entries[-1]["id"], DRIVER_X)
        entry = self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38)
        self.assertEqual(entry["stop_number"], 4)

    def test_explicit_stop_number_must_be_positive_int(self):
        for bad in (-1, "two", 1.5, 2.0, "02"):
            with self.assertRaises(ValidationError):
                self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, stop_number=bad)

    def test_optional_fields_blank_become_none(self):
        entry = self.engine.add_entry(
            self.session["id"], DRIVER_X, "delivery", 38,
            location_name="Cafe 4", photo_url="", notes=None,
        )
        self.assertEqual(entry["location_name"], "Cafe 4")
        self.assertIsNone(entry["photo_url"])
        self.assertIsNone(entry["notes"])
        self.assertEqual(entry["session_id"], self.session["id"])
        self.assertIn("timestamp", entry)

    def test_other_driver_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.add_entry(self.session["id"], DRIVER_Y, "pickup", 34)
        self.assertEqual(self.store.entries, {})

    def test_missing_session_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.add_entry("no-such-session", DRIVER_X, "pickup", 34)

    def test_completed_session_rejected(self):
        self.engine.complete_session(self.session["id"], DRIVER_X)
        with self.assertRaises(InvalidState):
            self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38)

    def test_session_completed_between_check_and_write(self):
        """The write guard catches a completion that lands after the ownership read."""
        original_get = self.store.get_session
        calls = []

        def get_then_complete(session_id):
            session = original_get(session_id)
            if not calls:
                self.store.sessions[session_id]["status"] = "completed"
            calls.append(session_id)
            return session

        with patch.object(self.store, "get_session", side_effect=get_then_complete):
            with self.assertRaises(InvalidState):
                self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", 34)
        self.assertEqual(self.store.entries, {})
        self.assertEqual(len(calls), 2)

    def test_failed_put_guard_reports_forbidden_after_reassignment(self):
        def reassign_then_fail(entry, driver_id):
            self.store.sessions[self.session["id"]]["driver_id"] = DRIVER_Y
            raise ConditionFailed("guard")

        with patch.object(self.store, "put_entry", side_effect=reassign_then_fail):
            with self.assertRaises(Forbidden):
                self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", 34)


class UpdateEntryTests(_EngineTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.engine.create_session(DRIVER_X)
        self.entry = self.engine.add_entry(self.session["id"], DRIVER_X, "delivery", 38, notes="n1")

    def test_updates_only_supplied_fields(self):
        updated = self.engine.update_entry(
            self.entry["id"], DRIVER_X, {"temperature": "39.25", "photo_url": "https://x/p.jpg"},
        )
        self.assertEqual(updated["temperature"], 39.25)
        self.assertEqual(updated["photo_url"], "https://x/p.jpg")
        self.assertEqual(updated["notes"], "n1")
        self.assertEqual(updated["stop_number"], 1)

    def test_ignores_non_updatable_fields(self):
        updated = self.engine.update_entry(
            self.entry["id"], DRIVER_X, {"notes": "n2", "stop_number": 40, "session_id": "x"},
        )
        self.assertEqual(updated["notes"], "n2")
        self.assertEqual(updated["stop_number"], 1)
        self.assertEqual(updated["session_id"], self.session["id"])

    def test_requires_entry_id(self):
        with self.assertRaises(ValidationError):
            self.engine.update_entry(None, DRIVER_X, {"notes": "x"})

    def test_requires_some_field(self):
        with self.assertRaises(ValidationError):
            self.engine.update_entry(self.entry["id"], DRIVER_X, {"stop_number": 3})

    def test_bad_temperature(self):
        with self.assertRaises(ValidationError):
            self.engine.update_entry(self.entry["id"], DRIVER_X, {"temperature": None})

    def test_other_driver_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.update_entry(self.entry["id"], DRIVER_Y, {"notes": "hijack"})
        self.assertEqual(self.store.entries[self.entry["id"]]["notes"], "n1")

    def test_missing_entry_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.update_entry("missing", DRIVER_X, {"notes": "x"})

    def test_completed_session_immutable(self):
        self.engine.complete_session(self.session["id"], DRIVER_X)
        with self.assertRaises(InvalidState):
            self.engine.update_entry(self.entry["id"], DRIVER_X, {"notes": "late"})


class DeleteEntryTests(_EngineTestCase):
    def setUp(self):
        super().setUp()
        self.session = self.engine.create_session(DRIVER_X)
        self.entry = self.engine.add_entry(self.session["id"], DRIVER_X, "pickup", 34)

    def test_delete(self):
        self.assertIsNone(self.engine.delete_entry(self.entry["id"], DRIVER_X))
        self.assertNotIn(self.entry["id"], self.store.entries)

    def test_requires_entry_id(self):
        with self.assertRaises(ValidationError):
            self.engine.delete_entry("", DRIVER_X)

    def test_other_driver_forbidden(self):
        with self.assertRaises(Forbidden):
            self.engine.delete_entry(self.entry["id"], DRIVER_Y)
        self.assertIn(self.entry["id"], self.store.entries)

    def test_completed_session_rejected(self):
        self.engine.complete_session(self.session["id"], DRIVER_X)
        with self.assertRaises(InvalidState):
            self.engine.delete_entry(self.entry["id"], DRIVER_X)
        self.assertIn(self.entry["id"], self.store.entries)

    def test_entry_vanished_before_write(self):
        with patch.object(self.store, "delete_entry", side_effect=ConditionFailed("entry")):
            with self.assertRaises(Forbidden):
                self.engine.delete_entry(self.entry["id"], DRIVER_X)


class OwnershipIsolationTests(_EngineTestCase):
    def test_driver_cannot_touch_another_drivers_session(self):
        session = self.engine.create_session(DRIVER_Y)
        entry = self.engine.add_entry(session["id"], DRIVER_Y, "pickup", 35)

        with self.assertRaises(Forbidden):
            self.engine.complete_session(session["id"], DRIVER_X)
        with self.assertRaises(Forbidden):
            self.engine.add_entry(session["id"], DRIVER_X, "delivery", 38)
        with self.assertRaises(Forbidden):
            self.engine.update_entry(entry["id"], DRIVER_X, {"temperature": 1})
        with self.assertRaises(Forbidden):
            self.engine.delete_entry(entry["id"], DRIVER_X)

        self.assertEqual(self.store.sessions[session["id"]]["status"], "in_progress")
        self.assertEqual(self.store.entries[entry["id"]]["temperature"], 35.0)


class DeliveryRouteScenarioTests(_EngineTestCase):
    def test_full_route(self):
        session = self.engine.create_session(DRIVER_X)
        active = self.engine.get_active_session(DRIVER_X)
        self.assertEqual(active["id"], session["id"])
        self.assertEqual(active["status"], "in_progress")
        self.assertEqual(active["entries"], [])

        pickup = self.engine.add_entry(session["id"], DRIVER_X, "pickup", 34.5)
        self.assertEqual(pickup["stop_number"], 0)
        first = self.engine.add_entry(session["id"], DRIVER_X, "delivery", 38.0)
        second = self.engine.add_entry(session["id"], DRIVER_X, "delivery", 39.2)
        self.assertEqual((first["stop_number"], second["stop_number"]), (1, 2))

        completed = self.engine.complete_session(session["id"], DRIVER_X)
        self.assertEqual(completed["status"], "completed")
        self.assertIsNone(self.engine.get_active_session(DRIVER_X))

        with self.assertRaises(InvalidState):
            self.engine.add_entry(session["id"], DRIVER_X, "delivery", 40.0)
        with self.assertRaises(InvalidState):
            self.engine.update_entry(first["id"], DRIVER_X, {"notes": "late"})
        with self.assertRaises(InvalidState):
            self.engine.delete_entry(second["id"], DRIVER_X)
        with self.assertRaises(InvalidState):
            self.engine.complete_session(session["id"], DRIVER_X)

        history = self.engine.get_session_history(DRIVER_X)
        self.assertEqual(history[0]["entry_count"], 3)


if __name__ == "__main__":
    unittest.main()
