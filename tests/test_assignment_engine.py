"""Tests for Phase 3 (holiday enforcement) and the full three-phase run."""

import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from datetime import date

import pytest

from context.engine.assignment_engine import RunResult, run_assignment
from context.engine.data_loader import AssignmentRecord, ShiftType, WORK_SHIFTS
from context.engine.holiday_enforcer import run_holiday_enforcement
from context.engine.roster_state import AssignmentBook, InMemoryAssignmentStore
from context.engine.time_utils import iter_dates

from roster_fixtures import WED, combo, leave, make_ctx, member, record, roster

MARCH = list(iter_dates(date(2025, 3, 1), date(2025, 3, 31)))
OPEN_DAYS = [d for d in MARCH if d.weekday() != 6]


def _month_ctx(staff_count=4, requirement=2, holidays=(), leaves=()):
    staff = [member(f"H{i}") for i in range(1, staff_count + 1)]
    return make_ctx(staff, [roster(d) for d in OPEN_DAYS], [combo(("KIM", "LEE"), requirement)],
                    holidays=holidays, leaves=leaves)


class TestHolidayEnforcement:

    def test_five_workers_moved_to_off(self):
        """Five DAY assignments on a holiday become OFF"""
        staff = [member(f"S{i}") for i in range(1, 6)]
        ctx = make_ctx(staff, [roster(WED)], [combo(("KIM", "LEE"), 5)], holidays=[WED])
        records = [record(m.staff_id, WED, ShiftType.DAY) for m in staff]
        book = AssignmentBook(ctx, records)
        store = InMemoryAssignmentStore(records)
        result = RunResult()

        run_holiday_enforcement(ctx, book, store, result)

        assert result.holiday_changes == 5
        assert all(shift == ShiftType.OFF for shift in store.rows.values())
        assert all(book.get(m.staff_id, WED) == ShiftType.OFF for m in staff)

    def test_holidays_outside_month_ignored(self):
        ctx = make_ctx([member("S1")], [], holidays=[date(2025, 2, 28)])
        result = RunResult()
        run_holiday_enforcement(ctx, AssignmentBook(ctx), InMemoryAssignmentStore(), result)
        assert result.holiday_changes == 0


class TestRunAssignment:

    def test_no_work_on_holidays(self):
        """Phase 3 clears what Phase 1 placed on a rostered holiday"""
        ctx = _month_ctx(holidays=[WED])
        store = InMemoryAssignmentStore()
        result = run_assignment(ctx, store)

        assert result.holiday_changes == 2
        assert not any(d == WED and shift in WORK_SHIFTS for (_, d), shift in store.rows.items())

    def test_no_work_on_confirmed_leave(self):
        ctx = _month_ctx(leaves=[leave("H1", date(2025, 3, 3))])
        store = InMemoryAssignmentStore()
        run_assignment(ctx, store)
        assert store.rows.get(("H1", date(2025, 3, 3))) is None

    def test_runs_are_deterministic(self):
        """Same inputs, same assignments"""
        first, second = InMemoryAssignmentStore(), InMemoryAssignmentStore()
        run_assignment(_month_ctx(), first)
        run_assignment(_month_ctx(), second)
        assert first.rows == second.rows

    def test_summary_fields(self):
        result = run_assignment(_month_ctx(), InMemoryAssignmentStore())
        summary = result.to_dict()

        assert summary["successCount"] == 2 * len(OPEN_DAYS)
        assert summary["failedCount"] == 0
        assert 0.0 <= summary["fairnessScore"] <= 100.0
        assert summary["slotGroups"] == {"FILLED": len(OPEN_DAYS)}
        for key in ("warnings", "phase2Swaps", "holidayChanges", "skippedDays", "clearedAssignments"):
            assert key in summary

    def test_full_mode_clears_first(self):
        """full mode deletes the month's rows before filling again"""
        ctx = _month_ctx()
        store = InMemoryAssignmentStore()
        run_assignment(ctx, store)
        before = dict(store.rows)
        existing = [AssignmentRecord(staff_id=sid, date=d, shift_type=s) for (sid, d), s in before.items()]

        result = run_assignment(ctx, store, existing, mode="full")

        assert result.cleared_assignments == len(before)
        assert result.skipped_days == 0
        assert store.rows == before

    def test_smart_rerun_is_a_no_op(self):
        ctx = _month_ctx(holidays=[WED])
        store = InMemoryAssignmentStore()
        run_assignment(ctx, store)
        existing = [AssignmentRecord(staff_id=sid, date=d, shift_type=s) for (sid, d), s in store.rows.items()]
        mutations = store.mutations

        result = run_assignment(ctx, store, existing, mode="smart")

        assert store.mutations == mutations
        assert result.phase2_swaps == 0
        assert result.holiday_changes == 0

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            run_assignment(_month_ctx(), InMemoryAssignmentStore(), mode="partial")
