"""Tests for Phase 1 (initial fill)."""

import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from context.engine.assignment_engine import RunResult
from context.engine.data_loader import AssignmentRecord, LeaveType, ShiftType
from context.engine.errors import ErrorCategory, Severity
from context.engine.initial_fill import plan_day, run_initial_fill
from context.engine.roster_state import AssignmentBook, InMemoryAssignmentStore
from context.engine.slot_builder import SlotStatus
from context.engine.time_utils import FairnessDimension

from roster_fixtures import MON, TUE, WED, THU, combo, leave, make_ctx, member, roster


def _staff(*ids, **kwargs):
    return [member(sid, **kwargs) for sid in ids]


def _records(store):
    return [AssignmentRecord(staff_id=sid, date=d, shift_type=shift) for (sid, d), shift in store.rows.items()]


class TestPlanDay:

    def test_four_staff_fill_four_slots(self):
        """Roster {KIM, LEE} needing four hygienists puts all four on DAY"""
        ctx = make_ctx(_staff("H1", "H2", "H3", "H4"), [roster(MON)], [combo(("KIM", "LEE"), 4)])
        rows, groups, warnings = plan_day(ctx, AssignmentBook(ctx), MON)

        assert sorted(rows) == [(sid, ShiftType.DAY) for sid in ("H1", "H2", "H3", "H4")]
        assert len(groups) == 1
        assert groups[0].status == SlotStatus.FILLED
        assert warnings == []

    def test_everyone_else_gets_off(self):
        """Unselected staff of a rostered pool get an explicit OFF"""
        ctx = make_ctx(_staff("H1", "H2", "H3"), [roster(MON)], [combo(("KIM", "LEE"), 1)])
        rows, _, _ = plan_day(ctx, AssignmentBook(ctx), MON)
        assert dict(rows) == {"H1": ShiftType.DAY, "H2": ShiftType.OFF, "H3": ShiftType.OFF}

    def test_night_roster_assigns_night(self):
        ctx = make_ctx(_staff("H1", "H2"), [roster(MON, has_night=True)],
                       [combo(("KIM", "LEE"), 1, has_night=True)])
        rows, _, _ = plan_day(ctx, AssignmentBook(ctx), MON)
        assert dict(rows)["H1"] == ShiftType.NIGHT

    def test_confirmed_annual_leave_excluded_without_row(self):
        """Staff on annual leave are never chosen and get no row"""
        ctx = make_ctx(_staff("H1", "H2", "H3", "H4"), [roster(MON)], [combo(("KIM", "LEE"), 3)],
                       leaves=[leave("H1", MON)])
        rows, groups, _ = plan_day(ctx, AssignmentBook(ctx), MON)
        assert "H1" not in dict(rows)
        assert sorted(groups[0].assigned) == ["H2", "H3", "H4"]

    def test_confirmed_off_leave_gets_off_row(self):
        ctx = make_ctx(_staff("H1", "H2"), [roster(MON)], [combo(("KIM", "LEE"), 1)],
                       leaves=[leave("H1", MON, LeaveType.OFF)])
        rows, _, _ = plan_day(ctx, AssignmentBook(ctx), MON)
        assert dict(rows) == {"H1": ShiftType.OFF, "H2": ShiftType.DAY}

    def test_under_worked_ledger_wins_the_slot(self):
        """A positive TOTAL deviation moves a staff member up the ranking"""
        staff = [member("H1"), member("H2", deviation={FairnessDimension.TOTAL: 3.0})]
        ctx = make_ctx(staff, [roster(MON)], [combo(("KIM", "LEE"), 1)])
        rows, _, _ = plan_day(ctx, AssignmentBook(ctx), MON)
        assert dict(rows)["H2"] == ShiftType.DAY

    def test_shortage_is_critical_capacity_warning(self):
        """Three staff for four slots: partially filled plus a CRITICAL warning"""
        ctx = make_ctx(_staff("H1", "H2", "H3"), [roster(MON)], [combo(("KIM", "LEE"), 4)])
        _, groups, warnings = plan_day(ctx, AssignmentBook(ctx), MON)

        assert groups[0].status == SlotStatus.PARTIALLY_FILLED
        assert groups[0].shortage == 1
        assert len(warnings) == 1
        assert warnings[0].category == ErrorCategory.CAPACITY
        assert warnings[0].severity == Severity.CRITICAL


class TestRunInitialFill:

    def test_counts_and_continues_after_shortage(self):
        """A short day is reported and the next day is still filled"""
        ctx = make_ctx(_staff("H1", "H2", "H3"), [roster(MON), roster(TUE)], [combo(("KIM", "LEE"), 4)])
        store = InMemoryAssignmentStore()
        result = RunResult()
        run_initial_fill(ctx, AssignmentBook(ctx), store, result)

        assert result.success_count == 6
        assert result.failed_count == 2
        assert result.slot_groups == {"PARTIALLY_FILLED": 2}
        assert store.rows[("H1", TUE)] == ShiftType.DAY

    def test_work_rotates_by_month_total(self):
        """With one slot a day the slot alternates between two staff"""
        ctx = make_ctx(_staff("H1", "H2"), [roster(MON), roster(TUE)], [combo(("KIM", "LEE"), 1)])
        store = InMemoryAssignmentStore()
        run_initial_fill(ctx, AssignmentBook(ctx), store, RunResult())

        assert store.rows[("H1", MON)] == ShiftType.DAY
        assert store.rows[("H2", TUE)] == ShiftType.DAY

    def test_unrostered_days_are_off(self):
        """Every rostered-pool member has exactly one row on every day"""
        ctx = make_ctx(_staff("H1", "H2"), [roster(MON)], [combo(("KIM", "LEE"), 1)])
        store = InMemoryAssignmentStore()
        run_initial_fill(ctx, AssignmentBook(ctx), store, RunResult())

        assert len(store.rows) == 2 * 31
        assert store.rows[("H1", WED)] == ShiftType.OFF

    def test_smart_rerun_makes_no_changes(self):
        """Re-running smart mode on a filled month writes nothing"""
        ctx = make_ctx(_staff("H1", "H2", "H3"), [roster(MON), roster(TUE)], [combo(("KIM", "LEE"), 2)])
        first = InMemoryAssignmentStore()
        run_initial_fill(ctx, AssignmentBook(ctx), first, RunResult())

        records = _records(first)
        second = InMemoryAssignmentStore(records)
        result = RunResult()
        run_initial_fill(ctx, AssignmentBook(ctx, records), second, result, mode="smart")

        assert second.mutations == 0
        assert result.skipped_days == 31
        assert second.rows == first.rows

    def test_frozen_dates_untouched(self):
        ctx = make_ctx(_staff("H1", "H2"), [roster(MON)], [combo(("KIM", "LEE"), 1)], frozen=[MON])
        store = InMemoryAssignmentStore()
        run_initial_fill(ctx, AssignmentBook(ctx), store, RunResult())
        assert not any(d == MON for _, d in store.rows)

    def test_consecutive_overrun_warns(self):
        """Working past maxConsecutiveWorkDays is allowed but reported"""
        rules = [{'id': 'maxConsecutiveWorkDays', 'defaultValue': 2}]
        ctx = make_ctx(_staff("H1"), [roster(d) for d in (MON, TUE, WED, THU)],
                       [combo(("KIM", "LEE"), 1)], rules=rules)
        result = RunResult()
        run_initial_fill(ctx, AssignmentBook(ctx), InMemoryAssignmentStore(), result)

        overruns = [w for w in result.warnings if "consecutive" in w.message]
        assert [w.date for w in overruns] == [WED, THU]
        assert all(w.severity == Severity.WARNING for w in overruns)

    def test_failed_day_becomes_warning(self):
        """A store error on one day is recorded and the run moves on"""

        class FailingStore(InMemoryAssignmentStore):
            def write_day(self, d, rows):
                if d == MON:
                    raise RuntimeError("disk full")
                super().write_day(d, rows)

        ctx = make_ctx(_staff("H1", "H2"), [roster(MON), roster(TUE)], [combo(("KIM", "LEE"), 1)])
        store = FailingStore()
        result = RunResult()
        run_initial_fill(ctx, AssignmentBook(ctx), store, result)

        errors = [w for w in result.warnings if w.severity == Severity.ERROR]
        assert len(errors) == 1 and errors[0].date == MON
        assert result.failed_count == 1
        assert ("H1", TUE) in store.rows
        assert not any(d == MON for _, d in store.rows)
