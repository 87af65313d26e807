"""Tests for Phase 2 (weekly OFF balancing)."""

import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent))

from context.engine.assignment_engine import RunResult
from context.engine.data_loader import LeaveType, ShiftType
from context.engine.errors import ErrorCategory
from context.engine.roster_state import AssignmentBook, InMemoryAssignmentStore
from context.engine.weekly_off_balancer import balance_week, week_off_target

from roster_fixtures import (
    MON, TUE, WED, THU, FRI, SAT, WEEK, combo, leave, make_ctx, member, record, roster,
)

STAFF = ["S1", "S2", "S3", "S4", "S5", "S6"]
COMBOS = [combo(("KIM", "LEE"), 1), combo(("KIM", "LEE"), 1, has_night=True)]


class RecordingStore(InMemoryAssignmentStore):
    def __init__(self, records=()):
        super().__init__(records)
        self.calls = []

    def set_shift(self, staff_id, d, shift):
        super().set_shift(staff_id, d, shift)
        self.calls.append((staff_id, d, shift))


def _setup(shifts, rosters, leaves=()):
    """shifts: {staff_id: {date: ShiftType}}"""
    ctx = make_ctx([member(sid) for sid in STAFF], rosters, COMBOS, leaves=leaves)
    records = [record(sid, d, shift) for sid, days in shifts.items() for d, shift in days.items()]
    return ctx, AssignmentBook(ctx, records), RecordingStore(records)


def _off_total(store):
    return sum(1 for (_, d), shift in store.rows.items() if d in WEEK and shift == ShiftType.OFF)


class TestWeekOffTarget:

    def test_target_formula(self):
        """(businessDays - weeklyWorkDays) * eligibleStaff"""
        assert week_off_target(6, 4, 6) == 12

    def test_short_week_never_negative(self):
        """A three-day week with a four-day target needs no OFFs"""
        assert week_off_target(3, 4, 5) == 0


class TestTooFewOffs:

    def test_three_flips_reach_target(self):
        """Nine OFFs against a target of twelve: three work days become OFF"""
        early = {MON, TUE, WED}
        shifts = {sid: {d: ShiftType.DAY for d in WEEK} for sid in ("S1", "S2", "S3")}
        for sid in ("S4", "S5", "S6"):
            shifts[sid] = {d: ShiftType.OFF if d in early else ShiftType.DAY for d in WEEK}
        ctx, book, store = _setup(shifts, [roster(d) for d in WEEK])
        result = RunResult()

        assert _off_total(store) == 9
        swaps = balance_week(ctx, book, store, WEEK, result)

        assert swaps == 3
        assert _off_total(store) == 12
        # Fewest-OFF date first, then staff id; only staff above target lose a day
        assert store.calls == [
            ("S1", THU, ShiftType.OFF),
            ("S1", FRI, ShiftType.OFF),
            ("S2", SAT, ShiftType.OFF),
        ]
        assert result.warnings == []

    def test_flips_stop_at_personal_target(self):
        """Nobody is pushed below their weekly target"""
        shifts = {sid: {d: ShiftType.DAY for d in WEEK} for sid in STAFF}
        ctx, book, store = _setup(shifts, [roster(d) for d in WEEK])
        balance_week(ctx, book, store, WEEK, RunResult())

        for sid in STAFF:
            assert book.week_work_days(sid, WEEK) == 4


class TestTooManyOffs:

    def _all_off_midweek(self):
        off_days = {TUE, WED, THU}
        return {sid: {d: ShiftType.OFF if d in off_days else ShiftType.DAY for d in WEEK} for sid in STAFF}

    def test_off_to_work_only_on_doctor_days(self):
        """Eighteen OFFs against twelve: six flips, none on the doctorless Wednesday"""
        rosters = [roster(MON), roster(TUE), roster(THU, has_night=True), roster(FRI), roster(SAT)]
        ctx, book, store = _setup(self._all_off_midweek(), rosters)

        swaps = balance_week(ctx, book, store, WEEK, RunResult())

        assert swaps == 6
        assert _off_total(store) == 12
        assert all(store.rows[(sid, WED)] == ShiftType.OFF for sid in STAFF)
        assert [d for _, d, _ in store.calls] == [TUE, THU, TUE, THU, TUE, THU]

    def test_night_roster_flips_to_night(self):
        rosters = [roster(MON), roster(TUE), roster(THU, has_night=True), roster(FRI), roster(SAT)]
        ctx, book, store = _setup(self._all_off_midweek(), rosters)
        balance_week(ctx, book, store, WEEK, RunResult())

        assert store.rows[("S2", THU)] == ShiftType.NIGHT
        assert store.rows[("S1", TUE)] == ShiftType.DAY

    def test_confirmed_leave_is_not_flipped(self):
        """An OFF row on a confirmed leave day stays OFF"""
        rosters = [roster(MON), roster(TUE), roster(THU), roster(FRI), roster(SAT)]
        ctx, book, store = _setup(self._all_off_midweek(), rosters, leaves=[leave("S1", TUE, LeaveType.OFF)])
        balance_week(ctx, book, store, WEEK, RunResult())

        assert store.rows[("S1", TUE)] == ShiftType.OFF

    def test_no_candidates_stops_with_warning(self):
        """Without any doctor rostered nothing can move; the gap is reported"""
        ctx, book, store = _setup(self._all_off_midweek(), [])
        result = RunResult()

        assert balance_week(ctx, book, store, WEEK, result) == 0
        assert store.mutations == 0
        assert len(result.warnings) == 1
        assert result.warnings[0].category == ErrorCategory.CAPACITY
