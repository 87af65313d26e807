"""In-run assignment state and the store interface the phases write through.

AssignmentBook mirrors what has been committed so far and answers the
counting questions the phases ask (month totals, per-dimension counts,
consecutive runs, weekly work days). The book is only updated after the
store has committed a unit, so it never runs ahead of the database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from context.engine.data_loader import (
    AssignmentRecord, LeaveType, RunContext, ShiftType, WORK_SHIFTS,
)
from context.engine.time_utils import FairnessDimension


class AssignmentBook:
    """Current shift per (staff, date) plus running counters for the month."""

    def __init__(self, ctx: RunContext, records: Iterable[AssignmentRecord] = ()):
        self.ctx = ctx
        self._shifts: Dict[Tuple[str, date], ShiftType] = {}
        self._by_date: Dict[date, Dict[str, ShiftType]] = defaultdict(dict)
        self._month_work: Dict[str, int] = defaultdict(int)
        self._dimension_work: Dict[Tuple[str, FairnessDimension], int] = defaultdict(int)
        for record in records:
            self.set(record.staff_id, record.date, record.shift_type)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set(self, staff_id: str, d: date, shift: ShiftType):
        previous = self._shifts.get((staff_id, d))
        if previous is not None:
            self._count(staff_id, d, previous, -1)
        self._shifts[(staff_id, d)] = shift
        self._by_date[d][staff_id] = shift
        self._count(staff_id, d, shift, +1)

    def remove(self, staff_id: str, d: date):
        previous = self._shifts.pop((staff_id, d), None)
        if previous is None:
            return
        self._by_date[d].pop(staff_id, None)
        self._count(staff_id, d, previous, -1)

    def clear_dates(self, dates: Iterable[date]):
        for d in list(dates):
            for staff_id in list(self._by_date.get(d, {})):
                self.remove(staff_id, d)

    def _count(self, staff_id: str, d: date, shift: ShiftType, sign: int):
        if shift not in WORK_SHIFTS or not (self.ctx.start <= d <= self.ctx.end):
            return
        self._month_work[staff_id] += sign
        dims = self.ctx.classifier.dimensions_for(d, has_night=shift == ShiftType.NIGHT)
        for dim in dims:
            self._dimension_work[(staff_id, dim)] += sign

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, staff_id: str, d: date) -> Optional[ShiftType]:
        return self._shifts.get((staff_id, d))

    def on_date(self, d: date) -> Dict[str, ShiftType]:
        return dict(self._by_date.get(d, {}))

    def has_any_on(self, d: date) -> bool:
        return bool(self._by_date.get(d))

    def month_work_days(self, staff_id: str) -> int:
        return self._month_work[staff_id]

    def dimension_work(self, staff_id: str, dimension: FairnessDimension) -> int:
        return self._dimension_work[(staff_id, dimension)]

    def works_on(self, staff_id: str, d: date) -> bool:
        """Work shift, or confirmed annual leave (counted as a work day)."""
        if self._shifts.get((staff_id, d)) in WORK_SHIFTS:
            return True
        leave = self.ctx.confirmed_leave(staff_id, d)
        return leave is not None and leave.leave_type == LeaveType.ANNUAL

    def consecutive_work_before(self, staff_id: str, d: date, limit: int = 31) -> int:
        """Length of the unbroken work run ending the day before d."""
        run = 0
        current = d - timedelta(days=1)
        while run < limit and self.works_on(staff_id, current):
            run += 1
            current -= timedelta(days=1)
        return run

    def week_work_days(self, staff_id: str, days: Sequence[date]) -> int:
        return sum(1 for d in days if self.works_on(staff_id, d))

    def off_count(self, d: date, staff_ids: Iterable[str]) -> int:
        shifts = self._by_date.get(d, {})
        return sum(1 for sid in staff_ids if shifts.get(sid) == ShiftType.OFF)

    def records(self) -> List[AssignmentRecord]:
        return [
            AssignmentRecord(staff_id=sid, date=d, shift_type=shift)
            for (sid, d), shift in sorted(self._shifts.items(), key=lambda kv: (kv[0][1], kv[0][0]))
        ]


class AssignmentStore(ABC):
    """Where committed units go. Each call is one transaction."""

    @abstractmethod
    def clear_dates(self, dates: Sequence[date]) -> int:
        """Delete all assignments on the given dates; returns rows removed."""

    @abstractmethod
    def write_day(self, d: date, rows: Sequence[Tuple[str, ShiftType]]) -> None:
        """Insert a day's assignments (Phase 1 unit)."""

    @abstractmethod
    def set_shift(self, staff_id: str, d: date, shift: ShiftType) -> None:
        """Change one staff member's shift on one date (Phase 2 unit)."""

    @abstractmethod
    def force_off(self, d: date) -> int:
        """Turn every work assignment on a date into OFF (Phase 3 unit)."""


class InMemoryAssignmentStore(AssignmentStore):
    """Dictionary-backed store for dry runs and tests."""

    def __init__(self, records: Iterable[AssignmentRecord] = ()):
        self.rows: Dict[Tuple[str, date], ShiftType] = {
            (r.staff_id, r.date): r.shift_type for r in records
        }
        self.mutations = 0

    def clear_dates(self, dates):
        targets = set(dates)
        keys = [key for key in self.rows if key[1] in targets]
        for key in keys:
            del self.rows[key]
        self.mutations += len(keys)
        return len(keys)

    def write_day(self, d, rows):
        for staff_id, _ in rows:
            if (staff_id, d) in self.rows:
                raise ValueError(f"Assignment already exists for {staff_id} on {d}")
        for staff_id, shift in rows:
            self.rows[(staff_id, d)] = shift
        self.mutations += len(rows)

    def set_shift(self, staff_id, d, shift):
        if (staff_id, d) not in self.rows:
            raise KeyError(f"No assignment for {staff_id} on {d}")
        self.rows[(staff_id, d)] = shift
        self.mutations += 1

    def force_off(self, d):
        changed = 0
        for key, shift in self.rows.items():
            if key[1] == d and shift in WORK_SHIFTS:
                self.rows[key] = ShiftType.OFF
                changed += 1
        self.mutations += changed
        return changed
