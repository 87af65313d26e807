"""
Roster repository: loads engine inputs from the database and stores the
engine's committed units back.

Loaders return the engine's plain dataclasses so the algorithm layer never
sees ORM objects. SqlAssignmentStore commits each unit (one day, one swap,
one holiday) in its own transaction and rolls back only that unit on error.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from context.engine.data_loader import (
    AssignmentRecord, LeaveRecord, LeaveStatus, LeaveType, RunContext,
    ShiftType, build_run_context,
)
from context.engine.roster_state import AssignmentStore
from context.engine.slot_builder import Combination, DoctorRoster, SlotRequirementResolver
from context.engine.time_utils import iter_dates, month_range, previous_month
from src.database import (
    CategoryRatio, DoctorCombination, DoctorDaySlot, Holiday, LeaveApplication,
    Schedule, Staff, StaffAssignment, SCHEDULE_DEPLOYED,
)

logger = logging.getLogger(__name__)

# Days before the month loaded so consecutive-work runs carry over
HISTORY_DAYS = 14


# ============================================================================
# LOADERS
# ============================================================================

def get_schedule(session: Session, clinic_id: str, year: int, month: int) -> Optional[Schedule]:
    return session.scalars(
        select(Schedule).where(
            Schedule.clinic_id == clinic_id,
            Schedule.year == year,
            Schedule.month == month,
        )
    ).first()


def build_resolver(session: Session, clinic_id: str) -> SlotRequirementResolver:
    combos = session.scalars(
        select(DoctorCombination).where(DoctorCombination.clinic_id == clinic_id)
    ).all()
    ratios = session.scalars(
        select(CategoryRatio)
        .where(CategoryRatio.clinic_id == clinic_id)
        .order_by(CategoryRatio.department, CategoryRatio.display_order, CategoryRatio.category)
    ).all()

    category_ratios: Dict[str, List[Tuple[str, float]]] = {}
    for ratio in ratios:
        category_ratios.setdefault(ratio.department, []).append((ratio.category, ratio.percentage))

    return SlotRequirementResolver(
        [
            Combination(
                combination_id=c.id,
                doctor_ids=tuple(sorted(c.doctor_ids or [])),
                has_night=bool(c.has_night),
                requirements=dict(c.requirements or {}),
            )
            for c in combos
        ],
        category_ratios=category_ratios,
    )


def load_rosters(session: Session, schedule_id: str) -> List[DoctorRoster]:
    slots = session.scalars(
        select(DoctorDaySlot).where(DoctorDaySlot.schedule_id == schedule_id).order_by(DoctorDaySlot.date)
    ).all()
    return [DoctorRoster.of(s.date, s.doctor_ids or [], s.has_night) for s in slots]


def load_holidays(session: Session, clinic_id: str, start: date, end: date) -> List[date]:
    """Holiday dates in [start-1, end+1] so adjacency works at month edges."""
    rows = session.scalars(
        select(Holiday.date).where(
            Holiday.clinic_id == clinic_id,
            Holiday.date >= start - timedelta(days=1),
            Holiday.date <= end + timedelta(days=1),
        ).order_by(Holiday.date)
    ).all()
    return list(rows)


def load_staff(session: Session, clinic_id: str, active_only: bool = True) -> List[Staff]:
    stmt = select(Staff).where(Staff.clinic_id == clinic_id)
    if active_only:
        stmt = stmt.where(Staff.is_active.is_(True))
    return list(session.scalars(stmt.order_by(Staff.id)).all())


def to_leave_record(leave: LeaveApplication) -> LeaveRecord:
    return LeaveRecord(
        leave_id=leave.id,
        staff_id=leave.staff_id,
        date=leave.date,
        leave_type=LeaveType(leave.leave_type),
        status=LeaveStatus(leave.status),
        created_at=leave.created_at,
    )


def load_leaves(session: Session, clinic_id: str, start: date, end: date,
                statuses: Sequence[LeaveStatus] = (LeaveStatus.CONFIRMED,)) -> List[LeaveRecord]:
    rows = session.scalars(
        select(LeaveApplication).where(
            LeaveApplication.clinic_id == clinic_id,
            LeaveApplication.date >= start,
            LeaveApplication.date <= end,
            LeaveApplication.status.in_([s.value for s in statuses]),
        ).order_by(LeaveApplication.date, LeaveApplication.created_at)
    ).all()
    return [to_leave_record(leave) for leave in rows]


def to_assignment_record(row: StaffAssignment) -> AssignmentRecord:
    return AssignmentRecord(
        staff_id=row.staff_id,
        date=row.date,
        shift_type=ShiftType(row.shift_type),
        assignment_id=row.id,
        created_at=row.created_at,
    )


def load_assignment_records(session: Session, schedule_id: str) -> List[AssignmentRecord]:
    rows = session.scalars(
        select(StaffAssignment)
        .where(StaffAssignment.schedule_id == schedule_id)
        .order_by(StaffAssignment.date, StaffAssignment.created_at, StaffAssignment.id)
    ).all()
    return [to_assignment_record(r) for r in rows]


def load_history(session: Session, clinic_id: str, year: int, month: int) -> List[AssignmentRecord]:
    """Previous month's assignments for the last HISTORY_DAYS days."""
    prev_year, prev_month = previous_month(year, month)
    previous = get_schedule(session, clinic_id, prev_year, prev_month)
    if previous is None:
        return []
    start, _ = month_range(year, month)
    rows = session.scalars(
        select(StaffAssignment).where(
            StaffAssignment.schedule_id == previous.id,
            StaffAssignment.date >= start - timedelta(days=HISTORY_DAYS),
            StaffAssignment.date < start,
        )
    ).all()
    return [to_assignment_record(r) for r in rows]


def previous_month_frozen_dates(session: Session, clinic_id: str, year: int, month: int) -> Set[date]:
    """Dates of this month already covered by last month's deployed range."""
    prev_year, prev_month = previous_month(year, month)
    previous = get_schedule(session, clinic_id, prev_year, prev_month)
    if previous is None or previous.status != SCHEDULE_DEPLOYED or previous.deployed_end_date is None:
        return set()
    start, end = month_range(year, month)
    if previous.deployed_end_date < start:
        return set()
    return set(iter_dates(start, min(previous.deployed_end_date, end)))


def load_run_context(session: Session, schedule: Schedule, rules: Optional[List[dict]] = None) -> RunContext:
    """Engine inputs for a schedule; rules default to the ones stored by its last run."""
    if rules is None:
        rules = schedule.rules
    start, end = month_range(schedule.year, schedule.month)
    return build_run_context(
        clinic_id=schedule.clinic_id,
        year=schedule.year,
        month=schedule.month,
        staff=[s.to_member() for s in load_staff(session, schedule.clinic_id)],
        rosters=load_rosters(session, schedule.id),
        resolver=build_resolver(session, schedule.clinic_id),
        holidays=load_holidays(session, schedule.clinic_id, start, end),
        leaves=load_leaves(session, schedule.clinic_id, start, end),
        frozen_dates=previous_month_frozen_dates(session, schedule.clinic_id, schedule.year, schedule.month),
        rules=rules,
    )


# ============================================================================
# STORE
# ============================================================================

class SqlAssignmentStore(AssignmentStore):
    """Writes engine units for one schedule, one transaction per call."""

    def __init__(self, session: Session, schedule_id: str):
        self.session = session
        self.schedule_id = schedule_id

    def _commit(self):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def clear_dates(self, dates):
        dates = list(dates)
        if not dates:
            return 0
        try:
            result = self.session.execute(
                delete(StaffAssignment).where(
                    StaffAssignment.schedule_id == self.schedule_id,
                    StaffAssignment.date.in_(dates),
                )
            )
        except Exception:
            self.session.rollback()
            raise
        self._commit()
        return result.rowcount or 0

    def write_day(self, d, rows):
        try:
            for staff_id, shift in rows:
                self.session.add(StaffAssignment(
                    schedule_id=self.schedule_id,
                    staff_id=staff_id,
                    date=d,
                    shift_type=shift.value,
                ))
            self.session.flush()
        except Exception:
            self.session.rollback()
            raise
        self._commit()

    def set_shift(self, staff_id, d, shift):
        try:
            result = self.session.execute(
                update(StaffAssignment)
                .where(
                    StaffAssignment.schedule_id == self.schedule_id,
                    StaffAssignment.staff_id == staff_id,
                    StaffAssignment.date == d,
                )
                .values(shift_type=shift.value)
            )
            if not result.rowcount:
                raise LookupError(f"No assignment for {staff_id} on {d}")
        except Exception:
            self.session.rollback()
            raise
        self._commit()

    def force_off(self, d):
        try:
            result = self.session.execute(
                update(StaffAssignment)
                .where(
                    StaffAssignment.schedule_id == self.schedule_id,
                    StaffAssignment.date == d,
                    StaffAssignment.shift_type.in_([ShiftType.DAY.value, ShiftType.NIGHT.value]),
                )
                .values(shift_type=ShiftType.OFF.value)
            )
        except Exception:
            self.session.rollback()
            raise
        self._commit()
        return result.rowcount or 0
