"""
Leave applications and their quota decisions.

Every status change opens its transaction with begin_write_transaction()
and then locks the pool's active staff rows with SELECT ... FOR UPDATE.
On sqlite the first step holds the database write lock, elsewhere the row
locks serialize the pool; either way two requests competing for the last
slot of a pool are evaluated one after the other and cannot both see
"one slot remaining".

Status flow:
    submit   -> PENDING | ON_HOLD | REJECTED
    approve  PENDING/ON_HOLD -> CONFIRMED   (quota re-checked)
    reject   PENDING/ON_HOLD -> REJECTED
    process_on_hold (after an assignment run) ON_HOLD -> CONFIRMED
"""

import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from context.engine.data_loader import LeaveStatus, LeaveType, RunContext, ShiftType
from context.engine.errors import ConflictError, DataError, RosterError
from context.engine.fairness import FairnessLedger, QuotaCalculator, QuotaDecision
from context.engine.time_utils import month_range
from src.database import (
    LeaveApplication, LeavePeriod, Staff, StaffAssignment, begin_write_transaction, utcnow,
)
from src.roster_repository import get_schedule, load_run_context

logger = logging.getLogger(__name__)

ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.CONFIRMED.value)
OPEN_LEAVE_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.ON_HOLD.value)


class LeaveRequestError(RosterError):
    """Leave request that cannot be accepted as submitted."""


# ============================================================================
# LOOKUPS
# ============================================================================

def get_leave_period(session: Session, clinic_id: str, year: int, month: int) -> Tuple[date, date, Optional[int]]:
    """Open leave window for a month: (start, end, max annual leaves per day)."""
    period = session.scalars(
        select(LeavePeriod).where(
            LeavePeriod.clinic_id == clinic_id,
            LeavePeriod.year == year,
            LeavePeriod.month == month,
            LeavePeriod.is_active.is_(True),
        )
    ).first()
    if period is None:
        start, end = month_range(year, month)
        return start, end, None
    return period.start_date, period.end_date, period.max_annual_per_day


def lock_pool(session: Session, clinic_id: str, department: str, category: str) -> List[Staff]:
    """Lock the active staff rows of a pool for the rest of the transaction."""
    return list(session.scalars(
        select(Staff)
        .where(
            Staff.clinic_id == clinic_id,
            Staff.department == department,
            Staff.category == category,
            Staff.is_active.is_(True),
        )
        .order_by(Staff.id)
        .with_for_update()
    ).all())


def _get_staff(session: Session, staff_id: str) -> Staff:
    staff = session.get(Staff, staff_id)
    if staff is None:
        raise DataError(f"Staff {staff_id} not found", code="STAFF_NOT_FOUND")
    return staff


def _get_leave(session: Session, leave_id: str) -> LeaveApplication:
    leave = session.scalars(
        select(LeaveApplication).where(LeaveApplication.id == leave_id).with_for_update()
    ).first()
    if leave is None:
        raise DataError(f"Leave application {leave_id} not found", code="LEAVE_NOT_FOUND")
    return leave


def _context_for(session: Session, clinic_id: str, d: date) -> RunContext:
    schedule = get_schedule(session, clinic_id, d.year, d.month)
    if schedule is None:
        raise DataError(f"No schedule for {clinic_id} {d.year}-{d.month:02d}", code="NO_SCHEDULE")
    return load_run_context(session, schedule)


# ============================================================================
# QUOTA DECISION
# ============================================================================

def evaluate_leave(session: Session, staff: Staff, d: date,
                   exclude_leave_id: Optional[str] = None,
                   ctx: Optional[RunContext] = None) -> QuotaDecision:
    """
    Quota decision for a leave of `staff` on `d`.

    The caller is expected to hold the pool lock when the decision is used
    to change a leave status.
    """
    ctx = ctx or _context_for(session, staff.clinic_id, d)
    start, end, _ = get_leave_period(session, staff.clinic_id, d.year, d.month)
    pool = (staff.department, staff.category)

    own = session.scalars(
        select(LeaveApplication.date).where(
            LeaveApplication.staff_id == staff.id,
            LeaveApplication.date >= start,
            LeaveApplication.date <= end,
            LeaveApplication.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveApplication.id != (exclude_leave_id or ""),
        )
    ).all()

    pool_ids = ctx.pools.get(pool, [])
    taken_on_day = session.scalar(
        select(func.count(LeaveApplication.id)).where(
            LeaveApplication.staff_id.in_(pool_ids),
            LeaveApplication.date == d,
            LeaveApplication.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveApplication.id != (exclude_leave_id or ""),
        )
    ) or 0
    day_slots_available = len(pool_ids) - ctx.requirement(d, pool) - taken_on_day

    calculator = QuotaCalculator(
        requirement_for=ctx.requirement,
        has_night=ctx.has_night,
        pool_size=lambda p: len(ctx.pools.get(p, [])),
        classifier=ctx.classifier,
        ledger=FairnessLedger.from_staff([staff.to_member()]),
    )
    return calculator.evaluate(staff.id, pool, d, (start, end), list(own), day_slots_available)


def check_quota(session: Session, staff_id: str, d: date) -> QuotaDecision:
    """Read-only quota decision (no lock, no write)."""
    return evaluate_leave(session, _get_staff(session, staff_id), d)


# ============================================================================
# STATUS CHANGES
# ============================================================================

def submit_leave(session: Session, staff_id: str, d: date, leave_type: LeaveType,
                 reason: Optional[str] = None) -> Tuple[LeaveApplication, Optional[QuotaDecision]]:
    """
    Store a new leave application with its quota decision.

    Raises:
        DataError: Unknown staff or no schedule for the month
        LeaveRequestError: Date outside the leave period
        ConflictError: Staff already has an open or confirmed leave that day
    """
    staff = _get_staff(session, staff_id)
    start, end, max_annual = get_leave_period(session, staff.clinic_id, d.year, d.month)
    if not (start <= d <= end):
        raise LeaveRequestError(
            f"{d.isoformat()} is outside the leave period {start.isoformat()}..{end.isoformat()}",
            code="OUTSIDE_LEAVE_PERIOD",
        )

    try:
        begin_write_transaction(session)
        lock_pool(session, staff.clinic_id, staff.department, staff.category)

        existing = session.scalars(
            select(LeaveApplication).where(
                LeaveApplication.staff_id == staff.id,
                LeaveApplication.date == d,
                LeaveApplication.status != LeaveStatus.REJECTED.value,
            )
        ).first()
        if existing is not None:
            raise ConflictError(f"Leave already requested for {d.isoformat()}", code="DUPLICATE_LEAVE")

        decision = None
        status = None
        note = reason
        if leave_type == LeaveType.ANNUAL and max_annual is not None:
            annual_that_day = session.scalar(
                select(func.count(LeaveApplication.id)).where(
                    LeaveApplication.clinic_id == staff.clinic_id,
                    LeaveApplication.date == d,
                    LeaveApplication.leave_type == LeaveType.ANNUAL.value,
                    LeaveApplication.status != LeaveStatus.REJECTED.value,
                )
            ) or 0
            if annual_that_day >= max_annual:
                status = LeaveStatus.REJECTED
                note = f"Annual leave limit of {max_annual} per day reached"

        if status is None:
            decision = evaluate_leave(session, staff, d)
            if not decision.can_approve:
                status = LeaveStatus.REJECTED
            elif decision.should_hold:
                status = LeaveStatus.ON_HOLD
            else:
                status = LeaveStatus.PENDING

        leave = LeaveApplication(
            clinic_id=staff.clinic_id,
            staff_id=staff.id,
            date=d,
            leave_type=leave_type.value,
            status=status.value,
            reason=note,
            decided_at=utcnow() if status == LeaveStatus.REJECTED else None,
        )
        session.add(leave)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Leave %s for %s on %s: %s", leave.id, staff.id, d, status.value)
    return leave, decision


def approve_leave(session: Session, leave_id: str) -> Tuple[LeaveApplication, QuotaDecision]:
    """
    Confirm a PENDING or ON_HOLD leave after re-checking the quota.

    A leave whose day slot is still taken stays ON_HOLD.

    Raises:
        LeaveRequestError: Leave is not open
        ConflictError: Quota no longer allows the leave
    """
    try:
        begin_write_transaction(session)
        leave = _get_leave(session, leave_id)
        if leave.status not in OPEN_LEAVE_STATUSES:
            raise LeaveRequestError(f"Leave {leave_id} is {leave.status}", code="LEAVE_NOT_OPEN")
        staff = _get_staff(session, leave.staff_id)
        lock_pool(session, staff.clinic_id, staff.department, staff.category)

        decision = evaluate_leave(session, staff, leave.date, exclude_leave_id=leave.id)
        if not decision.can_approve:
            raise ConflictError(decision.reason or "Quota exceeded", code="QUOTA_EXCEEDED")
        if decision.should_hold:
            leave.status = LeaveStatus.ON_HOLD.value
        else:
            leave.status = LeaveStatus.CONFIRMED.value
            leave.decided_at = utcnow()
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Leave %s -> %s", leave.id, leave.status)
    return leave, decision


def reject_leave(session: Session, leave_id: str, reason: Optional[str] = None) -> LeaveApplication:
    try:
        begin_write_transaction(session)
        leave = _get_leave(session, leave_id)
        if leave.status not in OPEN_LEAVE_STATUSES:
            raise LeaveRequestError(f"Leave {leave_id} is {leave.status}", code="LEAVE_NOT_OPEN")
        leave.status = LeaveStatus.REJECTED.value
        leave.decided_at = utcnow()
        if reason:
            leave.reason = reason
        session.commit()
    except Exception:
        session.rollback()
        raise
    return leave


def _slot_covered_by_others(session: Session, ctx: RunContext, schedule_id: str, staff: Staff, d: date) -> bool:
    """True when the staff member is not working that day and the pool's
    requirement is already met by other assigned staff."""
    pool = (staff.department, staff.category)
    rows = session.scalars(
        select(StaffAssignment).where(
            StaffAssignment.schedule_id == schedule_id,
            StaffAssignment.date == d,
            StaffAssignment.staff_id.in_(ctx.pools.get(pool, [])),
        )
    ).all()
    working = {r.staff_id for r in rows if r.shift_type != ShiftType.OFF.value}
    if staff.id in working:
        return False
    return len(working) >= ctx.requirement(d, pool)


def process_on_hold(session: Session, clinic_id: str, year: int, month: int) -> int:
    """
    Confirm ON_HOLD leaves of the month that now fit, oldest first.

    A held leave is confirmed when its quota passes and either a day slot
    has opened up or the assignment run already covered the day without
    the staff member. One commit per leave.

    Returns:
        Number of leaves confirmed
    """
    schedule = get_schedule(session, clinic_id, year, month)
    if schedule is None:
        return 0
    start, end = month_range(year, month)
    held = session.scalars(
        select(LeaveApplication).where(
            LeaveApplication.clinic_id == clinic_id,
            LeaveApplication.date >= start,
            LeaveApplication.date <= end,
            LeaveApplication.status == LeaveStatus.ON_HOLD.value,
        ).order_by(LeaveApplication.created_at, LeaveApplication.id)
    ).all()
    if not held:
        return 0

    ctx = load_run_context(session, schedule)
    confirmed = 0
    for leave in held:
        try:
            begin_write_transaction(session)
            session.refresh(leave)
            if leave.status != LeaveStatus.ON_HOLD.value:
                session.commit()
                continue
            staff = _get_staff(session, leave.staff_id)
            lock_pool(session, staff.clinic_id, staff.department, staff.category)
            decision = evaluate_leave(session, staff, leave.date, exclude_leave_id=leave.id, ctx=ctx)
            if decision.can_approve and (
                not decision.should_hold
                or _slot_covered_by_others(session, ctx, schedule.id, staff, leave.date)
            ):
                leave.status = LeaveStatus.CONFIRMED.value
                leave.decided_at = utcnow()
                confirmed += 1
            session.commit()
        except Exception:
            session.rollback()
            raise

    logger.info("On-hold processing %s %d-%02d: %d of %d confirmed",
                clinic_id, year, month, confirmed, len(held))
    return confirmed
