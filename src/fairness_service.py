"""
Schedule lifecycle and fairness snapshot recompute.

    DRAFT -> CONFIRMED -> DEPLOYED

Deploying freezes the schedule's date range (first to last doctor roster
date) and triggers the snapshot recompute, which is the only code that
writes the cumulative deviation columns on Staff.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from context.engine.constraint_config import build_engine_config
from context.engine.errors import ConflictError, DataError
from context.engine.snapshot import StaffSnapshot, compute_snapshots
from context.engine.time_utils import ALL_DIMENSIONS, DayClassifier, FairnessDimension
from src.database import (
    DIMENSION_COLUMNS, DoctorDaySlot, FairnessSnapshot, Schedule,
    SCHEDULE_CONFIRMED, SCHEDULE_DEPLOYED, SCHEDULE_DRAFT, utcnow,
)
from src.redis_job_manager import JobType
from src.roster_repository import load_assignment_records, load_holidays, load_staff

logger = logging.getLogger(__name__)


class ScheduleStateError(ConflictError):
    """Requested transition is not allowed from the schedule's current state."""


def get_schedule_or_raise(session: Session, schedule_id: str) -> Schedule:
    schedule = session.get(Schedule, schedule_id)
    if schedule is None:
        raise DataError(f"Schedule {schedule_id} not found", code="SCHEDULE_NOT_FOUND")
    return schedule


def confirm_schedule(session: Session, schedule_id: str) -> Schedule:
    schedule = get_schedule_or_raise(session, schedule_id)
    if schedule.status != SCHEDULE_DRAFT:
        raise ScheduleStateError(f"Schedule is {schedule.status}, expected {SCHEDULE_DRAFT}",
                                 code="INVALID_TRANSITION")
    schedule.status = SCHEDULE_CONFIRMED
    session.commit()
    logger.info("Schedule %s confirmed", schedule.id)
    return schedule


def deploy_schedule(session: Session, schedule_id: str, job_manager=None) -> Dict:
    """
    Deploy a schedule and start the snapshot recompute.

    Args:
        session: Database session
        schedule_id: Schedule to deploy
        job_manager: When given, the recompute is queued for a worker;
            otherwise it runs inline

    Returns:
        {"schedule": Schedule, "jobId": str | None, "snapshots": list | None}
    """
    schedule = get_schedule_or_raise(session, schedule_id)
    if schedule.status not in (SCHEDULE_DRAFT, SCHEDULE_CONFIRMED):
        raise ScheduleStateError(f"Schedule is already {schedule.status}", code="INVALID_TRANSITION")

    first, last = session.execute(
        select(func.min(DoctorDaySlot.date), func.max(DoctorDaySlot.date))
        .where(DoctorDaySlot.schedule_id == schedule.id)
    ).one()
    if first is None:
        raise DataError(f"Schedule {schedule.id} has no doctor roster", code="NO_DOCTOR_ROSTER")

    schedule.status = SCHEDULE_DEPLOYED
    schedule.deployed_start_date = first
    schedule.deployed_end_date = last
    session.commit()
    logger.info("Schedule %s deployed %s..%s", schedule.id, first, last)

    if job_manager is not None:
        job_id = job_manager.create_job(JobType.FAIRNESS_SNAPSHOT, {"scheduleId": schedule.id})
        return {"schedule": schedule, "jobId": job_id, "snapshots": None}

    snapshots = recompute_snapshots(session, schedule.id)
    return {"schedule": schedule, "jobId": None, "snapshots": snapshots}


def _dimension_map(data: Optional[Dict]) -> Dict[FairnessDimension, float]:
    data = data or {}
    return {dim: float(data.get(dim.value, 0.0)) for dim in ALL_DIMENSIONS}


def recompute_snapshots(session: Session, schedule_id: str, rules: Optional[List[dict]] = None) -> List[StaffSnapshot]:
    """
    Recompute the month's fairness snapshots from final assignments and
    write the cumulative deviation onto each staff member.

    Earlier months of the same year are read from their stored snapshots;
    the month's own previous snapshot (if any) is replaced. Weekend and
    holiday-adjacent days follow the rules stored by the schedule's run
    unless `rules` is given.
    """
    schedule = get_schedule_or_raise(session, schedule_id)
    if schedule.status != SCHEDULE_DEPLOYED:
        raise ScheduleStateError(f"Schedule is {schedule.status}, expected {SCHEDULE_DEPLOYED}",
                                 code="NOT_DEPLOYED")

    start, end = schedule.deployed_start_date, schedule.deployed_end_date
    config = build_engine_config(rules if rules is not None else schedule.rules)
    classifier = DayClassifier(
        load_holidays(session, schedule.clinic_id, start, end),
        weekend_weekdays=config.weekend_weekdays,
        holiday_adjacent_enabled=config.holiday_adjacent_enabled,
    )

    staff_rows = load_staff(session, schedule.clinic_id)
    staff_by_id = {s.id: s for s in staff_rows}

    prior_rows = session.scalars(
        select(FairnessSnapshot).where(
            FairnessSnapshot.staff_id.in_(list(staff_by_id)),
            FairnessSnapshot.year == schedule.year,
            FairnessSnapshot.month < schedule.month,
        ).order_by(FairnessSnapshot.month)
    ).all()
    prior: Dict[str, List[Dict[FairnessDimension, float]]] = {}
    for row in prior_rows:
        prior.setdefault(row.staff_id, []).append(_dimension_map(row.deviation))

    snapshots = compute_snapshots(
        staff=[s.to_member() for s in staff_rows],
        assignments=load_assignment_records(session, schedule.id),
        classifier=classifier,
        start=start,
        end=end,
        prior_deviations=prior,
    )

    existing = {
        row.staff_id: row
        for row in session.scalars(
            select(FairnessSnapshot).where(
                FairnessSnapshot.clinic_id == schedule.clinic_id,
                FairnessSnapshot.year == schedule.year,
                FairnessSnapshot.month == schedule.month,
            )
        ).all()
    }

    try:
        for snap in snapshots:
            data = snap.to_dict()
            row = existing.get(snap.staff_id)
            if row is None:
                row = FairnessSnapshot(
                    staff_id=snap.staff_id,
                    clinic_id=schedule.clinic_id,
                    year=schedule.year,
                    month=schedule.month,
                )
                session.add(row)
            row.actual = data['actual']
            row.department_average = {d.value: snap.department_average[d] for d in ALL_DIMENSIONS}
            row.deviation = data['deviation']
            row.cumulative = data['cumulativeDeviation']
            row.created_at = utcnow()

            staff = staff_by_id[snap.staff_id]
            for dim, column in DIMENSION_COLUMNS.items():
                setattr(staff, column, snap.cumulative[dim])
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Fairness snapshots for schedule %s: %d staff", schedule.id, len(snapshots))
    return snapshots


def get_staff_snapshot(session: Session, staff_id: str, year: int, month: int) -> Optional[FairnessSnapshot]:
    return session.scalars(
        select(FairnessSnapshot).where(
            FairnessSnapshot.staff_id == staff_id,
            FairnessSnapshot.year == year,
            FairnessSnapshot.month == month,
        )
    ).first()
