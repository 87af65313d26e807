"""Phase 1 - Initial Fill.

Walks the month day by day. For each (department, category) slot group the
eligible candidates are ranked by a priority score (lower is better) and the
top `required` are placed on DAY, or NIGHT when the roster has a night shift.
Everyone else in a rostered pool gets an explicit OFF for the day; staff on
confirmed OFF leave get OFF, staff on confirmed annual leave get no row.

Priority score:
    weightMonthDays          * (month work days - ledger total deviation)
  + weightDimensionImbalance * sum over the slot's night/weekend/holiday
                               dimensions of (month count - ledger deviation)
  + weightConsecutive        * current consecutive work run
  + weightConsecutiveOverrun   once the run has reached maxConsecutiveWorkDays
  + weightWeeklyOvershoot    * days at or above the personal weekly target

Ties break on staff id. Each day is written as one unit; a failing day
becomes a warning and the next day is processed.
"""

import logging
from datetime import date
from typing import List, Tuple

from context.engine.data_loader import LeaveType, RunContext, ShiftType
from context.engine.errors import ErrorCategory, RunWarning, Severity
from context.engine.roster_state import AssignmentBook, AssignmentStore
from context.engine.slot_builder import SlotGroup
from context.engine.time_utils import FairnessDimension

logger = logging.getLogger(__name__)

SLOT_DIMENSIONS = (
    FairnessDimension.NIGHT,
    FairnessDimension.WEEKEND,
    FairnessDimension.HOLIDAY,
    FairnessDimension.HOLIDAY_ADJACENT,
)


def priority_score(ctx: RunContext, book: AssignmentBook, staff_id: str, group: SlotGroup) -> float:
    """Lower score = stronger candidate for the slot."""
    cfg = ctx.config
    member = ctx.staff[staff_id]
    d = group.date

    score = cfg.weight_month_days * (
        book.month_work_days(staff_id) - member.ledger_value(FairnessDimension.TOTAL)
    )

    slot_dims = ctx.classifier.dimensions_for(d, has_night=group.has_night)
    for dim in SLOT_DIMENSIONS:
        if dim in slot_dims:
            score += cfg.weight_dimension_imbalance * (
                book.dimension_work(staff_id, dim) - member.ledger_value(dim)
            )

    run = book.consecutive_work_before(staff_id, d)
    score += cfg.weight_consecutive * run
    if run >= cfg.max_consecutive_work_days:
        score += cfg.weight_consecutive_overrun

    week_days = ctx.week_business_days(d)
    if week_days:
        target = ctx.weekly_target(staff_id, len(week_days))
        worked = book.week_work_days(staff_id, week_days)
        if worked >= target:
            score += cfg.weight_weekly_overshoot * (worked - target + 1)

    return score


def rank_candidates(ctx: RunContext, book: AssignmentBook, group: SlotGroup, taken: set) -> List[str]:
    """Eligible staff for a slot group, best first."""
    candidates = [
        sid for sid in ctx.pools.get(group.pool, [])
        if sid not in taken
        and ctx.confirmed_leave(sid, group.date) is None
        and book.get(sid, group.date) is None
    ]
    return sorted(candidates, key=lambda sid: (priority_score(ctx, book, sid, group), sid))


def plan_day(ctx: RunContext, book: AssignmentBook, d: date) -> Tuple[List[Tuple[str, ShiftType]], List[SlotGroup], List[RunWarning]]:
    """Work out one day's rows without writing anything.

    Returns:
        (rows, slot groups with assigned staff, warnings)
    """
    rows: List[Tuple[str, ShiftType]] = []
    warnings: List[RunWarning] = []
    taken = set()

    for sid in ctx.rostered_staff_ids:
        leave = ctx.confirmed_leave(sid, d)
        if leave is None or book.get(sid, d) is not None:
            continue
        taken.add(sid)
        if leave.leave_type == LeaveType.OFF:
            rows.append((sid, ShiftType.OFF))

    groups = ctx.slot_groups(d)
    work_shift = ShiftType.NIGHT if ctx.has_night(d) else ShiftType.DAY
    for group in groups:
        if group.required <= 0:
            continue
        ranked = rank_candidates(ctx, book, group, taken)
        chosen = ranked[:group.required]
        for sid in chosen:
            run = book.consecutive_work_before(sid, d)
            if run + 1 > ctx.config.max_consecutive_work_days:
                warnings.append(RunWarning(
                    category=ErrorCategory.CAPACITY,
                    severity=Severity.WARNING,
                    message=f"{sid} works {run + 1} consecutive days",
                    date=d,
                    department=group.department,
                    staff_category=group.staff_category,
                ))
            rows.append((sid, work_shift))
            taken.add(sid)
        group.assigned = list(chosen)
        if group.shortage:
            warnings.append(RunWarning(
                category=ErrorCategory.CAPACITY,
                severity=Severity.CRITICAL,
                message=(f"Shortage of {group.shortage}: {len(chosen)}/{group.required} "
                         f"{group.staff_category} staff available"),
                date=d,
                department=group.department,
                staff_category=group.staff_category,
            ))

    for sid in ctx.rostered_staff_ids:
        if sid not in taken and book.get(sid, d) is None:
            rows.append((sid, ShiftType.OFF))

    return rows, groups, warnings


def run_initial_fill(ctx: RunContext, book: AssignmentBook, store: AssignmentStore, result, mode: str = "smart"):
    """
    Phase 1 over every non-frozen date of the month.

    Args:
        ctx: Run context
        book: Assignment book (updated after each committed day)
        store: Assignment store (one write_day per day)
        result: RunResult accumulator
        mode: "smart" skips days that already have assignments
    """
    for d in ctx.dates:
        if d in ctx.frozen_dates:
            continue
        if mode == "smart" and book.has_any_on(d):
            result.skipped_days += 1
            continue

        groups: List[SlotGroup] = []
        try:
            rows, groups, warnings = plan_day(ctx, book, d)
            if rows:
                store.write_day(d, rows)
                for sid, shift in rows:
                    book.set(sid, d, shift)
        except Exception as e:
            logger.exception("Phase 1 failed on %s", d)
            required = sum(ctx.requirements(d).values())
            result.failed_count += required
            result.warnings.append(RunWarning(
                category=ErrorCategory.DATA,
                severity=Severity.ERROR,
                message=f"Day skipped: {type(e).__name__}: {e}",
                date=d,
            ))
            continue

        result.warnings.extend(warnings)
        for group in groups:
            result.slot_groups[group.status.value] = result.slot_groups.get(group.status.value, 0) + 1
            result.success_count += min(len(group.assigned), group.required)
            result.failed_count += group.shortage

    logger.info("Phase 1 done: %d filled, %d short, %d days skipped",
                result.success_count, result.failed_count, result.skipped_days)
