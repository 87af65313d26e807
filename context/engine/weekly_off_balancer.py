"""Phase 2 - Weekly OFF Balancing.

For each Sunday-Saturday week of the month:

    offTarget = (weekBusinessDays - defaultWeeklyWorkDays) * eligibleStaff

counted over business days (open weekdays that are not holidays and not
frozen). While the week has too few OFFs, one work day of a staff member
above their weekly target is flipped to OFF, on the date with the fewest
OFFs. While it has too many, one OFF of a staff member below target is
flipped to work, on the date with the most OFFs that has a doctor rostered,
as NIGHT when that roster has a night shift.

Every flip moves the OFF count one step toward the target, so the loop is
capped at |offTarget - actualOff| iterations. Ties break on (date, staff id)
so reruns produce the same swaps.
"""

import logging
from datetime import date
from typing import List, Optional, Set, Tuple

from context.engine.data_loader import RunContext, ShiftType, WORK_SHIFTS
from context.engine.errors import ErrorCategory, RunWarning, Severity
from context.engine.roster_state import AssignmentBook, AssignmentStore
from context.engine.time_utils import weeks_in_range

logger = logging.getLogger(__name__)

Swap = Tuple[str, date, ShiftType]


def week_off_target(business_days: int, default_work_days: int, eligible_count: int) -> int:
    """OFF assignments a week should hold across all eligible staff."""
    return (business_days - min(default_work_days, business_days)) * eligible_count


def _pick_work_to_off(ctx: RunContext, book: AssignmentBook, days: List[date],
                      staff_ids: List[str], failed: Set[Tuple[str, date]]) -> Optional[Swap]:
    target_days = len(days)
    over = [sid for sid in staff_ids
            if book.week_work_days(sid, days) > ctx.weekly_target(sid, target_days)]
    best = None
    for d in days:
        off = book.off_count(d, staff_ids)
        for sid in over:
            if (sid, d) in failed or book.get(sid, d) not in WORK_SHIFTS:
                continue
            key = (off, d, sid)
            if best is None or key < best:
                best = key
    if best is None:
        return None
    return best[2], best[1], ShiftType.OFF


def _pick_off_to_work(ctx: RunContext, book: AssignmentBook, days: List[date],
                      staff_ids: List[str], failed: Set[Tuple[str, date]]) -> Optional[Swap]:
    target_days = len(days)
    under = [sid for sid in staff_ids
             if book.week_work_days(sid, days) < ctx.weekly_target(sid, target_days)]
    best = None
    for d in days:
        if not ctx.has_doctor(d):
            continue
        off = book.off_count(d, staff_ids)
        for sid in under:
            if (sid, d) in failed or book.get(sid, d) != ShiftType.OFF:
                continue
            if ctx.confirmed_leave(sid, d) is not None:
                continue
            key = (-off, d, sid)
            if best is None or key < best:
                best = key
    if best is None:
        return None
    d = best[1]
    shift = ShiftType.NIGHT if ctx.has_night(d) else ShiftType.DAY
    return best[2], d, shift


def balance_week(ctx: RunContext, book: AssignmentBook, store: AssignmentStore, days: List[date], result) -> int:
    """
    Balance one week toward its OFF target.

    Returns:
        Number of swaps committed
    """
    staff_ids = ctx.rostered_staff_ids
    if not days or not staff_ids:
        return 0

    target = week_off_target(len(days), ctx.config.default_weekly_work_days, len(staff_ids))
    actual = sum(book.off_count(d, staff_ids) for d in days)
    max_iterations = abs(target - actual)
    failed: Set[Tuple[str, date]] = set()
    swaps = 0
    iterations = 0

    while actual != target and iterations < max_iterations:
        iterations += 1
        need_more_off = actual < target
        if need_more_off:
            pick = _pick_work_to_off(ctx, book, days, staff_ids, failed)
        else:
            pick = _pick_off_to_work(ctx, book, days, staff_ids, failed)
        if pick is None:
            break

        sid, d, shift = pick
        try:
            store.set_shift(sid, d, shift)
        except Exception as e:
            logger.exception("Phase 2 swap failed for %s on %s", sid, d)
            failed.add((sid, d))
            result.warnings.append(RunWarning(
                category=ErrorCategory.DATA,
                severity=Severity.ERROR,
                message=f"Swap to {shift.value} failed for {sid}: {type(e).__name__}: {e}",
                date=d,
            ))
            continue

        book.set(sid, d, shift)
        actual += 1 if need_more_off else -1
        swaps += 1

    if actual != target:
        result.warnings.append(RunWarning(
            category=ErrorCategory.CAPACITY,
            severity=Severity.WARNING,
            message=f"Week of {days[0].isoformat()}: {actual} OFF assignments, target {target}",
            date=days[0],
        ))
    return swaps


def run_weekly_off_balancing(ctx: RunContext, book: AssignmentBook, store: AssignmentStore, result):
    """Phase 2 over every week intersecting the month."""
    for week in weeks_in_range(ctx.start, ctx.end):
        days = [d for d in week if ctx.is_business_day(d) and d not in ctx.frozen_dates]
        result.phase2_swaps += balance_week(ctx, book, store, days, result)
    logger.info("Phase 2 done: %d swaps", result.phase2_swaps)
