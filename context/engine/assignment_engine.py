"""Assignment Engine: runs the three phases over one month.

    Phase 1  initial_fill         fill slot groups day by day
    Phase 2  weekly_off_balancer  move weekly OFF totals toward target
    Phase 3  holiday_enforcer     force OFF on holidays

The engine works on a RunContext and writes through an AssignmentStore; it
never raises for unit-level problems. Those are collected as warnings on
the RunResult.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from context.engine.data_loader import AssignmentRecord, RunContext
from context.engine.errors import RunWarning
from context.engine.fairness import fairness_score
from context.engine.holiday_enforcer import run_holiday_enforcement
from context.engine.initial_fill import run_initial_fill
from context.engine.roster_state import AssignmentBook, AssignmentStore
from context.engine.weekly_off_balancer import run_weekly_off_balancing

logger = logging.getLogger(__name__)

RUN_MODES = ("smart", "full")


@dataclass
class RunResult:
    """Outcome of one engine run."""
    success_count: int = 0
    failed_count: int = 0
    warnings: List[RunWarning] = field(default_factory=list)
    fairness_score: float = 100.0
    phase2_swaps: int = 0
    holiday_changes: int = 0
    skipped_days: int = 0
    cleared_assignments: int = 0
    slot_groups: Dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'successCount': self.success_count,
            'failedCount': self.failed_count,
            'warnings': [w.to_dict() for w in self.warnings],
            'fairnessScore': self.fairness_score,
            'phase2Swaps': self.phase2_swaps,
            'holidayChanges': self.holiday_changes,
            'skippedDays': self.skipped_days,
            'clearedAssignments': self.cleared_assignments,
            'slotGroups': dict(self.slot_groups),
            'durationSeconds': round(self.duration_seconds, 3),
        }


def score_book(ctx: RunContext, book: AssignmentBook) -> float:
    by_pool = {
        pool: [book.month_work_days(sid) for sid in ids]
        for pool, ids in ctx.pools.items()
    }
    return fairness_score(by_pool)


def run_assignment(
    ctx: RunContext,
    store: AssignmentStore,
    existing: Iterable[AssignmentRecord] = (),
    mode: str = "smart",
    log_prefix: str = "",
) -> RunResult:
    """
    Run Phases 1-3 for the month described by ctx.

    Args:
        ctx: Run context built by build_run_context()
        store: Store receiving one transaction per unit
        existing: Assignments already stored for the month (and the days
            just before it, for consecutive-day counting)
        mode: "smart" keeps days that already have assignments, "full"
            clears every non-frozen day first
        log_prefix: Prefix for log lines (e.g. "[WORKER-1]")

    Returns:
        RunResult
    """
    if mode not in RUN_MODES:
        raise ValueError(f"Unknown run mode {mode!r}; expected one of {RUN_MODES}")

    started = time.time()
    result = RunResult()
    result.warnings.extend(ctx.config_warnings)
    book = AssignmentBook(ctx, existing)

    logger.info("%s Assignment run %s %d-%02d mode=%s staff=%d rosters=%d",
                log_prefix, ctx.clinic_id, ctx.year, ctx.month, mode,
                len(ctx.staff), len(ctx.rosters))

    if mode == "full":
        clear_days = [d for d in ctx.dates if d not in ctx.frozen_dates]
        result.cleared_assignments = store.clear_dates(clear_days)
        book.clear_dates(clear_days)

    run_initial_fill(ctx, book, store, result, mode=mode)
    run_weekly_off_balancing(ctx, book, store, result)
    run_holiday_enforcement(ctx, book, store, result)

    result.fairness_score = score_book(ctx, book)
    result.duration_seconds = time.time() - started
    logger.info("%s Assignment run finished: success=%d failed=%d warnings=%d fairness=%.1f",
                log_prefix, result.success_count, result.failed_count,
                len(result.warnings), result.fairness_score)
    return result
