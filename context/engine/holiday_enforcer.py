"""Phase 3 - Holiday Enforcement.

Every DAY/NIGHT assignment on a registered holiday becomes OFF. Runs after
Phases 1 and 2 and overrides whatever they placed. One holiday per unit.
"""

import logging

from context.engine.data_loader import RunContext, ShiftType, WORK_SHIFTS
from context.engine.errors import ErrorCategory, RunWarning, Severity
from context.engine.roster_state import AssignmentBook, AssignmentStore

logger = logging.getLogger(__name__)


def run_holiday_enforcement(ctx: RunContext, book: AssignmentBook, store: AssignmentStore, result):
    for d in sorted(h for h in ctx.holidays if ctx.start <= h <= ctx.end):
        try:
            changed = store.force_off(d)
        except Exception as e:
            logger.exception("Phase 3 failed on holiday %s", d)
            result.warnings.append(RunWarning(
                category=ErrorCategory.DATA,
                severity=Severity.ERROR,
                message=f"Holiday OFF not applied: {type(e).__name__}: {e}",
                date=d,
            ))
            continue

        for sid, shift in book.on_date(d).items():
            if shift in WORK_SHIFTS:
                book.set(sid, d, ShiftType.OFF)
        result.holiday_changes += changed

    logger.info("Phase 3 done: %d assignments moved to OFF", result.holiday_changes)
