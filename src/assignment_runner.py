"""
Monthly Assignment Runner

Single entry point for an assignment run, shared by the API and the CLI:

    1. Take the (clinic, year, month) run lock (reject if held)
    2. Check preconditions (schedule exists, not deployed, active staff)
    3. Build the run context from the database
    4. Engine Phases 1-3 (one transaction per unit)
    5. Confirm ON_HOLD leaves the new assignments make room for
    6. Release the lock

Architecture:
    routers/v1/assignments.py -> run_monthly_assignment() -> summary
    run_assignment.py (CLI)   -> run_monthly_assignment() -> summary

The runner always returns a summary dict; failures are reported with
success=False and an errorCode instead of being raised.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from context.engine.assignment_engine import RUN_MODES, run_assignment
from context.engine.errors import ErrorCategory, RosterError, RunWarning, Severity
from src.database import SCHEDULE_DEPLOYED, SCHEDULE_DRAFT
from src.leave_service import process_on_hold
from src.roster_repository import (
    SqlAssignmentStore, get_schedule, load_assignment_records, load_history,
    load_run_context,
)

logger = logging.getLogger(__name__)


def failure_summary(error_code: str, message: str, category: ErrorCategory = ErrorCategory.DATA) -> Dict[str, Any]:
    return {
        'success': False,
        'errorCode': error_code,
        'errorCategory': category.value,
        'message': message,
        'successCount': 0,
        'failedCount': 0,
        'warnings': [],
        'fairnessScore': None,
    }


def run_monthly_assignment(
    session: Session,
    lock_manager,
    clinic_id: str,
    year: int,
    month: int,
    mode: str = "smart",
    force_redeploy: bool = False,
    rules: Optional[List[dict]] = None,
    log_prefix: str = "[RUN]",
) -> Dict[str, Any]:
    """
    Run the assignment engine for one clinic month.

    Args:
        session: Database session (committed per unit)
        lock_manager: RunLockManager guarding (clinic, year, month)
        clinic_id: Clinic identifier
        year, month: Month to assign
        mode: "smart" (keep days already assigned) or "full" (clear first)
        force_redeploy: Allow re-running a DEPLOYED schedule; reverts it to DRAFT
        rules: Engine rule list, stored on the schedule for snapshots, leave
            quotas and validation; None reuses the schedule's stored rules
        log_prefix: Log prefix (e.g. "[CLI]", "[API]")

    Returns:
        Run summary dict:
        {success, successCount, failedCount, warnings, fairnessScore, ...}
    """
    if mode not in RUN_MODES:
        return failure_summary("INVALID_MODE", f"Unknown mode {mode!r}; expected one of {', '.join(RUN_MODES)}")

    try:
        token = lock_manager.acquire(clinic_id, year, month)
    except Exception as e:
        logger.exception("%s Run lock unavailable", log_prefix)
        return failure_summary("LOCK_UNAVAILABLE", f"Run lock unavailable: {e}", ErrorCategory.CONCURRENCY)
    if token is None:
        return failure_summary(
            "RUN_IN_PROGRESS",
            f"An assignment run for {clinic_id} {year}-{month:02d} is already in progress",
            ErrorCategory.CONCURRENCY,
        )

    started = time.time()
    try:
        return _run_locked(session, clinic_id, year, month, mode, force_redeploy, rules, log_prefix)
    except RosterError as e:
        logger.error("%s Run aborted: %s", log_prefix, e.message)
        return failure_summary(e.code, e.message, e.category)
    except Exception as e:
        logger.exception("%s Run failed", log_prefix)
        session.rollback()
        return failure_summary("RUN_FAILED", f"{type(e).__name__}: {e}")
    finally:
        lock_manager.release(clinic_id, year, month, token)
        logger.info("%s Run %s %d-%02d finished in %.2fs", log_prefix, clinic_id, year, month,
                    time.time() - started)


def _run_locked(session, clinic_id, year, month, mode, force_redeploy, rules, log_prefix) -> Dict[str, Any]:
    schedule = get_schedule(session, clinic_id, year, month)
    if schedule is None:
        return failure_summary("NO_SCHEDULE", f"No schedule for {clinic_id} {year}-{month:02d}")

    if schedule.status == SCHEDULE_DEPLOYED:
        if not force_redeploy:
            return failure_summary(
                "SCHEDULE_DEPLOYED",
                "Schedule is already deployed; pass forceRedeploy to run again",
                ErrorCategory.CONFLICT,
            )
        logger.warning("%s Re-running deployed schedule %s", log_prefix, schedule.id)
        schedule.status = SCHEDULE_DRAFT
        schedule.deployed_start_date = None
        schedule.deployed_end_date = None
        session.commit()

    if rules is not None:
        schedule.rules = list(rules)
        session.commit()
    ctx = load_run_context(session, schedule)
    if not ctx.staff:
        return failure_summary("NO_ACTIVE_STAFF", f"No active staff to assign for {clinic_id}")

    existing = load_history(session, clinic_id, year, month) + load_assignment_records(session, schedule.id)
    store = SqlAssignmentStore(session, schedule.id)
    result = run_assignment(ctx, store, existing, mode=mode, log_prefix=log_prefix)

    on_hold_approved = 0
    try:
        on_hold_approved = process_on_hold(session, clinic_id, year, month)
    except Exception as e:
        logger.exception("%s On-hold processing failed", log_prefix)
        result.warnings.append(RunWarning(
            category=ErrorCategory.DATA,
            severity=Severity.ERROR,
            message=f"On-hold leave processing failed: {type(e).__name__}: {e}",
        ))

    summary = {'success': True, 'scheduleId': schedule.id, 'mode': mode}
    summary.update(result.to_dict())
    summary['onHoldApproved'] = on_hold_approved
    return summary
