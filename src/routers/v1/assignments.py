"""
v1 Assignment Router - assignment runs, schedule lifecycle and background jobs.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from src.assignment_runner import run_monthly_assignment
from src.assignment_validator import validate_schedule
from src.dependencies import get_db, get_job_manager, get_lock_manager
from src.fairness_service import confirm_schedule, deploy_schedule, get_schedule_or_raise
from src.models import (
    AssignmentRunRequest, AssignmentRunResponse, JobStatusResponse,
    ScheduleResponse, ValidationRequest,
)
from src.redis_job_manager import JobType

logger = logging.getLogger("roster.api.v1")

router = APIRouter()

# errorCode -> HTTP status for failed runs
RUN_ERROR_STATUS = {
    "RUN_IN_PROGRESS": 409,
    "SCHEDULE_DEPLOYED": 409,
    "NO_SCHEDULE": 404,
    "NO_ACTIVE_STAFF": 422,
    "INVALID_MODE": 400,
    "LOCK_UNAVAILABLE": 503,
}


def _schedule_response(schedule, job_id=None, snapshot_count=None) -> ScheduleResponse:
    return ScheduleResponse(
        id=schedule.id,
        clinicId=schedule.clinic_id,
        year=schedule.year,
        month=schedule.month,
        status=schedule.status,
        deployedStartDate=schedule.deployed_start_date,
        deployedEndDate=schedule.deployed_end_date,
        jobId=job_id,
        snapshotCount=snapshot_count,
    )


@router.post("/assignments/run", response_model=AssignmentRunResponse, response_class=ORJSONResponse)
def run_assignments(
    payload: AssignmentRunRequest,
    request: Request,
    db: Session = Depends(get_db),
    lock_manager=Depends(get_lock_manager),
):
    """
    Run the monthly assignment engine (Phases 1-3).

    Returns the run summary. A run already in progress for the same clinic
    and month is rejected with 409; it is not queued.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info("assignment run requestId=%s clinic=%s month=%d-%02d mode=%s",
                request_id, payload.clinicId, payload.year, payload.month, payload.mode)

    summary = run_monthly_assignment(
        db,
        lock_manager,
        payload.clinicId,
        payload.year,
        payload.month,
        mode=payload.mode,
        force_redeploy=payload.forceRedeploy,
        rules=payload.rules,
        log_prefix=f"[API {request_id[:8]}]",
    )
    status_code = 200 if summary.get("success") else RUN_ERROR_STATUS.get(summary.get("errorCode"), 500)
    return ORJSONResponse(status_code=status_code, content=summary)


@router.post("/schedules/{schedule_id}/confirm", response_model=ScheduleResponse)
def confirm(schedule_id: str, db: Session = Depends(get_db)):
    return _schedule_response(confirm_schedule(db, schedule_id))


@router.post("/schedules/{schedule_id}/deploy", response_model=ScheduleResponse)
def deploy(
    schedule_id: str,
    background: bool = Query(True, description="Queue the fairness snapshot recompute"),
    db: Session = Depends(get_db),
    job_manager=Depends(get_job_manager),
):
    """
    Deploy a schedule. The fairness snapshot recompute is queued for a
    worker unless background=false.
    """
    outcome = deploy_schedule(db, schedule_id, job_manager=job_manager if background else None)
    snapshots = outcome["snapshots"]
    return _schedule_response(
        outcome["schedule"],
        job_id=outcome["jobId"],
        snapshot_count=len(snapshots) if snapshots is not None else None,
    )


@router.post("/schedules/{schedule_id}/validate")
def validate(
    schedule_id: str,
    payload: Optional[ValidationRequest] = None,
    background: bool = Query(False, description="Run in a background worker"),
    db: Session = Depends(get_db),
    job_manager=Depends(get_job_manager),
):
    """
    Validation pass over a schedule's assignments.

    Returns:
    - 200: {"issues", "summary", "fixes"} when run inline
    - 202: {"jobId"} when queued
    """
    payload = payload or ValidationRequest()
    schedule = get_schedule_or_raise(db, schedule_id)
    if background:
        job_id = job_manager.create_job(
            JobType.VALIDATE_SCHEDULE,
            {"scheduleId": schedule.id, "autoFix": payload.autoFix, "maxFixes": payload.maxFixes},
        )
        return ORJSONResponse(status_code=202, content={"jobId": job_id, "status": "queued"})
    return ORJSONResponse(content=validate_schedule(db, schedule, auto_fix=payload.autoFix,
                                                    max_fixes=payload.maxFixes))


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job_status(job_id: str, job_manager=Depends(get_job_manager)):
    """
    Status of a background job; includes the result once completed.

    Status values: queued, in_progress, completed, failed
    """
    job_info = job_manager.get_job(job_id)
    if not job_info:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    def iso(ts):
        return datetime.fromtimestamp(ts).isoformat() if ts else None

    return JobStatusResponse(
        job_id=job_info.job_id,
        job_type=job_info.job_type.value,
        status=job_info.status.value,
        created_at=iso(job_info.created_at),
        started_at=iso(job_info.started_at),
        completed_at=iso(job_info.completed_at),
        error_message=job_info.error_message,
        result=job_manager.get_result(job_id) if job_info.status.value == "completed" else None,
    )
