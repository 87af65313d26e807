"""
v1 Leave Router - quota checks and the leave application lifecycle.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from context.engine.data_loader import LeaveType
from src.dependencies import get_db
from src.leave_service import approve_leave, check_quota, reject_leave, submit_leave
from src.models import (
    LeaveApplicationRequest, LeaveApplicationResponse, LeaveQuotaCheckRequest,
    LeaveQuotaDecisionResponse, LeaveRejectRequest,
)

logger = logging.getLogger("roster.api.v1")

router = APIRouter(prefix="/leave")


def _leave_response(leave, decision=None) -> LeaveApplicationResponse:
    return LeaveApplicationResponse(
        id=leave.id,
        staffId=leave.staff_id,
        date=leave.date,
        leaveType=leave.leave_type,
        status=leave.status,
        reason=leave.reason,
        decision=LeaveQuotaDecisionResponse(**decision.to_dict()) if decision else None,
    )


@router.post("/quota-check", response_model=LeaveQuotaDecisionResponse)
def quota_check(payload: LeaveQuotaCheckRequest, db: Session = Depends(get_db)):
    """Quota decision for a prospective leave; changes nothing."""
    decision = check_quota(db, payload.staffId, payload.date)
    return LeaveQuotaDecisionResponse(**decision.to_dict())


@router.post("/applications", response_model=LeaveApplicationResponse)
def apply_for_leave(payload: LeaveApplicationRequest, db: Session = Depends(get_db)):
    """
    Submit a leave application.

    The stored status is PENDING, ON_HOLD (no day slot left) or REJECTED
    (quota exceeded); the quota decision is returned alongside.
    """
    leave, decision = submit_leave(db, payload.staffId, payload.date, LeaveType(payload.leaveType),
                                   reason=payload.reason)
    logger.info("leave submitted staff=%s date=%s status=%s", payload.staffId, payload.date, leave.status)
    return _leave_response(leave, decision)


@router.post("/applications/{leave_id}/approve", response_model=LeaveApplicationResponse)
def approve(leave_id: str, db: Session = Depends(get_db)):
    leave, decision = approve_leave(db, leave_id)
    return _leave_response(leave, decision)


@router.post("/applications/{leave_id}/reject", response_model=LeaveApplicationResponse)
def reject(leave_id: str, payload: Optional[LeaveRejectRequest] = None, db: Session = Depends(get_db)):
    leave = reject_leave(db, leave_id, reason=payload.reason if payload else None)
    return _leave_response(leave)
