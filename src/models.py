"""
Pydantic models for the Clinic Roster API.

Defines request/response schemas for validation and documentation.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, List, Any, Literal
from datetime import date


# ============================================================================
# ASSIGNMENT RUN
# ============================================================================

class AssignmentRunRequest(BaseModel):
    """
    Request payload for POST /v1/assignments/run.

    - **mode**: "smart" keeps days that already have assignments (safe to
      re-run), "full" clears the month's assignments first.
    - **forceRedeploy**: required to re-run a DEPLOYED schedule; the schedule
      goes back to DRAFT and its frozen range is cleared.
    - **rules**: engine rules, e.g. `{"id": "defaultWeeklyWorkDays", "defaultValue": 4}`.
      Stored on the schedule and reused by fairness snapshots, leave quotas
      and validation. Omit to keep the rules of the previous run; `[]`
      resets to the defaults.
    """
    clinicId: str = Field(..., description="Clinic identifier")
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    mode: Literal["smart", "full"] = Field("smart", description="Run mode")
    forceRedeploy: bool = Field(False, description="Allow re-running a deployed schedule")
    rules: Optional[List[Dict[str, Any]]] = Field(None, description="Engine rule overrides")


class RunWarningModel(BaseModel):
    category: str
    severity: str
    message: str
    date: Optional[str] = None
    department: Optional[str] = None
    staff_category: Optional[str] = None


class AssignmentRunResponse(BaseModel):
    """Run summary. Extra counters (phase2Swaps, holidayChanges, ...) pass through."""
    success: bool
    successCount: int = Field(0, description="Slot positions filled")
    failedCount: int = Field(0, description="Slot positions left unfilled")
    warnings: List[RunWarningModel] = Field(default_factory=list)
    fairnessScore: Optional[float] = Field(None, description="0-100, higher is more even")
    errorCode: Optional[str] = None
    message: Optional[str] = None

    model_config = ConfigDict(extra='allow')


# ============================================================================
# SCHEDULES
# ============================================================================

class ScheduleResponse(BaseModel):
    id: str
    clinicId: str
    year: int
    month: int
    status: str
    deployedStartDate: Optional[date] = None
    deployedEndDate: Optional[date] = None
    jobId: Optional[str] = Field(None, description="Background snapshot job, when queued")
    snapshotCount: Optional[int] = Field(None, description="Snapshots written inline")


class ValidationRequest(BaseModel):
    autoFix: bool = Field(False, description="Repair duplicates and leave conflicts")
    maxFixes: Optional[int] = Field(None, ge=0, description="Upper bound on rows deleted")


# ============================================================================
# LEAVE
# ============================================================================

class LeaveQuotaCheckRequest(BaseModel):
    staffId: str
    date: date


class DimensionQuotaModel(BaseModel):
    dimension: str
    demandSlots: int
    staffCount: int
    baseRequirement: float
    cumulativeDeviation: float
    adjustedRequirement: int
    maxAllowedOffSlots: int
    usedSlots: int
    requestedSlots: int
    passes: bool


class LeaveQuotaDecisionResponse(BaseModel):
    canApprove: bool
    shouldHold: bool
    allowedCount: int
    approvedCount: int
    reason: Optional[str] = None
    dimensions: List[DimensionQuotaModel] = Field(default_factory=list)


class LeaveApplicationRequest(BaseModel):
    staffId: str
    date: date
    leaveType: Literal["ANNUAL", "OFF"] = "ANNUAL"
    reason: Optional[str] = None


class LeaveApplicationResponse(BaseModel):
    id: str
    staffId: str
    date: date
    leaveType: str
    status: str
    reason: Optional[str] = None
    decision: Optional[LeaveQuotaDecisionResponse] = None


class LeaveRejectRequest(BaseModel):
    reason: Optional[str] = None


# ============================================================================
# FAIRNESS / JOBS / HEALTH
# ============================================================================

class StaffSnapshotResponse(BaseModel):
    staffId: str
    year: int
    month: int
    actual: Dict[str, float]
    deviation: Dict[str, float]
    cumulativeDeviation: Dict[str, float]


class JobStatusResponse(BaseModel):
    job_id: str
    job_type: str
    status: str
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    status: str = "ok"
