"""
Clinic Roster API v1 Router.

Endpoints:
- POST /v1/assignments/run                     - Run the monthly assignment engine
- POST /v1/schedules/{id}/confirm              - DRAFT -> CONFIRMED
- POST /v1/schedules/{id}/deploy               - Deploy and recompute fairness snapshots
- POST /v1/schedules/{id}/validate             - Validation pass (optionally in background)
- GET  /v1/jobs/{job_id}                       - Background job status and result
- POST /v1/leave/quota-check                   - Leave quota decision
- POST /v1/leave/applications                  - Submit leave
- POST /v1/leave/applications/{id}/approve     - Approve leave
- POST /v1/leave/applications/{id}/reject      - Reject leave
- GET  /v1/fairness/{staff_id}/{year}/{month}  - Per-staff fairness snapshot
"""

from fastapi import APIRouter

router = APIRouter(prefix="/v1", tags=["v1"])

from .assignments import router as assignments_router
from .leave import router as leave_router
from .fairness import router as fairness_router

router.include_router(assignments_router)
router.include_router(leave_router)
router.include_router(fairness_router)
