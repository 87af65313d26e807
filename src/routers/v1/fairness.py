"""
v1 Fairness Router - per-staff monthly fairness snapshots.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from src.dependencies import get_db
from src.fairness_service import get_staff_snapshot
from src.models import StaffSnapshotResponse

router = APIRouter(prefix="/fairness")


@router.get("/{staff_id}/{year}/{month}", response_model=StaffSnapshotResponse)
def staff_snapshot(staff_id: str, year: int, month: int, db: Session = Depends(get_db)):
    """Actual counts, deviation and cumulative deviation for one staff month."""
    snapshot = get_staff_snapshot(db, staff_id, year, month)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No snapshot for {staff_id} {year}-{month:02d}")
    return StaffSnapshotResponse(
        staffId=snapshot.staff_id,
        year=snapshot.year,
        month=snapshot.month,
        actual=snapshot.actual,
        deviation=snapshot.deviation,
        cumulativeDeviation=snapshot.cumulative,
    )
