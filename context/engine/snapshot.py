"""Fairness snapshot computation.

After a schedule is deployed, the month's final assignments are turned into
per-staff actual counts per dimension (OFF excluded). Each department's
average per dimension gives the deviation:

    deviation  = round(departmentAverage - actual, 1)
    cumulative = round(sum of the year's earlier monthly deviations + deviation, 1)

The service layer persists the snapshot rows and copies the cumulative
values onto Staff; nothing else writes the ledger.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from context.engine.data_loader import AssignmentRecord, ShiftType, StaffMember
from context.engine.time_utils import ALL_DIMENSIONS, DayClassifier, FairnessDimension


@dataclass
class StaffSnapshot:
    staff_id: str
    department: str
    actual: Dict[FairnessDimension, int] = field(default_factory=dict)
    department_average: Dict[FairnessDimension, float] = field(default_factory=dict)
    deviation: Dict[FairnessDimension, float] = field(default_factory=dict)
    cumulative: Dict[FairnessDimension, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'staffId': self.staff_id,
            'department': self.department,
            'actual': {d.value: self.actual.get(d, 0) for d in ALL_DIMENSIONS},
            'deviation': {d.value: self.deviation.get(d, 0.0) for d in ALL_DIMENSIONS},
            'cumulativeDeviation': {d.value: self.cumulative.get(d, 0.0) for d in ALL_DIMENSIONS},
        }


def count_actuals(
    assignments: Iterable[AssignmentRecord],
    classifier: DayClassifier,
    start: date,
    end: date,
) -> Dict[str, Dict[FairnessDimension, int]]:
    """Work counts per staff and dimension over [start, end]."""
    counts: Dict[str, Dict[FairnessDimension, int]] = defaultdict(lambda: defaultdict(int))
    for record in assignments:
        if record.shift_type == ShiftType.OFF or not (start <= record.date <= end):
            continue
        dims = classifier.dimensions_for(record.date, has_night=record.shift_type == ShiftType.NIGHT)
        for dim in dims:
            counts[record.staff_id][dim] += 1
    return counts


def compute_snapshots(
    staff: Sequence[StaffMember],
    assignments: Iterable[AssignmentRecord],
    classifier: DayClassifier,
    start: date,
    end: date,
    prior_deviations: Optional[Dict[str, Sequence[Dict[FairnessDimension, float]]]] = None,
) -> List[StaffSnapshot]:
    """
    Snapshot every active staff member for the deployed range.

    Args:
        staff: Staff to snapshot (inactive members are skipped)
        assignments: Final assignments of the schedule
        classifier: Day classifier for the clinic calendar
        start, end: Deployed date range
        prior_deviations: staff_id -> per-month deviation dicts for earlier
            months of the same year

    Returns:
        List of StaffSnapshot, ordered by staff id
    """
    prior_deviations = prior_deviations or {}
    members = sorted((m for m in staff if m.active), key=lambda m: m.staff_id)
    actuals = count_actuals(assignments, classifier, start, end)

    by_department: Dict[str, List[StaffMember]] = defaultdict(list)
    for member in members:
        by_department[member.department].append(member)

    averages: Dict[str, Dict[FairnessDimension, float]] = {}
    for department, dept_members in by_department.items():
        averages[department] = {
            dim: sum(actuals[m.staff_id][dim] for m in dept_members) / len(dept_members)
            for dim in ALL_DIMENSIONS
        }

    snapshots = []
    for member in members:
        average = averages[member.department]
        snap = StaffSnapshot(staff_id=member.staff_id, department=member.department)
        for dim in ALL_DIMENSIONS:
            actual = actuals[member.staff_id][dim]
            deviation = round(average[dim] - actual, 1)
            earlier = sum(month.get(dim, 0.0) for month in prior_deviations.get(member.staff_id, []))
            snap.actual[dim] = actual
            snap.department_average[dim] = round(average[dim], 2)
            snap.deviation[dim] = deviation
            snap.cumulative[dim] = round(earlier + deviation, 1)
        snapshots.append(snap)
    return snapshots
