"""Run context: read-only lookup tables built once per assignment run.

The service layer reads staff, rosters, combinations, holidays and leave from
the database and hands them to build_run_context(). Everything the engine
phases consult afterwards (requirements per day, staff pools, confirmed leave,
frozen dates) is answered from the indexes built here, so the phases never
query the database and can be exercised with plain objects in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from context.engine.constraint_config import EngineConfig, build_engine_config
from context.engine.errors import RunWarning
from context.engine.slot_builder import (
    DoctorRoster, PoolKey, SlotGroup, SlotRequirementResolver,
)
from context.engine.time_utils import (
    ALL_DIMENSIONS, DayClassifier, FairnessDimension, iter_dates, month_range, week_start,
)


class ShiftType(Enum):
    DAY = "DAY"
    NIGHT = "NIGHT"
    OFF = "OFF"


WORK_SHIFTS = (ShiftType.DAY, ShiftType.NIGHT)


class LeaveType(Enum):
    ANNUAL = "ANNUAL"
    OFF = "OFF"


class LeaveStatus(Enum):
    PENDING = "PENDING"
    ON_HOLD = "ON_HOLD"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class StaffMember:
    """Staff as seen by the engine.

    Attributes:
        staff_id: Staff identifier
        department: Department name
        category: Seniority/role tier inside the department
        weekly_work_days: Personal weekly target (None = department default)
        deviation: Cumulative fairness deviation per dimension (ledger value)
    """
    staff_id: str
    department: str
    category: str
    weekly_work_days: Optional[int] = None
    active: bool = True
    name: str = ""
    deviation: Dict[FairnessDimension, float] = field(default_factory=dict, compare=False, hash=False)

    @property
    def pool(self) -> PoolKey:
        return self.department, self.category

    def ledger_value(self, dimension: FairnessDimension) -> float:
        return float(self.deviation.get(dimension, 0.0))


@dataclass(frozen=True)
class LeaveRecord:
    leave_id: str
    staff_id: str
    date: date
    leave_type: LeaveType
    status: LeaveStatus
    created_at: Optional[datetime] = None


@dataclass
class AssignmentRecord:
    staff_id: str
    date: date
    shift_type: ShiftType
    assignment_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_work(self) -> bool:
        return self.shift_type in WORK_SHIFTS


@dataclass
class RunContext:
    """Indexed, read-only view of everything one run needs."""
    clinic_id: str
    year: int
    month: int
    start: date
    end: date
    staff: Dict[str, StaffMember]
    rosters: Dict[date, DoctorRoster]
    holidays: Set[date]
    confirmed_leaves: Dict[Tuple[str, date], LeaveRecord]
    frozen_dates: Set[date]
    config: EngineConfig
    resolver: SlotRequirementResolver
    classifier: DayClassifier
    pools: Dict[PoolKey, List[str]] = field(default_factory=dict)
    config_warnings: List[RunWarning] = field(default_factory=list)
    _requirements: Dict[date, Dict[PoolKey, int]] = field(default_factory=dict, repr=False)

    @property
    def dates(self) -> List[date]:
        return list(iter_dates(self.start, self.end))

    @property
    def rostered_staff_ids(self) -> List[str]:
        """Active staff of departments that carry slot requirements, sorted."""
        return sorted(sid for ids in self.pools.values() for sid in ids)

    def roster(self, d: date) -> Optional[DoctorRoster]:
        return self.rosters.get(d)

    def has_doctor(self, d: date) -> bool:
        roster = self.rosters.get(d)
        return bool(roster and roster.doctor_ids)

    def has_night(self, d: date) -> bool:
        roster = self.rosters.get(d)
        return bool(roster and roster.has_night)

    def is_business_day(self, d: date) -> bool:
        """Open weekday that is not a holiday."""
        return d.weekday() not in self.config.closed_weekdays and d not in self.holidays

    def week_business_days(self, d: date) -> List[date]:
        """Business days of d's Sunday-Saturday week that fall inside the month."""
        first = week_start(d)
        last = first + timedelta(days=6)
        return [
            day for day in iter_dates(max(first, self.start), min(last, self.end))
            if self.is_business_day(day)
        ]

    def requirements(self, d: date) -> Dict[PoolKey, int]:
        return self._requirements.get(d, {})

    def requirement(self, d: date, pool: PoolKey) -> int:
        return self._requirements.get(d, {}).get(pool, 0)

    def slot_groups(self, d: date) -> List[SlotGroup]:
        """Fresh (unassigned) slot groups for a date."""
        has_night = self.has_night(d)
        return [
            SlotGroup(date=d, department=dept, staff_category=cat, required=count, has_night=has_night)
            for (dept, cat), count in sorted(self.requirements(d).items())
        ]

    def confirmed_leave(self, staff_id: str, d: date) -> Optional[LeaveRecord]:
        return self.confirmed_leaves.get((staff_id, d))

    def weekly_target(self, staff_id: str, business_days: int) -> int:
        """Personal weekly work-day target, capped by the week's business days."""
        member = self.staff[staff_id]
        target = member.weekly_work_days
        if target is None:
            target = self.config.weekly_work_days_for(member.department)
        return min(int(target), business_days)


def build_run_context(
    clinic_id: str,
    year: int,
    month: int,
    staff: Iterable[StaffMember],
    rosters: Iterable[DoctorRoster],
    resolver: SlotRequirementResolver,
    holidays: Iterable[date] = (),
    leaves: Iterable[LeaveRecord] = (),
    frozen_dates: Iterable[date] = (),
    rules: Optional[List[dict]] = None,
    config: Optional[EngineConfig] = None,
) -> RunContext:
    """
    Build the indexed run context for (clinic, year, month).

    Args:
        staff: All staff of the clinic (inactive members are filtered out)
        rosters: Doctor rosters; dates outside the month are ignored
        resolver: Slot requirement resolver for the clinic
        holidays: Holiday dates (any range; adjacency looks one day outside the month)
        leaves: Leave applications; only CONFIRMED ones become exclusions
        frozen_dates: Dates the run must not touch
        rules: Engine rule list (ignored when config is given)

    Returns:
        RunContext
    """
    config = config or build_engine_config(rules)
    start, end = month_range(year, month)
    holiday_set = set(holidays)
    classifier = DayClassifier(
        holiday_set,
        weekend_weekdays=config.weekend_weekdays,
        holiday_adjacent_enabled=config.holiday_adjacent_enabled,
    )

    departments = set(resolver.departments)
    active = {
        member.staff_id: member
        for member in staff
        if member.active and member.department in departments
    }
    pools: Dict[PoolKey, List[str]] = {}
    for member in active.values():
        pools.setdefault(member.pool, []).append(member.staff_id)
    for ids in pools.values():
        ids.sort()

    roster_index = {r.date: r for r in rosters if start <= r.date <= end}

    confirmed = {
        (leave.staff_id, leave.date): leave
        for leave in leaves
        if leave.status == LeaveStatus.CONFIRMED and leave.staff_id in active
    }

    ctx = RunContext(
        clinic_id=clinic_id,
        year=year,
        month=month,
        start=start,
        end=end,
        staff=active,
        rosters=roster_index,
        holidays=holiday_set,
        confirmed_leaves=confirmed,
        frozen_dates={d for d in frozen_dates if start <= d <= end},
        config=config,
        resolver=resolver,
        classifier=classifier,
        pools=pools,
    )

    for d, roster in sorted(roster_index.items()):
        table, warning = resolver.resolve(roster)
        ctx._requirements[d] = table
        if warning:
            ctx.config_warnings.append(warning)

    return ctx


def empty_deviation() -> Dict[FairnessDimension, float]:
    return {dim: 0.0 for dim in ALL_DIMENSIONS}
