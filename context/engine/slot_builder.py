"""Slot Builder: resolve a day's doctor roster into staff slot groups.

A clinic configures "combinations": for a sorted set of doctors and a night
flag, how many staff of each (department, category) must work. Each day's
realized doctor roster is looked up against those combinations and turned
into slot groups, one per (date, department, category).

Example:
  Roster 2025-03-03 {KIM, LEE} night=False
  Combination {KIM, LEE}/False -> {"TREATMENT": {"HYGIENIST": 4}}
  Output: SlotGroup(2025-03-03, TREATMENT, HYGIENIST, required=4)

A combination may give a department total instead of a per-category split
({"TREATMENT": 6}); the total is then split with the department's category
ratio configuration.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import math

from context.engine.errors import ErrorCategory, RunWarning, Severity

RosterKey = Tuple[Tuple[str, ...], bool]
PoolKey = Tuple[str, str]


@dataclass(frozen=True)
class DoctorRoster:
    """A date's realized doctor roster."""
    date: date
    doctor_ids: Tuple[str, ...]
    has_night: bool = False

    @classmethod
    def of(cls, d: date, doctor_ids: Iterable[str], has_night: bool = False) -> 'DoctorRoster':
        return cls(date=d, doctor_ids=tuple(sorted(set(doctor_ids))), has_night=bool(has_night))

    @property
    def roster_key(self) -> RosterKey:
        return self.doctor_ids, self.has_night


@dataclass
class Combination:
    """Staff requirement for one doctor roster shape.

    Attributes:
        combination_id: Identifier of the configuration row
        doctor_ids: Sorted doctor identifiers
        has_night: Whether the roster includes a night shift
        requirements: department -> {category: count} or department -> total
    """
    combination_id: str
    doctor_ids: Tuple[str, ...]
    has_night: bool
    requirements: Dict[str, object] = field(default_factory=dict)

    @property
    def roster_key(self) -> RosterKey:
        return tuple(sorted(self.doctor_ids)), bool(self.has_night)


class SlotStatus(Enum):
    UNFILLED = "UNFILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"


@dataclass
class SlotGroup:
    """Required positions for one (date, department, category)."""
    date: date
    department: str
    staff_category: str
    required: int
    has_night: bool = False
    assigned: List[str] = field(default_factory=list)

    @property
    def pool(self) -> PoolKey:
        return self.department, self.staff_category

    @property
    def shortage(self) -> int:
        return max(0, self.required - len(self.assigned))

    @property
    def status(self) -> SlotStatus:
        if len(self.assigned) >= self.required:
            return SlotStatus.FILLED
        if self.assigned:
            return SlotStatus.PARTIALLY_FILLED
        return SlotStatus.UNFILLED


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def split_by_ratio(total: int, ratios: Sequence[Tuple[str, float]]) -> Dict[str, int]:
    """Split a department total across categories by percentage.

    Each category gets round(total * pct / 100); the last category takes
    whatever remains so the split always sums to the total (never below 0).

    Args:
        total: Department staff requirement
        ratios: Ordered (category, percentage) pairs

    Returns:
        category -> required count
    """
    if not ratios:
        return {}
    result: Dict[str, int] = {}
    allocated = 0
    for category, pct in ratios[:-1]:
        count = min(round_half_up(total * float(pct) / 100.0), total - allocated)
        count = max(0, count)
        result[category] = count
        allocated += count
    last_category = ratios[-1][0]
    result[last_category] = max(0, total - allocated)
    return result


class SlotRequirementResolver:
    """Indexes a clinic's combinations once and resolves rosters against them.

    Args:
        combinations: Combination rows for the clinic
        category_ratios: department -> ordered [(category, pct)]
    """

    def __init__(
        self,
        combinations: Iterable[Combination],
        category_ratios: Optional[Dict[str, Sequence[Tuple[str, float]]]] = None,
    ):
        self._index: Dict[RosterKey, Combination] = {}
        for combo in combinations:
            self._index[combo.roster_key] = combo
        self.category_ratios = dict(category_ratios or {})

    @property
    def departments(self) -> List[str]:
        """Departments mentioned by any combination, sorted."""
        names = set()
        for combo in self._index.values():
            names.update(combo.requirements.keys())
        return sorted(names)

    def resolve(self, roster: DoctorRoster) -> Tuple[Dict[PoolKey, int], Optional[RunWarning]]:
        """Required staff per (department, category) for a roster.

        Returns an empty table and a CONFIGURATION warning when no
        combination matches the roster.
        """
        if not roster.doctor_ids:
            return {}, None

        combo = self._index.get(roster.roster_key)
        if combo is None:
            night = " (night)" if roster.has_night else ""
            return {}, RunWarning(
                category=ErrorCategory.CONFIGURATION,
                severity=Severity.WARNING,
                message=f"No combination configured for doctors {', '.join(roster.doctor_ids)}{night}",
                date=roster.date,
            )

        table: Dict[PoolKey, int] = {}
        warning = None
        for department, requirement in combo.requirements.items():
            if isinstance(requirement, dict):
                for category, count in requirement.items():
                    table[(department, category)] = max(0, int(count))
                continue
            ratios = self.category_ratios.get(department)
            if not ratios:
                warning = RunWarning(
                    category=ErrorCategory.CONFIGURATION,
                    severity=Severity.WARNING,
                    message=f"No category ratio configured for department {department}",
                    date=roster.date,
                    department=department,
                )
                continue
            for category, count in split_by_ratio(int(requirement), ratios).items():
                table[(department, category)] = count
        return table, warning

    def build_slot_groups(self, roster: DoctorRoster) -> Tuple[List[SlotGroup], List[RunWarning]]:
        """Slot groups for a day, sorted by (department, category)."""
        table, warning = self.resolve(roster)
        groups = [
            SlotGroup(
                date=roster.date,
                department=department,
                staff_category=category,
                required=count,
                has_night=roster.has_night,
            )
            for (department, category), count in sorted(table.items())
        ]
        return groups, [warning] if warning else []
