"""Fairness Ledger and Quota Calculator.

The ledger holds, per staff member and dimension, a signed cumulative
deviation from the department average (positive = under-worked). It is
written only by the snapshot recompute after a schedule is deployed; this
module only reads it.

Quota for one dimension over an eligibility period:

    D        = required slots of the staff's (department, category) on every
               day of the period that counts toward the dimension
    base     = D / N                      N = active staff in the pool
    adjusted = max(0, floor(base + cumulativeDeviation))
    maxOff   = D - adjusted
    used     = sum of the day requirement over the staff's PENDING and
               CONFIRMED leave dates in the period that count toward it

A leave date is approvable iff used + requested <= maxOff for every
dimension the date counts toward.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from context.engine.slot_builder import PoolKey
from context.engine.time_utils import (
    ALL_DIMENSIONS, DayClassifier, FairnessDimension, iter_dates,
)


class FairnessLedger:
    """Read-only view of cumulative deviation per (staff, dimension)."""

    def __init__(self, values: Optional[Dict[str, Dict[FairnessDimension, float]]] = None):
        self._values = {sid: dict(dims) for sid, dims in (values or {}).items()}

    @classmethod
    def from_staff(cls, staff: Iterable) -> 'FairnessLedger':
        return cls({member.staff_id: dict(member.deviation) for member in staff})

    def deviation(self, staff_id: str, dimension: FairnessDimension) -> float:
        return float(self._values.get(staff_id, {}).get(dimension, 0.0))

    def as_dict(self, staff_id: str) -> Dict[str, float]:
        return {dim.value: self.deviation(staff_id, dim) for dim in ALL_DIMENSIONS}


def compute_requirements(demand: int, staff_count: int, cumulative_deviation: float) -> Tuple[float, int, int]:
    """
    Individual requirement and leave allowance for one dimension.

    Args:
        demand: D, slot units in the period
        staff_count: N, active staff sharing the pool
        cumulative_deviation: Ledger value for the staff member

    Returns:
        (baseRequirement, adjustedRequirement, maxAllowedOffSlots)

    Example:
        >>> compute_requirements(10, 5, 2.4)
        (2.0, 4, 6)
    """
    base = demand / staff_count if staff_count > 0 else 0.0
    # round() guards floor against binary noise such as 3.9999999999
    adjusted = max(0, math.floor(round(base + cumulative_deviation, 9)))
    return base, adjusted, demand - adjusted


@dataclass
class DimensionQuota:
    dimension: FairnessDimension
    demand_slots: int
    staff_count: int
    base_requirement: float
    cumulative_deviation: float
    adjusted_requirement: int
    max_allowed_off_slots: int
    used_slots: int
    requested_slots: int

    @property
    def remaining(self) -> int:
        return self.max_allowed_off_slots - self.used_slots

    @property
    def passes(self) -> bool:
        return self.used_slots + self.requested_slots <= self.max_allowed_off_slots

    def to_dict(self) -> Dict:
        return {
            'dimension': self.dimension.value,
            'demandSlots': self.demand_slots,
            'staffCount': self.staff_count,
            'baseRequirement': self.base_requirement,
            'cumulativeDeviation': self.cumulative_deviation,
            'adjustedRequirement': self.adjusted_requirement,
            'maxAllowedOffSlots': self.max_allowed_off_slots,
            'usedSlots': self.used_slots,
            'requestedSlots': self.requested_slots,
            'passes': self.passes,
        }


@dataclass
class QuotaDecision:
    """Leave-quota decision consumed by the leave-approval endpoint."""
    can_approve: bool
    should_hold: bool
    allowed_count: int
    approved_count: int
    dimensions: List[DimensionQuota] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'canApprove': self.can_approve,
            'shouldHold': self.should_hold,
            'allowedCount': self.allowed_count,
            'approvedCount': self.approved_count,
            'reason': self.reason,
            'dimensions': [q.to_dict() for q in self.dimensions],
        }


class QuotaCalculator:
    """
    Converts ledger values and period demand into leave allowances.

    Args:
        requirement_for: (date, pool) -> required staff on that date
        has_night: date -> whether the roster includes a night shift
        pool_size: pool -> number of active staff in it
        classifier: Day classifier for the clinic calendar
        ledger: Fairness ledger
    """

    def __init__(
        self,
        requirement_for: Callable[[date, PoolKey], int],
        has_night: Callable[[date], bool],
        pool_size: Callable[[PoolKey], int],
        classifier: DayClassifier,
        ledger: FairnessLedger,
    ):
        self.requirement_for = requirement_for
        self.has_night = has_night
        self.pool_size = pool_size
        self.classifier = classifier
        self.ledger = ledger

    def dimensions_for(self, d: date):
        return self.classifier.dimensions_for(d, has_night=self.has_night(d))

    def demand(self, pool: PoolKey, dimension: FairnessDimension, start: date, end: date) -> int:
        return sum(
            self.requirement_for(d, pool)
            for d in iter_dates(start, end)
            if dimension in self.dimensions_for(d)
        )

    def used_slots(self, pool: PoolKey, dimension: FairnessDimension, leave_dates: Iterable[date]) -> int:
        return sum(
            self.requirement_for(d, pool)
            for d in set(leave_dates)
            if dimension in self.dimensions_for(d)
        )

    def dimension_quota(
        self,
        staff_id: str,
        pool: PoolKey,
        dimension: FairnessDimension,
        period: Tuple[date, date],
        leave_dates: Sequence[date],
        requested_date: Optional[date] = None,
    ) -> DimensionQuota:
        start, end = period
        demand = self.demand(pool, dimension, start, end)
        staff_count = self.pool_size(pool)
        deviation = self.ledger.deviation(staff_id, dimension)
        base, adjusted, max_off = compute_requirements(demand, staff_count, deviation)
        in_period = [d for d in leave_dates if start <= d <= end]
        requested = 0
        if requested_date is not None and dimension in self.dimensions_for(requested_date):
            requested = self.requirement_for(requested_date, pool)
        return DimensionQuota(
            dimension=dimension,
            demand_slots=demand,
            staff_count=staff_count,
            base_requirement=base,
            cumulative_deviation=deviation,
            adjusted_requirement=adjusted,
            max_allowed_off_slots=max_off,
            used_slots=self.used_slots(pool, dimension, in_period),
            requested_slots=requested,
        )

    def evaluate(
        self,
        staff_id: str,
        pool: PoolKey,
        requested_date: date,
        period: Tuple[date, date],
        leave_dates: Sequence[date],
        day_slots_available: Optional[int] = None,
    ) -> QuotaDecision:
        """
        Decide whether a leave on requested_date fits the staff's quota.

        Args:
            leave_dates: The staff's other PENDING/CONFIRMED leave dates
            day_slots_available: Staff of the pool still free to take leave on
                the date; <= 0 puts an otherwise approvable request on hold

        Returns:
            QuotaDecision
        """
        quotas = [
            self.dimension_quota(staff_id, pool, dim, period, leave_dates, requested_date)
            for dim in ALL_DIMENSIONS
            if dim in self.dimensions_for(requested_date)
        ]
        failing = [q for q in quotas if not q.passes]
        binding = min(quotas, key=lambda q: (q.remaining, q.dimension.value))
        can_approve = not failing
        should_hold = can_approve and day_slots_available is not None and day_slots_available <= 0

        reason = None
        if failing:
            reason = "Quota exceeded for " + ", ".join(q.dimension.value for q in failing)
        elif should_hold:
            reason = "No staff slot left on this date"

        return QuotaDecision(
            can_approve=can_approve,
            should_hold=should_hold,
            allowed_count=binding.max_allowed_off_slots,
            approved_count=binding.used_slots,
            dimensions=quotas,
            reason=reason,
        )


def fairness_score(work_days_by_pool: Dict[PoolKey, Sequence[int]]) -> float:
    """Staff-weighted 0-100 score of how evenly work days are spread per pool.

    Each pool scores 100 * (1 - mean absolute deviation / mean), clamped to
    [0, 100]. Pools with no work are skipped; no pools at all scores 100.
    """
    weighted = 0.0
    weight = 0
    for counts in work_days_by_pool.values():
        counts = list(counts)
        if not counts:
            continue
        mean = sum(counts) / len(counts)
        if mean <= 0:
            continue
        mad = sum(abs(c - mean) for c in counts) / len(counts)
        pool_score = min(100.0, max(0.0, 100.0 * (1.0 - mad / mean)))
        weighted += pool_score * len(counts)
        weight += len(counts)
    if weight == 0:
        return 100.0
    return round(weighted / weight, 1)
