"""Engine rule configuration.

Rules are passed per clinic as a list of entries, each identified by id:

    {
      "id": "defaultWeeklyWorkDays",
      "defaultValue": 4,
      "departmentOverrides": {"TREATMENT": 5}
    }

A rule that is absent falls back to the built-in default below. Rules that
carry department overrides are looked up with the department of the slot
or staff member being processed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, FrozenSet

from context.engine.time_utils import parse_weekday


DEFAULT_RULES: Dict[str, Any] = {
    'defaultWeeklyWorkDays': 4,
    'maxConsecutiveWorkDays': 6,
    'closedWeekdays': ['SUNDAY'],
    'weekendWeekdays': ['SATURDAY'],
    'holidayAdjacentEnabled': True,
    'weightMonthDays': 1.0,
    'weightDimensionImbalance': 1.0,
    'weightConsecutive': 0.5,
    'weightConsecutiveOverrun': 10.0,
    'weightWeeklyOvershoot': 2.0,
    'maxAutoFixes': 50,
}


def get_rule_param(
    rules: Optional[List[dict]],
    rule_id: str,
    department: Optional[str] = None,
    default: Any = None
) -> Any:
    """
    Get a rule value with department-specific override support.

    Lookup priority:
    1. departmentOverrides[department]
    2. defaultValue
    3. default argument
    4. built-in DEFAULT_RULES entry

    Args:
        rules: List of rule dicts (may be None)
        rule_id: Rule identifier (e.g., 'maxConsecutiveWorkDays')
        department: Department for override lookup (optional)
        default: Fallback when the rule is not configured

    Returns:
        Rule value
    """
    fallback = default if default is not None else DEFAULT_RULES.get(rule_id)
    for rule in rules or []:
        if rule.get('id') != rule_id:
            continue
        if rule.get('enabled') is False:
            return fallback
        overrides = rule.get('departmentOverrides') or {}
        if department is not None and department in overrides:
            return overrides[department]
        if 'defaultValue' in rule:
            return rule['defaultValue']
        return fallback
    return fallback


@dataclass(frozen=True)
class EngineConfig:
    """Resolved rule values used by one assignment run."""
    default_weekly_work_days: int = 4
    max_consecutive_work_days: int = 6
    closed_weekdays: FrozenSet[int] = frozenset({6})
    weekend_weekdays: FrozenSet[int] = frozenset({5})
    holiday_adjacent_enabled: bool = True
    weight_month_days: float = 1.0
    weight_dimension_imbalance: float = 1.0
    weight_consecutive: float = 0.5
    weight_consecutive_overrun: float = 10.0
    weight_weekly_overshoot: float = 2.0
    max_auto_fixes: int = 50
    rules: List[dict] = field(default_factory=list, compare=False, hash=False)

    def weekly_work_days_for(self, department: str) -> int:
        """Department default for staff without a personal weekly target."""
        return int(get_rule_param(self.rules, 'defaultWeeklyWorkDays',
                                  department=department,
                                  default=self.default_weekly_work_days))


def build_engine_config(rules: Optional[List[dict]] = None) -> EngineConfig:
    """Resolve a rule list into an EngineConfig."""
    rules = list(rules or [])

    def value(rule_id):
        return get_rule_param(rules, rule_id)

    return EngineConfig(
        default_weekly_work_days=int(value('defaultWeeklyWorkDays')),
        max_consecutive_work_days=int(value('maxConsecutiveWorkDays')),
        closed_weekdays=frozenset(parse_weekday(v) for v in value('closedWeekdays')),
        weekend_weekdays=frozenset(parse_weekday(v) for v in value('weekendWeekdays')),
        holiday_adjacent_enabled=bool(value('holidayAdjacentEnabled')),
        weight_month_days=float(value('weightMonthDays')),
        weight_dimension_imbalance=float(value('weightDimensionImbalance')),
        weight_consecutive=float(value('weightConsecutive')),
        weight_consecutive_overrun=float(value('weightConsecutiveOverrun')),
        weight_weekly_overshoot=float(value('weightWeeklyOvershoot')),
        max_auto_fixes=int(value('maxAutoFixes')),
        rules=rules,
    )
