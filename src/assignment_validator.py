"""
Assignment Validator - post-run scan and auto-repair

Scans a schedule's committed assignments and reports typed issues:

- SLOT_SHORTAGE          fewer staff working than the day requires   (CRITICAL)
- SLOT_EXCESS            more staff working than the day requires     (WARNING)
- CATEGORY_SHORTAGE      a (department, category) short on a day      (WARNING)
- STAFF_SHORTAGE         staff below weekly target  (WARNING if >= 2 days, else INFO)
- STAFF_EXCESS           staff above weekly target                    (INFO)
- DUPLICATE_ASSIGNMENT   more than one row for (staff, date)          (CRITICAL)
- LEAVE_CONFLICT         work assigned on a confirmed leave day       (CRITICAL)

Only DUPLICATE_ASSIGNMENT (keep the earliest row) and LEAVE_CONFLICT
(delete the conflicting row) are repaired automatically; everything else is
reported. Holidays and frozen dates are not slot-checked.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from context.engine.data_loader import AssignmentRecord, LeaveType, RunContext
from context.engine.errors import Severity
from context.engine.time_utils import weeks_in_range
from src.database import StaffAssignment, ValidationLog
from src.roster_repository import load_assignment_records, load_run_context

logger = logging.getLogger(__name__)


class IssueType(Enum):
    SLOT_SHORTAGE = "SLOT_SHORTAGE"
    SLOT_EXCESS = "SLOT_EXCESS"
    STAFF_SHORTAGE = "STAFF_SHORTAGE"
    STAFF_EXCESS = "STAFF_EXCESS"
    DUPLICATE_ASSIGNMENT = "DUPLICATE_ASSIGNMENT"
    CATEGORY_SHORTAGE = "CATEGORY_SHORTAGE"
    LEAVE_CONFLICT = "LEAVE_CONFLICT"


AUTO_FIXABLE = (IssueType.DUPLICATE_ASSIGNMENT, IssueType.LEAVE_CONFLICT)


@dataclass
class ValidationIssue:
    issue_type: IssueType
    severity: Severity
    message: str
    date: Optional[date] = None
    staff_id: Optional[str] = None
    department: Optional[str] = None
    staff_category: Optional[str] = None
    expected: Optional[int] = None
    actual: Optional[int] = None
    # Rows to delete when repaired, in deletion order
    assignment_ids: List[str] = field(default_factory=list)

    @property
    def auto_fixable(self) -> bool:
        return self.issue_type in AUTO_FIXABLE and bool(self.assignment_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.issue_type.value,
            'severity': self.severity.value,
            'message': self.message,
            'date': self.date.isoformat() if self.date else None,
            'staffId': self.staff_id,
            'department': self.department,
            'category': self.staff_category,
            'expected': self.expected,
            'actual': self.actual,
            'autoFixable': self.auto_fixable,
        }


@dataclass
class FixReport:
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'applied': self.applied, 'failed': self.failed, 'skipped': self.skipped, 'errors': self.errors}


class AssignmentRepairer(ABC):
    @abstractmethod
    def delete_assignment(self, assignment_id: str) -> None:
        """Delete one assignment row (one transaction)."""


class SqlAssignmentRepairer(AssignmentRepairer):
    def __init__(self, session: Session):
        self.session = session

    def delete_assignment(self, assignment_id):
        try:
            self.session.execute(delete(StaffAssignment).where(StaffAssignment.id == assignment_id))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


def _sort_key(record: AssignmentRecord):
    return (record.created_at or datetime.min, record.assignment_id or "")


class AssignmentValidator:
    """
    Scans assignment records against the month's requirements.

    Usage:
        validator = AssignmentValidator(ctx)
        issues = validator.scan(records)
        report = validator.auto_fix(issues, repairer)
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def scan(self, records: List[AssignmentRecord]) -> List[ValidationIssue]:
        in_month = [r for r in records if self.ctx.start <= r.date <= self.ctx.end]
        issues: List[ValidationIssue] = []
        issues.extend(self._check_duplicates(in_month))
        issues.extend(self._check_leave_conflicts(in_month))

        working = defaultdict(set)
        for r in in_month:
            if r.is_work:
                working[r.date].add(r.staff_id)

        issues.extend(self._check_slots(working))
        issues.extend(self._check_staff_weeks(working))
        return issues

    def _check_duplicates(self, records):
        grouped = defaultdict(list)
        for r in records:
            grouped[(r.staff_id, r.date)].append(r)
        issues = []
        for (staff_id, d), rows in sorted(grouped.items(), key=lambda kv: (kv[0][1], kv[0][0])):
            if len(rows) < 2:
                continue
            rows = sorted(rows, key=_sort_key)
            issues.append(ValidationIssue(
                issue_type=IssueType.DUPLICATE_ASSIGNMENT,
                severity=Severity.CRITICAL,
                message=f"{staff_id} has {len(rows)} assignments on {d.isoformat()}",
                date=d,
                staff_id=staff_id,
                expected=1,
                actual=len(rows),
                assignment_ids=[r.assignment_id for r in rows[1:] if r.assignment_id],
            ))
        return issues

    def _check_leave_conflicts(self, records):
        issues = []
        for r in sorted(records, key=lambda r: (r.date, r.staff_id)):
            if not r.is_work:
                continue
            leave = self.ctx.confirmed_leave(r.staff_id, r.date)
            if leave is None:
                continue
            issues.append(ValidationIssue(
                issue_type=IssueType.LEAVE_CONFLICT,
                severity=Severity.CRITICAL,
                message=f"{r.staff_id} assigned {r.shift_type.value} on confirmed {leave.leave_type.value} leave",
                date=r.date,
                staff_id=r.staff_id,
                assignment_ids=[r.assignment_id] if r.assignment_id else [],
            ))
        return issues

    def _check_slots(self, working):
        issues = []
        for d in self.ctx.dates:
            if d in self.ctx.holidays or d in self.ctx.frozen_dates:
                continue
            requirements = self.ctx.requirements(d)
            if not requirements:
                continue
            on_day = working.get(d, set())
            required_total = 0
            assigned_total = 0
            for (department, category), required in sorted(requirements.items()):
                pool_ids = set(self.ctx.pools.get((department, category), []))
                assigned = len(on_day & pool_ids)
                required_total += required
                assigned_total += assigned
                if assigned < required:
                    issues.append(ValidationIssue(
                        issue_type=IssueType.CATEGORY_SHORTAGE,
                        severity=Severity.WARNING,
                        message=f"{department}/{category}: {assigned} of {required} assigned",
                        date=d,
                        department=department,
                        staff_category=category,
                        expected=required,
                        actual=assigned,
                    ))
            if assigned_total < required_total:
                issues.append(ValidationIssue(
                    issue_type=IssueType.SLOT_SHORTAGE,
                    severity=Severity.CRITICAL,
                    message=f"{assigned_total} of {required_total} required staff assigned",
                    date=d,
                    expected=required_total,
                    actual=assigned_total,
                ))
            elif assigned_total > required_total:
                issues.append(ValidationIssue(
                    issue_type=IssueType.SLOT_EXCESS,
                    severity=Severity.WARNING,
                    message=f"{assigned_total} staff assigned, {required_total} required",
                    date=d,
                    expected=required_total,
                    actual=assigned_total,
                ))
        return issues

    def _works(self, working, staff_id, d) -> bool:
        if staff_id in working.get(d, ()):
            return True
        leave = self.ctx.confirmed_leave(staff_id, d)
        return leave is not None and leave.leave_type == LeaveType.ANNUAL

    def _check_staff_weeks(self, working):
        issues = []
        for week in weeks_in_range(self.ctx.start, self.ctx.end):
            days = [d for d in week if self.ctx.is_business_day(d) and d not in self.ctx.frozen_dates]
            if not days:
                continue
            for staff_id in self.ctx.rostered_staff_ids:
                target = self.ctx.weekly_target(staff_id, len(days))
                worked = sum(1 for d in days if self._works(working, staff_id, d))
                if worked < target:
                    gap = target - worked
                    issues.append(ValidationIssue(
                        issue_type=IssueType.STAFF_SHORTAGE,
                        severity=Severity.WARNING if gap >= 2 else Severity.INFO,
                        message=f"{staff_id} works {worked} of {target} days in week of {days[0].isoformat()}",
                        date=days[0],
                        staff_id=staff_id,
                        expected=target,
                        actual=worked,
                    ))
                elif worked > target:
                    issues.append(ValidationIssue(
                        issue_type=IssueType.STAFF_EXCESS,
                        severity=Severity.INFO,
                        message=f"{staff_id} works {worked} days in week of {days[0].isoformat()}, target {target}",
                        date=days[0],
                        staff_id=staff_id,
                        expected=target,
                        actual=worked,
                    ))
        return issues

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def auto_fix(self, issues: List[ValidationIssue], repairer: AssignmentRepairer,
                 max_fixes: Optional[int] = None) -> FixReport:
        """
        Repair auto-fixable issues, at most max_fixes row deletions.

        Each deletion is its own transaction; a failed deletion is reported
        and the rest continue.
        """
        limit = self.ctx.config.max_auto_fixes if max_fixes is None else max_fixes
        report = FixReport()
        deleted = set()
        for issue in issues:
            if not issue.auto_fixable:
                continue
            for assignment_id in issue.assignment_ids:
                if assignment_id in deleted:
                    continue
                if report.applied >= limit:
                    report.skipped += 1
                    continue
                try:
                    repairer.delete_assignment(assignment_id)
                except Exception as e:
                    logger.exception("Auto-fix failed for assignment %s", assignment_id)
                    report.failed += 1
                    report.errors.append(f"{issue.issue_type.value} {assignment_id}: {type(e).__name__}: {e}")
                    continue
                deleted.add(assignment_id)
                report.applied += 1
        return report


def summarize(issues: List[ValidationIssue]) -> Dict[str, Dict[str, int]]:
    by_severity: Dict[str, int] = {s.value: 0 for s in Severity}
    by_type: Dict[str, int] = {}
    for issue in issues:
        by_severity[issue.severity.value] += 1
        by_type[issue.issue_type.value] = by_type.get(issue.issue_type.value, 0) + 1
    return {'bySeverity': by_severity, 'byType': by_type}


def validate_schedule(session: Session, schedule, auto_fix: bool = False,
                      max_fixes: Optional[int] = None, rules: Optional[List[dict]] = None) -> Dict[str, Any]:
    """
    Scan a schedule, optionally repair it, and store a ValidationLog.

    After a repair the schedule is scanned again so the returned issues
    reflect the final state.

    Returns:
        {"scheduleId", "issues", "summary", "fixes", "logId"}
    """
    ctx = load_run_context(session, schedule, rules)
    validator = AssignmentValidator(ctx)
    issues = validator.scan(load_assignment_records(session, schedule.id))

    fixes = FixReport()
    if auto_fix:
        fixes = validator.auto_fix(issues, SqlAssignmentRepairer(session), max_fixes=max_fixes)
        if fixes.applied:
            issues = validator.scan(load_assignment_records(session, schedule.id))

    summary = summarize(issues)
    log = ValidationLog(
        schedule_id=schedule.id,
        issue_counts=summary,
        issues=[i.to_dict() for i in issues],
        fixes_applied=fixes.applied,
    )
    session.add(log)
    session.commit()

    logger.info("Validation of schedule %s: %d issues, %d fixes", schedule.id, len(issues), fixes.applied)
    return {
        'scheduleId': schedule.id,
        'issues': [i.to_dict() for i in issues],
        'summary': summary,
        'fixes': fixes.to_dict(),
        'logId': log.id,
    }
