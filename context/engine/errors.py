"""Error taxonomy for assignment runs.

Every failure the engine can meet falls into one of five categories. Only
CONCURRENCY and run-level DATA preconditions stop a run; everything else is
recorded as a RunWarning and the run moves on to the next unit.
"""

from dataclasses import dataclass, asdict
from datetime import date
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCategory(Enum):
    CONFIGURATION = "CONFIGURATION"
    CAPACITY = "CAPACITY"
    CONFLICT = "CONFLICT"
    CONCURRENCY = "CONCURRENCY"
    DATA = "DATA"


class Severity(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RosterError(Exception):
    """Base class for errors raised by the roster engine and service."""
    category = ErrorCategory.DATA

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__


class ConfigurationError(RosterError):
    category = ErrorCategory.CONFIGURATION


class CapacityError(RosterError):
    category = ErrorCategory.CAPACITY


class ConflictError(RosterError):
    category = ErrorCategory.CONFLICT


class RunInProgressError(RosterError):
    """Another assignment run holds the lock for the same clinic and month."""
    category = ErrorCategory.CONCURRENCY


class DataError(RosterError):
    category = ErrorCategory.DATA


@dataclass
class RunWarning:
    """A non-fatal problem met while processing one unit of a run."""
    category: ErrorCategory
    severity: Severity
    message: str
    date: Optional[date] = None
    department: Optional[str] = None
    staff_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['category'] = self.category.value
        data['severity'] = self.severity.value
        data['date'] = self.date.isoformat() if self.date else None
        return data
