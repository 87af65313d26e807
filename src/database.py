"""
Database models and session setup (SQLAlchemy ORM).

Tables:
- staff                 : staff members with their cumulative fairness deviation
- category_ratios       : department -> category percentage split
- doctor_combinations   : doctor roster shape -> staff requirement
- schedules             : one per (clinic, year, month)
- doctor_day_slots      : realized doctor roster per schedule date
- staff_assignments     : one shift per (schedule, staff, date)
- leave_periods         : open leave window per (clinic, year, month)
- leave_applications    : leave requests and their status
- holidays              : clinic holidays
- fairness_snapshots    : per (staff, year, month) actuals and deviations
- validation_logs       : results of validation passes

DATABASE_URL selects the database (default: sqlite file in the working dir).
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, JSON, String,
    UniqueConstraint, create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from context.engine.data_loader import StaffMember
from context.engine.time_utils import FairnessDimension

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (DateTime columns are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# SCHEDULE STATES
# ============================================================================

SCHEDULE_DRAFT = "DRAFT"
SCHEDULE_CONFIRMED = "CONFIRMED"
SCHEDULE_DEPLOYED = "DEPLOYED"

# Staff column holding the ledger value of each dimension
DIMENSION_COLUMNS = {
    FairnessDimension.TOTAL: "fairness_total",
    FairnessDimension.NIGHT: "fairness_night",
    FairnessDimension.WEEKEND: "fairness_weekend",
    FairnessDimension.HOLIDAY: "fairness_holiday",
    FairnessDimension.HOLIDAY_ADJACENT: "fairness_holiday_adjacent",
}


# ============================================================================
# MODELS
# ============================================================================

class Staff(Base):
    __tablename__ = "staff"

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    department = Column(String, nullable=False)
    category = Column(String, nullable=False)
    weekly_work_days = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Cumulative deviation (positive = under-worked). Written only by snapshot recompute.
    fairness_total = Column(Float, nullable=False, default=0.0)
    fairness_night = Column(Float, nullable=False, default=0.0)
    fairness_weekend = Column(Float, nullable=False, default=0.0)
    fairness_holiday = Column(Float, nullable=False, default=0.0)
    fairness_holiday_adjacent = Column(Float, nullable=False, default=0.0)

    assignments = relationship("StaffAssignment", back_populates="staff")

    def deviation_dict(self) -> Dict[FairnessDimension, float]:
        return {dim: float(getattr(self, col) or 0.0) for dim, col in DIMENSION_COLUMNS.items()}

    def to_member(self) -> StaffMember:
        return StaffMember(
            staff_id=self.id,
            department=self.department,
            category=self.category,
            weekly_work_days=self.weekly_work_days,
            active=bool(self.is_active),
            name=self.name or "",
            deviation=self.deviation_dict(),
        )


class CategoryRatio(Base):
    __tablename__ = "category_ratios"
    __table_args__ = (UniqueConstraint("clinic_id", "department", "category"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    department = Column(String, nullable=False)
    category = Column(String, nullable=False)
    percentage = Column(Float, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)


class DoctorCombination(Base):
    __tablename__ = "doctor_combinations"
    __table_args__ = (UniqueConstraint("clinic_id", "doctor_key", "has_night"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    # Sorted doctor ids joined with ',' for lookups; doctor_ids keeps the list
    doctor_key = Column(String, nullable=False)
    doctor_ids = Column(JSON, nullable=False)
    has_night = Column(Boolean, nullable=False, default=False)
    # {"TREATMENT": {"HYGIENIST": 4}} or {"TREATMENT": 6}
    requirements = Column(JSON, nullable=False)


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (UniqueConstraint("clinic_id", "year", "month"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=SCHEDULE_DRAFT)
    deployed_start_date = Column(Date, nullable=True)
    deployed_end_date = Column(Date, nullable=True)
    # Engine rule list of the last run; read by snapshots, quotas and validation
    rules = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    doctor_slots = relationship("DoctorDaySlot", back_populates="schedule", cascade="all, delete-orphan")
    assignments = relationship("StaffAssignment", back_populates="schedule", cascade="all, delete-orphan")


class DoctorDaySlot(Base):
    __tablename__ = "doctor_day_slots"
    __table_args__ = (UniqueConstraint("schedule_id", "date"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    schedule_id = Column(String, ForeignKey("schedules.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    doctor_ids = Column(JSON, nullable=False)
    has_night = Column(Boolean, nullable=False, default=False)

    schedule = relationship("Schedule", back_populates="doctor_slots")


class StaffAssignment(Base):
    __tablename__ = "staff_assignments"
    __table_args__ = (UniqueConstraint("schedule_id", "staff_id", "date", name="uq_assignment_staff_date"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    schedule_id = Column(String, ForeignKey("schedules.id"), nullable=False, index=True)
    staff_id = Column(String, ForeignKey("staff.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    shift_type = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    schedule = relationship("Schedule", back_populates="assignments")
    staff = relationship("Staff", back_populates="assignments")


class LeavePeriod(Base):
    __tablename__ = "leave_periods"
    __table_args__ = (UniqueConstraint("clinic_id", "year", "month"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    max_annual_per_day = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class LeaveApplication(Base):
    __tablename__ = "leave_applications"

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    staff_id = Column(String, ForeignKey("staff.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    leave_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    decided_at = Column(DateTime, nullable=True)


class Holiday(Base):
    __tablename__ = "holidays"
    __table_args__ = (UniqueConstraint("clinic_id", "date"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    clinic_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    name = Column(String, nullable=False)


class FairnessSnapshot(Base):
    __tablename__ = "fairness_snapshots"
    __table_args__ = (UniqueConstraint("staff_id", "year", "month"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    staff_id = Column(String, ForeignKey("staff.id"), nullable=False, index=True)
    clinic_id = Column(String, nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    # {"total": 18, "night": 3, ...}
    actual = Column(JSON, nullable=False)
    department_average = Column(JSON, nullable=False)
    deviation = Column(JSON, nullable=False)
    cumulative = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ValidationLog(Base):
    __tablename__ = "validation_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    schedule_id = Column(String, ForeignKey("schedules.id"), nullable=False, index=True)
    issue_counts = Column(JSON, nullable=False)
    issues = Column(JSON, nullable=False)
    fixes_applied = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ============================================================================
# ENGINE / SESSION
# ============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./roster.db")


def make_engine(url: str = DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def begin_write_transaction(session) -> None:
    """
    Start the session's transaction holding the database write lock.

    On sqlite, SELECT ... FOR UPDATE is not supported and pysqlite defers
    BEGIN until the first write, so reads made before that write are not
    serialized. BEGIN IMMEDIATE takes the write lock up front; a second
    writer waits on the driver's busy timeout. Other databases rely on the
    row locks taken by the caller.
    """
    connection = session.connection()
    if connection.dialect.name != "sqlite":
        return
    if not connection.connection.dbapi_connection.in_transaction:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def init_db(bind=None):
    """Create all tables on the given engine (default: module engine)."""
    Base.metadata.create_all(bind or engine)


def get_db():
    """FastAPI dependency yielding a session per request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
