"""Attendance records and their join/leave sessions."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Float,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from liveclass.database import Base


class AttendanceStatus(str, enum.Enum):
    ABSENT = "absent"
    PRESENT = "present"
    LATE = "late"
    PARTIAL = "partial"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, nullable=False, index=True)
    student_name = Column(String(120), nullable=True)

    status = Column(String(20), default=AttendanceStatus.ABSENT.value, nullable=False, index=True)
    first_join_time = Column(DateTime(timezone=True), nullable=True)
    last_leave_time = Column(DateTime(timezone=True), nullable=True)
    total_duration = Column(Integer, default=0, nullable=False)  # seconds
    rejoin_count = Column(Integer, default=0, nullable=False)
    is_currently_present = Column(Boolean, default=False, nullable=False)
    attendance_percentage = Column(Float, default=0.0, nullable=False)
    is_late = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    meeting = relationship("Meeting", back_populates="attendances")
    sessions = relationship(
        "AttendanceSession",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="AttendanceSession.id",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("meeting_id", "student_id", name="uq_attendance_meeting_student"),
        Index("ix_attendance_meeting_present", "meeting_id", "is_currently_present"),
    )


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(Integer, ForeignKey("attendance_records.id", ondelete="CASCADE"), nullable=False, index=True)
    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, default=0, nullable=False)  # seconds, set on close

    record = relationship("AttendanceRecord", back_populates="sessions")

    @property
    def is_open(self) -> bool:
        return self.leave_time is None
