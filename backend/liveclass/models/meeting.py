"""Meeting model: the scheduled live class that attendance and emotion data hang off."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Index
from sqlalchemy.orm import relationship

from liveclass.database import Base


class MeetingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"


class Meeting(Base):
    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)

    scheduled_start = Column(DateTime(timezone=True), nullable=False)
    scheduled_end = Column(DateTime(timezone=True), nullable=True)

    status = Column(String(20), default=MeetingStatus.SCHEDULED.value, nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    attendances = relationship("AttendanceRecord", back_populates="meeting", cascade="all, delete-orphan")
    emotion_samples = relationship("EmotionSample", back_populates="meeting", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_meetings_status_scheduled", "status", "scheduled_start"),
    )
