"""Append-only facial emotion samples streamed from student clients."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Float, Index
from sqlalchemy.orm import relationship

from liveclass.database import Base

EMOTION_LABELS = ("happy", "sad", "angry", "surprised", "fearful", "disgusted", "neutral")
UNKNOWN_EMOTION = "unknown"


class EmotionSample(Base):
    __tablename__ = "emotion_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, nullable=False, index=True)
    student_name = Column(String(120), nullable=True)
    session_id = Column(String(120), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    happy = Column(Float, nullable=False, default=0.0)
    sad = Column(Float, nullable=False, default=0.0)
    angry = Column(Float, nullable=False, default=0.0)
    surprised = Column(Float, nullable=False, default=0.0)
    fearful = Column(Float, nullable=False, default=0.0)
    disgusted = Column(Float, nullable=False, default=0.0)
    neutral = Column(Float, nullable=False, default=0.0)

    dominant_emotion = Column(String(20), nullable=False, default=UNKNOWN_EMOTION)
    face_detected = Column(Boolean, nullable=False, default=False)
    detection_confidence = Column(Float, nullable=False, default=0.0)
    attentiveness = Column(Float, nullable=False, default=0.0)

    meeting = relationship("Meeting", back_populates="emotion_samples")

    __table_args__ = (
        Index("ix_emotion_meeting_student_time", "meeting_id", "student_id", "timestamp"),
        Index("ix_emotion_meeting_time", "meeting_id", "timestamp"),
    )

    @property
    def emotions(self) -> dict:
        return {label: float(getattr(self, label) or 0.0) for label in EMOTION_LABELS}
