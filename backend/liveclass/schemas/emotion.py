"""Emotion reporting payloads."""

from datetime import datetime
from typing import Dict, List, Optional

from liveclass.schemas.base import CamelModel


class EmotionTimelinePoint(CamelModel):
    timestamp: datetime
    emotions: Dict[str, float]
    dominant_emotion: str
    attentiveness: float
    face_detected: bool


class StudentEmotionTimeline(CamelModel):
    meeting_id: int
    student_id: int
    points: List[EmotionTimelinePoint]


class MeetingEmotionSummary(CamelModel):
    meeting_id: int
    total_records: int
    unique_students: int
    average_emotions: Dict[str, float]
    average_attentiveness: float
    dominant_emotion_counts: Dict[str, int]
    first_sample_at: Optional[datetime] = None
    last_sample_at: Optional[datetime] = None
