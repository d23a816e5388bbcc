"""Inbound and outbound payloads for the live meeting channel."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from liveclass.schemas.base import CamelModel


class MeetingPresencePayload(CamelModel):
    meeting_id: int
    student_id: int
    student_name: Optional[str] = Field(None, max_length=120)


class MeetingRequestPayload(CamelModel):
    meeting_id: int


class EmotionVector(CamelModel):
    happy: float = Field(..., ge=0, le=1)
    sad: float = Field(..., ge=0, le=1)
    angry: float = Field(..., ge=0, le=1)
    surprised: float = Field(..., ge=0, le=1)
    fearful: float = Field(..., ge=0, le=1)
    disgusted: float = Field(..., ge=0, le=1)
    neutral: float = Field(..., ge=0, le=1)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
        extra="forbid",
    )


class EmotionUpdatePayload(CamelModel):
    meeting_id: int
    student_id: int
    student_name: Optional[str] = Field(None, max_length=120)
    session_id: Optional[str] = Field(None, max_length=120)
    emotions: EmotionVector
    dominant_emotion: Optional[str] = None
    face_detected: bool = False
    confidence: float = Field(0.0, ge=0, le=1, allow_inf_nan=False)


class StudentJoinedEvent(CamelModel):
    student_id: int
    student_name: Optional[str] = None
    join_time: datetime
    session_count: int
    is_late: bool
    status: str
    timestamp: datetime


class StudentLeftEvent(CamelModel):
    student_id: int
    student_name: Optional[str] = None
    leave_time: datetime
    total_duration: int
    attendance_percentage: float
    status: str
    timestamp: datetime


class AttendanceRecorded(CamelModel):
    type: str
    meeting_id: int
    student_id: int
    status: str
    session_count: Optional[int] = None
    is_late: Optional[bool] = None
    join_time: Optional[datetime] = None
    leave_time: Optional[datetime] = None
    total_duration: Optional[int] = None
    attendance_percentage: Optional[float] = None
    timestamp: datetime


class StudentEmotionLiveEvent(CamelModel):
    student_id: int
    student_name: Optional[str] = None
    emotions: Dict[str, float]
    dominant_emotion: str
    face_detected: bool
    attentiveness: float
    timestamp: datetime


class StudentEngagement(CamelModel):
    student_id: int
    student_name: Optional[str] = None
    attentiveness: float
    dominant_emotion: str
    face_detected: bool
    timestamp: datetime


class EngagementSnapshot(CamelModel):
    meeting_id: int
    total_students: int
    engaged: int
    disengaged: int
    avg_engagement: int
    per_student_latest: List[StudentEngagement]
    window_seconds: int
    timestamp: datetime


class AlertEvent(CamelModel):
    type: str
    student_id: int
    student_name: Optional[str] = None
    severity: str
    message: str
    occurrences: int
    timestamp: datetime


class AlertsData(CamelModel):
    meeting_id: int
    alerts: List[AlertEvent]
    negative_emotion_count: int
    low_attentiveness_count: int
    window_seconds: int
    timestamp: datetime
