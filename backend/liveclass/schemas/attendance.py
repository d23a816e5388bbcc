"""Attendance payloads shared by the live channel and the reporting routes."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from liveclass.schemas.base import CamelModel


class AttendanceSessionItem(CamelModel):
    join_time: datetime
    leave_time: Optional[datetime] = None
    duration: int


class AttendanceItem(CamelModel):
    id: int
    meeting_id: int
    student_id: int
    student_name: Optional[str] = None
    status: str
    first_join_time: Optional[datetime] = None
    last_leave_time: Optional[datetime] = None
    total_duration: int
    attendance_percentage: float
    session_count: int
    rejoin_count: int
    is_late: bool
    is_currently_present: bool
    notes: Optional[str] = None
    sessions: List[AttendanceSessionItem] = []


class AttendanceStatistics(CamelModel):
    total_students: int
    present_count: int
    late_count: int
    partial_count: int
    absent_count: int
    currently_present: int
    attendance_rate: float
    average_attendance_percentage: float
    average_duration: int


class MeetingSummary(CamelModel):
    id: int
    title: str
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    status: str
    duration: int


class MeetingAttendanceReport(CamelModel):
    meeting: MeetingSummary
    statistics: AttendanceStatistics
    attendances: List[AttendanceItem]


class AttendanceData(CamelModel):
    meeting_id: int
    statistics: AttendanceStatistics
    attendances: List[AttendanceItem]
    timestamp: datetime


class StudentAttendanceStatistics(CamelModel):
    total_meetings: int
    present_count: int
    late_count: int
    partial_count: int
    absent_count: int
    attendance_rate: float
    average_attendance_percentage: float
    total_duration: int
    total_rejoin_count: int


class StudentAttendanceReport(CamelModel):
    student_id: int
    statistics: StudentAttendanceStatistics
    attendances: List[AttendanceItem]


class AttendanceNotesUpdate(CamelModel):
    notes: Optional[str] = Field(None, max_length=500)
