"""Attendance reporting: per-meeting and per-student summaries and CSV export."""

import csv
import io
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from liveclass.models.attendance import AttendanceRecord, AttendanceStatus
from liveclass.models.meeting import Meeting
from liveclass.schemas.attendance import (
    AttendanceData,
    AttendanceItem,
    AttendanceSessionItem,
    AttendanceStatistics,
    MeetingAttendanceReport,
    MeetingSummary,
    StudentAttendanceReport,
    StudentAttendanceStatistics,
)
from liveclass.services.attendance_service import live_attendance

CSV_HEADERS = [
    "Student ID",
    "Student Name",
    "Status",
    "First Join Time",
    "Last Leave Time",
    "Total Duration",
    "Attendance %",
    "Sessions",
    "Rejoins",
    "Late",
]


def _round2(value: float) -> float:
    return round(float(value), 2)


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def meeting_duration(meeting: Meeting, now: datetime) -> int:
    if meeting.started_at is None:
        return 0
    end = _to_utc(meeting.ended_at) or _to_utc(now)
    return max(int((end - _to_utc(meeting.started_at)).total_seconds()), 0)


def serialize_attendance(
    record: AttendanceRecord,
    *,
    meeting: Optional[Meeting] = None,
    now: Optional[datetime] = None,
) -> AttendanceItem:
    """
    Convert a record to its wire form.

    With a meeting, duration and percentage are live values that include time
    spent in a still-open session; without one the stored values are used.
    """
    total_duration = int(record.total_duration or 0)
    percentage = float(record.attendance_percentage or 0.0)
    if meeting is not None:
        live = live_attendance(
            record,
            now=now or datetime.now(timezone.utc),
            meeting_started_at=meeting.started_at,
            meeting_ended_at=meeting.ended_at,
        )
        total_duration = live.total_duration
        percentage = live.attendance_percentage

    return AttendanceItem(
        id=record.id,
        meeting_id=record.meeting_id,
        student_id=record.student_id,
        student_name=record.student_name,
        status=record.status,
        first_join_time=record.first_join_time,
        last_leave_time=record.last_leave_time,
        total_duration=total_duration,
        attendance_percentage=percentage,
        session_count=len(record.sessions),
        rejoin_count=int(record.rejoin_count or 0),
        is_late=bool(record.is_late),
        is_currently_present=bool(record.is_currently_present),
        notes=record.notes,
        sessions=[
            AttendanceSessionItem(join_time=s.join_time, leave_time=s.leave_time, duration=int(s.duration or 0))
            for s in record.sessions
        ],
    )


def attendance_statistics(items: List[AttendanceItem]) -> AttendanceStatistics:
    total = len(items)
    counts = {status.value: 0 for status in AttendanceStatus}
    for item in items:
        counts[item.status] = counts.get(item.status, 0) + 1

    attended = counts[AttendanceStatus.PRESENT.value] + counts[AttendanceStatus.LATE.value]
    return AttendanceStatistics(
        total_students=total,
        present_count=counts[AttendanceStatus.PRESENT.value],
        late_count=counts[AttendanceStatus.LATE.value],
        partial_count=counts[AttendanceStatus.PARTIAL.value],
        absent_count=counts[AttendanceStatus.ABSENT.value],
        currently_present=sum(1 for item in items if item.is_currently_present),
        attendance_rate=_round2(attended / total * 100) if total else 0.0,
        average_attendance_percentage=_round2(sum(i.attendance_percentage for i in items) / total) if total else 0.0,
        average_duration=int(round(sum(i.total_duration for i in items) / total)) if total else 0,
    )


def build_attendance_data(meeting: Meeting, records: Iterable[AttendanceRecord], *, now: datetime) -> AttendanceData:
    items = [serialize_attendance(record, meeting=meeting, now=now) for record in records]
    return AttendanceData(
        meeting_id=meeting.id,
        statistics=attendance_statistics(items),
        attendances=items,
        timestamp=now,
    )


def build_meeting_report(meeting: Meeting, records: Iterable[AttendanceRecord], *, now: datetime) -> MeetingAttendanceReport:
    items = [serialize_attendance(record, meeting=meeting, now=now) for record in records]
    return MeetingAttendanceReport(
        meeting=MeetingSummary(
            id=meeting.id,
            title=meeting.title,
            scheduled_start=meeting.scheduled_start,
            scheduled_end=meeting.scheduled_end,
            started_at=meeting.started_at,
            ended_at=meeting.ended_at,
            status=meeting.status,
            duration=meeting_duration(meeting, now),
        ),
        statistics=attendance_statistics(items),
        attendances=items,
    )


def build_student_report(student_id: int, records: Iterable[AttendanceRecord]) -> StudentAttendanceReport:
    items = [serialize_attendance(record) for record in records]
    total = len(items)
    present = sum(1 for i in items if i.status == AttendanceStatus.PRESENT.value)
    late = sum(1 for i in items if i.status == AttendanceStatus.LATE.value)
    return StudentAttendanceReport(
        student_id=student_id,
        statistics=StudentAttendanceStatistics(
            total_meetings=total,
            present_count=present,
            late_count=late,
            partial_count=sum(1 for i in items if i.status == AttendanceStatus.PARTIAL.value),
            absent_count=sum(1 for i in items if i.status == AttendanceStatus.ABSENT.value),
            attendance_rate=_round2((present + late) / total * 100) if total else 0.0,
            average_attendance_percentage=_round2(sum(i.attendance_percentage for i in items) / total) if total else 0.0,
            total_duration=sum(i.total_duration for i in items),
            total_rejoin_count=sum(i.rejoin_count for i in items),
        ),
        attendances=items,
    )


def format_duration(seconds: int) -> str:
    seconds = max(int(seconds or 0), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def _format_time(value: Optional[datetime]) -> str:
    value = _to_utc(value)
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else "N/A"


def export_meeting_csv(report: MeetingAttendanceReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for item in report.attendances:
        writer.writerow(
            [
                item.student_id,
                item.student_name or "N/A",
                item.status,
                _format_time(item.first_join_time),
                _format_time(item.last_leave_time),
                format_duration(item.total_duration),
                f"{item.attendance_percentage}%",
                item.session_count,
                item.rejoin_count,
                "Yes" if item.is_late else "No",
            ]
        )
    return buffer.getvalue()
