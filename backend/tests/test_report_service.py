# tests/test_report_service.py
from datetime import timedelta

import pytest

from liveclass.models.attendance import AttendanceRecord, AttendanceStatus
from liveclass.models.meeting import Meeting, MeetingStatus
from liveclass.services.attendance_service import apply_join, apply_leave
from liveclass.services.report_service import (
    CSV_HEADERS,
    build_meeting_report,
    build_student_report,
    export_meeting_csv,
    format_duration,
)

from conftest import T0


def _meeting(ended_after=None) -> Meeting:
    return Meeting(
        id=3,
        title="Geometry",
        scheduled_start=T0,
        status=MeetingStatus.ENDED.value if ended_after else MeetingStatus.LIVE.value,
        started_at=T0,
        ended_at=T0 + timedelta(seconds=ended_after) if ended_after else None,
    )


def _attended(student_id, join_at, leave_at=None, ended=None, name=None) -> AttendanceRecord:
    record = AttendanceRecord(
        id=student_id,
        meeting_id=3,
        student_id=student_id,
        student_name=name,
        status=AttendanceStatus.ABSENT.value,
        total_duration=0,
        rejoin_count=0,
        is_currently_present=False,
        attendance_percentage=0.0,
        is_late=False,
        sessions=[],
    )
    apply_join(
        record,
        joined_at=T0 + timedelta(seconds=join_at),
        scheduled_start=T0,
        grace_period=timedelta(minutes=5),
        partial_threshold=50.0,
    )
    if leave_at is not None:
        apply_leave(
            record,
            left_at=T0 + timedelta(seconds=leave_at),
            meeting_started_at=T0,
            meeting_ended_at=ended,
            partial_threshold=50.0,
        )
    return record


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0s"), (59, "59s"), (60, "1m"), (3723, "1h 2m 3s"), (7200, "2h")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_meeting_report_statistics():
    """
    Statistics count each status and the rate counts present and late
    students as attended.
    """
    ended = T0 + timedelta(seconds=1000)
    records = [
        _attended(1, 0, 1000, ended=ended, name="Ada"),
        _attended(2, 400, 1000, ended=ended, name="Brian"),
        _attended(3, 0, 100, ended=ended),
    ]

    report = build_meeting_report(_meeting(ended_after=1000), records, now=T0 + timedelta(hours=1))

    stats = report.statistics
    assert stats.total_students == 3
    assert stats.present_count == 1
    assert stats.late_count == 1
    assert stats.partial_count == 1
    assert stats.attendance_rate == 66.67
    assert report.meeting.duration == 1000
    assert [a.attendance_percentage for a in report.attendances] == [100.0, 60.0, 10.0]


def test_live_meeting_report_counts_open_sessions():
    records = [_attended(1, 0)]

    report = build_meeting_report(_meeting(), records, now=T0 + timedelta(seconds=300))

    item = report.attendances[0]
    assert item.is_currently_present is True
    assert item.total_duration == 300
    assert item.attendance_percentage == 100.0
    assert report.statistics.currently_present == 1


def test_csv_export():
    ended = T0 + timedelta(seconds=3723)
    report = build_meeting_report(
        _meeting(ended_after=3723),
        [_attended(1, 0, 3723, ended=ended, name="Ada, Countess")],
        now=ended,
    )

    lines = export_meeting_csv(report).strip().split("\n")

    assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADERS)
    assert lines[1] == (
        '"1","Ada, Countess","present","2026-03-02 09:00:00 UTC","2026-03-02 10:02:03 UTC",'
        '"1h 2m 3s","100.0%","1","0","No"'
    )


def test_student_report_uses_stored_values():
    ended = T0 + timedelta(seconds=1000)
    records = [
        _attended(7, 0, 1000, ended=ended),
        _attended(7, 0, 200, ended=ended),
    ]

    report = build_student_report(7, records)

    assert report.statistics.total_meetings == 2
    assert report.statistics.present_count == 1
    assert report.statistics.partial_count == 1
    assert report.statistics.attendance_rate == 50.0
    assert report.statistics.total_duration == 1200
    assert report.to_wire()["statistics"]["averageAttendancePercentage"] == 60.0
