"""Attendance session engine: join/leave state machine, duration and lateness accounting."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from liveclass.config import settings
from liveclass.models.attendance import AttendanceRecord, AttendanceSession, AttendanceStatus
from liveclass.services.attendance_store import AttendanceStore
from liveclass.services.meeting_service import accepts_attendance

logger = logging.getLogger(__name__)


@dataclass
class JoinOutcome:
    meeting_id: int
    student_id: int
    student_name: Optional[str]
    join_time: datetime
    session_count: int
    rejoin_count: int
    is_late: bool
    status: str
    closed_stale_session: bool = False


@dataclass
class LeaveOutcome:
    meeting_id: int
    student_id: int
    student_name: Optional[str]
    leave_time: datetime
    session_duration: int
    total_duration: int
    attendance_percentage: float
    status: str


@dataclass
class LiveAttendance:
    total_duration: int
    attendance_percentage: float


def _to_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _seconds_between(start: datetime, end: datetime) -> int:
    return max(int(math.floor((_to_utc(end) - _to_utc(start)).total_seconds())), 0)


def _open_session(record: AttendanceRecord) -> Optional[AttendanceSession]:
    if record.sessions and record.sessions[-1].leave_time is None:
        return record.sessions[-1]
    return None


def _latest_instant(record: AttendanceRecord) -> Optional[datetime]:
    latest: Optional[datetime] = None
    for session in record.sessions:
        for value in (session.join_time, session.leave_time):
            if value is not None and (latest is None or _to_utc(value) > latest):
                latest = _to_utc(value)
    return latest


def _close_session(session: AttendanceSession, leave_time: datetime) -> int:
    session.leave_time = leave_time
    session.duration = _seconds_between(session.join_time, leave_time)
    return session.duration


def closed_duration(record: AttendanceRecord) -> int:
    return sum(int(s.duration or 0) for s in record.sessions if s.leave_time is not None)


def is_late_arrival(first_join: datetime, scheduled_start: Optional[datetime], grace_period: timedelta) -> bool:
    if scheduled_start is None:
        return False
    return _to_utc(first_join) > _to_utc(scheduled_start) + grace_period


def compute_attendance_percentage(total_duration: int, meeting_elapsed: int) -> float:
    if not meeting_elapsed or meeting_elapsed <= 0:
        return 0.0
    percentage = (float(total_duration) / float(meeting_elapsed)) * 100.0
    return max(0.0, min(round(percentage, 2), 100.0))


def derive_status(record: AttendanceRecord, evaluated_percentage: Optional[float], partial_threshold: float) -> str:
    if not record.sessions:
        return AttendanceStatus.ABSENT.value
    if evaluated_percentage is not None and evaluated_percentage < partial_threshold:
        return AttendanceStatus.PARTIAL.value
    if record.is_late:
        return AttendanceStatus.LATE.value
    return AttendanceStatus.PRESENT.value


def apply_join(
    record: AttendanceRecord,
    *,
    joined_at: datetime,
    scheduled_start: Optional[datetime],
    grace_period: timedelta,
    partial_threshold: float,
) -> JoinOutcome:
    """
    Open a new session on ``record``.

    A join while a session is still open (client reconnect without a leave)
    closes the stale session at the new join time and appends a fresh one, so
    every join produces exactly one session and at most one is ever open.
    """
    joined_at = _to_utc(joined_at)
    latest = _latest_instant(record)
    if latest is not None and joined_at < latest:
        joined_at = latest

    stale = _open_session(record)
    if stale is not None:
        _close_session(stale, joined_at)
        record.last_leave_time = joined_at

    first_join = not record.sessions
    record.sessions.append(AttendanceSession(join_time=joined_at, leave_time=None, duration=0))

    if first_join:
        record.first_join_time = joined_at
        record.is_late = is_late_arrival(joined_at, scheduled_start, grace_period)
    else:
        record.rejoin_count = (record.rejoin_count or 0) + 1

    record.is_currently_present = True
    record.total_duration = closed_duration(record)

    # A partial verdict stands until the next leave re-evaluates it.
    carried = record.attendance_percentage if record.status == AttendanceStatus.PARTIAL.value else None
    record.status = derive_status(record, carried, partial_threshold)

    return JoinOutcome(
        meeting_id=record.meeting_id,
        student_id=record.student_id,
        student_name=record.student_name,
        join_time=joined_at,
        session_count=len(record.sessions),
        rejoin_count=record.rejoin_count,
        is_late=bool(record.is_late),
        status=record.status,
        closed_stale_session=stale is not None,
    )


def apply_leave(
    record: AttendanceRecord,
    *,
    left_at: datetime,
    meeting_started_at: Optional[datetime],
    meeting_ended_at: Optional[datetime],
    partial_threshold: float,
    session_number: Optional[int] = None,
) -> Optional[LeaveOutcome]:
    """
    Close the open session on ``record``; returns ``None`` when nothing is open.

    With ``session_number`` only that session (1-based) may be closed: when a
    later join has already appended another one, the leave is a no-op.
    """
    session = _open_session(record)
    if session is None:
        return None
    if session_number is not None and len(record.sessions) != session_number:
        return None

    left_at = _to_utc(left_at)
    if left_at < _to_utc(session.join_time):
        left_at = _to_utc(session.join_time)

    session_duration = _close_session(session, left_at)
    record.total_duration = closed_duration(record)
    record.last_leave_time = left_at
    record.is_currently_present = False

    evaluated: Optional[float] = None
    if meeting_started_at is not None:
        elapsed = _seconds_between(meeting_started_at, meeting_ended_at or left_at)
        evaluated = compute_attendance_percentage(record.total_duration, elapsed)
        record.attendance_percentage = evaluated

    record.status = derive_status(record, evaluated, partial_threshold)

    return LeaveOutcome(
        meeting_id=record.meeting_id,
        student_id=record.student_id,
        student_name=record.student_name,
        leave_time=left_at,
        session_duration=session_duration,
        total_duration=record.total_duration,
        attendance_percentage=float(record.attendance_percentage or 0.0),
        status=record.status,
    )


def live_attendance(
    record: AttendanceRecord,
    *,
    now: datetime,
    meeting_started_at: Optional[datetime],
    meeting_ended_at: Optional[datetime],
) -> LiveAttendance:
    """Duration and percentage as of ``now``, counting an open session's elapsed time."""
    now = _to_utc(now)
    horizon = now if meeting_ended_at is None else min(now, _to_utc(meeting_ended_at))

    total = closed_duration(record)
    session = _open_session(record)
    if session is not None:
        total += _seconds_between(session.join_time, horizon)

    if meeting_started_at is None:
        return LiveAttendance(total_duration=total, attendance_percentage=float(record.attendance_percentage or 0.0))

    elapsed = _seconds_between(meeting_started_at, horizon)
    return LiveAttendance(total_duration=total, attendance_percentage=compute_attendance_percentage(total, elapsed))


class AttendanceEngine:
    """Drives attendance records through join/leave transitions via the session store."""

    def __init__(
        self,
        store: AttendanceStore,
        *,
        grace_period: Optional[timedelta] = None,
        partial_threshold: Optional[float] = None,
    ) -> None:
        self.store = store
        self.grace_period = (
            grace_period if grace_period is not None else timedelta(minutes=settings.LATE_GRACE_PERIOD_MINUTES)
        )
        self.partial_threshold = (
            partial_threshold if partial_threshold is not None else settings.PARTIAL_ATTENDANCE_THRESHOLD
        )

    async def on_join(
        self,
        meeting_id: int,
        student_id: int,
        scheduled_start: Optional[datetime],
        *,
        student_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[JoinOutcome]:
        """
        Record a join; returns ``None`` when the meeting no longer accepts attendance.

        The meeting status is checked inside the record's transaction and once
        more after commit, so a join racing the meeting end never leaves an
        open session behind on an ended meeting.
        """
        joined_at = _to_utc(now)
        outcome = await self.store.update(
            meeting_id,
            student_id,
            lambda record: apply_join(
                record,
                joined_at=joined_at,
                scheduled_start=scheduled_start,
                grace_period=self.grace_period,
                partial_threshold=self.partial_threshold,
            ),
            student_name=student_name,
            require_open_meeting=True,
        )
        if outcome is None:
            logger.info("Refusing join of student %s: meeting %s does not accept attendance", student_id, meeting_id)
            return None

        meeting = await self.store.get_meeting(meeting_id)
        if meeting is not None and not accepts_attendance(meeting):
            # The meeting ended while the join was being committed.
            logger.info("Meeting %s ended during join of student %s; closing the session", meeting_id, student_id)
            await self.on_leave(
                meeting_id,
                student_id,
                meeting.started_at,
                meeting.ended_at,
                now=meeting.ended_at,
                session_number=outcome.session_count,
            )
            return None

        if outcome.closed_stale_session:
            logger.info(
                "Student %s re-joined meeting %s without leaving; stale session closed",
                student_id,
                meeting_id,
            )
        return outcome

    async def on_leave(
        self,
        meeting_id: int,
        student_id: int,
        meeting_started_at: Optional[datetime],
        meeting_ended_at: Optional[datetime],
        *,
        now: Optional[datetime] = None,
        session_number: Optional[int] = None,
    ) -> Optional[LeaveOutcome]:
        left_at = _to_utc(now)
        outcome = await self.store.update(
            meeting_id,
            student_id,
            lambda record: apply_leave(
                record,
                left_at=left_at,
                meeting_started_at=meeting_started_at,
                meeting_ended_at=meeting_ended_at,
                partial_threshold=self.partial_threshold,
                session_number=session_number,
            ),
            create=False,
        )
        if outcome is None:
            logger.debug("Ignoring leave for student %s in meeting %s: no open session", student_id, meeting_id)
        return outcome

    async def finalize_meeting(
        self,
        meeting_id: int,
        meeting_started_at: Optional[datetime],
        meeting_ended_at: Optional[datetime],
        *,
        now: Optional[datetime] = None,
    ) -> List[LeaveOutcome]:
        """Close every session still open in the meeting."""
        closed: List[LeaveOutcome] = []
        for record in await self.store.list_open(meeting_id):
            outcome = await self.on_leave(
                meeting_id,
                record.student_id,
                meeting_started_at,
                meeting_ended_at,
                now=now if now is not None else meeting_ended_at,
            )
            if outcome is not None:
                closed.append(outcome)
        logger.info("Finalized attendance for meeting %s: %d open sessions closed", meeting_id, len(closed))
        return closed
