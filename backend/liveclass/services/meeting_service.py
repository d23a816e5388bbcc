"""Meeting service: scheduling and the live/ended lifecycle that bounds attendance."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liveclass.models.meeting import Meeting, MeetingStatus


async def create_meeting(
    db: AsyncSession,
    title: str,
    scheduled_start: datetime,
    scheduled_end: Optional[datetime] = None,
) -> Meeting:
    meeting = Meeting(
        title=title.strip(),
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        status=MeetingStatus.SCHEDULED.value,
    )
    db.add(meeting)
    await db.flush()
    await db.refresh(meeting)
    return meeting


async def get_meeting_by_id(db: AsyncSession, meeting_id: int) -> Optional[Meeting]:
    result = await db.execute(select(Meeting).where(Meeting.id == meeting_id))
    return result.scalar_one_or_none()


async def start_meeting(db: AsyncSession, meeting_id: int, now: Optional[datetime] = None) -> Meeting:
    meeting = await get_meeting_by_id(db, meeting_id)
    if not meeting:
        raise ValueError("Meeting not found")
    if meeting.status in (MeetingStatus.ENDED.value, MeetingStatus.CANCELLED.value):
        raise ValueError("Meeting has already finished")
    if meeting.status != MeetingStatus.LIVE.value:
        meeting.status = MeetingStatus.LIVE.value
        meeting.started_at = now or datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(meeting)
    return meeting


async def end_meeting(db: AsyncSession, meeting_id: int, now: Optional[datetime] = None) -> Meeting:
    meeting = await get_meeting_by_id(db, meeting_id)
    if not meeting:
        raise ValueError("Meeting not found")
    if meeting.status != MeetingStatus.LIVE.value:
        raise ValueError("Meeting is not live")
    meeting.status = MeetingStatus.ENDED.value
    meeting.ended_at = now or datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(meeting)
    return meeting


def accepts_attendance(meeting: Meeting) -> bool:
    """An ended or cancelled meeting stops accepting join/leave transitions."""
    return meeting.status not in (MeetingStatus.ENDED.value, MeetingStatus.CANCELLED.value)
