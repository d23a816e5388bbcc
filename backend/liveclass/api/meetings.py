"""
Meeting lifecycle API routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from liveclass.database import get_db
from liveclass.runtime import attendance_engine, live_coordinator
from liveclass.schemas.meeting import (
    MeetingCreate,
    MeetingResponse,
    MeetingStartResponse,
    MeetingEndResponse,
)
from liveclass.services.meeting_service import (
    create_meeting,
    get_meeting_by_id,
    start_meeting,
    end_meeting,
)

router = APIRouter(prefix="/api/v1/meetings", tags=["Meetings"])


@router.post("", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_new_meeting(data: MeetingCreate, db: AsyncSession = Depends(get_db)):
    meeting = await create_meeting(
        db,
        title=data.title,
        scheduled_start=data.scheduled_start,
        scheduled_end=data.scheduled_end,
    )
    return MeetingResponse.model_validate(meeting)


@router.get("/{meeting_id}", response_model=MeetingResponse)
async def get_meeting(meeting_id: int, db: AsyncSession = Depends(get_db)):
    meeting = await get_meeting_by_id(db, meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return MeetingResponse.model_validate(meeting)


@router.post("/{meeting_id}/start", response_model=MeetingStartResponse)
async def start_meeting_route(meeting_id: int, db: AsyncSession = Depends(get_db)):
    try:
        meeting = await start_meeting(db, meeting_id)
    except ValueError as e:
        code = 404 if "not found" in str(e).lower() else 400
        raise HTTPException(status_code=code, detail=str(e))
    return MeetingStartResponse(id=meeting.id, status=meeting.status, started_at=meeting.started_at)


@router.post("/{meeting_id}/end", response_model=MeetingEndResponse)
async def end_meeting_route(meeting_id: int, db: AsyncSession = Depends(get_db)):
    try:
        meeting = await end_meeting(db, meeting_id)
    except ValueError as e:
        code = 404 if "not found" in str(e).lower() else 400
        raise HTTPException(status_code=code, detail=str(e))
    await db.commit()

    closed = await attendance_engine.finalize_meeting(meeting.id, meeting.started_at, meeting.ended_at)
    await live_coordinator.announce_finalized(closed)
    return MeetingEndResponse(
        id=meeting.id,
        status=meeting.status,
        ended_at=meeting.ended_at,
        closed_sessions=len(closed),
    )
