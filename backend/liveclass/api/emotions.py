"""
Emotion and engagement API routes.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from liveclass.database import get_db
from liveclass.runtime import emotion_ingest, engagement_aggregator
from liveclass.schemas.emotion import MeetingEmotionSummary, StudentEmotionTimeline
from liveclass.schemas.live import AlertsData, EngagementSnapshot
from liveclass.services.meeting_service import get_meeting_by_id

router = APIRouter(prefix="/api/v1/emotions", tags=["Emotions"])


async def _require_meeting(db: AsyncSession, meeting_id: int) -> None:
    if not await get_meeting_by_id(db, meeting_id):
        raise HTTPException(status_code=404, detail="Meeting not found")


@router.get("/meetings/{meeting_id}/engagement", response_model=EngagementSnapshot)
async def get_current_engagement(meeting_id: int, db: AsyncSession = Depends(get_db)):
    await _require_meeting(db, meeting_id)
    return await engagement_aggregator.current_engagement(meeting_id)


@router.get("/meetings/{meeting_id}/alerts", response_model=AlertsData)
async def get_alerts(meeting_id: int, db: AsyncSession = Depends(get_db)):
    await _require_meeting(db, meeting_id)
    return await engagement_aggregator.alerts(meeting_id)


@router.get("/meetings/{meeting_id}/summary", response_model=MeetingEmotionSummary)
async def get_emotion_summary(meeting_id: int, db: AsyncSession = Depends(get_db)):
    await _require_meeting(db, meeting_id)
    return await emotion_ingest.meeting_summary(meeting_id)


@router.get("/meetings/{meeting_id}/students/{student_id}/timeline", response_model=StudentEmotionTimeline)
async def get_student_timeline(meeting_id: int, student_id: int, db: AsyncSession = Depends(get_db)):
    await _require_meeting(db, meeting_id)
    return await emotion_ingest.student_timeline(meeting_id, student_id)
