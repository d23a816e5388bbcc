"""
Attendance reporting API routes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from liveclass.database import get_db
from liveclass.runtime import attendance_engine, attendance_store, live_coordinator
from liveclass.schemas.attendance import (
    AttendanceItem,
    AttendanceNotesUpdate,
    MeetingAttendanceReport,
    StudentAttendanceReport,
)
from liveclass.services.meeting_service import get_meeting_by_id
from liveclass.services.report_service import (
    build_meeting_report,
    build_student_report,
    export_meeting_csv,
    serialize_attendance,
)

router = APIRouter(prefix="/api/v1/attendance", tags=["Attendance"])


async def _meeting_report(db: AsyncSession, meeting_id: int) -> MeetingAttendanceReport:
    meeting = await get_meeting_by_id(db, meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    records = await attendance_store.list_for_meeting(meeting_id)
    return build_meeting_report(meeting, records, now=datetime.now(timezone.utc))


@router.get("/meetings/{meeting_id}", response_model=MeetingAttendanceReport)
async def get_meeting_attendance(meeting_id: int, db: AsyncSession = Depends(get_db)):
    return await _meeting_report(db, meeting_id)


@router.get("/meetings/{meeting_id}/export")
async def export_meeting_attendance(meeting_id: int, db: AsyncSession = Depends(get_db)):
    report = await _meeting_report(db, meeting_id)
    return Response(
        content=export_meeting_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="attendance-meeting-{meeting_id}.csv"'},
    )


@router.post("/meetings/{meeting_id}/finalize")
async def finalize_meeting_attendance(meeting_id: int, db: AsyncSession = Depends(get_db)):
    meeting = await get_meeting_by_id(db, meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    closed = await attendance_engine.finalize_meeting(meeting.id, meeting.started_at, meeting.ended_at)
    await live_coordinator.announce_finalized(closed)
    return {"meeting_id": meeting.id, "closed_sessions": len(closed)}


@router.get("/students/{student_id}", response_model=StudentAttendanceReport)
async def get_student_attendance(student_id: int):
    records = await attendance_store.list_for_student(student_id)
    return build_student_report(student_id, records)


@router.put("/{record_id}/notes", response_model=AttendanceItem)
async def update_attendance_notes(record_id: int, data: AttendanceNotesUpdate):
    record = await attendance_store.set_notes(record_id, data.notes)
    if not record:
        raise HTTPException(status_code=404, detail="Attendance record not found")
    return serialize_attendance(record)
