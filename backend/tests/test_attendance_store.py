# tests/test_attendance_store.py
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from liveclass.models.attendance import AttendanceRecord, AttendanceSession, AttendanceStatus
from liveclass.services.attendance_service import AttendanceEngine
from liveclass.services.attendance_store import AttendanceStore
from liveclass.services.meeting_service import end_meeting

from conftest import T0


def _engine(session_factory) -> AttendanceEngine:
    return AttendanceEngine(
        AttendanceStore(session_factory),
        grace_period=timedelta(minutes=5),
        partial_threshold=50.0,
    )


@pytest.mark.asyncio
async def test_join_then_leave_is_persisted(session_factory, live_meeting):
    """
    A join followed by a leave must leave one closed session in the
    database and an up-to-date record.
    """
    engine = _engine(session_factory)

    await engine.on_join(live_meeting.id, 7, live_meeting.scheduled_start, student_name="Ada", now=T0)
    left = await engine.on_leave(live_meeting.id, 7, T0, None, now=T0 + timedelta(seconds=600))

    assert left.attendance_percentage == 100.0

    record = await engine.store.get(live_meeting.id, 7)
    assert record.student_name == "Ada"
    assert record.total_duration == 600
    assert record.is_currently_present is False
    assert record.status == AttendanceStatus.PRESENT.value
    assert len(record.sessions) == 1
    assert record.sessions[0].duration == 600


@pytest.mark.asyncio
async def test_leave_for_unknown_student_creates_nothing(session_factory, live_meeting):
    engine = _engine(session_factory)

    outcome = await engine.on_leave(live_meeting.id, 99, T0, None, now=T0)

    assert outcome is None
    assert await engine.store.get(live_meeting.id, 99) is None


@pytest.mark.asyncio
async def test_concurrent_joins_for_same_student_are_serialized(session_factory, live_meeting):
    """
    Two joins racing for the same (meeting, student) must produce one record
    with two sessions, exactly one of them open.
    """
    engine = _engine(session_factory)

    await asyncio.gather(
        engine.on_join(live_meeting.id, 7, T0, now=T0 + timedelta(seconds=10)),
        engine.on_join(live_meeting.id, 7, T0, now=T0 + timedelta(seconds=20)),
    )

    async with session_factory() as db:
        record_count = await db.scalar(
            select(func.count(AttendanceRecord.id)).where(AttendanceRecord.meeting_id == live_meeting.id)
        )
        session_count = await db.scalar(select(func.count(AttendanceSession.id)))
    assert record_count == 1
    assert session_count == 2

    record = await engine.store.get(live_meeting.id, 7)
    assert record.rejoin_count == 1
    assert sum(1 for s in record.sessions if s.leave_time is None) == 1
    assert record.is_currently_present is True


@pytest.mark.asyncio
async def test_concurrent_students_do_not_interfere(session_factory, live_meeting):
    engine = _engine(session_factory)

    await asyncio.gather(
        *(engine.on_join(live_meeting.id, student_id, T0, now=T0) for student_id in range(1, 6))
    )

    records = await engine.store.list_for_meeting(live_meeting.id)
    assert sorted(r.student_id for r in records) == [1, 2, 3, 4, 5]
    assert all(len(r.sessions) == 1 for r in records)


@pytest.mark.asyncio
async def test_rejoin_is_counted_across_transactions(session_factory, live_meeting):
    engine = _engine(session_factory)

    await engine.on_join(live_meeting.id, 7, T0, now=T0)
    await engine.on_leave(live_meeting.id, 7, T0, None, now=T0 + timedelta(seconds=60))
    outcome = await engine.on_join(live_meeting.id, 7, T0, now=T0 + timedelta(seconds=90))

    assert outcome.session_count == 2
    assert outcome.rejoin_count == 1

    record = await engine.store.get(live_meeting.id, 7)
    assert record.total_duration == 60
    assert record.first_join_time.replace(tzinfo=None) == T0.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_finalize_meeting_closes_open_sessions(session_factory, live_meeting):
    engine = _engine(session_factory)
    ended = T0 + timedelta(seconds=1000)

    await engine.on_join(live_meeting.id, 1, T0, now=T0)
    await engine.on_join(live_meeting.id, 2, T0, now=T0 + timedelta(seconds=100))
    await engine.on_leave(live_meeting.id, 2, T0, None, now=T0 + timedelta(seconds=200))

    closed = await engine.finalize_meeting(live_meeting.id, T0, ended)

    assert [o.student_id for o in closed] == [1]
    assert closed[0].leave_time == ended
    assert closed[0].attendance_percentage == 100.0
    assert await engine.store.list_open(live_meeting.id) == []


@pytest.mark.asyncio
async def test_set_notes(session_factory, live_meeting):
    store = AttendanceStore(session_factory)
    engine = AttendanceEngine(store)
    await engine.on_join(live_meeting.id, 7, T0, now=T0)
    record = await store.get(live_meeting.id, 7)

    updated = await store.set_notes(record.id, "Camera issues")

    assert updated.notes == "Camera issues"
    assert (await store.get(live_meeting.id, 7)).notes == "Camera issues"
    assert await store.set_notes(record.id + 100, "missing") is None


async def _end(session_factory, meeting_id, ended_at):
    async with session_factory() as db:
        meeting = await end_meeting(db, meeting_id, now=ended_at)
        await db.commit()
        return meeting


@pytest.mark.asyncio
async def test_join_on_ended_meeting_is_refused(session_factory, live_meeting):
    engine = _engine(session_factory)
    await _end(session_factory, live_meeting.id, T0 + timedelta(minutes=30))

    outcome = await engine.on_join(live_meeting.id, 7, T0, now=T0 + timedelta(minutes=31))

    assert outcome is None
    assert await engine.store.get(live_meeting.id, 7) is None


@pytest.mark.asyncio
async def test_join_committed_after_meeting_end_is_closed_at_end(session_factory, live_meeting, monkeypatch):
    """
    When the meeting ends between the in-transaction check and the commit,
    the session the join opened is closed at the meeting end.
    """
    engine = _engine(session_factory)
    await _end(session_factory, live_meeting.id, T0 + timedelta(minutes=30))

    async def meeting_still_live(db, meeting_id):
        return True

    monkeypatch.setattr(engine.store, "_meeting_accepts", meeting_still_live)

    outcome = await engine.on_join(live_meeting.id, 7, T0, now=T0 + timedelta(minutes=20))

    assert outcome is None
    record = await engine.store.get(live_meeting.id, 7)
    assert record.is_currently_present is False
    assert len(record.sessions) == 1
    assert record.sessions[0].duration == 600
    assert await engine.store.list_open(live_meeting.id) == []
