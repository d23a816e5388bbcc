"""Session store: atomic per-(meeting, student) read-modify-write of attendance records."""

import asyncio
import logging
import weakref
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liveclass.models.attendance import AttendanceRecord, AttendanceStatus
from liveclass.models.meeting import Meeting
from liveclass.services.meeting_service import accepts_attendance, get_meeting_by_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

RecordKey = Tuple[int, int]


class AttendanceStore:
    """
    Durable attendance records keyed by ``(meeting_id, student_id)``.

    Every mutation goes through :meth:`update`, which holds an in-process lock
    for the key while it loads the record, applies a transition function and
    commits, all inside one database transaction. A failed commit is rolled
    back so no record is ever left half-mutated.
    """

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[RecordKey, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: RecordKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load(self, db: AsyncSession, meeting_id: int, student_id: int) -> Optional[AttendanceRecord]:
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.meeting_id == meeting_id,
                AttendanceRecord.student_id == student_id,
            )
        )
        return result.scalar_one_or_none()

    async def _meeting_accepts(self, db: AsyncSession, meeting_id: int) -> bool:
        # FOR SHARE holds off a concurrent end_meeting UPDATE until this
        # transaction commits; SQLite ignores the clause.
        result = await db.execute(
            select(Meeting).where(Meeting.id == meeting_id).with_for_update(read=True)
        )
        meeting = result.scalar_one_or_none()
        return meeting is not None and accepts_attendance(meeting)

    async def get_meeting(self, meeting_id: int) -> Optional[Meeting]:
        async with self._session_factory() as db:
            return await get_meeting_by_id(db, meeting_id)

    async def get(self, meeting_id: int, student_id: int) -> Optional[AttendanceRecord]:
        async with self._session_factory() as db:
            return await self._load(db, meeting_id, student_id)

    async def list_for_meeting(self, meeting_id: int) -> List[AttendanceRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AttendanceRecord)
                .where(AttendanceRecord.meeting_id == meeting_id)
                .order_by(AttendanceRecord.first_join_time, AttendanceRecord.id)
            )
            return list(result.scalars().all())

    async def list_for_student(self, student_id: int) -> List[AttendanceRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AttendanceRecord)
                .where(AttendanceRecord.student_id == student_id)
                .order_by(AttendanceRecord.created_at.desc(), AttendanceRecord.id.desc())
            )
            return list(result.scalars().all())

    async def list_open(self, meeting_id: int) -> List[AttendanceRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AttendanceRecord).where(
                    AttendanceRecord.meeting_id == meeting_id,
                    AttendanceRecord.is_currently_present.is_(True),
                )
            )
            return list(result.scalars().all())

    async def update(
        self,
        meeting_id: int,
        student_id: int,
        transition: Callable[[AttendanceRecord], Optional[T]],
        *,
        create: bool = True,
        student_name: Optional[str] = None,
        require_open_meeting: bool = False,
    ) -> Optional[T]:
        """
        Apply ``transition`` to the record for the key and persist the result.

        When ``transition`` returns ``None`` the change is discarded and nothing
        is written. When the record does not exist and ``create`` is false the
        transition is not called at all. With ``require_open_meeting`` the
        meeting is re-read in the same transaction and an ended, cancelled or
        missing meeting also yields ``None``.
        """
        key = (meeting_id, student_id)
        args = (meeting_id, student_id, transition, create, student_name, require_open_meeting)
        async with self._lock_for(key):
            try:
                return await self._apply(*args)
            except IntegrityError:
                # Another writer created the row first; the retry loads it.
                logger.info("Attendance record %s created concurrently, retrying", key)
                return await self._apply(*args)

    async def _apply(
        self,
        meeting_id: int,
        student_id: int,
        transition: Callable[[AttendanceRecord], Optional[T]],
        create: bool,
        student_name: Optional[str],
        require_open_meeting: bool,
    ) -> Optional[T]:
        async with self._session_factory() as db:
            try:
                if require_open_meeting and not await self._meeting_accepts(db, meeting_id):
                    await db.rollback()
                    return None

                record = await self._load(db, meeting_id, student_id)
                if record is None:
                    if not create:
                        return None
                    record = AttendanceRecord(
                        meeting_id=meeting_id,
                        student_id=student_id,
                        student_name=student_name,
                        status=AttendanceStatus.ABSENT.value,
                        total_duration=0,
                        rejoin_count=0,
                        is_currently_present=False,
                        attendance_percentage=0.0,
                        is_late=False,
                        sessions=[],
                    )
                    db.add(record)
                elif student_name and record.student_name != student_name:
                    record.student_name = student_name

                outcome = transition(record)
                if outcome is None:
                    await db.rollback()
                    return None

                await db.commit()
                return outcome
            except SQLAlchemyError:
                await db.rollback()
                raise

    async def set_notes(self, record_id: int, notes: Optional[str]) -> Optional[AttendanceRecord]:
        async with self._session_factory() as db:
            try:
                record = await db.get(AttendanceRecord, record_id)
                if record is None:
                    return None
                record.notes = notes
                await db.commit()
                return record
            except SQLAlchemyError:
                await db.rollback()
                raise
