"""Routes live-channel events to the attendance engine and emotion ingest and fans results out."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from liveclass.models.meeting import Meeting
from liveclass.schemas.live import (
    AttendanceRecorded,
    MeetingPresencePayload,
    MeetingRequestPayload,
    StudentEmotionLiveEvent,
    StudentJoinedEvent,
    StudentLeftEvent,
)
from liveclass.services import telemetry as counters
from liveclass.services.attendance_service import AttendanceEngine, LeaveOutcome
from liveclass.services.emotion_service import EmotionIngest, parse_emotion_update
from liveclass.services.engagement_service import EngagementAggregator
from liveclass.services.live_hub import LiveConnection, LiveHub, meeting_id_from_room, meeting_room, user_room
from liveclass.services.meeting_service import accepts_attendance, get_meeting_by_id
from liveclass.services.report_service import build_attendance_data

logger = logging.getLogger(__name__)

PresenceKey = Tuple[int, int]
Handler = Callable[[LiveConnection, Dict[str, Any]], Awaitable[None]]

STORAGE_ERROR_MESSAGE = "Failed to record attendance, please retry"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validation_details(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]


class LiveCoordinator:
    """
    Per-meeting fan-out for the live channel.

    Inbound join/leave/emotion events are dispatched to the attendance engine
    or the emotion ingest and the derived payload is broadcast to every member
    of ``meeting-{id}``. Read requests are answered to the requester only.
    The presence index remembers which connection opened each student's
    current session so that a dropped socket can close it, and so that a
    stale socket does not close a session a newer socket re-opened.
    """

    def __init__(
        self,
        hub: LiveHub,
        *,
        session_factory: async_sessionmaker,
        engine: AttendanceEngine,
        ingest: EmotionIngest,
        aggregator: EngagementAggregator,
        telemetry: counters.TelemetryCounters,
        implicit_leave: bool = True,
    ) -> None:
        self.hub = hub
        self.session_factory = session_factory
        self.engine = engine
        self.ingest = ingest
        self.aggregator = aggregator
        self.telemetry = telemetry
        self.implicit_leave = implicit_leave

        # key -> (owning connection id, 1-based number of the session it opened)
        self._presence_owner: Dict[PresenceKey, Tuple[str, int]] = {}
        self._presence_by_connection: Dict[str, Set[PresenceKey]] = {}
        self._raised_alerts: Dict[int, Set[Tuple[str, int, str]]] = {}

        self._handlers: Dict[str, Handler] = {
            "join-meeting": self.on_join_meeting,
            "leave-meeting": self.on_leave_meeting,
            "emotion-update": self.on_emotion_update,
            "request-engagement": self.on_request_engagement,
            "request-alerts": self.on_request_alerts,
            "request-attendance": self.on_request_attendance,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, connection: LiveConnection) -> None:
        if connection.user_id is not None:
            await self.hub.join(user_room(connection.user_id), connection)
        await self.hub.send(
            connection,
            "connected",
            {"connectionId": connection.connection_id, "userId": connection.user_id},
        )

    async def disconnect(self, connection: LiveConnection) -> None:
        owned = self._presence_by_connection.pop(connection.connection_id, set())
        await self.hub.discard(connection)
        if not self.implicit_leave:
            for key in owned:
                self._release(key, connection.connection_id)
            return

        for meeting_id, student_id in sorted(owned):
            key = (meeting_id, student_id)
            owner = self._presence_owner.get(key)
            if owner is None or owner[0] != connection.connection_id:
                continue
            self._presence_owner.pop(key, None)
            try:
                meeting = await self._load_meeting(meeting_id)
                if meeting is None:
                    continue
                # Only the session this connection opened; a newer one stays open.
                outcome = await self.engine.on_leave(
                    meeting_id,
                    student_id,
                    meeting.started_at,
                    meeting.ended_at,
                    session_number=owner[1],
                )
            except SQLAlchemyError:
                self.telemetry.increment(counters.STORAGE_ERRORS)
                logger.exception("Implicit leave failed for student %s in meeting %s", student_id, meeting_id)
                continue
            if outcome is not None:
                self.telemetry.increment(counters.IMPLICIT_LEAVES)
                logger.info("Closed session of student %s in meeting %s after disconnect", student_id, meeting_id)
                await self._announce_leave(outcome)

    async def reject(self, connection: LiveConnection, message: str, details: Optional[List[str]] = None) -> None:
        payload: Dict[str, Any] = {"message": message}
        if details:
            payload["details"] = details
        await self.hub.send(connection, "error", payload)

    async def handle(self, connection: LiveConnection, message: Any) -> None:
        if not isinstance(message, dict):
            await self.reject(connection, "Invalid message envelope")
            return

        event = str(message.get("event") or "").strip().lower()
        data = message.get("data") or {}

        if event == "ping":
            await self.hub.send(connection, "pong", {"timestamp": _now()})
            return

        handler = self._handlers.get(event)
        if handler is None:
            await self.reject(connection, "Unsupported event")
            return
        if not isinstance(data, dict):
            await self.reject(connection, "Event data must be an object")
            return

        try:
            await handler(connection, data)
        except Exception:
            logger.exception("Unhandled error while processing %s", event)
            await self.reject(connection, "Unable to process event")

    # ------------------------------------------------------------------
    # Presence index
    # ------------------------------------------------------------------

    def _claim(self, key: PresenceKey, connection_id: str, session_number: int) -> None:
        previous = self._presence_owner.get(key)
        if previous and previous[0] != connection_id:
            self._presence_by_connection.get(previous[0], set()).discard(key)
        self._presence_owner[key] = (connection_id, session_number)
        self._presence_by_connection.setdefault(connection_id, set()).add(key)

    def _release(self, key: PresenceKey, connection_id: str) -> None:
        owner = self._presence_owner.get(key)
        if owner is not None and owner[0] == connection_id:
            self._presence_owner.pop(key, None)
        self._presence_by_connection.get(connection_id, set()).discard(key)

    def presence_owner(self, meeting_id: int, student_id: int) -> Optional[str]:
        owner = self._presence_owner.get((meeting_id, student_id))
        return owner[0] if owner else None

    # ------------------------------------------------------------------
    # Attendance events
    # ------------------------------------------------------------------

    async def _load_meeting(self, meeting_id: int) -> Optional[Meeting]:
        async with self.session_factory() as db:
            return await get_meeting_by_id(db, meeting_id)

    async def on_join_meeting(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        try:
            payload = MeetingPresencePayload.model_validate(data)
        except ValidationError as exc:
            await self.hub.send(
                connection,
                "attendance-error",
                {"message": "Invalid join-meeting payload", "details": _validation_details(exc)},
            )
            return

        room = meeting_room(payload.meeting_id)
        await self.hub.join(room, connection)

        try:
            meeting = await self._load_meeting(payload.meeting_id)
            if meeting is None:
                await self.hub.send(connection, "attendance-error", {"message": "Meeting not found"})
                return
            if not accepts_attendance(meeting):
                await self.hub.send(connection, "attendance-error", {"message": "Meeting has already ended"})
                return
            outcome = await self.engine.on_join(
                payload.meeting_id,
                payload.student_id,
                meeting.scheduled_start,
                student_name=payload.student_name,
            )
        except SQLAlchemyError:
            self.telemetry.increment(counters.STORAGE_ERRORS)
            logger.exception("Failed to record join of student %s in meeting %s", payload.student_id, payload.meeting_id)
            await self.hub.send(connection, "attendance-error", {"message": STORAGE_ERROR_MESSAGE})
            return

        if outcome is None:
            await self.hub.send(connection, "attendance-error", {"message": "Meeting has already ended"})
            return

        self._claim((payload.meeting_id, payload.student_id), connection.connection_id, outcome.session_count)
        self.telemetry.increment(counters.JOINS)

        now = _now()
        await self.hub.broadcast(
            room,
            "student-joined",
            StudentJoinedEvent(
                student_id=outcome.student_id,
                student_name=outcome.student_name,
                join_time=outcome.join_time,
                session_count=outcome.session_count,
                is_late=outcome.is_late,
                status=outcome.status,
                timestamp=now,
            ).to_wire(),
        )
        await self.hub.send(
            connection,
            "attendance-recorded",
            AttendanceRecorded(
                type="join",
                meeting_id=outcome.meeting_id,
                student_id=outcome.student_id,
                status=outcome.status,
                session_count=outcome.session_count,
                is_late=outcome.is_late,
                join_time=outcome.join_time,
                timestamp=now,
            ).to_wire(),
        )

    async def on_leave_meeting(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        try:
            payload = MeetingPresencePayload.model_validate(data)
        except ValidationError as exc:
            await self.hub.send(
                connection,
                "attendance-error",
                {"message": "Invalid leave-meeting payload", "details": _validation_details(exc)},
            )
            return

        room = meeting_room(payload.meeting_id)
        await self.hub.join(room, connection)
        key = (payload.meeting_id, payload.student_id)

        try:
            meeting = await self._load_meeting(payload.meeting_id)
            if meeting is None:
                await self.hub.send(connection, "attendance-error", {"message": "Meeting not found"})
                return
            outcome = await self.engine.on_leave(
                payload.meeting_id,
                payload.student_id,
                meeting.started_at,
                meeting.ended_at,
            )
        except SQLAlchemyError:
            self.telemetry.increment(counters.STORAGE_ERRORS)
            logger.exception("Failed to record leave of student %s in meeting %s", payload.student_id, payload.meeting_id)
            await self.hub.send(connection, "attendance-error", {"message": STORAGE_ERROR_MESSAGE})
            return

        self._release(key, connection.connection_id)
        if outcome is None:
            return

        self.telemetry.increment(counters.LEAVES)
        await self._announce_leave(outcome)
        await self.hub.send(
            connection,
            "attendance-recorded",
            AttendanceRecorded(
                type="leave",
                meeting_id=outcome.meeting_id,
                student_id=outcome.student_id,
                status=outcome.status,
                leave_time=outcome.leave_time,
                total_duration=outcome.total_duration,
                attendance_percentage=outcome.attendance_percentage,
                timestamp=_now(),
            ).to_wire(),
        )

    async def _announce_leave(self, outcome: LeaveOutcome) -> None:
        await self.hub.broadcast(
            meeting_room(outcome.meeting_id),
            "student-left",
            StudentLeftEvent(
                student_id=outcome.student_id,
                student_name=outcome.student_name,
                leave_time=outcome.leave_time,
                total_duration=outcome.total_duration,
                attendance_percentage=outcome.attendance_percentage,
                status=outcome.status,
                timestamp=_now(),
            ).to_wire(),
        )

    async def announce_finalized(self, outcomes: List[LeaveOutcome]) -> None:
        """Broadcast the sessions closed when a meeting ended and forget their owners."""
        for outcome in outcomes:
            key = (outcome.meeting_id, outcome.student_id)
            owner = self._presence_owner.get(key)
            if owner is not None:
                self._release(key, owner[0])
            await self._announce_leave(outcome)

    # ------------------------------------------------------------------
    # Emotion events
    # ------------------------------------------------------------------

    async def on_emotion_update(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        try:
            payload = parse_emotion_update(data)
        except ValidationError as exc:
            self.telemetry.increment(counters.REJECTED_SAMPLES)
            await self.reject(connection, "Invalid emotion payload", _validation_details(exc))
            return

        room = meeting_room(payload.meeting_id)
        await self.hub.join(room, connection)

        try:
            if await self._load_meeting(payload.meeting_id) is None:
                self.telemetry.increment(counters.REJECTED_SAMPLES)
                await self.reject(connection, "Meeting not found")
                return
            sample = await self.ingest.ingest(payload)
        except SQLAlchemyError:
            self.telemetry.increment(counters.STORAGE_ERRORS)
            logger.exception("Failed to store emotion sample for student %s", payload.student_id)
            await self.reject(connection, "Failed to store emotion sample")
            return

        self.telemetry.increment(counters.EMOTION_SAMPLES)
        await self.hub.broadcast(
            room,
            "student-emotion-live",
            StudentEmotionLiveEvent(
                student_id=sample.student_id,
                student_name=sample.student_name,
                emotions=sample.emotions,
                dominant_emotion=sample.dominant_emotion,
                face_detected=sample.face_detected,
                attentiveness=sample.attentiveness,
                timestamp=sample.timestamp,
            ).to_wire(),
        )

    # ------------------------------------------------------------------
    # Read requests (reply to requester only)
    # ------------------------------------------------------------------

    async def _parse_request(self, connection: LiveConnection, data: Dict[str, Any]) -> Optional[MeetingRequestPayload]:
        try:
            payload = MeetingRequestPayload.model_validate(data)
        except ValidationError as exc:
            await self.reject(connection, "meetingId is required", _validation_details(exc))
            return None
        await self.hub.join(meeting_room(payload.meeting_id), connection)
        return payload

    async def on_request_engagement(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        payload = await self._parse_request(connection, data)
        if payload is None:
            return
        try:
            snapshot = await self.aggregator.current_engagement(payload.meeting_id)
        except SQLAlchemyError:
            logger.exception("Engagement query failed for meeting %s", payload.meeting_id)
            await self.reject(connection, "Failed to load engagement data")
            return
        await self.hub.send(connection, "engagement-data", snapshot.to_wire())

    async def on_request_alerts(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        payload = await self._parse_request(connection, data)
        if payload is None:
            return
        try:
            alerts = await self.aggregator.alerts(payload.meeting_id)
        except SQLAlchemyError:
            logger.exception("Alert query failed for meeting %s", payload.meeting_id)
            await self.reject(connection, "Failed to load alerts")
            return
        await self.hub.send(connection, "alerts-data", alerts.to_wire())

    async def on_request_attendance(self, connection: LiveConnection, data: Dict[str, Any]) -> None:
        payload = await self._parse_request(connection, data)
        if payload is None:
            return
        try:
            meeting = await self._load_meeting(payload.meeting_id)
            if meeting is None:
                await self.hub.send(connection, "attendance-error", {"message": "Meeting not found"})
                return
            records = await self.engine.store.list_for_meeting(payload.meeting_id)
        except SQLAlchemyError:
            logger.exception("Attendance query failed for meeting %s", payload.meeting_id)
            await self.hub.send(connection, "attendance-error", {"message": "Failed to load attendance"})
            return
        data_payload = build_attendance_data(meeting, records, now=_now())
        await self.hub.send(connection, "attendance-data", data_payload.to_wire())

    # ------------------------------------------------------------------
    # Fixed-tick push
    # ------------------------------------------------------------------

    async def broadcast_engagement(self, *, now: Optional[datetime] = None) -> None:
        """Push current engagement and newly raised alerts to every active meeting room."""
        now = now or _now()
        active: Set[int] = set()
        for room in await self.hub.rooms("meeting-"):
            meeting_id = meeting_id_from_room(room)
            if meeting_id is None:
                continue
            active.add(meeting_id)
            try:
                snapshot = await self.aggregator.current_engagement(meeting_id, now=now)
                alerts = await self.aggregator.alerts(meeting_id, now=now)
            except SQLAlchemyError:
                logger.exception("Engagement tick failed for meeting %s", meeting_id)
                continue

            await self.hub.broadcast(room, "engagement-data", snapshot.to_wire())

            current = {(a.type, a.student_id, a.severity) for a in alerts.alerts}
            previous = self._raised_alerts.get(meeting_id, set())
            for alert in alerts.alerts:
                if (alert.type, alert.student_id, alert.severity) in previous:
                    continue
                self.telemetry.increment(counters.ALERTS_BROADCAST)
                await self.hub.broadcast(room, "emotion-alert", alert.to_wire())
            self._raised_alerts[meeting_id] = current

        for meeting_id in list(self._raised_alerts):
            if meeting_id not in active:
                self._raised_alerts.pop(meeting_id, None)

    async def run_broadcast_loop(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(max(interval_seconds, 1))
            try:
                await self.broadcast_engagement()
            except Exception:
                logger.exception("Engagement broadcast tick failed")
