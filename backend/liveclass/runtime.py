"""Process-wide service instances shared by the HTTP routes and the live channel."""

from liveclass.config import settings
from liveclass.database import AsyncSessionLocal
from liveclass.services.attendance_service import AttendanceEngine
from liveclass.services.attendance_store import AttendanceStore
from liveclass.services.emotion_service import EmotionIngest
from liveclass.services.engagement_service import EngagementAggregator, EngagementThresholds
from liveclass.services.live_coordinator import LiveCoordinator
from liveclass.services.live_hub import LiveHub
from liveclass.services.telemetry import telemetry

attendance_store = AttendanceStore(AsyncSessionLocal)
attendance_engine = AttendanceEngine(attendance_store)
emotion_ingest = EmotionIngest(AsyncSessionLocal)
engagement_aggregator = EngagementAggregator(emotion_ingest, EngagementThresholds.from_settings(settings))
live_hub = LiveHub()

live_coordinator = LiveCoordinator(
    live_hub,
    session_factory=AsyncSessionLocal,
    engine=attendance_engine,
    ingest=emotion_ingest,
    aggregator=engagement_aggregator,
    telemetry=telemetry,
    implicit_leave=settings.IMPLICIT_LEAVE_ON_DISCONNECT,
)
