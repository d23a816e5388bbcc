"""Emotion sample ingest and the append-only sample store."""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from liveclass.models.emotion import EMOTION_LABELS, UNKNOWN_EMOTION, EmotionSample
from liveclass.schemas.emotion import EmotionTimelinePoint, MeetingEmotionSummary, StudentEmotionTimeline
from liveclass.schemas.live import EmotionUpdatePayload

logger = logging.getLogger(__name__)


def _round2(value: float) -> float:
    return round(float(value), 2)


def compute_attentiveness(face_detected: bool, detection_confidence: float) -> float:
    if not face_detected:
        return 0.0
    return max(0.0, min(1.0, float(detection_confidence)))


def dominant_emotion(emotions: Dict[str, float], face_detected: bool) -> str:
    """Arg-max label of the emotion vector; ties resolve in label order."""
    if not face_detected:
        return UNKNOWN_EMOTION
    best_label = UNKNOWN_EMOTION
    best_value = -1.0
    for label in EMOTION_LABELS:
        value = float(emotions.get(label, 0.0))
        if value > best_value:
            best_label, best_value = label, value
    return best_label


def parse_emotion_update(data: Dict[str, Any]) -> EmotionUpdatePayload:
    """Validate a raw ``emotion-update`` payload; raises ``pydantic.ValidationError``."""
    return EmotionUpdatePayload.model_validate(data)


def build_sample(payload: EmotionUpdatePayload, *, timestamp: datetime) -> EmotionSample:
    emotions = payload.emotions.model_dump()
    return EmotionSample(
        meeting_id=payload.meeting_id,
        student_id=payload.student_id,
        student_name=payload.student_name,
        session_id=payload.session_id,
        timestamp=timestamp,
        dominant_emotion=dominant_emotion(emotions, payload.face_detected),
        face_detected=payload.face_detected,
        detection_confidence=float(payload.confidence),
        attentiveness=compute_attentiveness(payload.face_detected, payload.confidence),
        **emotions,
    )


class EmotionIngest:
    """Writes immutable emotion samples and serves windowed reads over them."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def ingest(self, payload: EmotionUpdatePayload, *, now: Optional[datetime] = None) -> EmotionSample:
        sample = build_sample(payload, timestamp=now or datetime.now(timezone.utc))
        async with self._session_factory() as db:
            try:
                db.add(sample)
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise
        return sample

    async def samples_since(self, meeting_id: int, since: datetime) -> List[EmotionSample]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(EmotionSample)
                .where(
                    EmotionSample.meeting_id == meeting_id,
                    EmotionSample.timestamp >= since,
                )
                .order_by(EmotionSample.timestamp, EmotionSample.id)
            )
            return list(result.scalars().all())

    async def student_timeline(self, meeting_id: int, student_id: int) -> StudentEmotionTimeline:
        async with self._session_factory() as db:
            result = await db.execute(
                select(EmotionSample)
                .where(
                    EmotionSample.meeting_id == meeting_id,
                    EmotionSample.student_id == student_id,
                )
                .order_by(EmotionSample.timestamp, EmotionSample.id)
            )
            samples = list(result.scalars().all())

        points = [
            EmotionTimelinePoint(
                timestamp=sample.timestamp,
                emotions=sample.emotions,
                dominant_emotion=sample.dominant_emotion,
                attentiveness=sample.attentiveness,
                face_detected=sample.face_detected,
            )
            for sample in samples
        ]
        return StudentEmotionTimeline(meeting_id=meeting_id, student_id=student_id, points=points)

    async def meeting_summary(self, meeting_id: int) -> MeetingEmotionSummary:
        async with self._session_factory() as db:
            result = await db.execute(
                select(EmotionSample).where(EmotionSample.meeting_id == meeting_id)
            )
            samples = list(result.scalars().all())
        return summarize_samples(meeting_id, samples)


def summarize_samples(meeting_id: int, samples: List[EmotionSample]) -> MeetingEmotionSummary:
    total = len(samples)
    if not total:
        return MeetingEmotionSummary(
            meeting_id=meeting_id,
            total_records=0,
            unique_students=0,
            average_emotions={label: 0.0 for label in EMOTION_LABELS},
            average_attentiveness=0.0,
            dominant_emotion_counts={},
        )

    averages = {
        label: _round2(sum(float(getattr(s, label) or 0.0) for s in samples) / total)
        for label in EMOTION_LABELS
    }
    timestamps = [s.timestamp for s in samples if s.timestamp is not None]
    return MeetingEmotionSummary(
        meeting_id=meeting_id,
        total_records=total,
        unique_students=len({s.student_id for s in samples}),
        average_emotions=averages,
        average_attentiveness=_round2(sum(float(s.attentiveness or 0.0) for s in samples) / total),
        dominant_emotion_counts=dict(Counter(s.dominant_emotion for s in samples)),
        first_sample_at=min(timestamps) if timestamps else None,
        last_sample_at=max(timestamps) if timestamps else None,
    )
