"""Windowed engagement aggregation and alert detection over emotion samples.

Everything here is a pure function of already persisted samples: nothing is
cached between calls, so any number of requesters can recompute concurrently.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from liveclass.config import Settings, settings
from liveclass.models.emotion import EmotionSample
from liveclass.schemas.live import AlertEvent, AlertsData, EngagementSnapshot, StudentEngagement

NEGATIVE_EMOTIONS = ("sad", "angry", "fearful")

ALERT_NEGATIVE_EMOTION = "negative-emotion"
ALERT_LOW_ATTENTIVENESS = "low-attentiveness"


@dataclass(frozen=True)
class EngagementThresholds:
    engagement_window: timedelta = timedelta(minutes=2)
    alert_window: timedelta = timedelta(minutes=5)
    engaged_attentiveness: float = 0.7
    negative_emotion: float = 0.5
    negative_emotion_high: float = 0.7
    low_attentiveness: float = 0.5
    min_occurrences: int = 2

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "EngagementThresholds":
        return cls(
            engagement_window=timedelta(seconds=cfg.ENGAGEMENT_WINDOW_SECONDS),
            alert_window=timedelta(seconds=cfg.ALERT_WINDOW_SECONDS),
            engaged_attentiveness=cfg.ENGAGED_ATTENTIVENESS_THRESHOLD,
            negative_emotion=cfg.NEGATIVE_EMOTION_THRESHOLD,
            negative_emotion_high=cfg.NEGATIVE_EMOTION_HIGH_THRESHOLD,
            low_attentiveness=cfg.LOW_ATTENTIVENESS_THRESHOLD,
            min_occurrences=cfg.ALERT_MIN_OCCURRENCES,
        )


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _sample_order(sample: EmotionSample):
    return (_to_utc(sample.timestamp), sample.id or 0)


def _in_window(samples: Iterable[EmotionSample], since: datetime) -> List[EmotionSample]:
    return [s for s in samples if _to_utc(s.timestamp) >= since]


def _group_by_student(samples: Iterable[EmotionSample]) -> Dict[int, List[EmotionSample]]:
    grouped: Dict[int, List[EmotionSample]] = defaultdict(list)
    for sample in samples:
        grouped[sample.student_id].append(sample)
    return grouped


def _display_name(student_id: int, samples: Sequence[EmotionSample]) -> str:
    named = [s for s in samples if s.student_name]
    if not named:
        return f"Student {student_id}"
    return max(named, key=_sample_order).student_name


def current_engagement(
    meeting_id: int,
    samples: Iterable[EmotionSample],
    *,
    now: datetime,
    thresholds: EngagementThresholds,
) -> EngagementSnapshot:
    now = _to_utc(now)
    recent = _in_window(samples, now - thresholds.engagement_window)

    latest: List[StudentEngagement] = []
    for student_id, student_samples in sorted(_group_by_student(recent).items()):
        newest = max(student_samples, key=_sample_order)
        latest.append(
            StudentEngagement(
                student_id=student_id,
                student_name=_display_name(student_id, student_samples),
                attentiveness=float(newest.attentiveness or 0.0),
                dominant_emotion=newest.dominant_emotion,
                face_detected=bool(newest.face_detected),
                timestamp=newest.timestamp,
            )
        )

    total = len(latest)
    engaged = sum(1 for s in latest if s.attentiveness >= thresholds.engaged_attentiveness)
    average = sum(s.attentiveness for s in latest) / total if total else 0.0

    return EngagementSnapshot(
        meeting_id=meeting_id,
        total_students=total,
        engaged=engaged,
        disengaged=total - engaged,
        avg_engagement=int(average * 100 + 0.5),
        per_student_latest=latest,
        window_seconds=int(thresholds.engagement_window.total_seconds()),
        timestamp=now,
    )


def _negative_peak(sample: EmotionSample) -> float:
    return max(float(getattr(sample, label) or 0.0) for label in NEGATIVE_EMOTIONS)


def _peak_negative_label(samples: Sequence[EmotionSample]) -> str:
    peaks = {
        label: max(float(getattr(s, label) or 0.0) for s in samples)
        for label in NEGATIVE_EMOTIONS
    }
    return max(NEGATIVE_EMOTIONS, key=lambda label: (peaks[label], -NEGATIVE_EMOTIONS.index(label)))


def detect_alerts(
    samples: Iterable[EmotionSample],
    *,
    now: datetime,
    thresholds: EngagementThresholds,
) -> List[AlertEvent]:
    """
    Evaluate both alert rules for every student in the alert window.

    Rules count qualifying samples and take their peak value, so the result
    does not depend on the order samples were written in.
    """
    now = _to_utc(now)
    recent = _in_window(samples, now - thresholds.alert_window)
    window_minutes = max(int(thresholds.alert_window.total_seconds() // 60), 1)

    alerts: List[AlertEvent] = []
    for student_id, student_samples in sorted(_group_by_student(recent).items()):
        name = _display_name(student_id, student_samples)

        negative = [s for s in student_samples if _negative_peak(s) >= thresholds.negative_emotion]
        if len(negative) >= thresholds.min_occurrences:
            severe = any(_negative_peak(s) >= thresholds.negative_emotion_high for s in negative)
            emotion = _peak_negative_label(negative)
            alerts.append(
                AlertEvent(
                    type=ALERT_NEGATIVE_EMOTION,
                    student_id=student_id,
                    student_name=name,
                    severity="high" if severe else "medium",
                    message=(
                        f"{name} has shown signs of being {emotion} "
                        f"{len(negative)} times in the last {window_minutes} minutes"
                    ),
                    occurrences=len(negative),
                    timestamp=now,
                )
            )

        inattentive = [
            s for s in student_samples if float(s.attentiveness or 0.0) <= thresholds.low_attentiveness
        ]
        if len(inattentive) >= thresholds.min_occurrences:
            average = sum(float(s.attentiveness or 0.0) for s in inattentive) / len(inattentive)
            alerts.append(
                AlertEvent(
                    type=ALERT_LOW_ATTENTIVENESS,
                    student_id=student_id,
                    student_name=name,
                    severity="low",
                    message=(
                        f"{name} appears inattentive: {len(inattentive)} low-attentiveness readings "
                        f"(average {int(average * 100 + 0.5)}%) in the last {window_minutes} minutes"
                    ),
                    occurrences=len(inattentive),
                    timestamp=now,
                )
            )
    return alerts


def alerts_payload(meeting_id: int, alerts: List[AlertEvent], *, now: datetime, thresholds: EngagementThresholds) -> AlertsData:
    return AlertsData(
        meeting_id=meeting_id,
        alerts=alerts,
        negative_emotion_count=sum(1 for a in alerts if a.type == ALERT_NEGATIVE_EMOTION),
        low_attentiveness_count=sum(1 for a in alerts if a.type == ALERT_LOW_ATTENTIVENESS),
        window_seconds=int(thresholds.alert_window.total_seconds()),
        timestamp=_to_utc(now),
    )


class EngagementAggregator:
    """Pulls windowed samples from the sample store and runs the aggregations."""

    def __init__(self, ingest, thresholds: Optional[EngagementThresholds] = None) -> None:
        self.ingest = ingest
        self.thresholds = thresholds or EngagementThresholds.from_settings()

    async def current_engagement(self, meeting_id: int, *, now: Optional[datetime] = None) -> EngagementSnapshot:
        now = _to_utc(now or datetime.now(timezone.utc))
        samples = await self.ingest.samples_since(meeting_id, now - self.thresholds.engagement_window)
        return current_engagement(meeting_id, samples, now=now, thresholds=self.thresholds)

    async def alerts(self, meeting_id: int, *, now: Optional[datetime] = None) -> AlertsData:
        now = _to_utc(now or datetime.now(timezone.utc))
        samples = await self.ingest.samples_since(meeting_id, now - self.thresholds.alert_window)
        alerts = detect_alerts(samples, now=now, thresholds=self.thresholds)
        return alerts_payload(meeting_id, alerts, now=now, thresholds=self.thresholds)
