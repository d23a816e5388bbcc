"""Per-minute operator telemetry: volatile counters reset on a fixed timer."""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict

logger = logging.getLogger(__name__)

JOINS = "joins"
LEAVES = "leaves"
IMPLICIT_LEAVES = "implicit_leaves"
EMOTION_SAMPLES = "emotion_samples"
REJECTED_SAMPLES = "rejected_samples"
ALERTS_BROADCAST = "alerts_broadcast"
STORAGE_ERRORS = "storage_errors"


class TelemetryCounters:
    """
    Process-wide approximate counters.

    Only ingest paths and the reset timer touch these, all on the event loop
    thread, so plain increments are enough.
    """

    def __init__(self) -> None:
        self._counts: Counter = Counter()
        self._window_started = datetime.now(timezone.utc)

    def increment(self, name: str, amount: int = 1) -> None:
        self._counts[name] += amount

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counts)

    def reset(self) -> Dict[str, int]:
        counts = self.snapshot()
        self._counts = Counter()
        self._window_started = datetime.now(timezone.utc)
        return counts

    def flush(self) -> Dict[str, int]:
        started = self._window_started
        counts = self.reset()
        if counts:
            summary = ", ".join(f"{name}={value}" for name, value in sorted(counts.items()))
            logger.info("Live telemetry since %s: %s", started.strftime("%H:%M:%S"), summary)
        else:
            logger.debug("Live telemetry since %s: idle", started.strftime("%H:%M:%S"))
        return counts

    async def run(self, interval_seconds: int) -> None:
        """Flush forever on a fixed interval; cancel the task to stop."""
        while True:
            await asyncio.sleep(max(interval_seconds, 1))
            try:
                self.flush()
            except Exception:
                logger.exception("Telemetry flush failed")


telemetry = TelemetryCounters()
