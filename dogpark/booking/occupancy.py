"""Rolling live-headcount history and short-term trend per facility."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from .models import OccupancySample

logger = logging.getLogger(__name__)

INCREASING = "increasing"
DECREASING = "decreasing"
STABLE = "stable"

TREND_WINDOW = 3
TREND_THRESHOLD = 1.0

# (upper bound in percent, level)
CONGESTION_LEVELS = ((25, "quiet"), (50, "moderate"), (75, "busy"))


class RingBuffer:
    """Fixed-size buffer keeping the most recent ``size`` items in arrival order."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("Ring buffer size must be positive")
        self._items: list[Any] = [None] * size
        self._next = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    @property
    def size(self) -> int:
        return len(self._items)

    def append(self, item: Any) -> None:
        self._items[self._next] = item
        self._next = (self._next + 1) % self.size
        self._count = min(self._count + 1, self.size)

    def items(self) -> list[Any]:
        """Return the stored items, oldest first."""

        if self._count < self.size:
            return self._items[: self._count]
        return self._items[self._next :] + self._items[: self._next]


def classify_trend(samples: list[OccupancySample]) -> str:
    """Compare the latest three samples with the (up to) three before them."""

    if len(samples) < 2:
        return STABLE
    recent = samples[-TREND_WINDOW:]
    older = samples[-2 * TREND_WINDOW : -TREND_WINDOW]
    if not recent or not older:
        return STABLE
    recent_avg = sum(s.headcount for s in recent) / len(recent)
    older_avg = sum(s.headcount for s in older) / len(older)
    delta = recent_avg - older_avg
    if delta > TREND_THRESHOLD:
        return INCREASING
    if delta < -TREND_THRESHOLD:
        return DECREASING
    return STABLE


def congestion_level(headcount: int, capacity: int) -> str:
    percentage = headcount / max(capacity, 1) * 100
    for upper, level in CONGESTION_LEVELS:
        if percentage < upper:
            return level
    return "crowded"


@dataclass(frozen=True)
class OccupancySnapshot:
    facility_id: int
    headcount: int
    capacity: int
    trend: str
    level: str
    samples: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "facility_id": self.facility_id,
            "headcount": self.headcount,
            "capacity": self.capacity,
            "trend": self.trend,
            "level": self.level,
            "samples": self.samples,
        }


class OccupancyTracker:
    """Bounded per-facility occupancy history.

    Only appends and reads; it never touches booking state.
    """

    def __init__(self, history_size: int = 20) -> None:
        self.history_size = history_size
        self._histories: dict[int, RingBuffer] = {}
        self._lock = threading.Lock()

    def record(self, sample: OccupancySample) -> str:
        with self._lock:
            history = self._histories.get(sample.facility_id)
            if history is None:
                history = self._histories[sample.facility_id] = RingBuffer(self.history_size)
            history.append(sample)
            samples = history.items()
        return classify_trend(samples)

    def history(self, facility_id: int) -> list[OccupancySample]:
        with self._lock:
            history = self._histories.get(facility_id)
            return history.items() if history else []

    def trend(self, facility_id: int) -> str:
        return classify_trend(self.history(facility_id))

    def snapshot(self, facility_id: int) -> OccupancySnapshot | None:
        samples = self.history(facility_id)
        if not samples:
            return None
        latest = samples[-1]
        return OccupancySnapshot(
            facility_id=facility_id,
            headcount=latest.headcount,
            capacity=latest.capacity,
            trend=classify_trend(samples),
            level=congestion_level(latest.headcount, latest.capacity),
            samples=len(samples),
        )


class OccupancyFeed:
    """Inbound event channel feeding an :class:`OccupancyTracker`.

    ``publish`` never blocks; events are applied by ``pump`` or by the
    optional background worker started with ``start``.
    """

    def __init__(self, tracker: OccupancyTracker) -> None:
        self.tracker = tracker
        self._events: queue.SimpleQueue[OccupancySample] = queue.SimpleQueue()
        self._worker: threading.Thread | None = None
        self._stopping = threading.Event()

    def publish(self, sample: OccupancySample) -> None:
        self._events.put_nowait(sample)

    def pump(self, max_events: int | None = None) -> int:
        applied = 0
        while max_events is None or applied < max_events:
            try:
                sample = self._events.get_nowait()
            except queue.Empty:
                break
            self.tracker.record(sample)
            applied += 1
        return applied

    def start(self, poll_interval: float = 0.5) -> None:
        if self._worker and self._worker.is_alive():
            return
        self._stopping.clear()
        self._worker = threading.Thread(
            target=self._run, args=(poll_interval,), name="occupancy-feed", daemon=True
        )
        self._worker.start()
        logger.info("Occupancy feed worker started")

    def stop(self, timeout: float = 2.0) -> None:
        self._stopping.set()
        if self._worker:
            self._worker.join(timeout)
            self._worker = None
        self.pump()

    def _run(self, poll_interval: float) -> None:
        while not self._stopping.is_set():
            try:
                sample = self._events.get(timeout=poll_interval)
            except queue.Empty:
                continue
            self.tracker.record(sample)
