import datetime as dt
import time
import unittest

from dogpark.booking.models import OccupancySample
from dogpark.booking.occupancy import (
    DECREASING,
    INCREASING,
    STABLE,
    OccupancyFeed,
    OccupancyTracker,
    RingBuffer,
    classify_trend,
    congestion_level,
)

BASE = dt.datetime(2026, 5, 4, 9, 0)


def samples(*headcounts: int, facility_id: int = 1) -> list:
    return [
        OccupancySample(facility_id, BASE + dt.timedelta(minutes=5 * idx), count, 10)
        for idx, count in enumerate(headcounts)
    ]


class RingBufferTestCase(unittest.TestCase):
    def test_keeps_most_recent_items_in_order(self) -> None:
        buffer = RingBuffer(3)
        for value in range(5):
            buffer.append(value)
        self.assertEqual(buffer.items(), [2, 3, 4])
        self.assertEqual(len(buffer), 3)

    def test_partial_fill(self) -> None:
        buffer = RingBuffer(4)
        buffer.append("a")
        self.assertEqual(buffer.items(), ["a"])

    def test_size_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            RingBuffer(0)


class OccupancyTrackerTestCase(unittest.TestCase):
    def test_trend_classification(self) -> None:
        self.assertEqual(classify_trend([]), STABLE)
        self.assertEqual(classify_trend(samples(4)), STABLE)
        self.assertEqual(classify_trend(samples(2, 3, 2)), STABLE)
        self.assertEqual(classify_trend(samples(1, 1, 1, 4, 5, 6)), INCREASING)
        self.assertEqual(classify_trend(samples(8, 8, 8, 5, 5, 5)), DECREASING)
        self.assertEqual(classify_trend(samples(3, 3, 3, 4, 4, 4)), STABLE)
        # Older window may hold fewer than three samples.
        self.assertEqual(classify_trend(samples(1, 4, 4, 4)), INCREASING)

    def test_history_is_bounded(self) -> None:
        tracker = OccupancyTracker(history_size=20)
        for sample in samples(*range(25)):
            tracker.record(sample)
        history = tracker.history(1)
        self.assertEqual(len(history), 20)
        self.assertEqual(history[0].headcount, 5)
        self.assertEqual(history[-1].headcount, 24)
        self.assertEqual(tracker.history(99), [])

    def test_snapshot_reports_congestion(self) -> None:
        tracker = OccupancyTracker()
        self.assertIsNone(tracker.snapshot(1))
        for sample in samples(2, 2, 2, 6, 7, 8):
            tracker.record(sample)
        snapshot = tracker.snapshot(1)
        self.assertEqual(snapshot.headcount, 8)
        self.assertEqual(snapshot.trend, INCREASING)
        self.assertEqual(snapshot.level, "crowded")
        self.assertEqual([congestion_level(n, 10) for n in (1, 3, 6, 9)], ["quiet", "moderate", "busy", "crowded"])

    def test_feed_is_applied_by_pump(self) -> None:
        tracker = OccupancyTracker()
        feed = OccupancyFeed(tracker)
        for sample in samples(1, 2, 3):
            feed.publish(sample)
        self.assertEqual(tracker.history(1), [])
        self.assertEqual(feed.pump(max_events=2), 2)
        self.assertEqual(feed.pump(), 1)
        self.assertEqual(len(tracker.history(1)), 3)

    def test_background_worker_drains_feed(self) -> None:
        tracker = OccupancyTracker()
        feed = OccupancyFeed(tracker)
        feed.start(poll_interval=0.01)
        try:
            for sample in samples(4, 5):
                feed.publish(sample)
            deadline = time.monotonic() + 2
            while len(tracker.history(1)) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            feed.stop()
        self.assertEqual([s.headcount for s in tracker.history(1)], [4, 5])


if __name__ == "__main__":
    unittest.main()
