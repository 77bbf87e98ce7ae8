import itertools
import unittest

from machine_explorer.events import (
    CLOSE_BY_RECOVERY,
    CLOSE_BY_TERMINATION,
    OPEN,
    STATUS_CLOSED_BY_RECOVERY,
    STATUS_CLOSED_BY_TERMINATION,
    STATUS_OPEN,
    RawEvent,
)
from machine_explorer.observability import ORPHAN_CLOSE, MemorySink
from machine_explorer.reconcile import is_currently_open, reconcile


def _event(ts: int, kind: str, ref: str = "") -> RawEvent:
    return RawEvent(subject_id="m1", timestamp=ts, kind=kind, reference=ref or "tx%d" % ts)


class TestReconcile(unittest.TestCase):
    def test_single_open_is_currently_open(self) -> None:
        intervals = reconcile([_event(100, OPEN)])
        self.assertEqual(len(intervals), 1)
        self.assertEqual(intervals[0].status, STATUS_OPEN)
        self.assertEqual(intervals[0].start, 100)
        self.assertIsNone(intervals[0].end)
        self.assertIsNone(intervals[0].duration_seconds)
        self.assertTrue(is_currently_open(intervals))

    def test_open_then_recovery(self) -> None:
        intervals = reconcile([_event(100, OPEN), _event(200, CLOSE_BY_RECOVERY)])
        self.assertEqual(len(intervals), 1)
        interval = intervals[0]
        self.assertEqual(interval.start, 100)
        self.assertEqual(interval.end, 200)
        self.assertEqual(interval.duration_seconds, 100)
        self.assertEqual(interval.status, STATUS_CLOSED_BY_RECOVERY)
        self.assertEqual(interval.start_reference, "tx100")
        self.assertEqual(interval.end_reference, "tx200")
        self.assertFalse(is_currently_open(intervals))

    def test_duplicate_open_is_ignored(self) -> None:
        intervals = reconcile(
            [_event(100, OPEN), _event(150, OPEN), _event(300, CLOSE_BY_TERMINATION)]
        )
        self.assertEqual(len(intervals), 1)
        interval = intervals[0]
        self.assertEqual(interval.start, 100)
        self.assertEqual(interval.end, 300)
        self.assertEqual(interval.duration_seconds, 200)
        self.assertEqual(interval.status, STATUS_CLOSED_BY_TERMINATION)

    def test_orphan_close_is_recorded_and_dropped(self) -> None:
        sink = MemorySink()
        intervals = reconcile([_event(50, CLOSE_BY_RECOVERY)], sink)
        self.assertEqual(intervals, [])
        self.assertEqual(len(sink.anomalies), 1)
        anomaly = sink.anomalies[0]
        self.assertEqual(anomaly.key, ORPHAN_CLOSE)
        self.assertEqual(anomaly.subject_id, "m1")
        self.assertEqual(anomaly.reference, "tx50")
        self.assertFalse(is_currently_open(intervals))

    def test_orphan_close_without_sink_does_not_raise(self) -> None:
        self.assertEqual(reconcile([_event(50, CLOSE_BY_TERMINATION)]), [])

    def test_same_timestamp_open_and_close_is_zero_length(self) -> None:
        sink = MemorySink()
        intervals = reconcile([_event(100, CLOSE_BY_RECOVERY), _event(100, OPEN)], sink)
        self.assertEqual(len(intervals), 1)
        self.assertEqual(intervals[0].duration_seconds, 0)
        self.assertEqual(intervals[0].status, STATUS_CLOSED_BY_RECOVERY)
        self.assertEqual(len(sink.anomalies), 0)

    def test_intervals_are_ordered_newest_first(self) -> None:
        intervals = reconcile(
            [
                _event(100, OPEN),
                _event(200, CLOSE_BY_RECOVERY),
                _event(300, OPEN),
                _event(400, CLOSE_BY_RECOVERY),
                _event(500, OPEN),
            ]
        )
        self.assertEqual([interval.start for interval in intervals], [500, 300, 100])
        self.assertEqual(intervals[0].status, STATUS_OPEN)
        self.assertTrue(is_currently_open(intervals))

    def test_result_does_not_depend_on_input_order(self) -> None:
        events = [
            _event(100, OPEN),
            _event(150, OPEN),
            _event(200, CLOSE_BY_RECOVERY),
            _event(200, CLOSE_BY_TERMINATION),
            _event(250, CLOSE_BY_RECOVERY),
            _event(300, OPEN),
        ]
        expected = reconcile(events)
        for permutation in itertools.permutations(events):
            self.assertEqual(reconcile(list(permutation)), expected)

    def test_closed_count_and_durations_are_bounded(self) -> None:
        events = [
            _event(10, CLOSE_BY_RECOVERY),
            _event(20, OPEN),
            _event(30, CLOSE_BY_RECOVERY),
            _event(40, CLOSE_BY_TERMINATION),
            _event(50, OPEN),
            _event(50, OPEN, "dup"),
            _event(60, CLOSE_BY_TERMINATION),
        ]
        intervals = reconcile(events)
        opens = sum(1 for event in events if event.kind == OPEN)
        closed = [interval for interval in intervals if interval.status != STATUS_OPEN]
        self.assertLessEqual(len(closed), opens)
        self.assertTrue(all(interval.duration_seconds >= 0 for interval in closed))
        self.assertEqual(sum(1 for interval in intervals if interval.is_open), 0)

    def test_is_currently_open_uses_latest_start(self) -> None:
        intervals = reconcile([_event(100, OPEN), _event(200, CLOSE_BY_RECOVERY)])
        self.assertFalse(is_currently_open(list(reversed(intervals))))
        self.assertFalse(is_currently_open([]))

    def test_unknown_event_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            RawEvent(subject_id="m1", timestamp=1, kind="bogus")


if __name__ == "__main__":
    unittest.main()
