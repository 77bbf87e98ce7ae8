from typing import Iterable, List, Optional, Sequence, Tuple

from .events import (
    CLOSE_BY_RECOVERY,
    CLOSE_BY_TERMINATION,
    CLOSE_STATUS,
    OPEN,
    STATUS_OPEN,
    Interval,
    RawEvent,
)
from .observability import NULL_SINK, ORPHAN_CLOSE, Anomaly, ObservabilitySink


KIND_RANK = {OPEN: 0, CLOSE_BY_RECOVERY: 1, CLOSE_BY_TERMINATION: 2}


def _event_order(event: RawEvent) -> Tuple[int, int, str]:
    # OPEN sorts ahead of CLOSE at the same second: zero-length interval, not orphan.
    # Kind and reference break the remaining ties so input order never matters.
    return (event.timestamp, KIND_RANK[event.kind], event.reference or "")


def reconcile(
    events: Iterable[RawEvent], sink: Optional[ObservabilitySink] = None
) -> List[Interval]:
    """Pair OPEN/CLOSE events of one subject into intervals.

    Events may arrive in any order. A second OPEN while an interval is pending
    is ignored. A CLOSE with nothing pending is an orphan: it is reported to
    ``sink`` and dropped. The result is ordered by ``start`` descending, so the
    currently open interval, if any, comes first.
    """
    sink = sink or NULL_SINK
    intervals: List[Interval] = []
    pending: Optional[RawEvent] = None

    for event in sorted(events, key=_event_order):
        if event.kind == OPEN:
            if pending is None:
                pending = event
            continue

        if pending is None:
            sink.record_anomaly(
                Anomaly(
                    key=ORPHAN_CLOSE,
                    subject_id=event.subject_id,
                    message="%s at %d has no pending offline interval"
                    % (event.kind, event.timestamp),
                    ts=float(event.timestamp),
                    reference=event.reference,
                )
            )
            continue

        intervals.append(
            Interval(
                subject_id=pending.subject_id,
                start=pending.timestamp,
                status=CLOSE_STATUS[event.kind],
                start_reference=pending.reference,
                end=event.timestamp,
                duration_seconds=event.timestamp - pending.timestamp,
                end_reference=event.reference,
            )
        )
        pending = None

    if pending is not None:
        intervals.append(
            Interval(
                subject_id=pending.subject_id,
                start=pending.timestamp,
                status=STATUS_OPEN,
                start_reference=pending.reference,
            )
        )

    intervals.reverse()
    return intervals


def is_currently_open(intervals: Sequence[Interval]) -> bool:
    if not intervals:
        return False
    latest = max(intervals, key=lambda interval: interval.start)
    return latest.status == STATUS_OPEN
