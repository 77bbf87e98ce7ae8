from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .errors import QueryError
from .events import Interval, RawEvent
from .observability import NULL_SINK, ObservabilitySink
from .reconcile import is_currently_open, reconcile

EventSource = Callable[[str], Awaitable[Sequence[RawEvent]]]


class ReportHistory:
    """Offline history of a single machine, reconciled into intervals."""

    def __init__(
        self,
        machine_id: str,
        event_source: EventSource,
        sink: Optional[ObservabilitySink] = None,
    ) -> None:
        self.machine_id = machine_id
        self.event_source = event_source
        self.sink = sink or NULL_SINK
        self.intervals: List[Interval] = []
        self.currently_open = False
        self.loading = False
        self.error: Optional[str] = None
        self.request_token = 0

    async def load(self) -> None:
        if not self.machine_id:
            return
        self.request_token += 1
        token = self.request_token
        self.loading = True
        self.error = None
        try:
            events = await self.event_source(self.machine_id)
        except QueryError as exc:
            if token != self.request_token:
                return
            self.error = str(exc) or exc.__class__.__name__
            self.loading = False
            self.sink.record_fetch_failure("machine-reports", self.error, token)
            return
        except Exception:
            if token == self.request_token:
                self.loading = False
            raise

        if token != self.request_token:
            return
        self.intervals = reconcile(events, self.sink)
        self.currently_open = is_currently_open(self.intervals)
        self.loading = False

    def snapshot(self) -> Dict[str, Any]:
        return {
            "machine_id": self.machine_id,
            "intervals": [interval.as_dict() for interval in self.intervals],
            "currently_open": self.currently_open,
            "loading": self.loading,
            "error": self.error,
        }
