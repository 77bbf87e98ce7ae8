import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional

ORPHAN_CLOSE = "orphan-close"


@dataclass
class Anomaly:
    key: str
    subject_id: str
    message: str
    ts: float
    reference: Optional[str] = None


class ObservabilitySink:
    """Receives non-fatal anomalies and fetch failures.

    The base class discards everything; subclasses decide where records go.
    """

    def record_anomaly(self, anomaly: Anomaly) -> None:
        _ = anomaly

    def record_fetch_failure(self, resource: str, message: str, token: int) -> None:
        _ = (resource, message, token)


NULL_SINK = ObservabilitySink()


class MemorySink(ObservabilitySink):
    def __init__(self, maxlen: int = 200) -> None:
        self.anomalies: Deque[Anomaly] = deque(maxlen=maxlen)
        self.fetch_failures: Deque[Dict[str, Any]] = deque(maxlen=maxlen)

    def record_anomaly(self, anomaly: Anomaly) -> None:
        self.anomalies.append(anomaly)

    def record_fetch_failure(self, resource: str, message: str, token: int) -> None:
        self.fetch_failures.append(
            {
                "ts": time.time(),
                "resource": resource,
                "message": message,
                "token": token,
            }
        )


class ConsoleSink(ObservabilitySink):
    def record_anomaly(self, anomaly: Anomaly) -> None:
        print(
            "[WARN][%s] %s: %s" % (anomaly.key, anomaly.subject_id, anomaly.message),
            flush=True,
        )

    def record_fetch_failure(self, resource: str, message: str, token: int) -> None:
        print(
            "[WARN] %s request #%d failed: %s" % (resource, token, message),
            flush=True,
        )
