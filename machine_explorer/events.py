from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ValidationError

OPEN = "open"
CLOSE_BY_RECOVERY = "close_by_recovery"
CLOSE_BY_TERMINATION = "close_by_termination"

EVENT_KINDS = (OPEN, CLOSE_BY_RECOVERY, CLOSE_BY_TERMINATION)
CLOSE_KINDS = (CLOSE_BY_RECOVERY, CLOSE_BY_TERMINATION)

STATUS_OPEN = "open"
STATUS_CLOSED_BY_RECOVERY = "closed_by_recovery"
STATUS_CLOSED_BY_TERMINATION = "closed_by_termination"

CLOSE_STATUS = {
    CLOSE_BY_RECOVERY: STATUS_CLOSED_BY_RECOVERY,
    CLOSE_BY_TERMINATION: STATUS_CLOSED_BY_TERMINATION,
}


@dataclass(frozen=True)
class RawEvent:
    subject_id: str
    timestamp: int
    kind: str
    reference: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError("Unsupported event kind: %s" % self.kind)


@dataclass(frozen=True)
class Interval:
    subject_id: str
    start: int
    status: str
    start_reference: Optional[str] = None
    end: Optional[int] = None
    duration_seconds: Optional[int] = None
    end_reference: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN

    def as_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "start": self.start,
            "end": self.end,
            "duration_seconds": self.duration_seconds,
            "status": self.status,
            "start_reference": self.start_reference,
            "end_reference": self.end_reference,
        }


def decode_timestamp(value: Any) -> int:
    # bool is an int subclass and never a valid timestamp
    if isinstance(value, bool):
        raise ValidationError("Invalid timestamp: %r" % (value,))
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError("Invalid timestamp: %r" % (value,))


def require_field(record: Mapping[str, Any], name: str) -> Any:
    if not isinstance(record, Mapping):
        raise ValidationError("Expected an object record, got %s" % type(record).__name__)
    if name not in record or record[name] is None:
        raise ValidationError("Record is missing field %r" % name)
    return record[name]


def _reference(record: Mapping[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = record.get(name)
        if value:
            return str(value)
    return None


def _stream_events(
    subject_id: str, records: Iterable[Mapping[str, Any]], kind: str
) -> List[RawEvent]:
    events: List[RawEvent] = []
    for record in records:
        events.append(
            RawEvent(
                subject_id=subject_id,
                timestamp=decode_timestamp(require_field(record, "blockTimestamp")),
                kind=kind,
                reference=_reference(record, "transactionHash", "id"),
            )
        )
    return events


def events_from_streams(
    subject_id: str,
    offline_records: Iterable[Mapping[str, Any]],
    reonline_records: Iterable[Mapping[str, Any]],
    unstake_records: Iterable[Mapping[str, Any]] = (),
) -> List[RawEvent]:
    """Turn separate offline / re-online / unstake collections into events.

    Each record needs a ``blockTimestamp``; ``transactionHash`` (or ``id``)
    becomes the event reference when present.
    """
    events = _stream_events(subject_id, offline_records, OPEN)
    events.extend(_stream_events(subject_id, reonline_records, CLOSE_BY_RECOVERY))
    events.extend(_stream_events(subject_id, unstake_records, CLOSE_BY_TERMINATION))
    return events


def events_from_joined_records(
    subject_id: str, records: Iterable[Mapping[str, Any]]
) -> List[RawEvent]:
    """Turn pre-joined offline records with finish-reason flags into events.

    A record opens at ``offlineTime`` and, when ``finishedByEndStake`` or
    ``finishedByReOnline`` is set, closes at ``unStakeTime`` or
    ``reOnlineTime`` respectively. End-stake wins when both flags are set.
    """
    events: List[RawEvent] = []
    for record in records:
        offline_ts = decode_timestamp(require_field(record, "offlineTime"))
        events.append(
            RawEvent(
                subject_id=subject_id,
                timestamp=offline_ts,
                kind=OPEN,
                reference=_reference(record, "offlineTransactionHash", "id"),
            )
        )
        if record.get("finishedByEndStake"):
            events.append(
                RawEvent(
                    subject_id=subject_id,
                    timestamp=decode_timestamp(require_field(record, "unStakeTime")),
                    kind=CLOSE_BY_TERMINATION,
                    reference=_reference(record, "unStakeTransactionHash"),
                )
            )
        elif record.get("finishedByReOnline"):
            events.append(
                RawEvent(
                    subject_id=subject_id,
                    timestamp=decode_timestamp(require_field(record, "reOnlineTime")),
                    kind=CLOSE_BY_RECOVERY,
                    reference=_reference(record, "reOnlineTransactionHash"),
                )
            )
    return events
