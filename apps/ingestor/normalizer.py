"""
Batch normalizer: raw feed events -> EventRecord.

normalize_batch() never raises for bad input; it returns a NormalizedBatch
whose `failure` is set when an event breaks the feed contract, and leaves
the decision to the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from apps.ingestor.events import EventRecord
from utils.errors import MalformedEvent, UnparseableTimestamp
from utils.timestamps import parse_timestamp_ms

NormalizationFailure = Union[UnparseableTimestamp, MalformedEvent]


@dataclass(frozen=True)
class NormalizedBatch:
    records: list[EventRecord] = field(default_factory=list)
    failure: Optional[NormalizationFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def oldest_timestamp_ms(self) -> Optional[int]:
        """Minimum timestamp in the batch, or None for an empty batch."""
        if not self.records:
            return None
        return min(r.timestamp_ms for r in self.records)


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_event(raw: Any) -> EventRecord:
    """
    Map one raw feed event to a persistence-ready record.

    Raises:
        MalformedEvent: If the event is not an object or has no string id
        UnparseableTimestamp: If the timestamp cannot be parsed
    """
    if not isinstance(raw, dict):
        raise MalformedEvent(f"Event is not an object: {type(raw).__name__}")

    event_id = raw.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedEvent(f"Event without a string id: {event_id!r}")

    try:
        timestamp_ms = parse_timestamp_ms(raw.get("timestamp"))
    except UnparseableTimestamp as e:
        raise UnparseableTimestamp(e.value, event_id=event_id) from e

    return EventRecord(
        id=event_id,
        timestamp_ms=timestamp_ms,
        type=_text(raw.get("type")),
        name=_text(raw.get("name")),
        user_id=_text(raw.get("userId")),
        session_id=_text(raw.get("sessionId")),
        properties=raw.get("properties"),
        session=raw.get("session"),
        raw=raw,
    )


def normalize_batch(raw_events: Iterable[Any]) -> NormalizedBatch:
    """Normalize a page of events, stopping at the first contract violation."""
    records: list[EventRecord] = []
    for raw in raw_events:
        try:
            records.append(normalize_event(raw))
        except (UnparseableTimestamp, MalformedEvent) as e:
            return NormalizedBatch(records=records, failure=e)
    return NormalizedBatch(records=records)
