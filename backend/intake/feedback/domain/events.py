"""Fire-and-forget event emission contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

FEEDBACK_CREATED = "feedback.created"
FEEDBACK_UPDATED = "feedback.updated"
FEEDBACK_DELETED = "feedback.deleted"
FEEDBACK_STATE_CHANGED = "feedback.state_changed"
FEEDBACK_REVIEWED = "feedback.reviewed"
FEEDBACK_MERGED = "feedback.merged"
VOTE_CAST = "vote.cast"
VOTE_REMOVED = "vote.removed"


class EventSink(Protocol):
    """Accepts structured events without blocking; implementations never raise."""

    def emit(self, event: str, payload: Mapping[str, Any]) -> None:
        ...


@dataclass(slots=True)
class RecordedEvent:
    event: str
    payload: dict[str, Any]
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    def emit(self, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append(RecordedEvent(event=event, payload=dict(payload)))

    def names(self) -> list[str]:
        return [record.event for record in self.events]

    def clear(self) -> None:
        self.events.clear()
