"""
Inspection decision events.

The engine does not deliver notifications. After each committed change it
hands an InspectionEvent to a sink; delivery (email, push, reports) belongs
to whoever implements the sink. The default sink only logs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID


logger = logging.getLogger(__name__)


class InspectionEventType(str, Enum):
    INSPECTION_SUBMITTED = "inspection_submitted"
    INSPECTION_AUTO_APPROVED = "inspection_auto_approved"
    APPROVER_DECISION_RECORDED = "approver_decision_recorded"
    INSPECTION_RESOLVED = "inspection_resolved"


@dataclass(frozen=True)
class InspectionEvent:
    event_type: InspectionEventType
    inspection_id: UUID
    status: str
    occurred_at: datetime
    actor_id: Optional[UUID] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "inspection_id": str(self.inspection_id),
            "status": self.status,
            "occurred_at": self.occurred_at.isoformat(),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "payload": self.payload,
        }


class InspectionEventSink(Protocol):
    async def publish(self, event: InspectionEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: log the event and move on."""

    async def publish(self, event: InspectionEvent) -> None:
        logger.info(
            "Inspection event %s for %s (status=%s)",
            event.event_type.value, event.inspection_id, event.status
        )


class RecordingEventSink:
    """Keeps events in memory. Useful for wiring checks and tests."""

    def __init__(self):
        self.events: List[InspectionEvent] = []

    async def publish(self, event: InspectionEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: InspectionEventType) -> List[InspectionEvent]:
        return [e for e in self.events if e.event_type == event_type]


async def publish_all(sink: InspectionEventSink, events: List[InspectionEvent]) -> None:
    """Publish after commit. A failing sink never undoes a committed decision."""
    for event in events:
        try:
            await sink.publish(event)
        except Exception:
            logger.exception(
                "Event sink failed for %s on inspection %s",
                event.event_type.value, event.inspection_id
            )
