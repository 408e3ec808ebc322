"""
tandem.events
=============

Lifecycle notifications handed to downstream systems (message bus, CMS
sync, e‑mail).  The lifecycle engine only knows the :class:`Notifier`
protocol; concrete transports are injected by the caller.

Delivery is best effort: :class:`tandem.lifecycle.PartnershipLifecycle`
logs and discards any exception raised by ``notify``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .dimensions import utcnow
from .models import Partnership

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Routing keys for partnership events."""
    PARTNERSHIP_REQUESTED = "partnership.requested"
    PARTNERSHIP_APPROVED = "partnership.approved"
    PARTNERSHIP_REJECTED = "partnership.rejected"
    PARTNERSHIP_CANCELED = "partnership.canceled"
    PARTNERSHIP_COMPLETED = "partnership.completed"


@dataclass
class PartnershipEvent:
    """Envelope published for every lifecycle transition."""
    type: EventType
    partnership_id: str
    course_id: str
    project_id: str
    requested_by_user_id: str
    requested_to_user_id: str
    status: str
    message: Optional[str] = None
    source: str = "partnership-service"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_partnership(
        cls,
        event_type: EventType,
        p: Partnership,
        *,
        message: Optional[str] = None,
        source: str = "partnership-service",
        timestamp: Optional[datetime] = None,
    ) -> "PartnershipEvent":
        return cls(
            type=event_type,
            partnership_id=p.id,
            course_id=p.course_id,
            project_id=p.project_id,
            requested_by_user_id=p.requested_by_user_id,
            requested_to_user_id=p.requested_to_user_id,
            status=p.status.value,
            message=message,
            source=source,
            timestamp=timestamp or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON‑ready payload (enum values and ISO‑8601 timestamps)."""
        data = asdict(self)
        data["type"] = self.type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


class Notifier(Protocol):
    """Anything that can receive lifecycle notifications."""

    def notify(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        ...


class NullNotifier:
    """Drops every event."""

    def notify(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        return None


class LoggingNotifier:
    """Writes each event to the log; handy for local runs and the CLI."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def notify(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        logger.log(
            self.level,
            f"Published partnership event: {event_type.value}, ID: {payload.get('partnership_id')}",
        )


class RecordingNotifier:
    """Keeps every event in memory, in delivery order."""

    def __init__(self) -> None:
        self.events: List[Tuple[EventType, Dict[str, Any]]] = []

    def notify(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    @property
    def types(self) -> List[EventType]:
        return [t for t, _ in self.events]
