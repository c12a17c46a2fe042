"""Route core change events to their handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class EntityType(str, Enum):
    TRANSACTION = "Transaction"
    METER_VALUE = "MeterValue"
    LOCATION = "Location"
    EVSE = "Evse"
    CONNECTOR = "Connector"
    CHARGING_STATION = "ChargingStation"


@dataclass(slots=True)
class ChangeEvent:
    event_type: EventType
    entity_type: EntityType
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        """Parse the bus representation ``{eventId, eventType, objectType, payload}``."""
        return cls(
            event_type=EventType(data["eventType"]),
            entity_type=EntityType(data["objectType"]),
            payload=data.get("payload") or {},
            event_id=data.get("eventId"),
        )


Handler = Callable[[ChangeEvent], Awaitable[None]]
Registry = Dict[Tuple[EventType, EntityType], Handler]


class EventDispatcher:
    def __init__(self, registry: Registry) -> None:
        self.registry = dict(registry)

    async def dispatch(self, event: ChangeEvent) -> bool:
        """Run the handler registered for the event; ``False`` when none is."""
        handler = self.registry.get((event.event_type, event.entity_type))
        if handler is None:
            logger.debug(
                f"No handler for {event.event_type.value} {event.entity_type.value} "
                f"(event {event.event_id}), discarding"
            )
            return False

        logger.debug(f"← {event.event_type.value} {event.entity_type.value} (event {event.event_id})")
        try:
            await handler(event)
        except Exception:
            logger.exception(
                f"Handler for {event.event_type.value} {event.entity_type.value} "
                f"failed on event {event.event_id}"
            )
        return True
