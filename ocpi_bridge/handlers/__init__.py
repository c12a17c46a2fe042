"""Change-event handlers and the registry that wires them to the dispatcher."""

from ..events.dispatcher import EntityType, EventType, Registry
from .locations import LocationEventHandlers
from .sessions import SessionEventHandlers


def build_registry(sessions: SessionEventHandlers, locations: LocationEventHandlers) -> Registry:
    return {
        (EventType.INSERT, EntityType.TRANSACTION): sessions.on_transaction_insert,
        (EventType.UPDATE, EntityType.TRANSACTION): sessions.on_transaction_update,
        (EventType.INSERT, EntityType.METER_VALUE): sessions.on_meter_value_insert,
        (EventType.INSERT, EntityType.LOCATION): locations.on_location_insert,
        (EventType.UPDATE, EntityType.LOCATION): locations.on_location_update,
        (EventType.INSERT, EntityType.EVSE): locations.on_evse_insert,
        (EventType.UPDATE, EntityType.EVSE): locations.on_evse_update,
        (EventType.INSERT, EntityType.CONNECTOR): locations.on_connector_insert,
        (EventType.UPDATE, EntityType.CONNECTOR): locations.on_connector_update,
        (EventType.UPDATE, EntityType.CHARGING_STATION): locations.on_charging_station_update,
    }


__all__ = ["LocationEventHandlers", "SessionEventHandlers", "build_registry"]
