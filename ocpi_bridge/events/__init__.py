from .dispatcher import ChangeEvent, EntityType, EventDispatcher, EventType
from .receiver import RedisStreamReceiver

__all__ = ["ChangeEvent", "EntityType", "EventDispatcher", "EventType", "RedisStreamReceiver"]
