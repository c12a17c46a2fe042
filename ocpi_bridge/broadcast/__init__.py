"""Outbound OCPI pushes to roaming partners."""

from .locations import LocationsBroadcaster
from .pusher import PartnerClient
from .sessions import CdrBroadcaster, SessionBroadcaster

__all__ = [
    "CdrBroadcaster",
    "LocationsBroadcaster",
    "PartnerClient",
    "SessionBroadcaster",
]
