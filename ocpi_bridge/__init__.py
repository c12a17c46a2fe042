"""Bridge between an EV-charging core platform and OCPI roaming partners."""

__version__ = "0.1.0"
