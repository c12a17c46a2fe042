from .charge_point import CentralSystem, OcppStationCommandService

__all__ = ["CentralSystem", "OcppStationCommandService"]
