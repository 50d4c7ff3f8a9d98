"""
Exceptions raised by tileseam
"""


class TileseamError(Exception):
    """Base class for tileseam errors"""


class NoBuildingFound(TileseamError):
    """No fragment was found at any zoom level of the cascade"""

    def __init__(self, lat: float, lon: float):
        self.lat = lat
        self.lon = lon
        super().__init__(f"No building found at ({lat}, {lon})")


class DiscoveryInProgress(TileseamError):
    """A discovery run is already in flight on this controller"""


class DiscoveryCancelled(TileseamError):
    """Discovery was cancelled before any candidate was found"""


class SnapshotError(TileseamError):
    """A fragment snapshot could not be read"""
