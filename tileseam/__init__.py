"""
tileseam - building boundary reconstruction from vector-tile fragments

- geometry: Coordinate helpers and fallible shapely/pyproj primitives
- merge: Seed-and-cluster merge of tile fragments into one polygon
- discovery: Zoom cascade and viewport expansion over a renderer
"""

from .config import TileseamConfig, get_config, validate_config
from .exceptions import (
    TileseamError,
    NoBuildingFound,
    DiscoveryInProgress,
    DiscoveryCancelled,
    SnapshotError,
)
from .geometry import LngLat
from .merge import ClusterMergeEngine, MergedResult, MergeGuards
from .discovery import (
    CascadingDiscoveryController,
    DiscoveryResult,
    RendererAdapter,
    RendererHandle,
    SnapshotRenderer,
    load_snapshot,
)

__all__ = [
    "TileseamConfig",
    "get_config",
    "validate_config",
    "TileseamError",
    "NoBuildingFound",
    "DiscoveryInProgress",
    "DiscoveryCancelled",
    "SnapshotError",
    "LngLat",
    "ClusterMergeEngine",
    "MergedResult",
    "MergeGuards",
    "CascadingDiscoveryController",
    "DiscoveryResult",
    "RendererAdapter",
    "RendererHandle",
    "SnapshotRenderer",
    "load_snapshot",
]
