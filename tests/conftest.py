"""Shared fixtures for tileseam tests."""
import math
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional

import pytest
from loguru import logger

from tileseam.config import DiscoveryConfig
from tileseam.discovery import IdentityFilter, RenderedFeature, RendererAdapter
from tileseam.geometry import LngLat


BASE_LON = -88.30
BASE_LAT = 41.45
M_PER_DEG_LAT = 111320.0


class Grid:
    """Square cells of a fixed size in meters, sharing exact edge coordinates."""

    def __init__(self, lon0: float = BASE_LON, lat0: float = BASE_LAT, size_m: float = 1.0):
        self.lon0 = lon0
        self.lat0 = lat0
        self.d_lat = size_m / M_PER_DEG_LAT
        self.d_lon = size_m / (M_PER_DEG_LAT * math.cos(math.radians(lat0)))

    def lon(self, i: float) -> float:
        return self.lon0 + i * self.d_lon

    def lat(self, j: float) -> float:
        return self.lat0 + j * self.d_lat

    def ring(self, i: int, j: int, w: int = 1, h: int = 1) -> List[List[float]]:
        return [
            [self.lon(i), self.lat(j)],
            [self.lon(i + w), self.lat(j)],
            [self.lon(i + w), self.lat(j + h)],
            [self.lon(i), self.lat(j + h)],
            [self.lon(i), self.lat(j)],
        ]

    def geometry(self, i: int, j: int, w: int = 1, h: int = 1) -> Dict[str, Any]:
        return {"type": "Polygon", "coordinates": [self.ring(i, j, w, h)]}

    def feature(self, i: int, j: int, w: int = 1, h: int = 1,
                id: Optional[Any] = None, properties: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        feature = {
            "type": "Feature",
            "properties": properties if properties is not None else {},
            "geometry": self.geometry(i, j, w, h),
        }
        if id is not None:
            feature["id"] = id
        return feature

    def point(self, i: float, j: float) -> LngLat:
        return LngLat(self.lon(i), self.lat(j))


def settled() -> Future:
    future = Future()
    future.set_result(True)
    return future


class ScriptedRenderer(RendererAdapter):
    """
    Renderer driven by a per-zoom script.

    Each zoom maps to {"rendered": RenderedFeature | None,
    "fragments": list | callable(fit_count) -> list}.
    """

    def __init__(self, levels: Dict[float, Dict[str, Any]]):
        self.levels = levels
        self.zoom: Optional[float] = None
        self.moves: List[float] = []
        self.fits: List[tuple] = []
        self.fit_count = 0
        self.closed = False
        self.on_move: Optional[Callable[[float], None]] = None

    @property
    def connected(self) -> bool:
        return not self.closed

    def close(self):
        self.closed = True

    def project(self, point):
        return (640.0, 450.0)

    def feature_at_pixel(self, pixel, radius_px=3):
        return self.levels.get(self.zoom, {}).get("rendered")

    def fragments_by_identity(self, source_id, source_layer, identity_filter: IdentityFilter):
        fragments = self.levels.get(self.zoom, {}).get("fragments", [])
        if callable(fragments):
            fragments = fragments(self.fit_count)
        return [f for f in fragments if identity_filter.matches(f)]

    def move_viewport(self, center, zoom):
        self.zoom = zoom
        self.fit_count = 0
        self.moves.append(zoom)
        if self.on_move:
            self.on_move(zoom)
        return settled()

    def fit_bounds(self, bbox, padding_px, max_zoom):
        self.fit_count += 1
        self.fits.append((self.zoom, bbox))
        return settled()


def rendered_from(feature: Dict[str, Any], source: Optional[str] = "tiles",
                  source_layer: Optional[str] = "building") -> RenderedFeature:
    return RenderedFeature(
        geometry=feature["geometry"],
        properties=dict(feature.get("properties") or {}),
        id=feature.get("id"),
        source=source,
        source_layer=source_layer,
        layer_id="building",
        layer_type="fill",
    )


@pytest.fixture
def grid():
    return Grid()


@pytest.fixture
def grid_10m():
    return Grid(size_m=10.0)


@pytest.fixture
def discovery_config():
    """Discovery settings without real sleeping."""
    return DiscoveryConfig(settle_delay_s=0.0, settle_timeout_s=0.5)


@pytest.fixture(autouse=True)
def quiet_logs():
    logger.remove()
    yield
