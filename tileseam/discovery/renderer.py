"""
Rendering boundary adapter

The discovery controller's only dependency outside the core. A renderer
exposes the map viewport, the rendered feature under a pixel and the loaded
tile fragments sharing a feature identity.
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple, Callable

from loguru import logger

from ..geometry.utils import LngLat, Bbox


Pixel = Tuple[float, float]

ID_FILTER = "id"
PROPERTY_ID_FILTER = "property:id"
PROPERTY_OSM_ID_FILTER = "property:osm_id"


@dataclass(frozen=True)
class IdentityFilter:
    """Selects tile fragments that belong to the same source feature"""
    kind: str
    value: Any

    def matches(self, feature: Dict[str, Any]) -> bool:
        properties = feature.get("properties") or {}
        if self.kind == ID_FILTER:
            return feature.get("id") == self.value
        if self.kind == PROPERTY_ID_FILTER:
            return properties.get("id") == self.value
        if self.kind == PROPERTY_OSM_ID_FILTER:
            return properties.get("osm_id") == self.value
        return False

    def to_expression(self) -> List[Any]:
        """MapLibre-style filter expression"""
        if self.kind == ID_FILTER:
            return ["==", ["id"], self.value]
        return ["==", ["get", self.kind.split(":", 1)[1]], self.value]


def identity_filters(feature_id: Any) -> List[IdentityFilter]:
    """Filters to try for a feature identity, in order"""
    return [
        IdentityFilter(ID_FILTER, feature_id),
        IdentityFilter(PROPERTY_ID_FILTER, feature_id),
        IdentityFilter(PROPERTY_OSM_ID_FILTER, feature_id),
    ]


@dataclass
class RenderedFeature:
    """A feature as returned by a rendered-feature query"""
    geometry: Optional[Dict[str, Any]]
    properties: Dict[str, Any] = field(default_factory=dict)
    id: Optional[Any] = None
    source: Optional[str] = None
    source_layer: Optional[str] = None
    layer_id: str = ""
    layer_type: str = ""

    @property
    def identity(self) -> Optional[Any]:
        """Vector tiles may expose the id at top level or as properties.id / properties.osm_id"""
        if self.id is not None:
            return self.id
        if self.properties.get("id") is not None:
            return self.properties["id"]
        return self.properties.get("osm_id")

    def is_building(self) -> bool:
        """Polygonal and drawn by a building or fill layer"""
        if not self.geometry or self.geometry.get("type") not in ("Polygon", "MultiPolygon"):
            return False
        return "building" in (self.layer_id or "").lower() or self.layer_type == "fill"

    def to_feature(self) -> Dict[str, Any]:
        feature = {
            "type": "Feature",
            "properties": dict(self.properties),
            "geometry": self.geometry,
        }
        if self.id is not None:
            feature["id"] = self.id
        return feature


class RendererAdapter(ABC):
    """Interface to a map renderer holding loaded vector tiles"""

    @abstractmethod
    def project(self, point: LngLat) -> Pixel:
        """Geographic point to pixel in the current viewport"""

    @abstractmethod
    def feature_at_pixel(self, pixel: Pixel, radius_px: int = 3) -> Optional[RenderedFeature]:
        """Topmost building-like feature within +/- radius_px of the pixel"""

    @abstractmethod
    def fragments_by_identity(
        self,
        source_id: str,
        source_layer: str,
        identity_filter: IdentityFilter
    ) -> List[Dict[str, Any]]:
        """All currently loaded fragments matching the identity filter"""

    @abstractmethod
    def move_viewport(self, center: LngLat, zoom: float) -> Future:
        """Center the viewport; the future resolves when rendering has settled"""

    @abstractmethod
    def fit_bounds(self, bbox: Bbox, padding_px: int, max_zoom: float) -> Future:
        """Fit the viewport to a bbox; the future resolves when rendering has settled"""

    @property
    def connected(self) -> bool:
        return True

    def close(self):
        pass


class RendererHandle:
    """
    Owned, lazily created renderer

    The renderer is created on first use, recreated if it has disconnected,
    and closed by shutdown().

    Usage:
        with RendererHandle(lambda: SnapshotRenderer(features)) as handle:
            controller = CascadingDiscoveryController(handle)
    """

    def __init__(self, factory: Callable[[], RendererAdapter]):
        self._factory = factory
        self._renderer: Optional[RendererAdapter] = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._renderer is not None and self._renderer.connected

    def get(self) -> RendererAdapter:
        with self._lock:
            if self._renderer is not None and self._renderer.connected:
                return self._renderer
            logger.info("Starting renderer...")
            self._renderer = self._factory()
            logger.info("Renderer ready.")
            return self._renderer

    def shutdown(self):
        with self._lock:
            if self._renderer is None:
                return
            logger.info("Shutting down renderer...")
            try:
                self._renderer.close()
            finally:
                self._renderer = None

    def __enter__(self) -> "RendererHandle":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
