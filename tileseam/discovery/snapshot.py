"""
Snapshot renderer

In-memory renderer over a fixed set of vector-tile fragments. Fragments are
"loaded" only while their bounds intersect the current Web Mercator viewport,
so a narrow viewport sees a partial building the same way a real map does.
"""

import copy
import json
import math
import os
from concurrent.futures import Future
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple

from loguru import logger
from pyproj import Transformer
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from ..config import RendererConfig, get_config
from ..exceptions import SnapshotError
from ..geometry.primitives import geojson_to_shape
from ..geometry.utils import LngLat, Bbox, geometry_bbox
from .renderer import RendererAdapter, RenderedFeature, IdentityFilter, Pixel


EARTH_CIRCUMFERENCE_M = 2 * math.pi * 6378137.0

_TO_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
_FROM_MERCATOR = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


@dataclass
class SnapshotFragment:
    """One tile fragment plus its precomputed render data"""
    feature: Dict[str, Any]
    shape: BaseGeometry
    mercator_bbox: Bbox
    source: str
    source_layer: str
    layer_id: str
    layer_type: str


def load_snapshot(path: str) -> List[Dict[str, Any]]:
    """
    Read tile fragments from a GeoJSON FeatureCollection file

    Raises:
        SnapshotError: If the file cannot be read or is not a FeatureCollection
    """
    if not os.path.exists(path):
        raise SnapshotError(f"Snapshot file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Failed to read snapshot {path}: {e}") from e

    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise SnapshotError(f"Snapshot {path} is not a GeoJSON FeatureCollection")

    features = data.get("features") or []
    logger.info(f"Loaded {len(features)} fragments from snapshot: {path}")
    return features


class SnapshotRenderer(RendererAdapter):
    """
    Renderer backed by a fragment snapshot

    Each feature may carry the foreign members "source", "sourceLayer" and
    "layer" ({"id": ..., "type": ...}); missing values fall back to config.
    Later features are drawn on top of earlier ones.
    """

    def __init__(self, features: List[Dict[str, Any]], config: Optional[RendererConfig] = None):
        self.config = config or get_config().renderer
        self.width = self.config.width_px
        self.height = self.config.height_px
        self.tile_size = self.config.tile_size
        self.min_zoom = self.config.min_zoom

        self.fragments = self._prepare(features)
        self.center: Tuple[float, float] = (0.0, 0.0)  # Mercator meters
        self.zoom = 0.0
        self._closed = False

    @property
    def connected(self) -> bool:
        return not self._closed

    def close(self):
        self._closed = True

    def meters_per_pixel(self) -> float:
        return EARTH_CIRCUMFERENCE_M / (self.tile_size * 2 ** self.zoom)

    def viewport_bounds(self) -> Bbox:
        """Current viewport in Mercator meters (min_x, min_y, max_x, max_y)"""
        mpp = self.meters_per_pixel()
        half_w = self.width / 2 * mpp
        half_h = self.height / 2 * mpp
        cx, cy = self.center
        return (cx - half_w, cy - half_h, cx + half_w, cy + half_h)

    def loaded_fragments(self) -> List[SnapshotFragment]:
        if self.zoom < self.min_zoom:
            return []
        view_min_x, view_min_y, view_max_x, view_max_y = self.viewport_bounds()
        loaded = []
        for fragment in self.fragments:
            min_x, min_y, max_x, max_y = fragment.mercator_bbox
            if min_x <= view_max_x and max_x >= view_min_x and min_y <= view_max_y and max_y >= view_min_y:
                loaded.append(fragment)
        return loaded

    def project(self, point: LngLat) -> Pixel:
        x, y = _TO_MERCATOR.transform(point.lon, point.lat)
        mpp = self.meters_per_pixel()
        cx, cy = self.center
        return ((x - cx) / mpp + self.width / 2, (cy - y) / mpp + self.height / 2)

    def unproject(self, pixel: Pixel) -> LngLat:
        mpp = self.meters_per_pixel()
        cx, cy = self.center
        x = cx + (pixel[0] - self.width / 2) * mpp
        y = cy - (pixel[1] - self.height / 2) * mpp
        lon, lat = _FROM_MERCATOR.transform(x, y)
        return LngLat(lon, lat)

    def feature_at_pixel(self, pixel: Pixel, radius_px: int = 3) -> Optional[RenderedFeature]:
        top_left = self.unproject((pixel[0] - radius_px, pixel[1] - radius_px))
        bottom_right = self.unproject((pixel[0] + radius_px, pixel[1] + radius_px))
        query_box = box(top_left.lon, bottom_right.lat, bottom_right.lon, top_left.lat)

        for fragment in reversed(self.loaded_fragments()):
            rendered = RenderedFeature(
                geometry=fragment.feature.get("geometry"),
                properties=dict(fragment.feature.get("properties") or {}),
                id=fragment.feature.get("id"),
                source=fragment.source,
                source_layer=fragment.source_layer,
                layer_id=fragment.layer_id,
                layer_type=fragment.layer_type
            )
            if rendered.is_building() and fragment.shape.intersects(query_box):
                return rendered
        return None

    def fragments_by_identity(
        self,
        source_id: str,
        source_layer: str,
        identity_filter: IdentityFilter
    ) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(fragment.feature)
            for fragment in self.loaded_fragments()
            if fragment.source == source_id
            and fragment.source_layer == source_layer
            and identity_filter.matches(fragment.feature)
        ]

    def move_viewport(self, center: LngLat, zoom: float) -> Future:
        self.center = _TO_MERCATOR.transform(center.lon, center.lat)
        self.zoom = zoom
        logger.debug(f"Viewport moved to ({center.lat:.6f}, {center.lon:.6f}) z{zoom}")
        return self._settled()

    def fit_bounds(self, bbox: Bbox, padding_px: int, max_zoom: float) -> Future:
        min_x, min_y = _TO_MERCATOR.transform(bbox[0], bbox[1])
        max_x, max_y = _TO_MERCATOR.transform(bbox[2], bbox[3])

        available_w = max(self.width - 2 * padding_px, 1)
        available_h = max(self.height - 2 * padding_px, 1)
        needed_mpp = max((max_x - min_x) / available_w, (max_y - min_y) / available_h)

        if needed_mpp > 0:
            zoom = math.log2(EARTH_CIRCUMFERENCE_M / (self.tile_size * needed_mpp))
        else:
            zoom = max_zoom

        self.center = ((min_x + max_x) / 2, (min_y + max_y) / 2)
        self.zoom = min(zoom, max_zoom)
        logger.debug(f"Viewport fitted to bbox {bbox} at z{self.zoom:.2f}")
        return self._settled()

    def _settled(self) -> Future:
        future = Future()
        future.set_result(True)
        return future

    def _prepare(self, features: List[Dict[str, Any]]) -> List[SnapshotFragment]:
        fragments = []
        for feature in features:
            geometry = feature.get("geometry")
            shape = geojson_to_shape(geometry)
            bbox = geometry_bbox(geometry)
            if shape is None or bbox is None:
                logger.warning(f"Skipping snapshot feature {feature.get('id', 'unknown')} without usable geometry")
                continue

            min_x, min_y = _TO_MERCATOR.transform(bbox[0], bbox[1])
            max_x, max_y = _TO_MERCATOR.transform(bbox[2], bbox[3])
            layer = feature.get("layer") or {}
            fragments.append(SnapshotFragment(
                feature=feature,
                shape=shape,
                mercator_bbox=(min_x, min_y, max_x, max_y),
                source=feature.get("source") or self.config.default_source,
                source_layer=feature.get("sourceLayer") or self.config.default_source_layer,
                layer_id=layer.get("id", "building"),
                layer_type=layer.get("type", "fill")
            ))
        return fragments
