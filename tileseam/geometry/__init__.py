"""
Geometry layer

- utils: Pure coordinate helpers (ray casting, flattening, bbox)
- primitives: Fallible shapely/pyproj calls returning None on failure
"""

from .utils import (
    LngLat,
    point_in_ring,
    to_single_polygon,
    count_coords,
    extract_polygon_coords,
    close_ring,
    haversine_distance,
    geometry_bbox,
    bbox_diagonal_km,
)

__all__ = [
    "LngLat",
    "point_in_ring",
    "to_single_polygon",
    "count_coords",
    "extract_polygon_coords",
    "close_ring",
    "haversine_distance",
    "geometry_bbox",
    "bbox_diagonal_km",
]
