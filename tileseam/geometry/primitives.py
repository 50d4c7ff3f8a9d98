"""
Fallible geometry primitives

Every computational-geometry call used by the merge engine and the discovery
controller goes through here. Each primitive returns None when the underlying
library fails (malformed ring, numerical degeneracy) so callers can treat a
failed computation as a failed check instead of handling exceptions.
"""

from typing import List, Dict, Any, Optional

import shapely
from loguru import logger
from pyproj import CRS, Geod, Transformer
from shapely.geometry import Polygon, Point, shape
from shapely.geometry.base import BaseGeometry

from .utils import LngLat, Ring, close_ring, haversine_distance


_GEOD = Geod(ellps="WGS84")


def make_polygon(rings: List[Ring]) -> Optional[BaseGeometry]:
    """
    Build a polygon from the outer ring of a ring set

    Holes are dropped. Invalid rings are repaired with a zero-width buffer.
    """
    try:
        if not rings or not rings[0]:
            return None
        outer = [(c[0], c[1]) for c in rings[0]]
        if len(set(outer)) < 3:
            return None

        poly = Polygon(outer)
        if not poly.is_valid:
            poly = poly.buffer(0)
        if poly.is_empty or poly.geom_type not in ("Polygon", "MultiPolygon"):
            return None
        return poly
    except Exception as e:
        logger.debug(f"Polygon construction failed: {e}")
        return None


def geodesic_area(geom: Optional[BaseGeometry]) -> Optional[float]:
    """Area in square meters on the WGS84 ellipsoid"""
    if geom is None:
        return None
    try:
        area, _ = _GEOD.geometry_area_perimeter(geom)
        return abs(area)
    except Exception as e:
        logger.debug(f"Area computation failed: {e}")
        return None


def centroid(geom: Optional[BaseGeometry]) -> Optional[LngLat]:
    if geom is None:
        return None
    try:
        c = geom.centroid
        if c.is_empty:
            return None
        return LngLat(c.x, c.y)
    except Exception as e:
        logger.debug(f"Centroid computation failed: {e}")
        return None


def distance_km(a: Optional[LngLat], b: Optional[LngLat]) -> Optional[float]:
    """Great-circle distance between two points in kilometers"""
    if a is None or b is None:
        return None
    try:
        return haversine_distance(a.lat, a.lon, b.lat, b.lon) / 1000.0
    except Exception as e:
        logger.debug(f"Distance computation failed: {e}")
        return None


def intersects(a: Optional[BaseGeometry], b: Optional[BaseGeometry]) -> Optional[bool]:
    """True when the geometries touch or overlap"""
    if a is None or b is None:
        return None
    try:
        return bool(a.intersects(b))
    except Exception as e:
        logger.debug(f"Intersection test failed: {e}")
        return None


def covers_point(geom: Optional[BaseGeometry], point: LngLat) -> Optional[bool]:
    """Point-in-polygon test, boundary counts as inside"""
    if geom is None:
        return None
    try:
        return bool(geom.covers(Point(point.lon, point.lat)))
    except Exception as e:
        logger.debug(f"Point-in-polygon test failed: {e}")
        return None


def union(a: Optional[BaseGeometry], b: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    if a is None or b is None:
        return None
    try:
        result = a.union(b)
        if result.is_empty:
            return None
        return result
    except Exception as e:
        logger.debug(f"Union failed: {e}")
        return None


def clean_geometry(geom: BaseGeometry, tolerance: float = 0.0) -> Optional[BaseGeometry]:
    """Remove duplicate and near-duplicate vertices, then collinear seam vertices"""
    try:
        cleaned = shapely.remove_repeated_points(geom, tolerance)
        cleaned = cleaned.simplify(0, preserve_topology=True)
        if cleaned.is_empty:
            return None
        return cleaned
    except Exception as e:
        logger.debug(f"Geometry cleanup failed: {e}")
        return None


def point_within_distance(geom: Optional[BaseGeometry], point: LngLat, meters: float) -> Optional[bool]:
    """
    Check whether the point lies within `meters` of the geometry

    Distances are measured in a local azimuthal equidistant projection
    centered on the point.
    """
    if geom is None:
        return None
    try:
        local_crs = CRS.from_proj4(
            f"+proj=aeqd +lat_0={point.lat} +lon_0={point.lon} +datum=WGS84 +units=m +no_defs"
        )
        transformer = Transformer.from_crs("EPSG:4326", local_crs, always_xy=True)
        local_geom = shapely.transform(geom, transformer.transform, interleaved=False)
        return bool(local_geom.distance(Point(0.0, 0.0)) <= meters)
    except Exception as e:
        logger.debug(f"Buffered containment test failed: {e}")
        return None


def polygon_to_geojson(poly: Polygon) -> Dict[str, Any]:
    """Convert a shapely Polygon to a GeoJSON-style dict with closed list rings"""
    rings = [close_ring([[c[0], c[1]] for c in poly.exterior.coords])]
    for interior in poly.interiors:
        rings.append(close_ring([[c[0], c[1]] for c in interior.coords]))
    return {"type": "Polygon", "coordinates": rings}


def geojson_to_shape(geometry: Optional[Dict[str, Any]]) -> Optional[BaseGeometry]:
    """Build a shapely geometry from a GeoJSON-style dict, keeping holes"""
    if not geometry:
        return None
    try:
        geom = shape(geometry)
        if geom.is_empty:
            return None
        return geom
    except Exception as e:
        logger.debug(f"GeoJSON geometry could not be parsed: {e}")
        return None
