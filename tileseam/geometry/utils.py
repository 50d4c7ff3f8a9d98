"""
Geometry utility functions

Pure coordinate-level helpers for GeoJSON-style polygon geometry
"""

import math
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple


Ring = List[List[float]]
Bbox = Tuple[float, float, float, float]


@dataclass(frozen=True)
class LngLat:
    """Geographic coordinate in degrees"""
    lon: float
    lat: float


def point_in_ring(lon: float, lat: float, ring: Ring) -> bool:
    """Ray-casting point-in-polygon check on a raw ring of [lon, lat]"""
    n = len(ring)
    inside = False

    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]

        if ((yi > lat) != (yj > lat)) and (lon < (xj - xi) * (lat - yi) / (yj - yi) + xi):
            inside = not inside
        j = i

    return inside


def to_single_polygon(geometry: Optional[Dict[str, Any]], point: LngLat) -> Optional[Dict[str, Any]]:
    """
    Reduce a geometry to one Polygon

    MultiPolygon keeps the first part whose outer ring contains the point,
    otherwise its first part. Non-polygonal geometry gives None.
    """
    if not geometry:
        return None

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")

    if geom_type == "Polygon":
        return {"type": "Polygon", "coordinates": coordinates}

    if geom_type == "MultiPolygon" and coordinates:
        for polygon in coordinates:
            exterior = polygon[0] if polygon else None
            if exterior and point_in_ring(point.lon, point.lat, exterior):
                return {"type": "Polygon", "coordinates": polygon}
        return {"type": "Polygon", "coordinates": coordinates[0]}

    return None


def count_coords(geometry: Optional[Dict[str, Any]]) -> int:
    """Count outer-ring coordinate pairs in a geometry"""
    if not geometry or not geometry.get("coordinates"):
        return 0

    coordinates = geometry["coordinates"]
    if geometry.get("type") == "Polygon":
        return len(coordinates[0]) if coordinates[0] else 0
    if geometry.get("type") == "MultiPolygon":
        return sum(len(polygon[0]) for polygon in coordinates if polygon and polygon[0])
    return 0


def extract_polygon_coords(features: List[Dict[str, Any]]) -> List[Tuple[List[Ring], int]]:
    """
    Flatten Polygon and MultiPolygon features into independent ring sets

    Returns:
        List of (rings, feature_index) - one entry per polygon part
    """
    flattened = []

    for feature_index, feature in enumerate(features):
        geometry = (feature or {}).get("geometry") or {}
        coordinates = geometry.get("coordinates")
        if not coordinates:
            continue

        geom_type = geometry.get("type")
        if geom_type == "Polygon":
            if coordinates[0]:
                flattened.append((coordinates, feature_index))
        elif geom_type == "MultiPolygon":
            for polygon in coordinates:
                if polygon and polygon[0]:
                    flattened.append((polygon, feature_index))

    return flattened


def close_ring(ring: Ring) -> Ring:
    """Ensure ring is closed (first point == last point)"""
    if not ring:
        return ring

    if list(ring[0]) != list(ring[-1]):
        return list(ring) + [ring[0]]

    return list(ring)


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float
) -> float:
    """Calculate distance between two points in meters"""
    R = 6371000  # Earth radius in meters

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi/2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

    return R * c


def geometry_bbox(geometry: Optional[Dict[str, Any]]) -> Optional[Bbox]:
    """Bounding box (min_lon, min_lat, max_lon, max_lat) of a polygonal geometry"""
    if not geometry or not geometry.get("coordinates"):
        return None

    if geometry.get("type") == "Polygon":
        polygons = [geometry["coordinates"]]
    elif geometry.get("type") == "MultiPolygon":
        polygons = geometry["coordinates"]
    else:
        return None

    lons = [c[0] for polygon in polygons for ring in polygon for c in ring]
    lats = [c[1] for polygon in polygons for ring in polygon for c in ring]
    if not lons:
        return None

    return (min(lons), min(lats), max(lons), max(lats))


def bbox_diagonal_km(bbox: Bbox) -> float:
    """Length of the south-west to north-east diagonal in kilometers"""
    min_lon, min_lat, max_lon, max_lat = bbox
    return haversine_distance(min_lat, min_lon, max_lat, max_lon) / 1000.0
