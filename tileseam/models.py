"""
Pydantic models for tileseam output
GeoJSON building feature and discovery report
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field


# ============================================================
# GeoJSON Types
# ============================================================

class GeoJSONPolygon(BaseModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[List[float]]]  # [[[lon, lat], ...], ...holes]


class BuildingFeature(BaseModel):
    type: Literal["Feature"] = "Feature"
    id: Optional[Any] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    geometry: GeoJSONPolygon


# ============================================================
# Report Models
# ============================================================

class InputLocation(BaseModel):
    lat: float
    lng: float


class DiscoveryReport(BaseModel):
    success: bool
    elapsed_s: float
    input: InputLocation
    zoom: Optional[float] = None
    validated: bool = False
    passes: int = 0
    fragment_count: int = 0
    geojson: Optional[BuildingFeature] = None
    error: Optional[str] = None
    generated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def building_feature(feature: Dict[str, Any]) -> BuildingFeature:
    """Wrap a GeoJSON Feature dict with a Polygon geometry"""
    return BuildingFeature(
        id=feature.get("id"),
        properties=feature.get("properties") or {},
        geometry=GeoJSONPolygon(coordinates=feature["geometry"]["coordinates"])
    )
