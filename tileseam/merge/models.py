"""
Merge data models

Data classes for fragments, seeds, clusters and merge results
"""

import copy
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field

from shapely.geometry.base import BaseGeometry

from ..geometry.utils import LngLat, Ring


@dataclass
class MergeGuards:
    """Cluster admission limits"""
    area_multiplier: float = 3.0
    max_distance_km: float = 0.05

    @classmethod
    def from_config(cls, merge_config) -> "MergeGuards":
        return cls(
            area_multiplier=merge_config.area_multiplier,
            max_distance_km=merge_config.max_distance_km
        )


@dataclass
class Fragment:
    """One flattened polygon part of an input feature"""
    index: int
    rings: List[Ring]  # Full ring set, holes kept for pass-through only
    polygon: Optional[BaseGeometry]  # Outer ring only, None if construction failed
    feature: Dict[str, Any]  # Originating feature
    area_m2: Optional[float] = None
    centroid: Optional[LngLat] = None

    @property
    def outer_ring(self) -> Ring:
        return self.rings[0] if self.rings else []


@dataclass
class SeedInfo:
    """Anchor fragment of a cluster"""
    fragment_index: int
    area_m2: Optional[float]
    centroid: LngLat
    method: str  # "contains", "ray_cast" or "nearest"


@dataclass
class Cluster:
    """Fragment indices admitted so far, seed first"""
    members: List[int]
    area_m2: float = 0.0

    def add(self, index: int, area_m2: float):
        self.members.append(index)
        self.area_m2 += area_m2

    def __contains__(self, index: int) -> bool:
        return index in self.members

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class MergedResult:
    """Single building polygon produced by one merge"""
    geometry: Dict[str, Any]
    properties: Dict[str, Any] = field(default_factory=dict)
    feature_id: Optional[Any] = None
    seed: Optional[SeedInfo] = None
    members: List[int] = field(default_factory=list)
    fragment_count: int = 0
    degenerate: bool = False  # Raw input feature returned unchanged
    direct: bool = False  # Rendered feature geometry used without merging

    def to_feature(self) -> Dict[str, Any]:
        """Convert to a GeoJSON Feature dict"""
        feature = {
            "type": "Feature",
            "properties": copy.deepcopy(self.properties),
            "geometry": copy.deepcopy(self.geometry),
        }
        if self.feature_id is not None:
            feature["id"] = self.feature_id
        return feature
