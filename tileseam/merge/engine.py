"""
Cluster merge engine

Rebuilds one building polygon from vector-tile fragments around a point:

  1. Flatten every feature into single-polygon fragments
  2. Pick the seed fragment containing the point
  3. Grow a cluster of adjacent fragments under area and distance guards
  4. Union the cluster and force a single Polygon
  5. Clean up tile-seam vertices
"""

import copy
import math
from typing import List, Dict, Any, Optional

from loguru import logger
from shapely.geometry.base import BaseGeometry

from ..config import MergeConfig, get_config
from ..geometry import primitives
from ..geometry.utils import LngLat, count_coords, extract_polygon_coords, point_in_ring
from .models import Cluster, Fragment, MergedResult, MergeGuards, SeedInfo


class ClusterMergeEngine:
    """
    Seed-and-cluster merge of tile fragments

    Usage:
        engine = ClusterMergeEngine()
        result = engine.merge(features, LngLat(-88.30, 41.45))
        geojson = result.to_feature()

    Every geometry computation is fallible. A failed computation makes the
    fragment fail the check it was needed for, it never aborts the merge.
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or get_config().merge

    def default_guards(self) -> MergeGuards:
        return MergeGuards.from_config(self.config)

    def merge(
        self,
        features: List[Dict[str, Any]],
        reference_point: LngLat,
        guards: Optional[MergeGuards] = None
    ) -> Optional[MergedResult]:
        """
        Merge the fragments belonging to the building at reference_point

        Args:
            features: Raw GeoJSON-style features (Polygon or MultiPolygon)
            reference_point: Click/input location
            guards: Area and distance guards (defaults from config)

        Returns:
            MergedResult with a single Polygon geometry, or None if no features given
        """
        if not features:
            return None

        guards = guards or self.default_guards()

        # Flatten first, even for a single feature - one MultiPolygon
        # can hold many separate buildings
        fragments = self.flatten(features)
        if not fragments:
            logger.warning(f"No polygon fragments in {len(features)} features - returning first feature unchanged")
            return self._raw_result(features[0])

        if len(fragments) == 1:
            only = fragments[0]
            return self._ring_result(only, members=[0], fragment_count=1)

        seed = self.select_seed(fragments, reference_point)
        if seed is None:
            logger.warning("No usable seed fragment - returning first feature unchanged")
            return self._raw_result(features[0])

        seed_fragment = fragments[seed.fragment_index]
        cluster = self.expand_cluster(fragments, seed, guards)

        if len(cluster) == 1:
            logger.info(
                f"Seed fragment {seed.fragment_index} ({seed.method}) has no admissible neighbours "
                f"among {len(fragments)} fragments"
            )
            return self._ring_result(seed_fragment, members=cluster.members,
                                     fragment_count=len(fragments), seed=seed)

        merged = self.union_cluster(fragments, cluster)
        polygon = self.to_single_polygon(merged, reference_point)

        if polygon is None:
            logger.warning("Cluster union produced no polygon - falling back to seed fragment")
            return self._ring_result(seed_fragment, members=cluster.members,
                                     fragment_count=len(fragments), seed=seed)

        cleaned = primitives.clean_geometry(polygon, self.config.duplicate_tolerance_deg)
        if cleaned is not None and cleaned.geom_type == "Polygon":
            polygon = cleaned
        else:
            logger.debug("Geometry cleanup skipped - keeping uncleaned polygon")

        geometry = primitives.polygon_to_geojson(polygon)
        area = primitives.geodesic_area(polygon)
        logger.info(
            f"Merged {len(cluster)}/{len(fragments)} fragments around seed {seed.fragment_index} "
            f"({seed.method}), area = {area or 0.0:.1f} m², {count_coords(geometry)} vertices"
        )

        return MergedResult(
            geometry=geometry,
            properties=copy.deepcopy(seed_fragment.feature.get("properties") or {}),
            feature_id=seed_fragment.feature.get("id"),
            seed=seed,
            members=list(cluster.members),
            fragment_count=len(fragments)
        )

    def flatten(self, features: List[Dict[str, Any]]) -> List[Fragment]:
        """Decompose features into fragments with precomputed area and centroid"""
        fragments = []
        for rings, feature_index in extract_polygon_coords(features):
            polygon = primitives.make_polygon(rings)
            fragments.append(Fragment(
                index=len(fragments),
                rings=rings,
                polygon=polygon,
                feature=features[feature_index],
                area_m2=primitives.geodesic_area(polygon),
                centroid=primitives.centroid(polygon)
            ))

        unusable = sum(1 for f in fragments if f.polygon is None)
        if unusable:
            logger.debug(f"{unusable}/{len(fragments)} fragments could not be built as polygons")
        return fragments

    def select_seed(self, fragments: List[Fragment], point: LngLat) -> Optional[SeedInfo]:
        """
        Pick the cluster seed

        Priority:
        1. Smallest-area fragment whose polygon contains the point
        2. First fragment whose raw outer ring contains the point (ray casting)
        3. Fragment with the nearest centroid
        """
        chosen = None
        chosen_area = math.inf
        for fragment in fragments:
            if not primitives.covers_point(fragment.polygon, point):
                continue
            if fragment.area_m2 is not None and fragment.area_m2 < chosen_area:
                chosen = fragment
                chosen_area = fragment.area_m2
        if chosen is not None:
            return self._seed(chosen, point, "contains")

        for fragment in fragments:
            if self._ray_cast_contains(fragment, point):
                return self._seed(fragment, point, "ray_cast")

        min_distance = math.inf
        for fragment in fragments:
            distance = primitives.distance_km(point, fragment.centroid)
            if distance is not None and distance < min_distance:
                min_distance = distance
                chosen = fragment
        if chosen is not None:
            logger.debug(f"Point is outside every fragment - nearest centroid is {min_distance * 1000:.1f} m away")
            return self._seed(chosen, point, "nearest")

        return None

    def expand_cluster(self, fragments: List[Fragment], seed: SeedInfo, guards: MergeGuards) -> Cluster:
        """
        Grow the cluster from the seed until a full pass admits nothing

        A candidate must pass, in order: the distance guard (centroid within
        max_distance_km of the seed centroid), the area guard (cluster area
        stays within seed area x area_multiplier) and the adjacency test
        (touches or overlaps any current member).
        """
        seed_area = seed.area_m2 or 0.0
        max_cluster_area = seed_area * guards.area_multiplier * (1.0 + self.config.area_cap_tolerance)
        cluster = Cluster(members=[seed.fragment_index], area_m2=seed_area)

        changed = True
        while changed:
            changed = False
            for fragment in fragments:
                if fragment.index in cluster or fragment.polygon is None:
                    continue

                distance = primitives.distance_km(seed.centroid, fragment.centroid)
                if distance is None or distance > guards.max_distance_km:
                    continue

                if fragment.area_m2 is None or cluster.area_m2 + fragment.area_m2 > max_cluster_area:
                    continue

                touches_cluster = any(
                    primitives.intersects(fragment.polygon, fragments[member].polygon)
                    for member in cluster.members
                )
                if not touches_cluster:
                    continue

                cluster.add(fragment.index, fragment.area_m2)
                changed = True
                logger.debug(
                    f"Fragment {fragment.index} joined cluster "
                    f"({distance * 1000:.1f} m from seed, cluster area {cluster.area_m2:.1f} m²)"
                )

        return cluster

    def union_cluster(self, fragments: List[Fragment], cluster: Cluster) -> Optional[BaseGeometry]:
        """Union member polygons left to right, skipping fragments that fail"""
        merged = None
        for member in cluster.members:
            polygon = fragments[member].polygon
            if polygon is None:
                continue
            if merged is None:
                merged = polygon
                continue

            result = primitives.union(merged, polygon)
            if result is None:
                logger.warning(f"Union failed for fragment {member} - excluding it from the merged polygon")
                continue
            merged = result

        return merged

    def to_single_polygon(self, geom: Optional[BaseGeometry], point: LngLat) -> Optional[BaseGeometry]:
        """
        Force a single Polygon

        Multi-part results keep the part containing the point, otherwise the
        largest part.
        """
        if geom is None:
            return None
        if geom.geom_type == "Polygon":
            return geom

        parts = []
        for part in getattr(geom, "geoms", []):
            if part.geom_type == "Polygon" and not part.is_empty:
                parts.append(part)
            elif part.geom_type == "MultiPolygon":
                parts.extend(p for p in part.geoms if not p.is_empty)

        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]

        for part in parts:
            if primitives.covers_point(part, point):
                return part

        logger.debug(f"Point not inside any of {len(parts)} union parts - keeping the largest")
        return max(parts, key=lambda p: primitives.geodesic_area(p) or 0.0)

    def _seed(self, fragment: Fragment, point: LngLat, method: str) -> SeedInfo:
        return SeedInfo(
            fragment_index=fragment.index,
            area_m2=fragment.area_m2,
            centroid=fragment.centroid or point,
            method=method
        )

    def _ray_cast_contains(self, fragment: Fragment, point: LngLat) -> bool:
        try:
            return bool(fragment.outer_ring) and point_in_ring(point.lon, point.lat, fragment.outer_ring)
        except (TypeError, IndexError, ZeroDivisionError) as e:
            logger.debug(f"Ray casting failed for fragment {fragment.index}: {e}")
            return False

    def _ring_result(
        self,
        fragment: Fragment,
        members: List[int],
        fragment_count: int,
        seed: Optional[SeedInfo] = None
    ) -> MergedResult:
        """Wrap a fragment's own rings (holes included) as the result"""
        return MergedResult(
            geometry={"type": "Polygon", "coordinates": copy.deepcopy(fragment.rings)},
            properties=copy.deepcopy(fragment.feature.get("properties") or {}),
            feature_id=fragment.feature.get("id"),
            seed=seed,
            members=list(members),
            fragment_count=fragment_count
        )

    def _raw_result(self, feature: Dict[str, Any]) -> MergedResult:
        return MergedResult(
            geometry=copy.deepcopy(feature.get("geometry")),
            properties=copy.deepcopy(feature.get("properties") or {}),
            feature_id=feature.get("id"),
            fragment_count=0,
            degenerate=True
        )
