"""
Cascading discovery controller

Finds the full building boundary at a point by driving the merge engine
across a zoom cascade (coarse to fine). At each zoom the viewport is grown
to fit the merged result until its extent stops growing, then the result is
validated against the input point. The first validated result wins; a
later zoom's candidate always replaces the best-so-far fallback.
"""

import threading
import time
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Callable

from loguru import logger

from ..config import DiscoveryConfig, get_config
from ..exceptions import DiscoveryCancelled, DiscoveryInProgress, NoBuildingFound
from ..geometry import primitives
from ..geometry.utils import LngLat, bbox_diagonal_km, geometry_bbox, to_single_polygon
from ..merge import ClusterMergeEngine, MergedResult, MergeGuards
from .renderer import IdentityFilter, RenderedFeature, RendererAdapter, RendererHandle, identity_filters


@dataclass
class DiscoveryResult:
    """Building found by a discovery run"""
    result: MergedResult
    zoom: float
    validated: bool = False
    passes: int = 0

    def to_feature(self) -> Dict[str, Any]:
        return self.result.to_feature()


@dataclass
class DiscoveryState:
    """Mutable state of one discovery run"""
    best: Optional[DiscoveryResult] = None
    pass_number: int = 0
    prev_diagonal_km: float = 0.0


class CascadingDiscoveryController:
    """
    Multi-zoom, multi-pass building discovery

    One run at a time: a second discover() while one is in flight raises
    DiscoveryInProgress. cancel() is observed between zoom levels and
    between expansion passes.

    Usage:
        handle = RendererHandle(lambda: SnapshotRenderer(features))
        controller = CascadingDiscoveryController(handle)
        found = controller.discover(LngLat(-88.30, 41.45))
    """

    def __init__(
        self,
        renderer_handle: RendererHandle,
        config: Optional[DiscoveryConfig] = None,
        merge_engine: Optional[ClusterMergeEngine] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.renderer_handle = renderer_handle
        self.config = config or get_config().discovery
        self.merge_engine = merge_engine or ClusterMergeEngine()
        self._sleep = sleep
        self._running = threading.Lock()
        self._abort = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def cancel(self):
        """Stop scheduling further zoom levels and passes"""
        self._abort.set()

    def discover(self, point: LngLat) -> DiscoveryResult:
        """
        Discover the building at a point

        Returns:
            The first validated result, else the best unvalidated one

        Raises:
            NoBuildingFound: If no zoom level produced a candidate
            DiscoveryInProgress: If another run is in flight
            DiscoveryCancelled: If cancelled before any candidate was found
        """
        if not self._running.acquire(blocking=False):
            raise DiscoveryInProgress("A discovery run is already in progress")

        try:
            self._abort.clear()
            start_time = time.time()
            logger.info(f"Discovering building at ({point.lat}, {point.lon})")
            found = self._run(point)
            logger.info(
                f"Discovery finished after {time.time() - start_time:.2f}s "
                f"(z{found.zoom}, validated={found.validated})"
            )
            return found
        finally:
            self._running.release()

    def _run(self, point: LngLat) -> DiscoveryResult:
        renderer = self.renderer_handle.get()
        state = DiscoveryState()

        for zoom in self.config.zoom_cascade:
            if self._abort.is_set():
                return self._cancelled(state)

            candidate = self.discover_at_zoom(renderer, point, zoom, state)
            if candidate is None:
                logger.info(f"z{zoom} - no building found, trying next zoom")
                continue

            # Higher zooms are more precise - always replace the fallback
            state.best = candidate

            if self.validate(candidate.result, point):
                candidate.validated = True
                logger.info(f"✓ z{zoom} - validated (point inside polygon)")
                return candidate

            logger.info(f"✗ z{zoom} - point not inside polygon, escalating...")

        if state.best is not None:
            logger.warning(
                f"All {len(self.config.zoom_cascade)} zooms tried without validation - "
                f"using best available result from z{state.best.zoom}"
            )
            return state.best

        raise NoBuildingFound(point.lat, point.lon)

    def discover_at_zoom(
        self,
        renderer: RendererAdapter,
        point: LngLat,
        zoom: float,
        state: DiscoveryState
    ) -> Optional[DiscoveryResult]:
        """Find and expand the building candidate at one zoom level"""
        logger.info(f"── Trying zoom {zoom} ──")

        try:
            settled = renderer.move_viewport(point, zoom)
        except Exception as e:
            logger.warning(f"z{zoom} move failed: {e}")
            return None
        if not self._wait(settled, f"z{zoom} move"):
            return None

        try:
            building = renderer.feature_at_pixel(renderer.project(point), self.config.query_radius_px)
        except Exception as e:
            logger.warning(f"z{zoom} - rendered feature query failed: {e}")
            return None
        if building is None:
            return None

        working_filter = self.resolve_identity_filter(renderer, building)
        if working_filter is None:
            geometry = to_single_polygon(building.geometry, point)
            if geometry is None:
                return None
            logger.info(f"z{zoom} - no identity filter returned fragments, using rendered geometry")
            feature = building.to_feature()
            return DiscoveryResult(
                result=MergedResult(
                    geometry=geometry,
                    properties=feature["properties"],
                    feature_id=feature.get("id"),
                    fragment_count=1,
                    direct=True
                ),
                zoom=zoom
            )

        result = self.expand(renderer, point, zoom, building, working_filter, state)
        if result is None:
            return None
        return DiscoveryResult(result=result, zoom=zoom, passes=state.pass_number)

    def resolve_identity_filter(
        self,
        renderer: RendererAdapter,
        building: RenderedFeature
    ) -> Optional[IdentityFilter]:
        """First identity filter that returns at least one fragment"""
        if not building.source or building.source_layer is None or building.identity is None:
            return None

        for identity_filter in identity_filters(building.identity):
            try:
                fragments = renderer.fragments_by_identity(building.source, building.source_layer, identity_filter)
            except Exception as e:
                logger.debug(f"Filter {identity_filter.to_expression()} failed: {e}")
                continue
            if fragments:
                logger.debug(f"Filter {identity_filter.to_expression()} matched {len(fragments)} fragments")
                return identity_filter

        return None

    def expand(
        self,
        renderer: RendererAdapter,
        point: LngLat,
        zoom: float,
        building: RenderedFeature,
        working_filter: IdentityFilter,
        state: DiscoveryState
    ) -> Optional[MergedResult]:
        """
        Grow the viewport around the merged result until its extent converges

        Each pass fits the viewport to the current bbox, loosens the guards
        in proportion to the detected extent and merges the requeried
        fragments. Stops when the bbox diagonal grows less than the
        threshold, or after max_passes.
        """
        default_guards = self.merge_engine.default_guards()
        state.pass_number = 0
        state.prev_diagonal_km = 0.0

        current = None
        current_geometry = building.geometry

        fragments = self._query(renderer, building, working_filter)
        if fragments:
            merged = self.merge_engine.merge(fragments, point)
            if merged is not None and _is_polygon(merged):
                current = merged
                current_geometry = merged.geometry

        for pass_number in range(1, self.config.max_passes + 1):
            state.pass_number = pass_number
            if self._abort.is_set():
                logger.info(f"z{zoom} pass {pass_number} - cancelled")
                break

            bbox = geometry_bbox(current_geometry)
            if bbox is None:
                break

            diagonal = bbox_diagonal_km(bbox)
            prev = state.prev_diagonal_km
            growth = (diagonal - prev) / prev if prev > 0 else 1.0
            if pass_number > 1 and growth < self.config.bbox_growth_threshold:
                logger.info(f"z{zoom} pass {pass_number} - converged (diag={diagonal:.3f}km)")
                break
            state.prev_diagonal_km = diagonal

            # A larger detected extent means a larger building - default
            # guards would reject its own fragments
            guards = MergeGuards(
                area_multiplier=max(default_guards.area_multiplier, self.config.adaptive_area_multiplier),
                max_distance_km=max(default_guards.max_distance_km, diagonal * self.config.adaptive_distance_factor)
            )

            logger.info(f"z{zoom} pass {pass_number} - fitBounds (diag={diagonal:.3f}km)")
            try:
                settled = renderer.fit_bounds(bbox, self.config.fit_padding_px, self.config.fit_max_zoom)
            except Exception as e:
                logger.warning(f"z{zoom} pass {pass_number} - fitBounds failed: {e}")
                break
            if not self._wait(settled, f"z{zoom} pass {pass_number}"):
                break

            fragments = self._query(renderer, building, working_filter)
            if fragments:
                merged = self.merge_engine.merge(fragments, point, guards)
                if merged is not None and _is_polygon(merged):
                    current = merged
                    current_geometry = merged.geometry

        return current

    def validate(self, result: MergedResult, point: LngLat) -> bool:
        """Point inside the polygon, or within point_buffer_m of it"""
        geom = primitives.geojson_to_shape(result.geometry)
        if primitives.covers_point(geom, point):
            return True
        return bool(primitives.point_within_distance(geom, point, self.config.point_buffer_m))

    def _query(
        self,
        renderer: RendererAdapter,
        building: RenderedFeature,
        working_filter: IdentityFilter
    ) -> List[Dict[str, Any]]:
        try:
            return renderer.fragments_by_identity(building.source, building.source_layer, working_filter)
        except Exception as e:
            logger.warning(f"Fragment query failed: {e}")
            return []

    def _wait(self, settled: Future, label: str) -> bool:
        """Wait for the renderer to settle, then let late tiles load"""
        try:
            settled.result(timeout=self.config.settle_timeout_s)
        except FuturesTimeoutError:
            logger.warning(f"{label} - renderer did not settle within {self.config.settle_timeout_s}s")
            return False
        except Exception as e:
            logger.warning(f"{label} - renderer failed to settle: {e}")
            return False

        if self.config.settle_delay_s > 0:
            self._sleep(self.config.settle_delay_s)
        return True

    def _cancelled(self, state: DiscoveryState) -> DiscoveryResult:
        if state.best is not None:
            logger.warning(f"Discovery cancelled - returning best result from z{state.best.zoom}")
            return state.best
        raise DiscoveryCancelled("Discovery cancelled before a building was found")


def _is_polygon(result: MergedResult) -> bool:
    return bool(result.geometry) and result.geometry.get("type") == "Polygon"
