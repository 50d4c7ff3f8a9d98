"""Tests for the cascading discovery controller."""
from concurrent.futures import Future

import pytest

from tileseam.config import DiscoveryConfig
from tileseam.discovery import CascadingDiscoveryController, RenderedFeature, RendererHandle
from tileseam.discovery.renderer import PROPERTY_OSM_ID_FILTER
from tileseam.exceptions import DiscoveryCancelled, DiscoveryInProgress, NoBuildingFound
from tileseam.merge import ClusterMergeEngine, MergedResult, MergeGuards

from conftest import Grid, ScriptedRenderer, rendered_from


class GrowingEngine:
    """Merge stand-in whose result doubles in size on every call"""

    def __init__(self, grid, grow=True):
        self.grid = grid
        self.grow = grow
        self.size = 1
        self.guards = []

    def default_guards(self):
        return MergeGuards()

    def merge(self, features, reference_point, guards=None):
        self.guards.append(guards)
        if self.grow:
            self.size *= 2
        return MergedResult(
            geometry=self.grid.geometry(0, 0, self.size, self.size),
            fragment_count=len(features)
        )


def level(feature, fragments=None, source="tiles"):
    return {
        "rendered": rendered_from(feature, source=source),
        "fragments": fragments if fragments is not None else [feature],
    }


def make_controller(renderer, config, merge_engine=None):
    handle = RendererHandle(lambda: renderer)
    return CascadingDiscoveryController(handle, config=config, merge_engine=merge_engine)


class TestCascade:

    def test_escalates_until_validated(self, grid_10m, discovery_config):
        far = grid_10m.feature(5, 0, id=1)
        home = grid_10m.feature(0, 0, id=2)
        renderer = ScriptedRenderer({13.5: level(far), 15.5: level(home)})
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid_10m.point(0.5, 0.5))

        assert renderer.moves == [13.5, 15.5]
        assert found.zoom == 15.5
        assert found.validated
        assert found.to_feature()["id"] == 2

    def test_unvalidated_result_from_last_zoom(self, grid_10m, discovery_config):
        levels = {
            zoom: level(grid_10m.feature(5 + i, 0, id=i))
            for i, zoom in enumerate([13.5, 15.5, 17.5, 19.5])
        }
        renderer = ScriptedRenderer(levels)
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid_10m.point(0.5, 0.5))

        assert renderer.moves == [13.5, 15.5, 17.5, 19.5]
        assert found.zoom == 19.5
        assert not found.validated
        assert found.result.feature_id == 3

    def test_no_building_found(self, grid, discovery_config):
        renderer = ScriptedRenderer({})
        controller = make_controller(renderer, discovery_config)

        with pytest.raises(NoBuildingFound):
            controller.discover(grid.point(0.5, 0.5))
        assert renderer.moves == [13.5, 15.5, 17.5, 19.5]

    def test_settle_timeout_skips_zoom(self, grid):
        class StuckRenderer(ScriptedRenderer):
            def move_viewport(self, center, zoom):
                super().move_viewport(center, zoom)
                return Future()

        renderer = StuckRenderer({13.5: level(grid.feature(0, 0, id=1))})
        config = DiscoveryConfig(settle_delay_s=0.0, settle_timeout_s=0.01)
        controller = make_controller(renderer, config)

        with pytest.raises(NoBuildingFound):
            controller.discover(grid.point(0.5, 0.5))

    def test_failed_settlement_skips_zoom(self, grid, discovery_config):
        class BrokenRenderer(ScriptedRenderer):
            def move_viewport(self, center, zoom):
                super().move_viewport(center, zoom)
                future = Future()
                if zoom == 13.5:
                    future.set_exception(RuntimeError("style failed to load"))
                else:
                    future.set_result(True)
                return future

        feature = grid.feature(0, 0, id=1)
        renderer = BrokenRenderer({13.5: level(feature), 15.5: level(feature)})
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid.point(0.5, 0.5))
        assert found.zoom == 15.5


    def test_renderer_error_skips_zoom(self, grid, discovery_config):
        class NotReadyRenderer(ScriptedRenderer):
            def feature_at_pixel(self, pixel, radius_px=3):
                if self.zoom == 13.5:
                    raise RuntimeError("layer not ready")
                return super().feature_at_pixel(pixel, radius_px)

        feature = grid.feature(0, 0, id=1)
        renderer = NotReadyRenderer({13.5: level(feature), 15.5: level(feature)})
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid.point(0.5, 0.5))

        assert renderer.moves == [13.5, 15.5]
        assert found.zoom == 15.5
        assert found.validated

    def test_move_error_skips_zoom(self, grid, discovery_config):
        class DetachedRenderer(ScriptedRenderer):
            def move_viewport(self, center, zoom):
                if zoom == 13.5:
                    raise RuntimeError("map detached")
                return super().move_viewport(center, zoom)

        feature = grid.feature(0, 0, id=1)
        renderer = DetachedRenderer({13.5: level(feature), 15.5: level(feature)})
        controller = make_controller(renderer, discovery_config)

        assert controller.discover(grid.point(0.5, 0.5)).zoom == 15.5

    def test_fit_error_keeps_current_result(self, grid, discovery_config):
        class NoFitRenderer(ScriptedRenderer):
            def fit_bounds(self, bbox, padding_px, max_zoom):
                raise RuntimeError("fitBounds rejected")

        renderer = NoFitRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid.point(0.5, 0.5))

        assert found.zoom == 13.5
        assert found.validated
        assert found.passes == 1


class TestIdentityResolution:

    def test_falls_through_to_osm_id(self, grid, discovery_config):
        fragment = grid.feature(0, 0, properties={"osm_id": 99})
        renderer = ScriptedRenderer({13.5: level(fragment)})
        renderer.zoom = 13.5
        controller = make_controller(renderer, discovery_config)

        building = rendered_from(fragment)
        working = controller.resolve_identity_filter(renderer, building)

        assert building.identity == 99
        assert working.kind == PROPERTY_OSM_ID_FILTER
        assert working.to_expression() == ["==", ["get", "osm_id"], 99]

    def test_no_identity_gives_no_filter(self, grid, discovery_config):
        renderer = ScriptedRenderer({})
        controller = make_controller(renderer, discovery_config)
        building = rendered_from(grid.feature(0, 0))
        assert controller.resolve_identity_filter(renderer, building) is None

    def test_direct_fallback_without_source(self, grid, discovery_config):
        feature = {
            "type": "Feature",
            "id": 5,
            "properties": {"name": "depot"},
            "geometry": {"type": "MultiPolygon", "coordinates": [[grid.ring(10, 0)], [grid.ring(0, 0)]]},
        }
        renderer = ScriptedRenderer({13.5: level(feature, source=None)})
        controller = make_controller(renderer, discovery_config)

        found = controller.discover(grid.point(0.5, 0.5))

        assert found.result.direct
        assert found.validated
        assert found.result.geometry == {"type": "Polygon", "coordinates": [grid.ring(0, 0)]}
        assert found.to_feature()["properties"] == {"name": "depot"}


class TestExpansion:

    def test_stops_after_max_passes(self, grid, discovery_config):
        engine = GrowingEngine(grid)
        renderer = ScriptedRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config, engine)

        found = controller.discover(grid.point(0.5, 0.5))

        assert len(renderer.fits) == discovery_config.max_passes
        assert found.passes == discovery_config.max_passes
        assert found.validated

    def test_converges_when_extent_is_stable(self, grid, discovery_config):
        engine = GrowingEngine(grid, grow=False)
        renderer = ScriptedRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config, engine)

        controller.discover(grid.point(0.5, 0.5))

        assert len(renderer.fits) == 1

    def test_guards_loosen_with_detected_extent(self, discovery_config):
        grid = Grid(size_m=100.0)
        engine = GrowingEngine(grid, grow=False)
        renderer = ScriptedRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config, engine)

        controller.discover(grid.point(0.5, 0.5))

        assert engine.guards[0] is None
        adaptive = engine.guards[1]
        assert adaptive.area_multiplier == 10.0
        # 100 m cell diagonal, doubled
        assert adaptive.max_distance_km == pytest.approx(0.2828, rel=0.02)

    def test_small_extent_keeps_default_distance(self, grid, discovery_config):
        engine = GrowingEngine(grid, grow=False)
        renderer = ScriptedRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config, engine)

        controller.discover(grid.point(0.5, 0.5))

        assert engine.guards[1].max_distance_km == 0.05

    def test_requery_picks_up_newly_loaded_fragments(self, grid_10m, discovery_config):
        cells = [grid_10m.feature(i, j, id=42) for i in range(2) for j in range(2)]

        def loaded(fit_count):
            # Only the seed cell is loaded until the viewport is fitted
            return cells if fit_count else cells[:1]

        renderer = ScriptedRenderer({13.5: {"rendered": rendered_from(cells[0]), "fragments": loaded}})
        controller = make_controller(renderer, discovery_config, ClusterMergeEngine())

        found = controller.discover(grid_10m.point(0.5, 0.5))

        assert found.validated
        assert sorted(found.result.members) == [0, 1, 2, 3]
        assert found.result.fragment_count == 4


class TestConcurrency:

    def test_reentrant_discover_rejected(self, grid, discovery_config):
        renderer = ScriptedRenderer({13.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config)
        rejected = []

        def reenter(zoom):
            assert controller.is_running
            try:
                controller.discover(grid.point(0.5, 0.5))
            except DiscoveryInProgress:
                rejected.append(zoom)

        renderer.on_move = reenter
        found = controller.discover(grid.point(0.5, 0.5))

        assert rejected == [13.5]
        assert found.validated
        assert not controller.is_running

    def test_cancel_returns_best_so_far(self, grid_10m, discovery_config):
        far = grid_10m.feature(5, 0, id=1)
        renderer = ScriptedRenderer({13.5: level(far), 15.5: level(grid_10m.feature(0, 0, id=2))})
        controller = make_controller(renderer, discovery_config)
        renderer.on_move = lambda zoom: controller.cancel()

        found = controller.discover(grid_10m.point(0.5, 0.5))

        assert renderer.moves == [13.5]
        assert renderer.fits == []
        assert found.zoom == 13.5
        assert not found.validated

    def test_cancel_without_candidate(self, grid, discovery_config):
        renderer = ScriptedRenderer({})
        controller = make_controller(renderer, discovery_config)
        renderer.on_move = lambda zoom: controller.cancel()

        with pytest.raises(DiscoveryCancelled):
            controller.discover(grid.point(0.5, 0.5))
        assert renderer.moves == [13.5]

    def test_cancel_does_not_carry_over(self, grid, discovery_config):
        renderer = ScriptedRenderer({15.5: level(grid.feature(0, 0, id=1))})
        controller = make_controller(renderer, discovery_config)
        renderer.on_move = lambda zoom: controller.cancel()

        with pytest.raises(DiscoveryCancelled):
            controller.discover(grid.point(0.5, 0.5))

        renderer.on_move = None
        found = controller.discover(grid.point(0.5, 0.5))
        assert found.zoom == 15.5


class TestValidation:

    def test_point_buffer(self, grid_10m, discovery_config):
        controller = make_controller(ScriptedRenderer({}), discovery_config)
        result = MergedResult(geometry=grid_10m.geometry(0, 0))

        assert controller.validate(result, grid_10m.point(0.5, 0.5))
        assert controller.validate(result, grid_10m.point(1.5, 0.5))
        assert not controller.validate(result, grid_10m.point(6.0, 0.5))
