"""
Configuration settings for tileseam
"""

from dataclasses import dataclass, field
from typing import List


@dataclass
class MergeConfig:
    """Default cluster guards for the merge engine"""
    # Max cluster area = seed area x this
    area_multiplier: float = 3.0
    # 50 m - reject fragments whose centroid is farther than this from the seed centroid
    max_distance_km: float = 0.05
    # Vertices closer than this (degrees) are collapsed during cleanup
    duplicate_tolerance_deg: float = 1e-9
    # Relative slack on the area cap so equal-sized fragments at exactly the cap are admitted
    area_cap_tolerance: float = 1e-6


@dataclass
class DiscoveryConfig:
    """Cascading discovery configuration"""
    # Broadest to most precise
    zoom_cascade: List[float] = field(default_factory=lambda: [13.5, 15.5, 17.5, 19.5])
    max_passes: int = 6
    # Expansion stops once bbox diagonal grows less than this between passes
    bbox_growth_threshold: float = 0.10
    # Tolerance for point-in-polygon validation (meters)
    point_buffer_m: float = 10.0

    # Pixel box around the point for the rendered feature query (center +/- N)
    query_radius_px: int = 3

    # Viewport fitting during expansion
    fit_padding_px: int = 120
    fit_max_zoom: float = 17.5

    # Guard loosening once the detected extent is known
    adaptive_distance_factor: float = 2.0
    adaptive_area_multiplier: float = 10.0

    # Settlement
    settle_timeout_s: float = 10.0
    settle_delay_s: float = 0.15


@dataclass
class RendererConfig:
    """Snapshot renderer viewport settings"""
    width_px: int = 1280
    height_px: int = 900
    tile_size: int = 512
    # Buildings are not rendered below this zoom
    min_zoom: float = 0.0
    default_source: str = "snapshot"
    default_source_layer: str = "building"


@dataclass
class TileseamConfig:
    """Top-level configuration"""
    merge: MergeConfig = field(default_factory=MergeConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)

    # Delay between runs in batch mode (seconds)
    batch_delay_s: float = 5.0


# Global config instance
config = TileseamConfig()


def get_config() -> TileseamConfig:
    """Get global configuration"""
    return config


def validate_config(config: TileseamConfig) -> None:
    """
    Validate configuration values.
    Raises ValueError listing every invalid value.
    """
    errors = []

    merge = config.merge
    if merge.area_multiplier is None or merge.area_multiplier <= 0:
        errors.append(f"merge.area_multiplier must be positive, got {merge.area_multiplier}")
    if merge.max_distance_km is None or merge.max_distance_km <= 0:
        errors.append(f"merge.max_distance_km must be positive, got {merge.max_distance_km}")

    discovery = config.discovery
    if not discovery.zoom_cascade:
        errors.append("discovery.zoom_cascade must contain at least one zoom level")
    elif any(z < 0 or z > 24 for z in discovery.zoom_cascade):
        errors.append(f"discovery.zoom_cascade values must be between 0 and 24, got {discovery.zoom_cascade}")
    if discovery.max_passes < 1:
        errors.append(f"discovery.max_passes must be at least 1, got {discovery.max_passes}")
    if discovery.bbox_growth_threshold < 0:
        errors.append(f"discovery.bbox_growth_threshold must not be negative, got {discovery.bbox_growth_threshold}")
    if discovery.point_buffer_m < 0:
        errors.append(f"discovery.point_buffer_m must not be negative, got {discovery.point_buffer_m}")
    if discovery.settle_timeout_s <= 0:
        errors.append(f"discovery.settle_timeout_s must be positive, got {discovery.settle_timeout_s}")
    if discovery.settle_delay_s < 0:
        errors.append(f"discovery.settle_delay_s must not be negative, got {discovery.settle_delay_s}")

    renderer = config.renderer
    if renderer.width_px <= 0 or renderer.height_px <= 0:
        errors.append(f"renderer viewport must be positive, got {renderer.width_px}x{renderer.height_px}")
    if renderer.tile_size <= 0:
        errors.append(f"renderer.tile_size must be positive, got {renderer.tile_size}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
