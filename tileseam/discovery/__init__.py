"""
Cascading discovery module

Components:
- Renderer: Rendering boundary adapter interface and lifecycle handle
- Snapshot: In-memory renderer over a fragment snapshot
- Controller: Zoom cascade, viewport expansion and validation
"""

from .renderer import IdentityFilter, RenderedFeature, RendererAdapter, RendererHandle, identity_filters
from .snapshot import SnapshotRenderer, load_snapshot
from .controller import CascadingDiscoveryController, DiscoveryResult, DiscoveryState

__all__ = [
    "IdentityFilter",
    "RenderedFeature",
    "RendererAdapter",
    "RendererHandle",
    "identity_filters",
    "SnapshotRenderer",
    "load_snapshot",
    "CascadingDiscoveryController",
    "DiscoveryResult",
    "DiscoveryState",
]
