"""
Cluster merge module

- Models: Fragment, SeedInfo, Cluster, MergedResult, MergeGuards
- Engine: Seed selection, guarded expansion, union and canonicalization
"""

from .models import Fragment, SeedInfo, Cluster, MergedResult, MergeGuards
from .engine import ClusterMergeEngine

__all__ = [
    "Fragment",
    "SeedInfo",
    "Cluster",
    "MergedResult",
    "MergeGuards",
    "ClusterMergeEngine",
]
