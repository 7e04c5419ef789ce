"""
ClusterFeed Processing Module
============================

Link rewriting, merging and the per-cluster pipeline.
"""

from .rewrite import LinkRewriter, RewriteRule
from .merge import MergeEngine
from .pipeline import ClusterOrchestrator, discover_clusters

__all__ = [
    'LinkRewriter',
    'RewriteRule',
    'MergeEngine',
    'ClusterOrchestrator',
    'discover_clusters',
]
