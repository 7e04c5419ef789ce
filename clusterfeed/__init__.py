"""
ClusterFeed - Feed Cluster Aggregator
====================================

Merges many remote syndication feeds into one normalized, time-ordered
RSS feed per cluster.

Main Components:
- Ingestion: source resolution, identity/proxy rotation, resilient fetching
- Processing: link rewriting, merging, cluster orchestration
- Delivery: RSS 2.0 document building and atomic output
- Configuration: environment variables with Pydantic validation
"""

__version__ = "1.0.0"
__description__ = "Merge many syndication feeds into one feed per cluster"

from .config.settings import get_settings
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import ClusterFeedError

__all__ = [
    "get_settings",
    "configure_application_logging",
    "get_logger_for_component",
    "ClusterFeedError",
]
