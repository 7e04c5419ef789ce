"""
ClusterFeed Ingestion Module
===========================

Source resolution, request identity rotation, feed fetching and parsing.
"""

from .resolver import PlaceholderResolver
from .identity import IdentityRotator
from .fetcher import FetchExecutor, FetchResult
from .parser import parse_feed

__all__ = [
    'PlaceholderResolver',
    'IdentityRotator',
    'FetchExecutor',
    'FetchResult',
    'parse_feed',
]
