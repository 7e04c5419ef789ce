"""
Merge Engine
===========

Flattens the items of every successfully fetched source in a cluster,
rewrites their links to public form, decorates titles with provenance
labels and sorts the result newest first.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from ..config.settings import ClusterFeedSettings, get_settings
from ..models import FeedItem, ParsedFeed
from ..utils.logging import get_logger_for_component
from .rewrite import LinkRewriter


LABEL_FORMAT = "({label}) {title}"


def decorate_title(title: Optional[str], label: Optional[str], fallback: str) -> str:
    """Compose the displayed title: ``(Label) Title``, never empty."""
    title = (title or "").strip() or fallback
    if label:
        return LABEL_FORMAT.format(label=label, title=title)
    return title


def sort_newest_first(items: Iterable[FeedItem]) -> List[FeedItem]:
    """Stable sort by effective publish date, descending; undated items last."""
    return sorted(items, key=lambda item: item.effective_date, reverse=True)


def deduplicate(items: Iterable[FeedItem]) -> List[FeedItem]:
    """Keep the first occurrence of each guid, or of each link for items without one."""
    seen = set()
    unique = []
    for item in items:
        key = ("guid", item.guid) if item.guid else ("link", item.link) if item.link else None
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        unique.append(item)
    return unique


class MergeEngine:
    """Merge per-source feeds into one ordered item list."""

    def __init__(
        self,
        rewriter: Optional[LinkRewriter] = None,
        fallback_title: Optional[str] = None,
        dedupe: Optional[bool] = None,
        max_items: Optional[int] = None,
        settings: Optional[ClusterFeedSettings] = None,
        cluster: Optional[str] = None,
    ):
        """Initialize merge engine.

        Args:
            rewriter: Link rewriter (default built from origin settings)
            fallback_title: Title for untitled items (default from config)
            dedupe: Drop repeated guids/links across sources (default from config)
            max_items: Keep only the newest N items (default from config)
            settings: Explicit settings instead of the global instance
            cluster: Cluster name, used as logging context
        """
        if rewriter is None or fallback_title is None or dedupe is None:
            settings = settings or get_settings()
        self.rewriter = rewriter if rewriter is not None else LinkRewriter.from_origin(settings.origin)
        self.fallback_title = fallback_title or settings.output.fallback_title
        self.dedupe = dedupe if dedupe is not None else settings.output.deduplicate
        if max_items is None and settings is not None:
            max_items = settings.output.max_items
        self.max_items = max_items
        self.logger = get_logger_for_component("merge", cluster=cluster)

    def normalize(self, item: FeedItem, label: Optional[str]) -> FeedItem:
        """Tag an item with its source label, decorate its title and rewrite its link."""
        link = self.rewriter.rewrite(item.link)
        return item.model_copy(
            update={
                "title": decorate_title(item.title, label, self.fallback_title),
                "link": link,
                "guid": self.rewriter.rewrite(item.guid) if item.guid == item.link else item.guid,
                "source_label": label,
            }
        )

    def merge(self, per_source: Sequence[Tuple[ParsedFeed, Optional[str]]]) -> List[FeedItem]:
        """Flatten, normalize and sort items from every source.

        Args:
            per_source: (feed, label) pairs for the sources that were fetched

        Returns:
            Items ordered by effective publish date, newest first
        """
        flattened = [
            self.normalize(item, label)
            for feed, label in per_source
            for item in feed.items
        ]

        merged = sort_newest_first(flattened)

        if self.dedupe:
            before = len(merged)
            merged = deduplicate(merged)
            if before != len(merged):
                self.logger.info(f"Removed {before - len(merged)} duplicate items")

        if self.max_items is not None and len(merged) > self.max_items:
            self.logger.debug(f"Truncating {len(merged)} items to {self.max_items}")
            merged = merged[:self.max_items]

        self.logger.debug(f"Merged {len(merged)} items from {len(per_source)} sources")
        return merged
