"""
Feed Parser
==========

Adapter from raw feed bytes to ParsedFeed using feedparser. Handles RSS
0.9x/1.0/2.0 and Atom; malformed documents are accepted as long as
feedparser recovers at least one entry.
"""

import calendar
from datetime import datetime, timezone
from typing import Any, Optional

import feedparser

from ..models import FeedItem, ParsedFeed
from ..utils.exceptions import FeedParseError
from ..utils.logging import get_logger_for_component
from ..utils.validators import ContentValidator


logger = get_logger_for_component("parser")


def parse_feed(raw: bytes, feed_url: Optional[str] = None) -> ParsedFeed:
    """Parse a fetched document.

    Args:
        raw: Response body
        feed_url: Source URL, for error context

    Returns:
        ParsedFeed with normalized items

    Raises:
        FeedParseError: If the bytes are not a feed at all
    """
    parsed = feedparser.parse(raw)

    if parsed.bozo and not parsed.entries:
        # An empty but well-formed channel is fine; unparseable bytes are not
        if not parsed.feed or not parsed.version:
            raise FeedParseError(
                f"Not a feed: {parsed.get('bozo_exception', 'invalid XML structure')}",
                feed_url=feed_url,
            )

    if parsed.bozo:
        logger.info(
            f"Feed has parse warnings but contains entries: {feed_url}",
            extra={"bozo_exception": str(parsed.get("bozo_exception"))},
        )

    items = []
    for entry in parsed.entries:
        items.append(_entry_to_item(entry))

    return ParsedFeed(
        title=ContentValidator.clean_title(parsed.feed.get("title")),
        link=parsed.feed.get("link"),
        items=items,
    )


def _entry_to_item(entry: Any) -> FeedItem:
    return FeedItem(
        title=ContentValidator.clean_title(entry.get("title")),
        link=entry.get("link") or None,
        pub_date=_parse_date(entry),
        guid=entry.get("id") or None,
        content=_extract_content(entry),
        summary=entry.get("summary") or None,
    )


def _extract_content(entry: Any) -> Optional[str]:
    """Atom/content:encoded body, if any."""
    content = entry.get("content")
    if isinstance(content, list) and content:
        content = content[0]
    if isinstance(content, dict):
        content = content.get("value")
    if isinstance(content, str) and content.strip():
        return content
    return None


def _parse_date(entry: Any) -> Optional[datetime]:
    """Publication date in UTC, or None when the entry carries none."""
    for field_name in ("published_parsed", "updated_parsed", "created_parsed"):
        date_tuple = entry.get(field_name)
        if date_tuple:
            try:
                # feedparser normalizes to UTC struct_time
                return datetime.fromtimestamp(calendar.timegm(date_tuple), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                continue
    return None
