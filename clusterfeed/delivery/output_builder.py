"""
Output Builder
=============

Maps a cluster's merged items to a single-channel RSS 2.0 document and
renders it to bytes. Rendering is a pure function of the document; writing
it to disk is atomic so an interrupted run never leaves a partial file.
"""

import os
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..config.settings import OutputSettings, get_settings
from ..models import ClusterResult, FeedItem
from ..utils.exceptions import ErrorCode, OutputError
from ..utils.validators import ContentValidator


# Published feeds are read by whatever serves the output directory
OUTPUT_MODE = 0o644


def format_rfc822(value: datetime) -> str:
    """RFC 822 date as used by RSS 2.0, e.g. ``Mon, 01 Jan 2024 00:00:00 GMT``."""
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


@dataclass(frozen=True)
class DocumentItem:
    title: str
    link: str
    pub_date: str
    guid: str
    description: str


@dataclass(frozen=True)
class FeedDocument:
    """Renderer-ready channel: every field is already display text."""
    title: str
    link: str
    description: str
    language: str
    items: List[DocumentItem] = field(default_factory=list)


class OutputBuilder:
    """Build FeedDocuments from cluster results."""

    def __init__(self, settings: Optional[OutputSettings] = None, clock=None):
        """Initialize output builder.

        Args:
            settings: Output settings (default from config)
            clock: Callable returning the current UTC datetime
        """
        self.settings = settings or get_settings().output
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def cluster_result(
        self, cluster_name: str, items: Sequence[FeedItem], title: Optional[str] = None
    ) -> ClusterResult:
        """Attach channel metadata to merged items."""
        return ClusterResult(
            title=title or self.settings.title_template.format(cluster=cluster_name),
            link=self.settings.channel_link,
            description=self.settings.channel_description,
            language=self.settings.language,
            items=list(items),
        )

    def build(self, result: ClusterResult) -> FeedDocument:
        """Map a ClusterResult to a FeedDocument.

        Undated items are stamped with the build time here. Sorting already
        happened with those items ranked oldest.
        """
        now = format_rfc822(self._clock())
        items = []

        for item in result.items:
            link = item.link or ""
            items.append(
                DocumentItem(
                    title=item.title or self.settings.fallback_title,
                    link=link,
                    pub_date=format_rfc822(item.pub_date) if item.pub_date else now,
                    guid=item.guid or link,
                    description=item.body or "",
                )
            )

        return FeedDocument(
            title=result.title,
            link=result.link,
            description=result.description,
            language=result.language,
            items=items,
        )


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    node = ET.SubElement(parent, tag)
    node.text = ContentValidator.strip_xml_invalid(value)
    return node


def render(document: FeedDocument) -> bytes:
    """Serialize a FeedDocument as RSS 2.0 XML.

    Characters XML 1.0 cannot carry (most C0 controls, lone surrogates) are
    dropped so the output always parses.
    """
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    _text(channel, "title", document.title)
    _text(channel, "link", document.link)
    _text(channel, "description", document.description)
    _text(channel, "language", document.language)

    for item in document.items:
        node = ET.SubElement(channel, "item")
        _text(node, "title", item.title)
        _text(node, "link", item.link)
        _text(node, "pubDate", item.pub_date)
        guid = _text(node, "guid", item.guid)
        if not item.guid.lower().startswith(("http://", "https://")):
            guid.set("isPermaLink", "false")
        _text(node, "description", item.description)

    body = ET.tostring(rss, encoding="utf-8")
    return b'<?xml version="1.0" encoding="UTF-8"?>\n' + body


def write_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temporary file in the same directory."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(tmp_name, OUTPUT_MODE)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise OutputError(
            f"Failed to write {path}: {e}",
            path=str(path),
            error_code=ErrorCode.OUTPUT_WRITE_FAILED,
        ) from e
