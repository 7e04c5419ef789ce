"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for ClusterFeed tests. Nothing here
touches the network: HTTP is served by an in-memory fake session.
"""

import os
import sys
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Dict, List, Optional, Union
from xml.sax.saxutils import escape

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep the developer's environment out of the tests
for _name in list(os.environ):
    if _name.startswith("CLUSTERFEED_"):
        del os.environ[_name]
os.environ["CLUSTERFEED_LOGGING__CONSOLE_LOGGING"] = "false"


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def make_settings():
    """Factory for explicit settings objects (never reads the global singleton)."""
    from clusterfeed.config.settings import (
        ClusterFeedSettings,
        FetchSettings,
        OriginSettings,
        OutputSettings,
    )

    def factory(origin=None, fetch=None, output=None) -> ClusterFeedSettings:
        return ClusterFeedSettings(
            origin=OriginSettings(**(origin or {})),
            fetch=FetchSettings(**{"retry_delay": 0.0, **(fetch or {})}),
            output=OutputSettings(**(output or {})),
        )

    return factory


@pytest.fixture
def protected_settings(make_settings):
    """Settings with a protected origin, credentials, proxies and a public base."""
    return make_settings(
        origin={
            "base_url": "https://mirror.internal:8443",
            "username": "reader",
            "password": "s3cret",
            "api_key": "abc123",
            "public_base_url": "https://news.example.com",
            "mirror_hosts": ["mirror.internal", "rss-mirror.lan"],
        },
        fetch={"max_retries": 2, "proxies": ["http://proxy-a:3128", "http://proxy-b:3128"]},
    )


# ============================================================================
# Fake HTTP
# ============================================================================


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse as an async context manager."""

    def __init__(self, status: int = 200, body: bytes = b"", reason: str = "", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self.body = body
        self.headers = dict(headers or {})
        self.reason = reason or {200: "OK", 302: "Found", 403: "Forbidden", 404: "Not Found", 500: "Internal Server Error"}.get(status, "")

    async def read(self) -> bytes:
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Serve scripted responses per URL and record every request.

    Each URL maps to a list of responses consumed in order; the last one
    repeats. A response may be a FakeResponse, an exception instance
    (raised when the request is made) or raw bytes (served as 200).
    """

    def __init__(self, routes: Optional[Dict[str, List[Union[FakeResponse, BaseException, bytes]]]] = None):
        self.routes = {url: list(responses) for url, responses in (routes or {}).items()}
        self.calls: List[tuple] = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        responses = self.routes.get(url)
        if not responses:
            return FakeResponse(404)
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, bytes):
            return FakeResponse(200, response)
        return response

    def calls_for(self, url: str) -> List[dict]:
        return [kwargs for called, kwargs in self.calls if called == url]


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


# ============================================================================
# Sample feeds
# ============================================================================


def build_rss(items: List[dict], title: str = "Sample Feed") -> bytes:
    """Render a small RSS 2.0 document; item keys: title, link, date, guid, description."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0"><channel>',
        f"<title>{escape(title)}</title>",
        "<link>https://example.org</link>",
        "<description>Sample</description>",
    ]
    for item in items:
        parts.append("<item>")
        if item.get("title") is not None:
            parts.append(f"<title>{escape(item['title'])}</title>")
        if item.get("link"):
            parts.append(f"<link>{escape(item['link'])}</link>")
        if item.get("date"):
            date = item["date"]
            if isinstance(date, str):
                date = datetime.fromisoformat(date).replace(tzinfo=timezone.utc)
            parts.append(f"<pubDate>{format_datetime(date, usegmt=True)}</pubDate>")
        if item.get("guid"):
            parts.append(f"<guid>{escape(item['guid'])}</guid>")
        if item.get("description"):
            parts.append(f"<description>{escape(item['description'])}</description>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "\n".join(parts).encode("utf-8")


@pytest.fixture
def rss():
    """Builder for RSS 2.0 bodies."""
    return build_rss


SAMPLE_ATOM_FEED = b'''<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Test Atom Feed</title>
    <link href="http://example.com"/>
    <id>http://example.com/feed</id>
    <updated>2024-09-07T00:00:01Z</updated>
    <entry>
        <title>Atom Test Article</title>
        <link href="http://example.com/atom-article"/>
        <id>urn:uuid:atom-article-1</id>
        <updated>2024-09-05T12:00:00Z</updated>
        <published>2024-09-05T12:00:00Z</published>
        <summary>This is an Atom article summary</summary>
        <content type="html">&lt;p&gt;Full content with &lt;em&gt;formatting&lt;/em&gt;&lt;/p&gt;</content>
    </entry>
</feed>'''


@pytest.fixture
def atom_feed() -> bytes:
    return SAMPLE_ATOM_FEED
