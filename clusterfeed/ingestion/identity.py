"""
Identity Rotator
===============

Request identities (header sets) and proxy selection. The pools are
immutable after construction and selection keeps no cursor, so one rotator
is shared safely by every concurrent fetch task.

Proxies and basic-auth credentials only ever apply to the protected origin.
"""

import base64
import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from ..config.settings import ClusterFeedSettings, get_settings
from ..utils.validators import URLValidator


_ACCEPT_FEED = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


def basic_authorization(username: str, password: str) -> str:
    """Value of an HTTP basic-auth ``Authorization`` header."""
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


@dataclass(frozen=True)
class Identity:
    """One header set presented to a feed server."""
    name: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


DEFAULT_IDENTITIES: Tuple[Identity, ...] = (
    Identity(
        name="chrome-windows",
        headers={
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
            ),
            "Accept": _ACCEPT_FEED,
            "Accept-Language": "en-US,en;q=0.9",
        },
    ),
    Identity(
        name="firefox-linux",
        headers={
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
            "Accept": _ACCEPT_FEED,
            "Accept-Language": "en-US,en;q=0.5",
        },
    ),
    Identity(
        name="safari-macos",
        headers={
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
                "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
            ),
            "Accept": _ACCEPT_FEED,
            "Accept-Language": "en-GB,en;q=0.9",
        },
    ),
    Identity(
        name="edge-windows",
        headers={
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0"
            ),
            "Accept": _ACCEPT_FEED,
            "Accept-Language": "en-US,en;q=0.8",
        },
    ),
    Identity(
        name="feed-bot",
        headers={
            "User-Agent": "Mozilla/5.0 (compatible; RSSBot/1.0; +https://example.com/rss)",
            "Accept": _ACCEPT_FEED,
        },
    ),
)


class IdentityRotator:
    """Pick identities at random and proxies by failover index."""

    def __init__(
        self,
        identities: Sequence[Identity] = DEFAULT_IDENTITIES,
        proxies: Sequence[str] = (),
        protected_base: Optional[str] = None,
        credentials: Optional[Tuple[str, str]] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize rotator.

        Args:
            identities: Identity pool, at least one entry
            proxies: Ordered proxy endpoints for the protected origin
            protected_base: Base URL of the protected origin, None disables scoping
            credentials: (username, password) for the protected origin
            rng: Random source, mainly for deterministic tests
        """
        if not identities:
            raise ValueError("identity pool must contain at least one identity")

        self.identities: Tuple[Identity, ...] = tuple(identities)
        self.proxies: Tuple[str, ...] = tuple(proxies)
        self.protected_base = protected_base
        self._protected_origin = URLValidator.origin_of(protected_base) if protected_base else None
        self._authorization = basic_authorization(*credentials) if credentials and protected_base else None
        self._rng = rng or random

    @classmethod
    def from_settings(cls, settings: Optional[ClusterFeedSettings] = None, **kwargs) -> "IdentityRotator":
        settings = settings or get_settings()
        origin = settings.origin
        credentials = (origin.username, origin.password) if origin.has_credentials else None
        return cls(
            proxies=settings.fetch.proxies if origin.enabled else (),
            protected_base=origin.base_url,
            credentials=credentials,
            **kwargs,
        )

    @property
    def proxy_count(self) -> int:
        return len(self.proxies)

    def pick_identity(self) -> Identity:
        """Uniform random choice from the identity pool."""
        return self._rng.choice(self.identities)

    def pick_proxy(self, index: int) -> Optional[str]:
        """Proxy for a failover index; None past the end means go direct."""
        if 0 <= index < len(self.proxies):
            return self.proxies[index]
        return None

    def can_fail_over(self, index: int) -> bool:
        """Whether a 403 at ``index`` can move on to another slot.

        Slots are the configured proxies followed by one direct slot.
        """
        return index < len(self.proxies)

    def is_protected(self, url: str) -> bool:
        """True only when ``url`` shares the protected origin's scheme, host and port."""
        if self._protected_origin is None:
            return False
        return URLValidator.origin_of(url) == self._protected_origin

    def request_options(self, url: str, proxy_index: int) -> dict:
        """Keyword arguments for one request attempt against ``url``."""
        identity = self.pick_identity()
        options = {"headers": dict(identity.headers)}

        if self.is_protected(url):
            proxy = self.pick_proxy(proxy_index)
            if proxy:
                options["proxy"] = proxy
            if self._authorization is not None:
                options["headers"]["Authorization"] = self._authorization

        return options
