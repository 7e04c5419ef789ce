"""
Link Rewriting
=============

Ordered, declarative rewrite rules that map internal item links to their
canonical public form. Rules are applied in a fixed order:

1. host literal: known internal mirror hostnames become the public host
2. prefix base: links under the protected origin base move to the public base
3. development override: localhost bases move to the public base

Every replacement targets the public base, which none of the patterns
match, so applying the rules twice gives the same link as applying them
once.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern
from urllib.parse import urlsplit

from ..config.settings import OriginSettings


@dataclass(frozen=True)
class RewriteRule:
    """One pattern → replacement rewrite."""
    name: str
    pattern: Pattern
    replacement: str

    def apply(self, link: str) -> str:
        return self.pattern.sub(self.replacement, link, count=1)


def _prefix_pattern(base: str) -> Pattern:
    """Match ``base`` at the start of a link, only up to a path boundary."""
    return re.compile(r"^" + re.escape(base) + r"(?=[/?#]|$)", re.IGNORECASE)


def host_literal_rule(host: str, public_base: str) -> RewriteRule:
    """Rewrite ``scheme://host[:port]`` to the public base."""
    pattern = re.compile(
        r"^https?://" + re.escape(host) + r"(?::\d+)?(?=[/?#]|$)", re.IGNORECASE
    )
    return RewriteRule(name=f"host:{host}", pattern=pattern, replacement=public_base)


def prefix_base_rule(base: str, public_base: str, name: str = "prefix") -> RewriteRule:
    return RewriteRule(name=f"{name}:{base}", pattern=_prefix_pattern(base), replacement=public_base)


def dev_override_rule(base: str, public_base: str) -> RewriteRule:
    """Rewrite a localhost base, with any port, to the public base."""
    pattern = re.compile(
        r"^" + re.escape(base) + r"(?::\d+)?(?=[/?#]|$)", re.IGNORECASE
    )
    return RewriteRule(name=f"dev:{base}", pattern=pattern, replacement=public_base)


class LinkRewriter:
    """Apply an ordered list of rewrite rules to item links."""

    def __init__(self, rules: Iterable[RewriteRule] = ()):
        self.rules: List[RewriteRule] = list(rules)

    @classmethod
    def from_origin(cls, origin: OriginSettings) -> "LinkRewriter":
        """Build the standard rule list; no public base means no rewriting."""
        public_base = origin.public_base_url
        if not public_base:
            return cls()

        public_host = (urlsplit(public_base).hostname or "").lower()
        rules: List[RewriteRule] = []

        for host in origin.mirror_hosts:
            if host != public_host:
                rules.append(host_literal_rule(host, public_base))

        # A base nested under the public base would keep matching its own output
        base = origin.base_url
        if base and not base.lower().startswith(public_base.lower()):
            rules.append(prefix_base_rule(base, public_base))

        for dev_base in origin.dev_base_urls:
            rule = dev_override_rule(dev_base, public_base)
            if not rule.pattern.match(public_base):
                rules.append(rule)

        return cls(rules)

    def rewrite(self, link: Optional[str]) -> Optional[str]:
        if not link:
            return link
        for rule in self.rules:
            link = rule.apply(link)
        return link
