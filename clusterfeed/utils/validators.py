"""
ClusterFeed Input Validators
===========================

URL and text validation helpers used while resolving source lines and
normalizing feed items.
"""

import re
from typing import Optional
from urllib.parse import urlsplit

from .exceptions import ValidationError, ErrorCode


class URLValidator:
    """URL validation utilities."""

    ALLOWED_SCHEMES = {'http', 'https'}

    @classmethod
    def has_http_scheme(cls, url: str) -> bool:
        """Check that a URL begins with an http:// or https:// scheme."""
        if not url or not isinstance(url, str):
            return False
        return url.lower().startswith(('http://', 'https://'))

    @classmethod
    def validate_source_url(cls, url: str) -> str:
        """Validate a resolved source URL.

        Args:
            url: URL to validate

        Returns:
            The URL, stripped of surrounding whitespace

        Raises:
            ValidationError: If URL is not an absolute http(s) URL
        """
        if not url or not isinstance(url, str):
            raise ValidationError(
                "URL is required and must be a string",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="url"
            )

        url = url.strip()

        if not cls.has_http_scheme(url):
            raise ValidationError(
                f"URL scheme must be {' or '.join(sorted(cls.ALLOWED_SCHEMES))}",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        if not urlsplit(url).netloc:
            raise ValidationError(
                "URL must include a hostname",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
                field_name="url"
            )

        return url

    @classmethod
    def origin_of(cls, url: str) -> Optional[tuple]:
        """Return (scheme, host, port) for comparing origins, or None."""
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError:
            return None
        if not parts.hostname:
            return None
        scheme = parts.scheme.lower()
        if port is None:
            port = 443 if scheme == 'https' else 80
        return scheme, parts.hostname.lower(), port


class ContentValidator:
    """Text sanitization utilities."""

    MAX_LABEL_LENGTH = 100

    # Code points outside the XML 1.0 Char production
    XML_INVALID = re.compile("[^\x09\x0a\x0d\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

    @classmethod
    def clean_label(cls, label: Optional[str]) -> Optional[str]:
        """Normalize a provenance label; empty labels become None."""
        if label is None:
            return None
        label = cls.sanitize_text(label)
        if not label:
            return None
        return label[:cls.MAX_LABEL_LENGTH]

    @classmethod
    def clean_title(cls, title: Optional[str]) -> Optional[str]:
        """Collapse whitespace in a title; blank titles become None."""
        if not title or not isinstance(title, str):
            return None
        return cls.sanitize_text(title) or None

    @classmethod
    def sanitize_text(cls, text: str) -> str:
        """Sanitize text content."""
        # Remove control characters
        text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)

        # Normalize whitespace
        text = re.sub(r'\s+', ' ', text)

        return text.strip()

    @classmethod
    def strip_xml_invalid(cls, text: Optional[str]) -> str:
        """Remove characters that cannot appear in an XML 1.0 document."""
        if not text:
            return ""
        return cls.XML_INVALID.sub("", text)
