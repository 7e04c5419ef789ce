"""
Placeholder Resolver
===================

Turns one raw source line into a concrete fetch target.

Line grammar::

    [(Label)] URL
    URL [(Label)]

where URL may contain ``{{NAME}}`` template tokens. Templated URLs point at
the protected origin: after substitution they lose any trailing slash and,
unless they already carry the API-key parameter, gain the configured path
suffix plus ``<api_key_param>=<secret>``.
"""

import re
from collections import Counter
from typing import Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..config.settings import OriginSettings, get_settings
from ..models import ResolvedSource, SourceSpec
from ..utils.exceptions import ErrorCode, SourceResolutionError, ValidationError
from ..utils.logging import get_logger_for_component
from ..utils.validators import ContentValidator, URLValidator


TEMPLATE_TOKEN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Labels sit in parentheses either before the URL or after it, separated by
# whitespace so that parentheses inside URLs are left alone. A label may hold
# one level of nested parentheses, e.g. "(Reuters (UK))".
_LABEL = r"((?:[^()]|\([^()]*\))*)"
_PREFIX_LABEL = re.compile(r"^\(" + _LABEL + r"\)\s*(\S+)$")
_SUFFIX_LABEL = re.compile(r"^(\S+)\s+\(" + _LABEL + r"\)$")
_BOTH_LABELS = re.compile(r"^\((?:[^()]|\([^()]*\))*\)\s*\S+\s+\((?:[^()]|\([^()]*\))*\)$")


def split_label(line: str) -> Tuple[str, Optional[str]]:
    """Separate the URL part of a source line from its provenance label.

    Raises:
        SourceResolutionError: If the line carries both a prefix and a suffix
            label, or is not a single URL token.
    """
    line = line.strip()

    if _BOTH_LABELS.match(line):
        raise SourceResolutionError(
            "Line carries both a prefix and a suffix label",
            raw_line=line,
            error_code=ErrorCode.SOURCE_MALFORMED,
        )

    match = _PREFIX_LABEL.match(line)
    if match:
        return match.group(2), ContentValidator.clean_label(match.group(1))

    match = _SUFFIX_LABEL.match(line)
    if match:
        return match.group(1), ContentValidator.clean_label(match.group(2))

    if not line or any(ch.isspace() for ch in line):
        raise SourceResolutionError(
            "Line is not a single URL with an optional (Label)",
            raw_line=line,
            error_code=ErrorCode.SOURCE_MALFORMED,
        )

    return line, None


class PlaceholderResolver:
    """Resolve source lines against template variables and origin settings."""

    def __init__(
        self,
        origin: Optional[OriginSettings] = None,
        variables: Optional[Mapping[str, Optional[str]]] = None,
        cluster: Optional[str] = None,
    ):
        """Initialize resolver.

        Args:
            origin: Protected-origin settings (default from config)
            variables: Template variables; defaults to ``origin.template_variables()``
            cluster: Cluster name, used as logging context
        """
        self.origin = origin or get_settings().origin
        self.variables = dict(variables) if variables is not None else self.origin.template_variables()
        self.logger = get_logger_for_component("resolver", cluster=cluster)
        self.rejections: Counter = Counter()

    def resolve(self, source: SourceSpec) -> Optional[ResolvedSource]:
        """Resolve a source line, returning None when it must be dropped.

        Configuration gaps and malformed lines are logged with distinct error
        codes and counted in ``rejections``; neither is fatal.
        """
        try:
            return self.resolve_strict(source.raw_line)
        except SourceResolutionError as e:
            self.rejections[e.error_code] += 1
            where = f" (line {source.line_number})" if source.line_number else ""
            if e.is_configuration_gap:
                self.logger.warning(
                    f"Configuration gap, dropping source{where}: {e}",
                    extra=e.to_dict(),
                )
            else:
                self.logger.warning(
                    f"Malformed source line{where} dropped: {e}",
                    extra=e.to_dict(),
                )
            return None

    def resolve_all(self, sources: Iterable[SourceSpec]) -> List[ResolvedSource]:
        resolved = []
        for source in sources:
            result = self.resolve(source)
            if result is not None:
                resolved.append(result)
        return resolved

    def resolve_strict(self, raw_line: str) -> ResolvedSource:
        """Resolve a source line or raise SourceResolutionError."""
        url, label = split_label(raw_line)

        if TEMPLATE_TOKEN.search(url):
            url = self._expand(url, raw_line)

        try:
            url = URLValidator.validate_source_url(url)
        except ValidationError as e:
            raise SourceResolutionError(
                f"Resolved URL is not http(s): {url}",
                raw_line=raw_line,
                error_code=ErrorCode.SOURCE_BAD_SCHEME,
            ) from e

        return ResolvedSource(url=url, label=label)

    def _expand(self, url: str, raw_line: str) -> str:
        missing = []

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            value = self.variables.get(name)
            if not value:
                missing.append(name)
                return match.group(0)
            return value

        expanded = TEMPLATE_TOKEN.sub(substitute, url)

        if missing:
            raise SourceResolutionError(
                f"Template variable(s) not set: {', '.join(sorted(set(missing)))}",
                raw_line=raw_line,
                error_code=ErrorCode.SOURCE_TEMPLATE_UNSET,
                context={"variables": sorted(set(missing))},
            )

        return self.inject_api_key(expanded)

    def inject_api_key(self, url: str) -> str:
        """Normalize a templated URL and append the suffix and key parameter.

        URLs that already carry the key parameter are only stripped of their
        trailing slash.
        """
        parts = urlsplit(url.strip())
        path = parts.path.rstrip("/")
        query = parse_qsl(parts.query, keep_blank_values=True)
        param = self.origin.api_key_param

        if any(name == param for name, _ in query):
            return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))

        suffix = self.origin.api_suffix
        if suffix and not path.endswith("/" + suffix):
            path = f"{path}/{suffix}"

        query_string = parts.query
        if self.origin.api_key:
            # Appended as-is so the existing parameters keep their encoding
            extra = urlencode({param: self.origin.api_key})
            query_string = f"{query_string}&{extra}" if query_string else extra
        else:
            self.logger.debug(f"No API key configured, leaving {url} without '{param}'")

        return urlunsplit((parts.scheme, parts.netloc, path, query_string, parts.fragment))


def read_source_lines(text: str) -> List[SourceSpec]:
    """Split a source list into SourceSpecs, skipping blank and comment lines."""
    sources = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        sources.append(SourceSpec(raw_line=stripped, line_number=number))
    return sources
