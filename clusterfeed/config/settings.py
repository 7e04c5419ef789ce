"""
ClusterFeed Configuration System
===============================

Configuration management with environment variables and Pydantic models.
Environment variables override Field defaults, e.g.
``CLUSTERFEED_ORIGIN__BASE_URL`` or ``CLUSTERFEED_FETCH__MAX_RETRIES``.

Every option is absent-by-default. Without ``origin.base_url`` the protected
origin does not exist: templated source lines cannot resolve, and proxies and
basic-auth are never applied.
"""

from pathlib import Path
from typing import List, Dict, Optional
from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryStrategyName(str, Enum):
    """Delay schedules between transient-error retries."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


def _strip_slash(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v.rstrip("/") or None


class OriginSettings(BaseModel):
    """Protected (internally operated) origin and public rewrite targets."""
    base_url: Optional[str] = Field(default=None, description="Protected origin base URL, substituted for {{BASE_URL}}")
    username: Optional[str] = Field(default=None, description="Basic-auth username for the protected origin")
    password: Optional[str] = Field(default=None, description="Basic-auth password for the protected origin")
    api_key: Optional[str] = Field(default=None, description="Shared secret injected as a query parameter")
    api_key_param: str = Field(default="key", min_length=1, description="Query parameter name carrying the secret")
    api_suffix: str = Field(default="rss", description="Path segment appended to templated URLs")
    public_base_url: Optional[str] = Field(default=None, description="Canonical public base that internal links are rewritten to")
    mirror_hosts: List[str] = Field(default_factory=list, description="Internal mirror hostnames rewritten to the public host")
    dev_base_urls: List[str] = Field(
        default_factory=lambda: ["http://localhost", "http://127.0.0.1"],
        description="Local development bases rewritten to the public base",
    )
    templates: Dict[str, str] = Field(default_factory=dict, description="Extra {{NAME}} template variables")

    @field_validator("base_url", "public_base_url")
    @classmethod
    def validate_base(cls, v):
        """Base URLs must be absolute HTTP(S) URLs without a trailing slash."""
        v = _strip_slash(v)
        if v is None:
            return v
        parts = urlsplit(v)
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            raise ValueError(f"must be an absolute http(s) URL, got {v!r}")
        return v

    @field_validator("api_suffix")
    @classmethod
    def validate_suffix(cls, v):
        return v.strip().strip("/")

    @field_validator("mirror_hosts")
    @classmethod
    def validate_hosts(cls, v):
        return [h.strip().lower() for h in v if h and h.strip()]

    @field_validator("dev_base_urls")
    @classmethod
    def validate_dev_bases(cls, v):
        return [b for b in (_strip_slash(x) for x in v) if b]

    @property
    def enabled(self) -> bool:
        """Whether a protected origin is configured at all."""
        return self.base_url is not None

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) and self.password is not None

    def template_variables(self) -> Dict[str, Optional[str]]:
        """Variables available to {{NAME}} tokens in source lines.

        Templated lines target the protected origin, so none resolve until a
        base URL is configured.
        """
        if not self.enabled:
            return {}
        variables: Dict[str, Optional[str]] = dict(self.templates)
        variables["BASE_URL"] = self.base_url
        return variables


class FetchSettings(BaseModel):
    """Fetch executor configuration."""
    max_retries: int = Field(default=2, ge=0, le=20, description="Transient-error retries per proxy slot")
    retry_delay: float = Field(default=2.0, ge=0.0, le=600.0, description="Seconds to wait before a retry")
    retry_strategy: RetryStrategyName = Field(default=RetryStrategyName.FIXED, description="Delay schedule between retries")
    max_retry_delay: float = Field(default=60.0, ge=0.0, description="Upper bound for computed retry delays")
    retry_jitter: bool = Field(default=False, description="Randomize each retry delay by up to 25%")
    request_timeout: float = Field(default=20.0, gt=0.0, le=600.0, description="Per-request timeout in seconds")
    parallel_fetches: int = Field(default=6, ge=1, le=32, description="Concurrent fetches within one cluster")
    proxies: List[str] = Field(default_factory=list, description="Ordered proxy endpoints for the protected origin")

    @field_validator("proxies")
    @classmethod
    def validate_proxies(cls, v):
        """Proxy endpoints must be absolute URLs."""
        cleaned = []
        for proxy in v:
            proxy = proxy.strip()
            if not proxy:
                continue
            parts = urlsplit(proxy)
            if not parts.scheme or not parts.netloc:
                raise ValueError(f"proxy endpoint must be an absolute URL, got {proxy!r}")
            cleaned.append(proxy)
        return cleaned


class OutputSettings(BaseModel):
    """Cluster input/output layout and channel defaults."""
    input_dir: str = Field(default="clusters", description="Directory holding one source list per cluster")
    output_dir: str = Field(default="output", description="Directory receiving one RSS document per cluster")
    titles_dir: Optional[str] = Field(default=None, description="Directory of optional channel-title override files")
    input_suffix: str = Field(default=".txt", description="File suffix identifying source lists")
    channel_link: str = Field(default="https://example.com", description="Channel-level link")
    channel_description: str = Field(default="RSS feed merged from sources", description="Channel-level description")
    language: str = Field(default="en", description="Channel language")
    title_template: str = Field(default="Merged Feed from {cluster}", description="Channel title when no override exists")
    fallback_title: str = Field(default="Untitled", min_length=1, description="Item title used when a source omits one")
    max_items: Optional[int] = Field(default=None, ge=1, description="Cap on items per output document")
    deduplicate: bool = Field(default=False, description="Drop repeated items across sources (by guid, then link)")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging on the console")
    console_logging: bool = Field(default=True, description="Enable console logging")


class ClusterFeedSettings(BaseSettings):
    """Main application settings."""

    origin: OriginSettings = Field(default_factory=OriginSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="ClusterFeed", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "CLUSTERFEED_",
        "extra": "ignore",
    }

    def validate_configuration(self) -> List[str]:
        """Validate cross-field consistency.

        Returns:
            List of non-fatal warnings

        Raises:
            ConfigurationError: If the configuration cannot work at all
        """
        errors = []
        warnings = []

        if not self.origin.enabled:
            if self.origin.has_credentials:
                warnings.append("Basic-auth credentials set without origin.base_url; they will never be sent")
            if self.fetch.proxies:
                warnings.append("Proxies set without origin.base_url; they will never be used")
            if self.origin.api_key:
                warnings.append("API key set without origin.base_url; templated sources cannot resolve")
        elif self.origin.username and self.origin.password is None:
            warnings.append("origin.username set without origin.password; basic-auth disabled")

        if self.fetch.retry_delay > self.fetch.max_retry_delay:
            errors.append("fetch.retry_delay exceeds fetch.max_retry_delay")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID
            )

        return warnings

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value

    def masked(self) -> Dict[str, str]:
        """Flat view of the effective configuration with secrets hidden."""
        def mask(value: Optional[str]) -> str:
            if not value:
                return "-"
            return "****"

        return {
            "origin.base_url": self.origin.base_url or "-",
            "origin.username": self.origin.username or "-",
            "origin.password": mask(self.origin.password),
            "origin.api_key": mask(self.origin.api_key),
            "origin.public_base_url": self.origin.public_base_url or "-",
            "origin.mirror_hosts": ", ".join(self.origin.mirror_hosts) or "-",
            "fetch.max_retries": str(self.fetch.max_retries),
            "fetch.retry_delay": f"{self.fetch.retry_delay}s ({self.fetch.retry_strategy.value})",
            "fetch.request_timeout": f"{self.fetch.request_timeout}s",
            "fetch.parallel_fetches": str(self.fetch.parallel_fetches),
            "fetch.proxies": str(len(self.fetch.proxies)),
            "output.input_dir": self.output.input_dir,
            "output.output_dir": self.output.output_dir,
            "output.titles_dir": self.output.titles_dir or "-",
            "output.deduplicate": str(self.output.deduplicate),
        }


def load_settings() -> ClusterFeedSettings:
    """Load settings from environment variables and defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = ClusterFeedSettings()
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_PARSE_ERROR
        ) from e


_settings: Optional[ClusterFeedSettings] = None


def get_settings(reload: bool = False) -> ClusterFeedSettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings


