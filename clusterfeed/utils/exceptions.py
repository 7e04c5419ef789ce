"""
ClusterFeed Custom Exceptions
============================

Exception hierarchy for ClusterFeed with error codes, context information
and human-readable messages. Errors are absorbed at the lowest meaningful
level (source, then cluster, then process); these types carry enough
context to log the offending URL or file together with the cause.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"
    CONFIG_PARSE_ERROR = "C003"

    # Source resolution errors (S001-S099)
    SOURCE_TEMPLATE_UNSET = "S001"
    SOURCE_MALFORMED = "S002"
    SOURCE_BAD_SCHEME = "S003"

    # Feed fetch errors (F001-F099)
    FEED_INVALID_URL = "F001"
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_ACCESS_DENIED = "F005"
    FEED_NOT_FOUND = "F006"
    FEED_HTTP_ERROR = "F007"
    FEED_SERVER_ERROR = "F008"
    FEED_RETRIES_EXHAUSTED = "F009"

    # Cluster errors (K001-K099)
    CLUSTER_INPUT_MISSING = "K001"
    CLUSTER_INPUT_UNREADABLE = "K002"
    CLUSTER_NONE_DISCOVERED = "K004"

    # Output errors (O001-O099)
    OUTPUT_WRITE_FAILED = "O001"

    # Validation errors (V001-V099)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"

    # System errors (X001-X099)
    SYSTEM_PERMISSION_DENIED = "X001"
    SYSTEM_MEMORY_ERROR = "X002"
    UNEXPECTED = "X099"


class ClusterFeedError(Exception):
    """Base exception for all ClusterFeed errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize ClusterFeed error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: Human-readable error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _split_kwargs(kwargs: Dict[str, Any], *consumed: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in consumed}


class ConfigurationError(ClusterFeedError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error
            **kwargs: Additional arguments for ClusterFeedError
        """
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_split_kwargs(kwargs, "context", "error_code", "user_message"),
        )


class SourceResolutionError(ClusterFeedError):
    """A source line could not be turned into a fetchable URL.

    The error code tells a configuration gap (template variable unset) apart
    from a data-quality problem in the line itself.
    """

    def __init__(self, message: str, raw_line: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if raw_line is not None:
            context["raw_line"] = raw_line

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.SOURCE_MALFORMED),
            context=context,
            user_message=kwargs.get("user_message", f"Source dropped: {message}"),
            recoverable=kwargs.get("recoverable", False),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )

    @property
    def is_configuration_gap(self) -> bool:
        return self.error_code == ErrorCode.SOURCE_TEMPLATE_UNSET


class FeedError(ClusterFeedError):
    """Feed retrieval and parsing errors."""

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        """Initialize feed error.

        Args:
            message: Error message
            feed_url: Feed URL that caused the error
            **kwargs: Additional arguments for ClusterFeedError
        """
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FEED_NETWORK_ERROR),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Feed processing failed: {message}"
            ),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )
        self.feed_url = feed_url


class FeedFetchError(FeedError):
    """A single HTTP attempt against a feed failed."""

    def __init__(
        self,
        message: str,
        feed_url: Optional[str] = None,
        status: Optional[int] = None,
        proxy_index: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if status is not None:
            context["status"] = status
        if proxy_index is not None:
            context["proxy_index"] = proxy_index

        if "error_code" not in kwargs:
            kwargs["error_code"] = error_code_for_status(status)

        super().__init__(message, feed_url=feed_url, context=context, **kwargs)
        self.status = status
        self.proxy_index = proxy_index

    @property
    def is_blocking(self) -> bool:
        """True for HTTP 403, the signal that triggers proxy failover."""
        return self.status == 403


class FeedParseError(FeedError):
    """Fetched bytes could not be parsed into a feed."""

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FEED_PARSE_ERROR)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, feed_url=feed_url, **kwargs)


class ClusterError(ClusterFeedError):
    """Per-cluster failures (missing input, nothing to publish)."""

    def __init__(self, message: str, cluster: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if cluster:
            context["cluster"] = cluster

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CLUSTER_INPUT_MISSING),
            context=context,
            user_message=kwargs.get("user_message", f"Cluster skipped: {message}"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )
        self.cluster = cluster


class OutputError(ClusterFeedError):
    """Rendering or writing an output document failed."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if path:
            context["path"] = path

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.OUTPUT_WRITE_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Writing output failed"),
            **_split_kwargs(kwargs, "context", "error_code", "user_message"),
        )


class ValidationError(ClusterFeedError):
    """Data validation errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        """Initialize validation error.

        Args:
            message: Error message
            field_name: Field name that failed validation
            **kwargs: Additional arguments for ClusterFeedError
        """
        context = kwargs.get("context", {})
        if field_name:
            context["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.VALIDATION_INVALID_FORMAT),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Invalid {field_name or 'input'}: {message}"
            ),
            recoverable=kwargs.get("recoverable", False),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


def error_code_for_status(status: Optional[int]) -> ErrorCode:
    """Map an HTTP status (or None for transport failures) to an error code."""
    if status is None:
        return ErrorCode.FEED_NETWORK_ERROR
    if status in (401, 403):
        return ErrorCode.FEED_ACCESS_DENIED
    if status == 404:
        return ErrorCode.FEED_NOT_FOUND
    if status >= 500:
        return ErrorCode.FEED_SERVER_ERROR
    return ErrorCode.FEED_HTTP_ERROR


# Exception handling utilities


def handle_exception(
    exception: Exception,
    logger,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> ClusterFeedError:
    """Convert generic exceptions to ClusterFeed exceptions with proper logging.

    Args:
        exception: Original exception
        logger: Logger instance for error logging
        operation: Operation that was being performed
        context: Additional context information

    Returns:
        ClusterFeed exception with proper categorization
    """
    context = context or {}
    context["operation"] = operation
    context["original_exception_type"] = type(exception).__name__

    if isinstance(exception, ClusterFeedError):
        logger.error(f"Operation '{operation}' failed: {exception}", extra=exception.to_dict())
        return exception

    elif isinstance(exception, (ConnectionError, TimeoutError)):
        error = ClusterFeedError(
            message=f"Network error during {operation}: {str(exception)}",
            error_code=ErrorCode.FEED_NETWORK_ERROR,
            context=context,
            user_message="Network connection failed",
            recoverable=True,
        )

    elif isinstance(exception, PermissionError):
        error = ClusterFeedError(
            message=f"Permission denied during {operation}: {str(exception)}",
            error_code=ErrorCode.SYSTEM_PERMISSION_DENIED,
            context=context,
            user_message="Access denied",
            recoverable=False,
        )

    elif isinstance(exception, FileNotFoundError):
        error = ClusterError(
            message=f"Required file not found during {operation}: {str(exception)}",
            error_code=ErrorCode.CLUSTER_INPUT_MISSING,
            context=context,
        )

    elif isinstance(exception, MemoryError):
        error = ClusterFeedError(
            message=f"Memory exhausted during {operation}: {str(exception)}",
            error_code=ErrorCode.SYSTEM_MEMORY_ERROR,
            context=context,
            user_message="System resources exhausted",
            recoverable=True,
        )

    else:
        error = ClusterFeedError(
            message=f"Unexpected error during {operation}: {str(exception)}",
            error_code=ErrorCode.UNEXPECTED,
            context=context,
            user_message="An unexpected error occurred",
            recoverable=True,
        )

    logger.error(f"Operation '{operation}' failed: {error}", extra=error.to_dict())
    return error


def is_retryable_error(exception: ClusterFeedError) -> bool:
    """Check if an error is worth retrying.

    Every recoverable fetch failure qualifies, including 403 and 404: the
    source may be rate limiting or briefly misconfigured upstream.
    """
    if not exception.recoverable:
        return False

    retryable_codes = {
        ErrorCode.FEED_NETWORK_ERROR,
        ErrorCode.FEED_FETCH_TIMEOUT,
        ErrorCode.FEED_ACCESS_DENIED,
        ErrorCode.FEED_NOT_FOUND,
        ErrorCode.FEED_HTTP_ERROR,
        ErrorCode.FEED_SERVER_ERROR,
    }

    return exception.error_code in retryable_codes
