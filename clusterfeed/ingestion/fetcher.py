"""
Feed Fetch Executor
==================

Fetches one feed URL with bounded retries, status-aware backoff and proxy
failover, then hands the body to the parser.

Per-URL state machine (all state is local to one task)::

    request ──ok──────────────────────────────▶ parse ─▶ ParsedFeed
       │
       ├─403, protected origin, slot left ─▶ proxy_index += 1, retry_count = 0, retry now
       ├─retryable error, retry_count < max ▶ sleep(delay), retry_count += 1, retry
       └─otherwise ────────────────────────▶ terminal failure (None)

The total number of requests per URL never exceeds
``(proxies + 1) * (max_retries + 1)``.
"""

import asyncio
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence
from urllib.parse import urljoin

import aiohttp
import certifi

from ..config.settings import ClusterFeedSettings, get_settings
from ..models import ParsedFeed, ResolvedSource
from ..recovery.retry_logic import AttemptLog, RetryAttempt, RetryPolicy
from ..utils.exceptions import (
    ErrorCode,
    FeedFetchError,
    FeedParseError,
    handle_exception,
    is_retryable_error,
)
from ..utils.logging import get_logger_for_component
from ..utils.validators import URLValidator
from .identity import IdentityRotator
from .parser import parse_feed


Parser = Callable[[bytes, Optional[str]], ParsedFeed]

MAX_REDIRECTS = 10
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


@dataclass
class FetchAttempt:
    """Transient retry state for one URL."""
    url: str
    retry_count: int = 0
    proxy_index: int = 0


@dataclass
class FetchResult:
    """Outcome of fetching one resolved source."""

    source: ResolvedSource
    feed: Optional[ParsedFeed] = None
    error: Optional[str] = None
    attempts: AttemptLog = field(default_factory=AttemptLog)
    fetch_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.feed is not None

    @property
    def item_count(self) -> int:
        return len(self.feed.items) if self.feed else 0


class FetchExecutor:
    """Retrieve feeds with retry, backoff and proxy failover."""

    def __init__(
        self,
        rotator: Optional[IdentityRotator] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        parser: Parser = parse_feed,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settings: Optional[ClusterFeedSettings] = None,
        cluster: Optional[str] = None,
    ):
        """Initialize fetch executor.

        Args:
            rotator: Identity/proxy source (default from config)
            policy: Retry policy (default from config)
            timeout: Per-request timeout in seconds (default from config)
            max_concurrent: Concurrent fetches in ``fetch_all`` (default from config)
            parser: Callable turning body bytes into a ParsedFeed
            sleep: Awaitable used between retries
            settings: Explicit settings instead of the global instance
            cluster: Cluster name, used as logging context
        """
        if rotator is None or policy is None or timeout is None or max_concurrent is None:
            settings = settings or get_settings()
        self.rotator = rotator or IdentityRotator.from_settings(settings)
        self.policy = policy or RetryPolicy.from_settings(settings.fetch)
        self.timeout = timeout or settings.fetch.request_timeout
        self.max_concurrent = max_concurrent or settings.fetch.parallel_fetches
        self.parser = parser
        self._sleep = sleep
        self.logger = get_logger_for_component("fetcher", cluster=cluster)

        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    @asynccontextmanager
    async def get_session(self):
        """Get configured aiohttp session.

        Headers are left per-request so each attempt carries its own identity.
        """
        connector = aiohttp.TCPConnector(
            ssl=self.ssl_context,
            limit=self.max_concurrent * 2,
            limit_per_host=4,
            enable_cleanup_closed=True,
        )

        async with aiohttp.ClientSession(connector=connector) as session:
            yield session

    async def fetch(self, session: aiohttp.ClientSession, url: str) -> Optional[ParsedFeed]:
        """Fetch and parse one URL; None on terminal failure."""
        result = await self.fetch_source(session, ResolvedSource(url=url))
        return result.feed

    async def fetch_source(
        self, session: aiohttp.ClientSession, source: ResolvedSource
    ) -> FetchResult:
        """Run the retry/failover state machine for one source.

        Never raises for fetch or parse failures: a terminal failure is a
        FetchResult without a feed.
        """
        url = source.url
        state = FetchAttempt(url=url)
        log = AttemptLog()
        protected = self.rotator.is_protected(url)
        budget = self.policy.attempt_budget(self.rotator.proxy_count if protected else 0)
        logger = self.logger.bind(source_url=url)

        while log.count < budget:
            try:
                body = await self._send(session, url, state.proxy_index)

            except FeedFetchError as e:
                attempt = RetryAttempt(
                    attempt_number=log.count + 1,
                    retry_count=state.retry_count,
                    proxy_index=state.proxy_index,
                    status=e.status,
                    error=str(e),
                )
                log.record(attempt)

                if e.is_blocking and protected and self.rotator.can_fail_over(state.proxy_index):
                    state.proxy_index += 1
                    state.retry_count = 0
                    logger.warning(
                        f"Blocked (403) fetching {url}, failing over to proxy slot {state.proxy_index}"
                    )
                    continue

                if is_retryable_error(e) and self.policy.can_retry(state.retry_count):
                    state.retry_count += 1
                    attempt.delay = self.policy.delay_for(state.retry_count)
                    logger.warning(
                        f"Attempt {attempt.attempt_number} failed for {url}: {e}. "
                        f"Retrying in {attempt.delay:.2f}s "
                        f"(retry {state.retry_count}/{self.policy.max_retries})"
                    )
                    await self._sleep(attempt.delay)
                    continue

                break

            log.record(
                RetryAttempt(
                    attempt_number=log.count + 1,
                    retry_count=state.retry_count,
                    proxy_index=state.proxy_index,
                    status=200,
                    error=None,
                )
            )

            try:
                feed = self.parser(body, url)
            except FeedParseError as e:
                logger.error(f"Feed parse failed for {url}: {e}", extra=e.to_dict())
                return FetchResult(source=source, error=str(e), attempts=log)

            logger.info(
                f"Fetched {len(feed.items)} items from {url} "
                f"in {log.count} attempt(s)"
            )
            return FetchResult(source=source, feed=feed, attempts=log)

        error = log.last_error or "no attempts made"
        logger.error(
            f"Giving up on {url} after {log.count} attempt(s): {error}",
            extra={"error_code": ErrorCode.FEED_RETRIES_EXHAUSTED.value, "attempts": log.count},
        )
        return FetchResult(source=source, error=error, attempts=log)

    async def fetch_all(
        self, session: aiohttp.ClientSession, sources: Sequence[ResolvedSource]
    ) -> List[FetchResult]:
        """Fetch sources concurrently and wait for every one of them.

        Results come back in source order, whatever order they finished in.
        """
        if not sources:
            return []

        self.logger.info(f"Starting fetch of {len(sources)} sources (max {self.max_concurrent} concurrent)")

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def fetch_with_semaphore(source: ResolvedSource) -> FetchResult:
            async with semaphore:
                try:
                    return await self.fetch_source(session, source)
                except Exception as e:
                    error = handle_exception(
                        e, self.logger, "fetch_source", context={"feed_url": source.url}
                    )
                    return FetchResult(source=source, error=str(error))

        results = await asyncio.gather(*(fetch_with_semaphore(s) for s in sources))

        successful = sum(1 for r in results if r.success)
        total_items = sum(r.item_count for r in results)
        self.logger.info(
            f"Fetch complete: {successful}/{len(results)} sources successful, "
            f"{total_items} total items"
        )

        return list(results)

    async def _send(self, session: aiohttp.ClientSession, url: str, proxy_index: int) -> bytes:
        """Issue a GET, following redirects hop by hop, and return the body.

        Request options are chosen again for every hop, so a redirect away
        from the protected origin never carries its proxy or credentials.

        Raises:
            FeedFetchError: On HTTP status >= 400, timeout, transport error
                or an unusable redirect
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        target = url

        try:
            for _ in range(MAX_REDIRECTS + 1):
                options = self.rotator.request_options(target, proxy_index)
                async with session.get(
                    target, timeout=timeout, allow_redirects=False, **options
                ) as response:
                    location = response.headers.get("Location")
                    if response.status in REDIRECT_STATUSES and location:
                        target = self._redirect_target(url, target, location)
                        continue
                    if response.status >= 400:
                        raise FeedFetchError(
                            f"HTTP {response.status}: {response.reason}",
                            feed_url=url,
                            status=response.status,
                        )
                    return await response.read()

        except asyncio.TimeoutError as e:
            raise FeedFetchError(
                f"Request timeout after {self.timeout}s",
                feed_url=url,
                error_code=ErrorCode.FEED_FETCH_TIMEOUT,
            ) from e

        except aiohttp.ClientError as e:
            raise FeedFetchError(f"Network error: {e}", feed_url=url) from e

        raise FeedFetchError(
            f"More than {MAX_REDIRECTS} redirects",
            feed_url=url,
            error_code=ErrorCode.FEED_INVALID_URL,
            recoverable=False,
        )

    def _redirect_target(self, url: str, current: str, location: str) -> str:
        target = urljoin(current, location)
        if not URLValidator.has_http_scheme(target):
            raise FeedFetchError(
                f"Redirect to non-http(s) location: {target}",
                feed_url=url,
                error_code=ErrorCode.FEED_INVALID_URL,
                recoverable=False,
            )
        self.logger.debug(f"Following redirect {current} -> {target}")
        return target
