"""
Unit Tests for the Fetch Executor
=================================

Retry bounds, 403 proxy failover and failure containment, driven by an
in-memory session.
"""

import asyncio

import aiohttp
import pytest

from clusterfeed.ingestion.fetcher import FetchExecutor
from clusterfeed.models import ResolvedSource


PUBLIC_URL = "https://a.example/rss"
PROTECTED_URL = "https://mirror.internal:8443/feed/rss?key=abc123"


class SleepRecorder:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def sample_body(rss):
    return rss([{"title": "One", "link": "https://a.example/1", "date": "2024-01-01"}])


class TestFetchSource:
    """Single-URL state machine."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, make_settings, fake_session, sample_body, sleeper):
        executor = FetchExecutor(settings=make_settings(), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [sample_body]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert result.success
        assert result.item_count == 1
        assert result.attempts.count == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_fetch_returns_parsed_feed(self, make_settings, fake_session, sample_body, sleeper):
        executor = FetchExecutor(settings=make_settings(), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [sample_body]})

        feed = await executor.fetch(session, PUBLIC_URL)

        assert feed.items[0].title == "One"

    @pytest.mark.asyncio
    async def test_persistent_error_makes_exactly_n_plus_one_attempts(
        self, make_settings, fake_session, fake_response, sleeper
    ):
        settings = make_settings(fetch={"max_retries": 3, "retry_delay": 0.5})
        executor = FetchExecutor(settings=settings, sleep=sleeper)
        session = fake_session({PUBLIC_URL: [fake_response(500)]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert not result.success
        assert len(session.calls_for(PUBLIC_URL)) == 4
        assert sleeper.delays == [0.5, 0.5, 0.5]
        assert "HTTP 500" in result.error

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(
        self, make_settings, fake_session, fake_response, sleeper
    ):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 0}), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [fake_response(503)]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert not result.success
        assert len(session.calls) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_errors(
        self, make_settings, fake_session, fake_response, sample_body, sleeper
    ):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 2}), sleep=sleeper)
        session = fake_session(
            {PUBLIC_URL: [fake_response(500), fake_response(404), sample_body]}
        )

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert result.success
        assert result.attempts.count == 3
        assert len(sleeper.delays) == 2

    @pytest.mark.asyncio
    async def test_backoff_schedule_is_applied(
        self, make_settings, fake_session, fake_response, sleeper
    ):
        settings = make_settings(
            fetch={"max_retries": 3, "retry_delay": 1.0, "retry_strategy": "exponential"}
        )
        executor = FetchExecutor(settings=settings, sleep=sleeper)
        session = fake_session({PUBLIC_URL: [fake_response(502)]})

        await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert sleeper.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, make_settings, fake_session, sample_body, sleeper):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 1}), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [asyncio.TimeoutError(), sample_body]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert result.success
        assert result.attempts.attempts[0].error.startswith("[F002]")

    @pytest.mark.asyncio
    async def test_connection_error_exhausts_retries(self, make_settings, fake_session, sleeper):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 1}), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [aiohttp.ClientConnectionError("refused")]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert not result.success
        assert len(session.calls) == 2
        assert "Network error" in result.error

    @pytest.mark.asyncio
    async def test_parse_failure_is_not_retried(self, make_settings, fake_session, sleeper):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 3}), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [b"this is plainly not a feed"]})

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert not result.success
        assert len(session.calls) == 1
        assert "[F003]" in result.error

    @pytest.mark.asyncio
    async def test_request_uses_configured_timeout(
        self, make_settings, fake_session, sample_body, sleeper
    ):
        executor = FetchExecutor(settings=make_settings(fetch={"request_timeout": 7}), sleep=sleeper)
        session = fake_session({PUBLIC_URL: [sample_body]})

        await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        timeout = session.calls_for(PUBLIC_URL)[0]["timeout"]
        assert isinstance(timeout, aiohttp.ClientTimeout)
        assert timeout.total == 7


class TestProxyFailover:
    """403 handling against the protected origin."""

    @pytest.mark.asyncio
    async def test_403_walks_proxies_then_goes_direct(
        self, protected_settings, fake_session, fake_response, sleeper
    ):
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({PROTECTED_URL: [fake_response(403)]})

        result = await executor.fetch_source(session, ResolvedSource(url=PROTECTED_URL))

        calls = session.calls_for(PROTECTED_URL)
        assert not result.success
        assert [c.get("proxy") for c in calls] == [
            "http://proxy-a:3128",
            "http://proxy-b:3128",
            None,
            None,
            None,
        ]
        # Failover is immediate; only retries on the direct slot wait
        assert len(sleeper.delays) == 2
        assert all("Authorization" in c["headers"] for c in calls)

    @pytest.mark.asyncio
    async def test_failover_resets_retry_budget(
        self, protected_settings, fake_session, fake_response, sample_body, sleeper
    ):
        script = [
            fake_response(500), fake_response(500), fake_response(403),
            fake_response(500), fake_response(500), fake_response(403),
            fake_response(500), fake_response(500), fake_response(500),
            sample_body,
        ]
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({PROTECTED_URL: script})

        result = await executor.fetch_source(session, ResolvedSource(url=PROTECTED_URL))

        # (2 proxies + direct) * (2 retries + 1) is the hard ceiling
        assert len(session.calls) == 9
        assert not result.success
        assert result.attempts.proxy_rotations == 2

    @pytest.mark.asyncio
    async def test_success_through_second_proxy(
        self, protected_settings, fake_session, fake_response, sample_body, sleeper
    ):
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({PROTECTED_URL: [fake_response(403), sample_body]})

        result = await executor.fetch_source(session, ResolvedSource(url=PROTECTED_URL))

        assert result.success
        assert session.calls_for(PROTECTED_URL)[-1]["proxy"] == "http://proxy-b:3128"

    @pytest.mark.asyncio
    async def test_public_403_is_an_ordinary_retry(
        self, protected_settings, fake_session, fake_response, sleeper
    ):
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({PUBLIC_URL: [fake_response(403)]})

        await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        calls = session.calls_for(PUBLIC_URL)
        assert len(calls) == 3
        assert all("proxy" not in c and "Authorization" not in c["headers"] for c in calls)


class TestRedirects:
    """Redirects are followed one hop at a time with per-hop scoping."""

    @pytest.mark.asyncio
    async def test_redirect_off_protected_origin_drops_proxy_and_credentials(
        self, protected_settings, fake_session, fake_response, sample_body, sleeper
    ):
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({
            PROTECTED_URL: [fake_response(302, headers={"Location": PUBLIC_URL})],
            PUBLIC_URL: [sample_body],
        })

        result = await executor.fetch_source(session, ResolvedSource(url=PROTECTED_URL))

        assert result.success
        protected_call = session.calls_for(PROTECTED_URL)[0]
        public_call = session.calls_for(PUBLIC_URL)[0]
        assert protected_call["proxy"] == "http://proxy-a:3128"
        assert "Authorization" in protected_call["headers"]
        assert "proxy" not in public_call
        assert "Authorization" not in public_call["headers"]
        assert all(kwargs["allow_redirects"] is False for _, kwargs in session.calls)

    @pytest.mark.asyncio
    async def test_relative_redirect_within_protected_origin_keeps_proxy(
        self, protected_settings, fake_session, fake_response, sample_body, sleeper
    ):
        moved = "https://mirror.internal:8443/moved/rss"
        executor = FetchExecutor(settings=protected_settings, sleep=sleeper)
        session = fake_session({
            PROTECTED_URL: [fake_response(301, headers={"Location": "/moved/rss"})],
            moved: [sample_body],
        })

        result = await executor.fetch_source(session, ResolvedSource(url=PROTECTED_URL))

        assert result.success
        assert session.calls_for(moved)[0]["proxy"] == "http://proxy-a:3128"

    @pytest.mark.asyncio
    async def test_redirect_loop_is_terminal(
        self, make_settings, fake_session, fake_response, sleeper
    ):
        loop_url = "https://loop.example/rss"
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 2}), sleep=sleeper)
        session = fake_session({loop_url: [fake_response(302, headers={"Location": loop_url})]})

        result = await executor.fetch_source(session, ResolvedSource(url=loop_url))

        assert not result.success
        assert result.attempts.count == 1
        assert "[F001]" in result.error
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_redirect_to_other_scheme_is_terminal(
        self, make_settings, fake_session, fake_response, sleeper
    ):
        executor = FetchExecutor(settings=make_settings(fetch={"max_retries": 2}), sleep=sleeper)
        session = fake_session({
            PUBLIC_URL: [fake_response(302, headers={"Location": "ftp://files.example/feed.xml"})],
        })

        result = await executor.fetch_source(session, ResolvedSource(url=PUBLIC_URL))

        assert not result.success
        assert len(session.calls) == 1


class TestFetchAll:
    """Concurrent fan-out and barrier."""

    @pytest.mark.asyncio
    async def test_results_keep_source_order(
        self, make_settings, fake_session, fake_response, rss, sleeper
    ):
        urls = [f"https://s{i}.example/rss" for i in range(5)]
        routes = {url: [rss([{"title": url}])] for url in urls}
        routes[urls[2]] = [fake_response(500)]
        executor = FetchExecutor(
            settings=make_settings(fetch={"max_retries": 0, "parallel_fetches": 2}),
            sleep=sleeper,
        )

        results = await executor.fetch_all(
            fake_session(routes), [ResolvedSource(url=u) for u in urls]
        )

        assert [r.source.url for r in results] == urls
        assert [r.success for r in results] == [True, True, False, True, True]

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_contained(self, make_settings, fake_session, sample_body, sleeper):
        def broken_parser(raw, url):
            raise RuntimeError("boom")

        executor = FetchExecutor(settings=make_settings(), parser=broken_parser, sleep=sleeper)
        session = fake_session({PUBLIC_URL: [sample_body]})

        results = await executor.fetch_all(session, [ResolvedSource(url=PUBLIC_URL)])

        assert len(results) == 1
        assert not results[0].success
        assert "boom" in results[0].error

    @pytest.mark.asyncio
    async def test_empty_source_list(self, make_settings, fake_session):
        executor = FetchExecutor(settings=make_settings())
        assert await executor.fetch_all(fake_session(), []) == []
