"""
Transport and Rate Limiter Tests.

============================================================
PURPOSE
============================================================
Retry bounds, backoff schedule, Retry-After handling and request
spacing. No real sleeping: delays are recorded by injected sleeps.

============================================================
"""

import asyncio

import aiohttp
import pytest

from order_gateway import (
    HttpRequest,
    NetworkError,
    RateLimitConfig,
    RateLimited,
    RateLimiter,
    ResilientTransport,
    RetryConfig,
    UnknownResponseShape,
)

from conftest import FakeResponse, FakeSession, ok


def make_request():
    return HttpRequest(method="GET", url="https://example.test/ping", operation="test.ping")


# ============================================================
# RETRY CONFIG TESTS
# ============================================================

class TestRetryConfig:
    """Tests for the backoff schedule."""

    def test_exponential_delays(self):
        config = RetryConfig()
        assert [config.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        config = RetryConfig(max_delay_seconds=3.0)
        assert config.delay_for(5) == 3.0

    def test_total_backoff_bound(self):
        assert RetryConfig(max_retries=3).total_backoff_bound() == 3.0


# ============================================================
# TRANSPORT TESTS
# ============================================================

class TestResilientTransport:
    """Tests for ResilientTransport."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, session, transport, sleeper):
        session.queue(ok({"pong": True}))

        response = await transport.send(make_request())

        assert response.status == 200
        assert response.data == {"pong": True}
        assert response.attempts == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, session, transport, sleeper):
        session.queue(asyncio.TimeoutError(), ok({"pong": True}))

        response = await transport.send(make_request())

        assert response.attempts == 2
        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_retry_bound_network_errors(self, session, transport, sleeper):
        session.queue(*[aiohttp.ClientConnectionError("refused") for _ in range(3)])

        with pytest.raises(NetworkError) as exc_info:
            await transport.send(make_request())

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_cause, aiohttp.ClientConnectionError)
        assert len(session.requests) == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_max_retries_override(self, session, transport, sleeper):
        session.queue(*[aiohttp.ClientConnectionError("down") for _ in range(5)])

        with pytest.raises(NetworkError):
            await transport.send(make_request(), max_retries=5)

        assert len(session.requests) == 5
        assert sleeper.delays == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_server_error_retried(self, session, transport, sleeper):
        session.queue(FakeResponse(502, text="bad gateway"), ok({"pong": True}))

        response = await transport.send(make_request())

        assert response.attempts == 2
        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_server_error_exhausted(self, session, transport):
        session.queue(*[FakeResponse(503, text="unavailable") for _ in range(3)])

        with pytest.raises(NetworkError, match="HTTP 503"):
            await transport.send(make_request())

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, session, transport, sleeper):
        session.queue(FakeResponse(400, {"code": -1100, "msg": "bad param"}))

        response = await transport.send(make_request())

        assert response.status == 400
        assert response.attempts == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_shorter_retry_after_honoured(self, session, transport, sleeper):
        session.queue(FakeResponse(429, headers={"Retry-After": "0.5"}), ok({"pong": True}))

        response = await transport.send(make_request())

        assert response.attempts == 2
        assert sleeper.delays == [0.5]

    @pytest.mark.asyncio
    async def test_long_retry_after_capped_by_schedule(self, session, transport, sleeper):
        session.queue(*[FakeResponse(429, headers={"Retry-After": "3600"}) for _ in range(3)])

        with pytest.raises(RateLimited) as exc_info:
            await transport.send(make_request())

        assert sleeper.delays == [1.0, 2.0]
        assert sum(sleeper.delays) <= RetryConfig().total_backoff_bound()
        assert exc_info.value.retry_after == 3600.0

    @pytest.mark.asyncio
    async def test_rate_limited_without_header_uses_backoff(self, session, transport, sleeper):
        session.queue(FakeResponse(429), FakeResponse(429), ok({}))

        await transport.send(make_request())

        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limited_exhausted(self, session, transport):
        session.queue(*[FakeResponse(429, headers={"Retry-After": "2"}) for _ in range(3)])

        with pytest.raises(RateLimited) as exc_info:
            await transport.send(make_request())

        assert exc_info.value.retry_after == 2.0
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, session, transport):
        session.queue(FakeResponse(200, text="<html>maintenance</html>"))

        with pytest.raises(UnknownResponseShape):
            await transport.send(make_request())

    @pytest.mark.asyncio
    async def test_timeout_not_retried_when_disabled(self, sleeper):
        session = FakeSession([asyncio.TimeoutError(), ok({})])
        transport = ResilientTransport(
            retry_config=RetryConfig(retry_on_timeout=False), session=session, sleep=sleeper
        )

        with pytest.raises(NetworkError) as exc_info:
            await transport.send(make_request())

        assert exc_info.value.attempts == 1
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_request_forwarded(self, session, transport):
        session.queue(ok({}))
        request = HttpRequest(
            method="POST",
            url="https://example.test/order",
            headers={"X-KEY": "k"},
            body='{"a":1}',
        )

        await transport.send(request)

        sent = session.requests[0]
        assert sent["method"] == "POST"
        assert sent["url"] == "https://example.test/order"
        assert sent["headers"] == {"X-KEY": "k"}
        assert sent["data"] == '{"a":1}'

    @pytest.mark.asyncio
    async def test_close_leaves_injected_session_open(self, session, transport):
        await transport.close()
        assert session.closed is False

    @pytest.mark.asyncio
    async def test_zero_max_retries_makes_one_attempt(self, session, transport, sleeper):
        session.queue(aiohttp.ClientConnectionError("down"), ok({}))

        with pytest.raises(NetworkError) as exc_info:
            await transport.send(make_request(), max_retries=0)

        assert exc_info.value.attempts == 1
        assert len(session.requests) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_explicit_timeout_not_replaced_by_default(self, session, transport, monkeypatch):
        session.queue(ok({}), ok({}))
        seen = []
        real_wait_for = asyncio.wait_for

        async def recording_wait_for(awaitable, timeout):
            seen.append(timeout)
            return await real_wait_for(awaitable, timeout)

        monkeypatch.setattr(asyncio, "wait_for", recording_wait_for)

        await transport.send(make_request(), timeout=0.25)
        await transport.send(make_request())

        assert seen == [0.25, 30.0]


# ============================================================
# RATE LIMITER TESTS
# ============================================================

class FakeTime:
    """Monotonic clock advanced by the injected sleep."""

    def __init__(self):
        self.now = 100.0
        self.delays = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.delays.append(seconds)
        self.now += seconds


class TestRateLimiter:
    """Tests for per-backend request spacing."""

    @pytest.fixture
    def fake_time(self):
        return FakeTime()

    @pytest.fixture
    def limiter(self, fake_time):
        return RateLimiter(
            RateLimitConfig(min_interval_seconds=0.2, per_backend={"kraken": 1.0}),
            clock=fake_time.clock,
            sleep=fake_time.sleep,
        )

    @pytest.mark.asyncio
    async def test_first_acquire_does_not_wait(self, limiter, fake_time):
        assert await limiter.acquire("valr") == 0.0
        assert fake_time.delays == []

    @pytest.mark.asyncio
    async def test_back_to_back_acquires_spaced(self, limiter, fake_time):
        await limiter.acquire("valr")
        waited = await limiter.acquire("valr")

        assert waited == pytest.approx(0.2)
        assert limiter.last_acquired("valr") == pytest.approx(100.2)

    @pytest.mark.asyncio
    async def test_no_wait_after_interval(self, limiter, fake_time):
        await limiter.acquire("valr")
        fake_time.now += 0.5

        assert await limiter.acquire("valr") == 0.0

    @pytest.mark.asyncio
    async def test_backends_independent(self, limiter, fake_time):
        await limiter.acquire("valr")
        assert await limiter.acquire("binance") == 0.0

    @pytest.mark.asyncio
    async def test_per_backend_override(self, limiter, fake_time):
        await limiter.acquire("kraken")
        assert await limiter.acquire("kraken") == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_concurrent_acquires_serialized(self, limiter, fake_time):
        await asyncio.gather(*[limiter.acquire("valr") for _ in range(3)])

        assert fake_time.delays == [pytest.approx(0.2), pytest.approx(0.2)]
        assert limiter.last_acquired("valr") == pytest.approx(100.4)

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        await limiter.acquire("valr")
        limiter.reset("valr")

        assert limiter.last_acquired("valr") is None
        assert await limiter.acquire("valr") == 0.0
