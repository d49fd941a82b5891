"""
Shared fixtures for Order Gateway tests.

The fake session stands in for aiohttp.ClientSession: each call to
request() consumes the next scripted response or raises the next
scripted exception.
"""

import json
from decimal import Decimal

import pytest

from order_gateway import (
    Credentials,
    FixedClock,
    GatewayConfig,
    OrderConfirmer,
    OrderGateway,
    RateLimiter,
    ResilientTransport,
)
from order_gateway.adapters import AdapterFactory, MockConfig, MockExchangeAdapter, get_audit_log


FIXED_MS = 1700000000000


# ============================================================
# FAKE HTTP SESSION
# ============================================================

class FakeResponse:
    """Async context manager with the aiohttp response surface used."""

    def __init__(self, status=200, body=None, headers=None, text=None):
        self.status = status
        self.headers = headers or {}
        if text is None:
            text = "" if body is None else json.dumps(body)
        self._text = text

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Scripted replacement for aiohttp.ClientSession."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def request(self, method, url, headers=None, data=None):
        self.requests.append({"method": method, "url": url, "headers": dict(headers or {}), "data": data})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class SleepRecorder:
    """Injected sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def ok(body, headers=None):
    return FakeResponse(200, body, headers)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def clear_audit_log():
    get_audit_log().clear()
    yield
    get_audit_log().clear()


@pytest.fixture
def credentials():
    return Credentials(api_key="test-api-key-123456", api_secret="secret-value-abcdef")


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def transport(session, sleeper):
    return ResilientTransport(session=session, sleep=sleeper)


@pytest.fixture
def make_adapter(transport, sleeper):
    """Build a real adapter wired to the fake session."""

    def _make(adapter_class, **kwargs):
        return adapter_class(
            transport=transport,
            rate_limiter=RateLimiter(sleep=sleeper),
            clock=FixedClock(FIXED_MS),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_gateway(transport, sleeper):
    """Build an OrderGateway wired to the fake session and recorded sleeps."""

    def _make(config=None):
        return OrderGateway(
            config=config or GatewayConfig(),
            transport=transport,
            rate_limiter=RateLimiter(sleep=sleeper),
            confirmer=OrderConfirmer(sleep=sleeper),
            clock=FixedClock(FIXED_MS),
        )

    return _make


@pytest.fixture
def mock_exchange():
    """
    Register the mock backend and yield its configuration.

    Tests mutate the returned MockConfig before placing orders.
    """
    config = MockConfig(balances={"USDT": Decimal("1000"), "XRP": Decimal("500")})
    AdapterFactory.register("mock", lambda **deps: MockExchangeAdapter(mock_config=config, **deps))
    yield config
    AdapterFactory.unregister("mock")
