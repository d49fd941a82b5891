"""
Order Gateway - Resilient Transport.

============================================================
PURPOSE
============================================================
Timeout and bounded retry wrapper around one outbound HTTP call.

RETRY POLICY:
- Hard timeout per attempt, a timeout counts as retriable
- HTTP 429 honours a shorter Retry-After, else the current backoff delay
- Connection errors, DNS failures and 5xx are retriable
- Other 4xx are returned immediately without retry
- Backoff 1s, 2s, 4s, ... bounded by max_retries attempts

The transport is backend-agnostic. It only sees requests that are
already signed.

============================================================
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, Awaitable

import aiohttp

from .config import RetryConfig, TimeoutConfig
from .errors import NetworkError, RateLimited, UnknownResponseShape


logger = logging.getLogger(__name__)


# ============================================================
# REQUEST / RESPONSE
# ============================================================

@dataclass
class HttpRequest:
    """An authenticated outbound request."""

    method: str
    """HTTP method."""

    url: str
    """Absolute URL including any signed query string."""

    headers: Dict[str, str] = field(default_factory=dict)
    """Request headers."""

    body: Optional[str] = None
    """Serialized body exactly as signed."""

    operation: str = "request"
    """Operation name for logs and metrics."""


@dataclass
class TransportResponse:
    """Response of the final attempt."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    data: Any = None
    attempts: int = 1
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return max(seconds, 0.0)


def _parse_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


# ============================================================
# TRANSPORT
# ============================================================

class ResilientTransport:
    """
    Sends HttpRequests with per-attempt timeout and backoff retry.

    Sleeping goes through the injected coroutine so a caller-level
    cancellation interrupts a backoff wait immediately.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        session: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._retry = retry_config or RetryConfig()
        self._timeout = timeout_config or TimeoutConfig()
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep

    # --------------------------------------------------------
    # SESSION
    # --------------------------------------------------------

    async def _get_session(self) -> Any:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                connect=self._timeout.connection_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the owned session."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ResilientTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------------------------------------------------
    # SEND
    # --------------------------------------------------------

    async def _perform(self, request: HttpRequest) -> TransportResponse:
        session = await self._get_session()
        started = time.monotonic()
        async with session.request(
            request.method,
            request.url,
            headers=request.headers,
            data=request.body,
        ) as resp:
            text = await resp.text()
            return TransportResponse(
                status=resp.status,
                headers=dict(resp.headers),
                text=text,
                data=_parse_body(text),
                latency_ms=(time.monotonic() - started) * 1000,
            )

    async def send(
        self,
        request: HttpRequest,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        Send a request with retry.

        Args:
            request: Signed request
            max_retries: Maximum attempts (default from RetryConfig),
                at least one attempt is always made
            timeout: Per-attempt timeout in seconds

        Returns:
            TransportResponse of the final attempt

        Raises:
            RateLimited: Still 429 after the last attempt
            NetworkError: Transient failures on every attempt
            UnknownResponseShape: 2xx with an unparseable body
        """
        if max_retries is None:
            max_retries = self._retry.max_retries
        max_retries = max(max_retries, 1)
        if timeout is None:
            timeout = self._timeout.request_timeout_seconds

        last_cause: Optional[BaseException] = None
        rate_limited = False
        retry_after: Optional[float] = None
        last_response_status: Optional[int] = None

        for attempt in range(1, max_retries + 1):
            delay = self._retry.delay_for(attempt - 1)
            try:
                response = await asyncio.wait_for(self._perform(request), timeout)

            except asyncio.TimeoutError as e:
                if not self._retry.retry_on_timeout:
                    raise NetworkError(
                        f"{request.operation} timed out after {timeout}s",
                        attempts=attempt,
                        last_cause=e,
                    ) from e
                last_cause = e
                rate_limited = False
                logger.warning(
                    f"{request.operation} attempt {attempt}/{max_retries} "
                    f"timed out after {timeout}s"
                )

            except aiohttp.ClientError as e:
                if not self._retry.retry_on_network_error:
                    raise NetworkError(
                        f"{request.operation} failed: {e}",
                        attempts=attempt,
                        last_cause=e,
                    ) from e
                last_cause = e
                rate_limited = False
                logger.warning(
                    f"{request.operation} attempt {attempt}/{max_retries} "
                    f"network error: {type(e).__name__}: {e}"
                )

            else:
                response.attempts = attempt

                if response.status == 429:
                    rate_limited = True
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    if retry_after is not None:
                        # Never longer than the scheduled backoff
                        delay = min(retry_after, delay)
                    last_cause = None
                    logger.warning(
                        f"{request.operation} attempt {attempt}/{max_retries} "
                        f"rate limited (429), backing off {delay}s"
                    )

                elif response.status >= 500 and self._retry.retry_on_server_error:
                    rate_limited = False
                    last_cause = None
                    logger.warning(
                        f"{request.operation} attempt {attempt}/{max_retries} "
                        f"server error {response.status}"
                    )

                else:
                    if response.ok and response.text and response.data is None:
                        raise UnknownResponseShape(
                            f"{request.operation} returned a non-JSON body",
                            field_name="<body>",
                        )
                    if attempt > 1:
                        logger.info(f"{request.operation} succeeded on attempt {attempt}")
                    return response

                last_response_status = response.status

            if attempt < max_retries:
                await self._sleep(delay)

        if rate_limited:
            raise RateLimited(
                f"{request.operation} still rate limited after {max_retries} attempts",
                attempts=max_retries,
                retry_after=retry_after,
            )

        if last_cause is None:
            message = f"{request.operation} failed after {max_retries} attempts (HTTP {last_response_status})"
        else:
            message = f"{request.operation} failed after {max_retries} attempts: {last_cause!r}"
        raise NetworkError(message, attempts=max_retries, last_cause=last_cause)
