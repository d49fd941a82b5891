"""
Order Gateway - Authentication Signers.

============================================================
PURPOSE
============================================================
One signing strategy per backend, shared across backends that use
the same family.

FAMILIES:
- ConcatHmacSigner       HMAC over a concatenated prehash string
- PassphraseHmacSigner   as above, passphrase itself HMAC'd (KuCoin)
- NonceHashedBodySigner  HMAC(b64decode(secret), path + SHA256(nonce + body))
- QueryStringSigner      HMAC over the query string, appended as signature=
- SortedQuerySigner      HMAC over METHOD\\nhost\\npath\\nsorted-query (HTX)
- BasicAuthSigner        base64(key:secret)
- ApiKeyHeaderSigner     plain API key header

Signers are stateless. Timestamps and nonces come from an injected
Clock and are passed in, so signatures are reproducible in tests.

============================================================
"""

import base64
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from urllib.parse import parse_qsl, quote

from .types import Credentials


logger = logging.getLogger(__name__)


# ============================================================
# CLOCK
# ============================================================

class Clock:
    """Wall clock in epoch milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class FixedClock(Clock):
    """Clock frozen at a given epoch millisecond value."""

    def __init__(self, ms: int):
        self.ms = ms

    def now_ms(self) -> int:
        return self.ms


def format_timestamp(ms: int, style: str) -> str:
    """
    Render epoch milliseconds in a backend's expected style.

    Styles: ms, s, iso_ms (2020-12-08T09:08:57.715Z),
    iso_s (2020-12-08T09:08:57), nonce_us (ms * 1000).
    """
    if style == "ms":
        return str(ms)
    if style == "s":
        return str(ms // 1000)
    if style == "nonce_us":
        return str(ms * 1000)
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    if style == "iso_ms":
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"
    if style == "iso_s":
        return dt.strftime("%Y-%m-%dT%H:%M:%S")
    raise ValueError(f"Unknown timestamp style: {style}")


# ============================================================
# PRIMITIVES
# ============================================================

def hmac_digest(
    key: bytes,
    message: bytes,
    hash_name: str = "sha256",
    encoding: str = "hex",
) -> str:
    """HMAC a message and encode the digest as hex or base64."""
    mac = hmac.new(key, message, getattr(hashlib, hash_name))
    if encoding == "hex":
        return mac.hexdigest()
    if encoding == "base64":
        return base64.b64encode(mac.digest()).decode()
    raise ValueError(f"Unknown digest encoding: {encoding}")


@dataclass(frozen=True)
class SigningInput:
    """Everything a signer may cover."""

    method: str
    path: str
    body: str = ""
    query: str = ""
    timestamp: str = ""
    host: str = ""

    @property
    def request_path(self) -> str:
        """Path including the query string, if any."""
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path


@dataclass
class SignedParts:
    """Authentication output: headers and the final query string."""

    headers: Dict[str, str] = field(default_factory=dict)
    query: str = ""


# ============================================================
# SIGNER INTERFACE
# ============================================================

class Signer(ABC):
    """Produces the headers/query parameters that authenticate a request."""

    timestamp_style: str = "ms"
    requires_passphrase: bool = False
    requires_memo: bool = False

    def make_timestamp(self, clock: Clock) -> str:
        return format_timestamp(clock.now_ms(), self.timestamp_style)

    @abstractmethod
    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        """Authenticate one request."""


# ============================================================
# PREHASH LAYOUTS
# ============================================================

Prehash = Callable[[SigningInput, Credentials], str]


def prehash_ts_method_path_body(request: SigningInput, credentials: Credentials) -> str:
    return f"{request.timestamp}{request.method.upper()}{request.request_path}{request.body}"


def make_bybit_prehash(recv_window: str) -> Prehash:
    def prehash(request: SigningInput, credentials: Credentials) -> str:
        payload = request.body if request.body else request.query
        return f"{request.timestamp}{credentials.api_key}{recv_window}{payload}"
    return prehash


def prehash_gateio(request: SigningInput, credentials: Credentials) -> str:
    hashed_body = hashlib.sha512(request.body.encode()).hexdigest()
    return f"{request.method.upper()}\n{request.path}\n{request.query}\n{hashed_body}\n{request.timestamp}"


def prehash_bitmart(request: SigningInput, credentials: Credentials) -> str:
    payload = request.body if request.body else request.query
    return f"{request.timestamp}#{credentials.memo or ''}#{payload}"


def prehash_ascendex(request: SigningInput, credentials: Credentials) -> str:
    return f"{request.timestamp}+{request.path}"


def prehash_xt(request: SigningInput, credentials: Credentials) -> str:
    return f"{credentials.api_key}#{credentials.api_secret}#{request.timestamp}"


# ============================================================
# SIGNER FAMILIES
# ============================================================

class ConcatHmacSigner(Signer):
    """
    Timestamp + HMAC over a concatenated prehash string.

    Covers hex/base64 digests, SHA-256/384/512, and an optional
    caller-supplied passphrase or memo header.
    """

    def __init__(
        self,
        prehash: Prehash,
        key_header: str,
        sign_header: str,
        timestamp_header: Optional[str] = None,
        hash_name: str = "sha256",
        encoding: str = "hex",
        passphrase_header: Optional[str] = None,
        memo_header: Optional[str] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        timestamp_style: str = "ms",
    ):
        self.prehash = prehash
        self.key_header = key_header
        self.sign_header = sign_header
        self.timestamp_header = timestamp_header
        self.hash_name = hash_name
        self.encoding = encoding
        self.passphrase_header = passphrase_header
        self.memo_header = memo_header
        self.extra_headers = dict(extra_headers or {})
        self.timestamp_style = timestamp_style
        self.requires_passphrase = passphrase_header is not None
        self.requires_memo = memo_header is not None

    def signature(self, request: SigningInput, credentials: Credentials) -> str:
        message = self.prehash(request, credentials)
        return hmac_digest(
            credentials.api_secret.encode(),
            message.encode(),
            self.hash_name,
            self.encoding,
        )

    def passphrase_value(self, credentials: Credentials) -> str:
        return credentials.passphrase or ""

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        headers = {
            self.key_header: credentials.api_key,
            self.sign_header: self.signature(request, credentials),
        }
        if self.timestamp_header:
            headers[self.timestamp_header] = request.timestamp
        if self.passphrase_header:
            headers[self.passphrase_header] = self.passphrase_value(credentials)
        if self.memo_header:
            headers[self.memo_header] = credentials.memo or ""
        headers.update(self.extra_headers)
        return SignedParts(headers=headers, query=request.query)


class PassphraseHmacSigner(ConcatHmacSigner):
    """Passphrase header is base64(HMAC-SHA256(secret, passphrase))."""

    def passphrase_value(self, credentials: Credentials) -> str:
        return hmac_digest(
            credentials.api_secret.encode(),
            (credentials.passphrase or "").encode(),
            "sha256",
            "base64",
        )


class NonceHashedBodySigner(Signer):
    """
    Kraken-style signing.

    API-Sign = base64(HMAC-SHA512(b64decode(secret), path + SHA256(nonce + body)))
    """

    timestamp_style = "nonce_us"

    def __init__(self, key_header: str = "API-Key", sign_header: str = "API-Sign"):
        self.key_header = key_header
        self.sign_header = sign_header

    def signature(self, request: SigningInput, credentials: Credentials) -> str:
        body_hash = hashlib.sha256((request.timestamp + request.body).encode()).digest()
        message = request.path.encode() + body_hash
        secret = base64.b64decode(credentials.api_secret)
        return hmac_digest(secret, message, "sha512", "base64")

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        return SignedParts(
            headers={
                self.key_header: credentials.api_key,
                self.sign_header: self.signature(request, credentials),
            },
            query=request.query,
        )


class QueryStringSigner(Signer):
    """
    Binance-compatible signing.

    signature = hex(HMAC-SHA256(secret, query)), appended as a query
    parameter; the API key travels in a header.
    """

    def __init__(self, key_header: str):
        self.key_header = key_header

    def signature(self, request: SigningInput, credentials: Credentials) -> str:
        return hmac_digest(credentials.api_secret.encode(), request.query.encode())

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        signature = self.signature(request, credentials)
        query = f"{request.query}&signature={signature}" if request.query else f"signature={signature}"
        return SignedParts(headers={self.key_header: credentials.api_key}, query=query)


class SortedQuerySigner(Signer):
    """
    HTX signature version 2.

    The access key, method, version and timestamp are added to the
    query, which is sorted and signed together with method, host and path.
    """

    timestamp_style = "iso_s"

    def canonical_query(self, request: SigningInput, credentials: Credentials) -> str:
        params = dict(parse_qsl(request.query, keep_blank_values=True))
        params.update({
            "AccessKeyId": credentials.api_key,
            "SignatureMethod": "HmacSHA256",
            "SignatureVersion": "2",
            "Timestamp": request.timestamp,
        })
        return "&".join(
            f"{key}={quote(str(params[key]), safe='')}" for key in sorted(params)
        )

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        query = self.canonical_query(request, credentials)
        meta = "\n".join([request.method.upper(), request.host, request.path, query])
        signature = hmac_digest(credentials.api_secret.encode(), meta.encode(), "sha256", "base64")
        return SignedParts(
            headers={},
            query=f"{query}&Signature={quote(signature, safe='')}",
        )


class BasicAuthSigner(Signer):
    """HTTP basic auth with key:secret."""

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        token = base64.b64encode(
            f"{credentials.api_key}:{credentials.api_secret}".encode()
        ).decode()
        return SignedParts(headers={"Authorization": f"Basic {token}"}, query=request.query)


class ApiKeyHeaderSigner(Signer):
    """API key sent verbatim in a header."""

    def __init__(self, key_header: str = "X-API-KEY"):
        self.key_header = key_header

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        return SignedParts(headers={self.key_header: credentials.api_key}, query=request.query)


# ============================================================
# BACKEND SIGNERS
# ============================================================

BYBIT_RECV_WINDOW = "5000"
XT_RECV_WINDOW = "60000"

SIGNERS: Dict[str, Signer] = {
    "valr": ConcatHmacSigner(
        prehash_ts_method_path_body,
        key_header="X-VALR-API-KEY",
        sign_header="X-VALR-SIGNATURE",
        timestamp_header="X-VALR-TIMESTAMP",
        hash_name="sha512",
    ),
    "luno": BasicAuthSigner(),
    "chainex": ApiKeyHeaderSigner("X-API-KEY"),
    "kraken": NonceHashedBodySigner(),
    "binance": QueryStringSigner("X-MBX-APIKEY"),
    "mexc": QueryStringSigner("X-MEXC-APIKEY"),
    "bitrue": QueryStringSigner("X-MBX-APIKEY"),
    "bingx": QueryStringSigner("X-BX-APIKEY"),
    "bybit": ConcatHmacSigner(
        make_bybit_prehash(BYBIT_RECV_WINDOW),
        key_header="X-BAPI-API-KEY",
        sign_header="X-BAPI-SIGN",
        timestamp_header="X-BAPI-TIMESTAMP",
        extra_headers={
            "X-BAPI-SIGN-TYPE": "2",
            "X-BAPI-RECV-WINDOW": BYBIT_RECV_WINDOW,
        },
    ),
    "gateio": ConcatHmacSigner(
        prehash_gateio,
        key_header="KEY",
        sign_header="SIGN",
        timestamp_header="Timestamp",
        hash_name="sha512",
        timestamp_style="s",
    ),
    "okx": ConcatHmacSigner(
        prehash_ts_method_path_body,
        key_header="OK-ACCESS-KEY",
        sign_header="OK-ACCESS-SIGN",
        timestamp_header="OK-ACCESS-TIMESTAMP",
        encoding="base64",
        passphrase_header="OK-ACCESS-PASSPHRASE",
        timestamp_style="iso_ms",
    ),
    "kucoin": PassphraseHmacSigner(
        prehash_ts_method_path_body,
        key_header="KC-API-KEY",
        sign_header="KC-API-SIGN",
        timestamp_header="KC-API-TIMESTAMP",
        encoding="base64",
        passphrase_header="KC-API-PASSPHRASE",
        extra_headers={"KC-API-KEY-VERSION": "2"},
    ),
    "xt": ConcatHmacSigner(
        prehash_xt,
        key_header="validate-appkey",
        sign_header="validate-signature",
        timestamp_header="validate-timestamp",
        extra_headers={
            "validate-algorithms": "HmacSHA256",
            "validate-recvwindow": XT_RECV_WINDOW,
        },
    ),
    "ascendex": ConcatHmacSigner(
        prehash_ascendex,
        key_header="x-auth-key",
        sign_header="x-auth-signature",
        timestamp_header="x-auth-timestamp",
        encoding="base64",
    ),
    "htx": SortedQuerySigner(),
    "bitget": ConcatHmacSigner(
        prehash_ts_method_path_body,
        key_header="ACCESS-KEY",
        sign_header="ACCESS-SIGN",
        timestamp_header="ACCESS-TIMESTAMP",
        encoding="base64",
        passphrase_header="ACCESS-PASSPHRASE",
    ),
    "bitmart": ConcatHmacSigner(
        prehash_bitmart,
        key_header="X-BM-KEY",
        sign_header="X-BM-SIGN",
        timestamp_header="X-BM-TIMESTAMP",
        memo_header="X-BM-MEMO",
    ),
}


def get_signer(backend_id: str) -> Signer:
    """
    Get the signing strategy for a backend.

    Raises:
        KeyError: No signer registered for the backend
    """
    return SIGNERS[backend_id]
