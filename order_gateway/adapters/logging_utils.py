"""
Order Gateway - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Secure logging for adapter operations with:
- Credential masking (API keys, signatures, passphrases, memos)
- Request bodies logged only as a hash
- Structured JSON entries
- In-memory audit trail of order events

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys, secrets or signatures
2. Mask every backend's authentication headers
3. Mask signature/key query parameters in URLs
4. Never log request bodies in cleartext

============================================================
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA PATTERNS
# ============================================================

# Authentication header names across all supported backends (lower case)
SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "x-valr-api-key",
    "x-valr-signature",
    "api-key",
    "api-sign",
    "x-mbx-apikey",
    "x-mexc-apikey",
    "x-bx-apikey",
    "x-bapi-api-key",
    "x-bapi-sign",
    "key",
    "sign",
    "ok-access-key",
    "ok-access-sign",
    "ok-access-passphrase",
    "kc-api-key",
    "kc-api-sign",
    "kc-api-passphrase",
    "validate-appkey",
    "validate-signature",
    "x-auth-key",
    "x-auth-signature",
    "access-key",
    "access-sign",
    "access-passphrase",
    "x-bm-key",
    "x-bm-sign",
    "x-bm-memo",
}

# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "accesskeyid",
    "secret",
    "secret_key",
    "passphrase",
    "memo",
    "signature",
    "sign",
}

# Long opaque tokens inside free-form values
SENSITIVE_PATTERNS = [
    (re.compile(r"[a-f0-9]{64,}", re.IGNORECASE), "***HMAC***"),
    (re.compile(r"[A-Za-z0-9+/=]{40,}"), "***KEY***"),
]


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the first few chars.

    Values too short to partially reveal are fully masked.
    """
    if not value or len(value) <= show_chars * 2:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask authentication headers."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive parameters, recursing into nested dicts."""
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        elif isinstance(value, str):
            masked_value = value
            for pattern, replacement in SENSITIVE_PATTERNS:
                masked_value = pattern.sub(replacement, masked_value)
            masked[key] = masked_value
        else:
            masked[key] = value
    return masked


_URL_PARAM_PATTERNS = [
    re.compile(f"({param}=)([^&]+)", re.IGNORECASE) for param in SENSITIVE_PARAMS
]


def mask_url(url: str) -> str:
    """Mask sensitive query parameters in a URL."""
    if not url:
        return url
    for pattern in _URL_PARAM_PATTERNS:
        url = pattern.sub(lambda m: f"{m.group(1)}***", url)
    return url


def hash_body(body: Any) -> Optional[str]:
    """Short SHA-256 of a request body."""
    if not body:
        return None
    if isinstance(body, (dict, list)):
        text = json.dumps(body, sort_keys=True, default=str)
    else:
        text = str(body)
    return hashlib.sha256(text.encode()).hexdigest()[:16]


# ============================================================
# LOG ENTRY STRUCTURES
# ============================================================

@dataclass
class RequestLogEntry:
    """Structured log entry for requests."""

    timestamp: str
    exchange_id: str
    operation: str
    method: str
    endpoint: str
    request_id: str
    headers: Dict[str, str] = None
    body_hash: str = None

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None})


@dataclass
class ResponseLogEntry:
    """Structured log entry for responses."""

    timestamp: str
    exchange_id: str
    operation: str
    request_id: str
    status_code: int
    latency_ms: float
    success: bool
    error_code: str = None
    error_message: str = None
    response_preview: str = None

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None})


@dataclass
class OrderLogEntry:
    """Structured log entry for order events."""

    timestamp: str
    exchange_id: str
    event: str
    pair: str = None
    side: str = None
    amount: str = None
    order_id: str = None
    status: str = None
    executed_quantity: str = None
    executed_price: str = None
    estimated: bool = None
    error_code: str = None
    error_message: str = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ============================================================
# ADAPTER LOGGER
# ============================================================

class AdapterLogger:
    """
    Secure logger for one backend.

    Every header, URL and body passes through the masking functions.
    """

    def __init__(self, exchange_id: str, logger_name: str = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(logger_name or f"order_gateway.exchange.{exchange_id}")
        self._request_counter = 0

    def _next_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._exchange_id}-{self._request_counter}"

    def log_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        headers: Dict[str, str] = None,
        body: Any = None,
    ) -> str:
        """
        Log an outgoing request.

        Returns:
            Request ID for correlation
        """
        request_id = self._next_request_id()
        entry = RequestLogEntry(
            timestamp=datetime.utcnow().isoformat(),
            exchange_id=self._exchange_id,
            operation=operation,
            method=method,
            endpoint=mask_url(endpoint),
            request_id=request_id,
            headers=mask_headers(headers) if headers else None,
            body_hash=hash_body(body),
        )
        self._logger.debug(f"REQUEST: {entry.to_json()}")
        return request_id

    def log_response(
        self,
        operation: str,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_code: str = None,
        error_message: str = None,
        response_body: Any = None,
    ) -> None:
        """Log an incoming response, truncated."""
        preview = None
        if response_body:
            preview = json.dumps(response_body, default=str)[:200]

        entry = ResponseLogEntry(
            timestamp=datetime.utcnow().isoformat(),
            exchange_id=self._exchange_id,
            operation=operation,
            request_id=request_id,
            status_code=status_code,
            latency_ms=round(latency_ms, 2),
            success=success,
            error_code=error_code,
            error_message=error_message[:200] if error_message else None,
            response_preview=preview,
        )

        if success:
            self._logger.debug(f"RESPONSE: {entry.to_json()}")
        else:
            self._logger.warning(f"RESPONSE_ERROR: {entry.to_json()}")

    def log_order(self, event: str, **fields: Any) -> OrderLogEntry:
        """
        Log an order event and record it in the audit log.

        Args:
            event: submit, filled, rejected, timeout, blocked
            fields: OrderLogEntry fields
        """
        entry = OrderLogEntry(
            timestamp=datetime.utcnow().isoformat(),
            exchange_id=self._exchange_id,
            event=event,
            **{k: (str(v) if v is not None and not isinstance(v, bool) else v) for k, v in fields.items()},
        )
        if entry.error_code:
            self._logger.warning(f"ORDER_ERROR: {entry.to_json()}")
        else:
            self._logger.info(f"ORDER: {entry.to_json()}")
        get_audit_log().record(entry)
        return entry

    def info(self, message: str) -> None:
        self._logger.info(f"[{self._exchange_id}] {message}")

    def warning(self, message: str) -> None:
        self._logger.warning(f"[{self._exchange_id}] {message}")

    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error(f"[{self._exchange_id}] {message}", exc_info=exc_info)

    def debug(self, message: str) -> None:
        self._logger.debug(f"[{self._exchange_id}] {message}")


# ============================================================
# AUDIT LOG
# ============================================================

class AuditLog:
    """
    Bounded in-memory record of order events.

    Not persisted; operators read it for debugging.
    """

    def __init__(self, max_entries: int = 10000):
        self._entries: List[Dict[str, Any]] = []
        self._max_entries = max_entries

    def record(self, entry: OrderLogEntry) -> None:
        self._entries.append(entry.to_dict())
        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries:]

    def get_entries(
        self,
        exchange_id: str = None,
        event: str = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        entries = self._entries
        if exchange_id:
            entries = [e for e in entries if e["exchange_id"] == exchange_id]
        if event:
            entries = [e for e in entries if e["event"] == event]
        return entries[-limit:]

    def clear(self) -> None:
        self._entries.clear()


_global_audit_log = AuditLog()


def get_audit_log() -> AuditLog:
    """Get global audit log."""
    return _global_audit_log
