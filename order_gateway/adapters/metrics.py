"""
Order Gateway - Adapter Metrics.

============================================================
PURPOSE
============================================================
In-process metrics for backend adapters.

METRICS TRACKED:
- Request latency by operation
- Request success/failure counts and error codes
- Retries and rate-limit hits
- Orders submitted, filled, estimated, rejected, timed out

No exporter is bundled; summaries are plain dicts.

============================================================
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


# ============================================================
# METRIC TYPES
# ============================================================

class MetricType(Enum):
    """Counted events."""

    REQUEST_SUCCESS = "request_success"
    REQUEST_FAILURE = "request_failure"
    RETRY = "retry"
    RATE_LIMIT_HIT = "rate_limit_hit"
    ORDER_SUBMITTED = "order_submitted"
    ORDER_FILLED = "order_filled"
    ORDER_ESTIMATED = "order_estimated"
    ORDER_REJECTED = "order_rejected"
    ORDER_TIMED_OUT = "order_timed_out"


@dataclass
class LatencyStats:
    """Latency statistics."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms if self.count else 0.0,
            "max_ms": self.max_ms,
        }


# ============================================================
# ADAPTER METRICS
# ============================================================

class AdapterMetrics:
    """
    Metrics collector for one backend adapter.
    """

    def __init__(self, exchange_id: str):
        self._exchange_id = exchange_id
        self._start_time = datetime.utcnow()
        self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._counters: Dict[MetricType, int] = {mt: 0 for mt in MetricType}
        self._error_codes: Dict[str, int] = defaultdict(int)
        self._recent_requests: List[Dict[str, Any]] = []
        self._max_recent = 100

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_request(
        self,
        operation: str,
        latency_ms: float,
        success: bool,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        """Record one completed request."""
        self._latency[operation].record(latency_ms)
        self._latency["_all"].record(latency_ms)

        if success:
            self._counters[MetricType.REQUEST_SUCCESS] += 1
        else:
            self._counters[MetricType.REQUEST_FAILURE] += 1
            if error_code:
                self._error_codes[error_code] += 1

        if status_code == 429:
            self._counters[MetricType.RATE_LIMIT_HIT] += 1

        self._recent_requests.append({
            "timestamp": datetime.utcnow().isoformat(),
            "operation": operation,
            "latency_ms": latency_ms,
            "success": success,
            "status_code": status_code,
            "error_code": error_code,
        })
        if len(self._recent_requests) > self._max_recent:
            self._recent_requests.pop(0)

    def record_retries(self, count: int) -> None:
        self._counters[MetricType.RETRY] += count

    def record_order_submitted(self) -> None:
        self._counters[MetricType.ORDER_SUBMITTED] += 1

    def record_order_filled(self, estimated: bool = False) -> None:
        self._counters[MetricType.ORDER_FILLED] += 1
        if estimated:
            self._counters[MetricType.ORDER_ESTIMATED] += 1

    def record_order_rejected(self, error_code: Optional[str] = None) -> None:
        self._counters[MetricType.ORDER_REJECTED] += 1
        if error_code:
            self._error_codes[error_code] += 1

    def record_order_timed_out(self) -> None:
        self._counters[MetricType.ORDER_TIMED_OUT] += 1

    def count(self, metric: MetricType) -> int:
        return self._counters[metric]

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    def get_summary(self) -> Dict[str, Any]:
        """All metrics as a dict."""
        success = self._counters[MetricType.REQUEST_SUCCESS]
        failure = self._counters[MetricType.REQUEST_FAILURE]
        total = success + failure

        return {
            "exchange_id": self._exchange_id,
            "uptime_seconds": (datetime.utcnow() - self._start_time).total_seconds(),
            "requests": {
                "total": total,
                "success": success,
                "failure": failure,
                "success_rate": success / total if total > 0 else 1.0,
                "retries": self._counters[MetricType.RETRY],
                "rate_limit_hits": self._counters[MetricType.RATE_LIMIT_HIT],
            },
            "latency": self._latency.get("_all", LatencyStats()).to_dict(),
            "orders": {
                "submitted": self._counters[MetricType.ORDER_SUBMITTED],
                "filled": self._counters[MetricType.ORDER_FILLED],
                "estimated": self._counters[MetricType.ORDER_ESTIMATED],
                "rejected": self._counters[MetricType.ORDER_REJECTED],
                "timed_out": self._counters[MetricType.ORDER_TIMED_OUT],
            },
            "errors": dict(self._error_codes),
        }

    def get_latency_by_operation(self) -> Dict[str, Dict[str, float]]:
        return {op: stats.to_dict() for op, stats in self._latency.items() if op != "_all"}

    def get_recent_requests(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self._recent_requests[-limit:]

    def reset(self) -> None:
        self._start_time = datetime.utcnow()
        self._latency.clear()
        self._counters = {mt: 0 for mt in MetricType}
        self._error_codes.clear()
        self._recent_requests.clear()


# ============================================================
# METRICS AGGREGATOR
# ============================================================

class MetricsAggregator:
    """
    Aggregates metrics from multiple adapters.
    """

    def __init__(self):
        self._adapters: Dict[str, AdapterMetrics] = {}

    def register(self, exchange_id: str, metrics: AdapterMetrics) -> None:
        self._adapters[exchange_id] = metrics

    def unregister(self, exchange_id: str) -> None:
        self._adapters.pop(exchange_id, None)

    def get(self, exchange_id: str) -> Optional[AdapterMetrics]:
        return self._adapters.get(exchange_id)

    def get_all_summaries(self) -> Dict[str, Dict[str, Any]]:
        return {
            exchange_id: metrics.get_summary()
            for exchange_id, metrics in self._adapters.items()
        }

    def get_aggregate_summary(self) -> Dict[str, Any]:
        summaries = self.get_all_summaries().values()
        total = sum(s["requests"]["total"] for s in summaries)
        success = sum(s["requests"]["success"] for s in summaries)
        return {
            "exchanges": list(self._adapters.keys()),
            "total_requests": total,
            "total_success": success,
            "total_failure": total - success,
            "success_rate": success / total if total > 0 else 1.0,
            "orders_submitted": sum(s["orders"]["submitted"] for s in summaries),
            "orders_filled": sum(s["orders"]["filled"] for s in summaries),
        }


_global_aggregator = MetricsAggregator()


def get_global_aggregator() -> MetricsAggregator:
    """Get global metrics aggregator."""
    return _global_aggregator
