"""
Exchange Client - Request Metrics.

============================================================
PURPOSE
============================================================
In-process counters for exchange traffic.

METRICS TRACKED:
- Latency per endpoint
- Request success/failure
- Failures by normalized category and by raw exchange code
- Orders accepted and rejected

Reported under "exchange" by ExecutionService.get_statistics().
Nothing is exported to an external collector.

============================================================
"""

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class LatencyStats:
    """Running latency figures for one endpoint."""

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
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
        }


class ClientMetrics:
    """
    Metrics collector for one exchange client.

    Safe to call from concurrent tasks; counters are updated
    under a lock and nothing blocks on I/O.
    """

    def __init__(self, exchange_id: str, max_recent: int = 100):
        self._exchange_id = exchange_id
        self._lock = threading.Lock()
        self._max_recent = max_recent
        self.reset()

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_request(
        self,
        endpoint: str,
        latency_ms: float,
        success: bool,
        status_code: Optional[int] = None,
        error_category: Optional[str] = None,
        exchange_code: Optional[str] = None,
    ) -> None:
        """
        Record one HTTP round-trip.

        Args:
            endpoint: API path without query string
            latency_ms: Wall time of the request
            success: Whether the exchange returned code 0
            status_code: HTTP status
            error_category: Normalized category on failure
            exchange_code: Raw exchange code on failure
        """
        with self._lock:
            self._latency[endpoint].record(latency_ms)
            self._latency["_all"].record(latency_ms)

            if success:
                self._success += 1
            else:
                self._failure += 1
                if error_category:
                    self._by_category[error_category] += 1
                if exchange_code:
                    self._by_code[exchange_code] += 1

            self._recent.append({
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "endpoint": endpoint,
                "latency_ms": round(latency_ms, 2),
                "success": success,
                "status_code": status_code,
                "error_category": error_category,
            })

    def record_order(self, accepted: bool, exchange_code: Optional[str] = None) -> None:
        with self._lock:
            if accepted:
                self._orders_accepted += 1
            else:
                self._orders_rejected += 1
                if exchange_code:
                    self._by_code[exchange_code] += 1

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            total = self._success + self._failure
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
            return {
                "exchange_id": self._exchange_id,
                "uptime_seconds": round(uptime, 1),
                "requests": {
                    "total": total,
                    "success": self._success,
                    "failure": self._failure,
                    "success_rate": self._success / total if total else 1.0,
                },
                "latency": self._latency["_all"].to_dict(),
                "orders": {
                    "accepted": self._orders_accepted,
                    "rejected": self._orders_rejected,
                },
                "errors": {
                    "by_category": dict(self._by_category),
                    "by_code": dict(self._by_code),
                },
            }

    def get_latency_by_endpoint(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                endpoint: stats.to_dict()
                for endpoint, stats in self._latency.items()
                if endpoint != "_all"
            }

    def get_recent_requests(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[-limit:]

    def reset(self) -> None:
        with self._lock:
            self._start_time = datetime.now(timezone.utc)
            self._latency: Dict[str, LatencyStats] = defaultdict(LatencyStats)
            self._success = 0
            self._failure = 0
            self._orders_accepted = 0
            self._orders_rejected = 0
            self._by_category: Dict[str, int] = defaultdict(int)
            self._by_code: Dict[str, int] = defaultdict(int)
            self._recent: Deque[Dict[str, Any]] = deque(maxlen=self._max_recent)
