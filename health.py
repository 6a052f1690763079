# src/health.py
import logging

from errors import InvalidConfiguration
from models import HealthSnapshot, HealthStatus

logger = logging.getLogger(__name__)


def derive_status(latency_ms: float, requests_remaining: int, latency_degraded_ms: float = 300.0) -> HealthStatus:
    """Quota exhaustion dominates latency: HALTED > DEGRADED > ALIVE."""
    if requests_remaining <= 0:
        return HealthStatus.HALTED
    if latency_ms > latency_degraded_ms:
        return HealthStatus.DEGRADED
    return HealthStatus.ALIVE


class HealthMonitor:
    """Latency, API quota and memory for the running process.

    Status is re-derived from current values on every update; there is no
    fault latch, so a HALTED tick clears as soon as quota is reset.
    """

    def __init__(
        self,
        api_limit_max: int,
        api_requests_remaining: int,
        total_memory_mb: float,
        memory_usage_mb: float = 0.0,
        latency_ms: float = 0.0,
        latency_degraded_ms: float = 300.0,
    ):
        if api_limit_max <= 0 or total_memory_mb <= 0 or latency_degraded_ms <= 0:
            raise InvalidConfiguration("health limits must be > 0")
        if not 0 <= api_requests_remaining <= api_limit_max:
            raise InvalidConfiguration("api_requests_remaining must be within [0, api_limit_max]")
        self.api_limit_max = api_limit_max
        self.api_requests_remaining = api_requests_remaining
        self.total_memory_mb = total_memory_mb
        self.memory_usage_mb = min(max(0.0, memory_usage_mb), total_memory_mb)
        self.latency_ms = max(0.0, latency_ms)
        self.latency_degraded_ms = latency_degraded_ms
        self.status = derive_status(self.latency_ms, self.api_requests_remaining, latency_degraded_ms)

    def update(self, latency_ms: float, quota_used_delta: int, memory_used_mb: float) -> HealthStatus:
        if memory_used_mb > self.total_memory_mb:
            logger.warning("Reported memory %.0fMB exceeds total %.0fMB, clamping", memory_used_mb, self.total_memory_mb)
        self.latency_ms = max(0.0, float(latency_ms))
        self.api_requests_remaining = max(0, self.api_requests_remaining - max(0, int(quota_used_delta)))
        self.memory_usage_mb = min(max(0.0, float(memory_used_mb)), self.total_memory_mb)
        self.status = derive_status(self.latency_ms, self.api_requests_remaining, self.latency_degraded_ms)
        return self.status

    def reset_quota(self, remaining=None):
        """Start a new quota window (defaults to the full allowance)."""
        remaining = self.api_limit_max if remaining is None else remaining
        if not 0 <= remaining <= self.api_limit_max:
            raise InvalidConfiguration("remaining quota must be within [0, api_limit_max]")
        self.api_requests_remaining = remaining
        self.status = derive_status(self.latency_ms, self.api_requests_remaining, self.latency_degraded_ms)

    def snapshot(self) -> HealthSnapshot:
        return HealthSnapshot(
            latency_ms=self.latency_ms,
            api_requests_remaining=self.api_requests_remaining,
            api_limit_max=self.api_limit_max,
            memory_usage_mb=self.memory_usage_mb,
            total_memory_mb=self.total_memory_mb,
            status=self.status,
            api_remaining_ratio=self.api_requests_remaining / self.api_limit_max,
            memory_ratio=self.memory_usage_mb / self.total_memory_mb,
        )
