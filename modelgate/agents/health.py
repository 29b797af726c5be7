"""
Agent health state machine.

Status is derived from the cumulative failure rate, never set directly:

    failure_rate = failed_requests / max(total_requests, 1)
    > down_threshold      -> down
    > degraded_threshold  -> degraded
    otherwise             -> healthy

By default the status is recomputed only after a failed call, so a run
of successes does not lift a degraded agent until the next failure
re-evaluates the diluted rate. HealthSettings.recompute_on_success
re-evaluates after every call instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from modelgate.config.settings import HealthSettings


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


def failure_rate(failed_requests: int, total_requests: int) -> float:
    return failed_requests / max(total_requests, 1)


def derive_status(
    failed_requests: int,
    total_requests: int,
    settings: Optional[HealthSettings] = None,
) -> HealthStatus:
    """Map a failure count over a request count to a health status."""
    settings = settings or HealthSettings()
    rate = failure_rate(failed_requests, total_requests)
    if rate > settings.down_threshold:
        return HealthStatus.DOWN
    if rate > settings.degraded_threshold:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


@dataclass
class AgentHealthRecord:
    """Cumulative call statistics for one agent."""

    agent_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    total_requests: int = 0
    failed_requests: int = 0
    total_tokens_used: int = 0
    error_message: Optional[str] = None
    last_checked: Optional[datetime] = None

    @property
    def failure_rate(self) -> float:
        return failure_rate(self.failed_requests, self.total_requests)

    def increment(self, tokens: int, failed: bool, error: Optional[str] = None) -> None:
        """Bump the counters without touching status."""
        self.total_requests += 1
        self.total_tokens_used += tokens
        if failed:
            self.failed_requests += 1
            self.error_message = error
        self.last_checked = datetime.now(timezone.utc)

    def record_call(
        self,
        tokens: int,
        failed: bool,
        error: Optional[str] = None,
        settings: Optional[HealthSettings] = None,
    ) -> HealthStatus:
        """Count one call and recompute status per the recompute policy."""
        settings = settings or HealthSettings()
        self.increment(tokens, failed, error)
        if failed or settings.recompute_on_success:
            self.status = derive_status(
                self.failed_requests, self.total_requests, settings
            )
        return self.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "status": self.status.value,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "total_tokens_used": self.total_tokens_used,
            "failure_rate": round(self.failure_rate, 4),
            "error_message": self.error_message,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }
