"""Telemetry records for executed hooks."""

from collections import deque
from datetime import UTC, datetime
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram
from pydantic import BaseModel, Field

from .logging_config import get_telemetry_logger


class HookCallEvent(BaseModel):
    """One executed hook, as recorded for telemetry."""

    event_name: str
    hook_type: str = "command"
    hook_name: str
    hook_input: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float
    success: bool
    output: dict[str, Any] | None = None
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class HookTelemetry:
    """Structured log plus Prometheus counters for hook calls."""

    def __init__(
        self, registry: CollectorRegistry | None = None, max_history: int = 1000
    ):
        """Initialize hook telemetry.

        Args:
            registry: Prometheus registry (creates new if None)
            max_history: Number of recent events kept in memory
        """
        self.registry = registry or CollectorRegistry()
        self.logger = get_telemetry_logger()
        self.events: deque[HookCallEvent] = deque(maxlen=max_history)

        self.hook_calls_total = Counter(
            "agent_governance_hook_calls_total",
            "Total hook subprocess executions",
            ["event", "status"],
            registry=self.registry,
        )
        self.hook_duration_seconds = Histogram(
            "agent_governance_hook_duration_seconds",
            "Hook execution time",
            ["event"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self.registry,
        )

    def log_hook_call(self, event: HookCallEvent) -> None:
        """Record one hook call."""
        self.events.append(event)
        status = "success" if event.success else "failure"
        self.hook_calls_total.labels(event=event.event_name, status=status).inc()
        self.hook_duration_seconds.labels(event=event.event_name).observe(
            event.duration_ms / 1000
        )

        self.logger.info(
            "Hook call",
            event_name=event.event_name,
            hook_type=event.hook_type,
            hook_name=event.hook_name,
            duration_ms=round(event.duration_ms, 2),
            success=event.success,
            exit_code=event.exit_code,
            error=event.error,
            timestamp=event.timestamp.isoformat(),
        )

    def get_recent_events(self, limit: int = 100) -> list[HookCallEvent]:
        return list(self.events)[-limit:][::-1]

    def get_stats(self) -> dict[str, Any]:
        """Get hook call statistics for monitoring"""
        if not self.events:
            return {"total": 0}

        total = len(self.events)
        succeeded = sum(1 for e in self.events if e.success)
        return {
            "total": total,
            "succeeded": succeeded,
            "failed": total - succeeded,
            "success_rate": succeeded / total,
            "avg_duration_ms": sum(e.duration_ms for e in self.events) / total,
        }
