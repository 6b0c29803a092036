"""Health surface for the out-of-process HTTP layer.

Reports lifecycle state, last successful snapshot and process uptime, and
runs a small set of health checks over them. Every check catches its own
errors and reports "fail" rather than raising.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Optional

import psutil

from ..runtime.events import LifecycleState
from ..runtime.lifecycle import LifecycleController

_process: Optional[psutil.Process] = None


def _get_process() -> psutil.Process:
    """Return a cached psutil.Process handle for this process."""
    global _process
    if _process is None:
        _process = psutil.Process(os.getpid())
    return _process


def _now() -> int:
    return int(time.time())


@dataclass
class HealthCheckResult:
    """Result of a single health check."""

    name: str
    status: str  # "pass" | "fail" | "warn"
    message: str
    timestamp: int
    details: Optional[dict]


@dataclass
class HealthReport:
    """Point-in-time status of the session keeper."""

    timestamp: int
    state: str
    last_snapshot_at: Optional[int]
    uptime_seconds: int
    linking_payload_available: bool
    pending_replies: int
    restart_count: int
    pid: int
    ram_mb: Optional[int]
    checks: list[HealthCheckResult]

    @property
    def healthy(self) -> bool:
        return all(check.status != "fail" for check in self.checks)


def format_uptime(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}h {minutes}m {secs}s"


def check_session_ready(controller: LifecycleController) -> HealthCheckResult:
    """READY passes; linking or authenticating warns; disconnected fails."""
    now = _now()
    try:
        state = controller.state
        if state is LifecycleState.READY:
            return HealthCheckResult(
                name="session_ready",
                status="pass",
                message="Session ready",
                timestamp=now,
                details=None,
            )
        if state is LifecycleState.DISCONNECTED:
            return HealthCheckResult(
                name="session_ready",
                status="fail",
                message="Session disconnected, restart pending",
                timestamp=now,
                details={"restart_count": controller.restart_count},
            )
        return HealthCheckResult(
            name="session_ready",
            status="warn",
            message=f"Session not ready yet ({state.value})",
            timestamp=now,
            details={"state": state.value},
        )
    except Exception as exc:
        return HealthCheckResult(
            name="session_ready",
            status="fail",
            message=f"Session state check failed: {exc}",
            timestamp=now,
            details={"error": str(exc)},
        )


def check_snapshot_fresh(
    controller: LifecycleController,
    stale_after_intervals: int = 3,
) -> HealthCheckResult:
    """Warn once a READY session has gone several backup intervals without a snapshot."""
    now = _now()
    try:
        last = controller.last_snapshot_at
        if last is None:
            return HealthCheckResult(
                name="snapshot_fresh",
                status="pass" if not controller.is_ready else "warn",
                message="No snapshot saved yet",
                timestamp=now,
                details=None,
            )
        age = max(0, now - int(last))
        threshold = controller.backup_interval_seconds * stale_after_intervals
        if controller.is_ready and age > threshold:
            return HealthCheckResult(
                name="snapshot_fresh",
                status="warn",
                message=f"Last snapshot {age}s ago (threshold: {threshold}s)",
                timestamp=now,
                details={"age_seconds": age, "threshold": threshold},
            )
        return HealthCheckResult(
            name="snapshot_fresh",
            status="pass",
            message=f"Last snapshot {age}s ago",
            timestamp=now,
            details=None,
        )
    except Exception as exc:
        return HealthCheckResult(
            name="snapshot_fresh",
            status="fail",
            message=f"Snapshot freshness check failed: {exc}",
            timestamp=now,
            details={"error": str(exc)},
        )


def check_outbound_backlog(pending: int, threshold: int = 50) -> HealthCheckResult:
    now = _now()
    if pending > threshold:
        return HealthCheckResult(
            name="outbound_backlog",
            status="warn",
            message=f"{pending} replies waiting (threshold: {threshold})",
            timestamp=now,
            details={"pending": pending, "threshold": threshold},
        )
    return HealthCheckResult(
        name="outbound_backlog",
        status="pass",
        message=f"{pending} replies waiting",
        timestamp=now,
        details=None,
    )


def collect_health(controller: LifecycleController, started_at: float) -> HealthReport:
    """Assemble a HealthReport for the controller's current attempt."""
    now = _now()
    pending = controller.delivery_queue.pending if controller.delivery_queue else 0
    try:
        ram_mb: Optional[int] = int(_get_process().memory_info().rss / (1024 * 1024))
    except psutil.Error:
        ram_mb = None

    last = controller.last_snapshot_at
    return HealthReport(
        timestamp=now,
        state=controller.state.value,
        last_snapshot_at=int(last) if last is not None else None,
        uptime_seconds=max(0, int(time.time() - started_at)),
        linking_payload_available=controller.linking_payload is not None,
        pending_replies=pending,
        restart_count=controller.restart_count,
        pid=os.getpid(),
        ram_mb=ram_mb,
        checks=[
            check_session_ready(controller),
            check_snapshot_fresh(controller),
            check_outbound_backlog(pending),
        ],
    )
