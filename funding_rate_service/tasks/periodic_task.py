"""
Periodic Task

One scheduled background job: an async action plus its cadence, metrics
tracking and logging. A failing run is logged and counted; the next
scheduled run is the retry. Scheduling itself lives in TaskScheduler.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from helpers.unified_logger import get_service_logger


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TaskMetrics:
    """Metrics for a background task"""
    task_name: str
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None
    avg_duration_ms: float = 0.0
    total_duration_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return (self.successful_runs / self.total_runs) * 100

    @property
    def is_healthy(self) -> bool:
        """Healthy if mostly successful and not failing right now."""
        if self.total_runs == 0:
            return True

        if self.success_rate < 80 or self.last_success_time is None:
            return False

        if self.last_error_time is None or self.last_success_time > self.last_error_time:
            return True

        return _now() - self.last_error_time > timedelta(minutes=10)


class PeriodicTask:
    """
    Job body for ``action``, run by the scheduler every ``interval_seconds``.

    A run requested while another is still in flight is skipped rather
    than stacked.
    """

    def __init__(
        self,
        task_name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[Any]],
    ):
        self.task_name = task_name
        self.interval_seconds = interval_seconds
        self.action = action
        self.metrics = TaskMetrics(task_name=task_name)
        self.logger = get_service_logger("tasks", task=task_name)
        self._running = False

    async def run_once(self) -> Dict[str, Any]:
        """Run the action once with metrics; never raises."""
        if self._running:
            self.metrics.skipped_runs += 1
            self.logger.warning(f"Task {self.task_name} is already running, skipping")
            return {"status": "skipped", "reason": "already_running"}

        self._running = True
        start = _now()
        try:
            result = await self.action()
            duration_ms = (_now() - start).total_seconds() * 1000
            self._record(duration_ms)
            self.logger.debug(f"✅ Task {self.task_name} completed in {duration_ms:.1f}ms")
            return {"status": "success", "result": result, "duration_ms": duration_ms}
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration_ms = (_now() - start).total_seconds() * 1000
            self._record(duration_ms, error=str(e))
            self.logger.exception(f"❌ Task {self.task_name} failed after {duration_ms:.1f}ms: {e}")
            return {"status": "failed", "error": str(e), "duration_ms": duration_ms}
        finally:
            self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def record_skip(self) -> None:
        self.metrics.skipped_runs += 1
        self.logger.warning(f"Task {self.task_name} is still running, scheduled run skipped")

    def _record(self, duration_ms: float, error: Optional[str] = None) -> None:
        now = _now()
        self.metrics.total_runs += 1
        self.metrics.last_run_time = now
        if error is None:
            self.metrics.successful_runs += 1
            self.metrics.last_success_time = now
        else:
            self.metrics.failed_runs += 1
            self.metrics.last_error_time = now
            self.metrics.last_error_message = error

        self.metrics.total_duration_ms += duration_ms
        self.metrics.avg_duration_ms = self.metrics.total_duration_ms / self.metrics.total_runs

    def get_metrics(self) -> Dict[str, Any]:
        m = self.metrics
        return {
            "task_name": m.task_name,
            "total_runs": m.total_runs,
            "successful_runs": m.successful_runs,
            "failed_runs": m.failed_runs,
            "skipped_runs": m.skipped_runs,
            "success_rate": round(m.success_rate, 2),
            "avg_duration_ms": round(m.avg_duration_ms, 2),
            "last_run_time": m.last_run_time.isoformat() if m.last_run_time else None,
            "last_success_time": m.last_success_time.isoformat() if m.last_success_time else None,
            "last_error_message": m.last_error_message,
            "is_healthy": m.is_healthy,
        }
