"""
Task Scheduler

Runs the engine's background jobs on APScheduler's asyncio scheduler.
Each job body is a PeriodicTask; the scheduler owns cadence and overlap:
a job whose previous run is still going is skipped (max_instances=1) and
missed runs are collapsed into one (coalesce).
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from funding_rate_service.tasks.periodic_task import PeriodicTask
from helpers.unified_logger import get_service_logger


class TaskScheduler:
    """
    Central scheduler for the engine's periodic tasks

    Usage:
        scheduler = TaskScheduler([task_a, task_b])
        await scheduler.start()
        ...
        await scheduler.shutdown()
    """

    def __init__(self, tasks: Iterable[PeriodicTask], misfire_grace_time: int = 30):
        self.scheduler = AsyncIOScheduler(
            timezone=timezone.utc,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": misfire_grace_time,
            },
        )
        self.tasks: Dict[str, PeriodicTask] = {task.task_name: task for task in tasks}
        self.logger = get_service_logger("tasks", task="scheduler")

        self.job_stats: Dict[str, Dict[str, Any]] = {
            name: {"executions": 0, "errors": 0, "last_execution": None, "last_error": None}
            for name in self.tasks
        }

        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)
        self.scheduler.add_listener(self._job_max_instances, EVENT_JOB_MAX_INSTANCES)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    async def start(self) -> None:
        """Register every task as an interval job and start the scheduler.

        Jobs fire once immediately, then every ``interval_seconds``.
        """
        self._add_jobs()
        self.scheduler.start()
        self.logger.info("✅ Background task scheduler started")
        for task in self.tasks.values():
            self.logger.info(f"  • {task.task_name}: every {task.interval_seconds}s")

    def _add_jobs(self) -> None:
        now = datetime.now(timezone.utc)
        for task in self.tasks.values():
            self.scheduler.add_job(
                func=task.run_once,
                trigger=IntervalTrigger(seconds=task.interval_seconds),
                id=task.task_name,
                name=task.task_name,
                next_run_time=now,
                replace_existing=True,
            )

    async def shutdown(self) -> None:
        """Stop scheduling; jobs still in flight are cancelled."""
        if not self.scheduler.running:
            return
        self.logger.info("Shutting down task scheduler...")
        self.scheduler.shutdown(wait=False)
        # the asyncio scheduler queues its shutdown on the loop
        await asyncio.sleep(0)
        self.logger.info("✅ Task scheduler shutdown complete")

    async def force_run_job(self, job_id: str) -> Dict[str, Any]:
        """Run one task now, outside its schedule."""
        task = self.tasks.get(job_id)
        if task is None:
            raise ValueError(f"Unknown job ID: {job_id}")
        self.logger.info(f"🔄 Force running job: {job_id}")
        return await task.run_once()

    # ========================================================================
    # Event listeners
    # ========================================================================

    def _job_executed(self, event) -> None:
        stats = self.job_stats.get(event.job_id)
        if stats is not None:
            stats["executions"] += 1
            stats["last_execution"] = datetime.now(timezone.utc)

    def _job_error(self, event) -> None:
        stats = self.job_stats.get(event.job_id)
        if stats is not None:
            stats["errors"] += 1
            stats["last_error"] = datetime.now(timezone.utc)
        self.logger.error(f"Job {event.job_id} failed: {event.exception!r}")

    def _job_missed(self, event) -> None:
        self.logger.warning(f"Job {event.job_id} missed execution at {event.scheduled_run_time}")

    def _job_max_instances(self, event) -> None:
        task = self.tasks.get(event.job_id)
        if task is not None:
            task.record_skip()

    # ========================================================================
    # Status
    # ========================================================================

    def get_scheduler_status(self) -> Dict[str, Any]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run: Optional[datetime] = job.next_run_time
            jobs.append({
                "id": job.id,
                "next_run_time": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })

        return {
            "running": self.scheduler.running,
            "jobs_count": len(jobs),
            "jobs": jobs,
            "job_statistics": {
                job_id: {
                    **stats,
                    "last_execution": stats["last_execution"].isoformat() if stats["last_execution"] else None,
                    "last_error": stats["last_error"].isoformat() if stats["last_error"] else None,
                }
                for job_id, stats in self.job_stats.items()
            },
        }

    def get_task_health(self) -> Dict[str, Dict[str, Any]]:
        return {name: task.get_metrics() for name, task in self.tasks.items()}
