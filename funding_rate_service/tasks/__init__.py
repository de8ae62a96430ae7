"""
Background task runner
"""

from funding_rate_service.tasks.periodic_task import PeriodicTask, TaskMetrics
from funding_rate_service.tasks.scheduler import TaskScheduler

__all__ = ["PeriodicTask", "TaskMetrics", "TaskScheduler"]
