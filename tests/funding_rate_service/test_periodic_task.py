"""
Tests for PeriodicTask.
"""

import asyncio
import pytest

from funding_rate_service.tasks import PeriodicTask


class TestRunOnce:

    @pytest.mark.asyncio
    async def test_success_is_recorded(self):
        async def action():
            return 3

        task = PeriodicTask("analysis", 60, action)
        result = await task.run_once()

        assert result["status"] == "success"
        assert result["result"] == 3
        metrics = task.get_metrics()
        assert metrics["successful_runs"] == 1
        assert metrics["success_rate"] == 100.0
        assert metrics["is_healthy"] is True

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self):
        async def action():
            raise RuntimeError("venue timeout")

        task = PeriodicTask("supervisor", 60, action)
        result = await task.run_once()

        assert result["status"] == "failed"
        assert task.metrics.failed_runs == 1
        assert task.metrics.last_error_message == "venue timeout"
        assert task.metrics.is_healthy is False

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self):
        release = asyncio.Event()

        async def action():
            await release.wait()

        task = PeriodicTask("slow", 60, action)
        first = asyncio.create_task(task.run_once())
        await asyncio.sleep(0)

        second = await task.run_once()
        release.set()
        await first

        assert second == {"status": "skipped", "reason": "already_running"}
        assert task.metrics.skipped_runs == 1
        assert task.metrics.total_runs == 1

