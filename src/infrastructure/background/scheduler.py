# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for periodic analytics jobs.

Uses APScheduler's AsyncIOScheduler to run coroutine jobs on the
application's event loop. The default job re-evaluates the threshold
alerts on an interval so the cached alert list stays fresh.

Example:
    from src.infrastructure.background.scheduler import start_scheduler

    scheduler = await start_scheduler(service, interval_seconds=300)

    # Run a job outside its schedule
    await scheduler.run_task(task.id)

    await stop_scheduler()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.domains.analytics.service import AnalyticsService
from src.utils.logging import bind_context, clear_context

logger = logging.getLogger(__name__)

ALERT_REFRESH_TASK = "Analytics Alert Refresh"


@dataclass
class ScheduledTask:
    """Configuration and bookkeeping of a scheduled job.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        func: Coroutine function the job awaits.
        interval_seconds: Interval between runs.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        run_count: Total number of successful runs.
        error_count: Number of failed runs.
        last_error: Message of the most recent failure.
    """

    name: str
    func: Callable[[], Awaitable[Any]]
    interval_seconds: float
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class AnalyticsScheduler:
    """Interval scheduler for analytics refresh jobs.

    A job never overlaps with itself: APScheduler skips a run while the
    previous one is still in progress and coalesces missed runs.

    Attributes:
        _scheduler: APScheduler instance, None while stopped.
        _tasks: Registered tasks by id.
    """

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def add_interval_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        seconds: float,
        enabled: bool = True,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Add an interval-scheduled task.

        Args:
            name: Task name.
            func: Coroutine function to await on every run.
            seconds: Interval in seconds.
            enabled: Whether the task is enabled.
            start_immediately: Run once as soon as the scheduler runs.

        Returns:
            Created ScheduledTask.

        Raises:
            ValueError: If the interval is not positive.
        """
        if seconds <= 0:
            raise ValueError(f"Interval must be positive, got {seconds}")

        task = ScheduledTask(name=name, func=func, interval_seconds=seconds, enabled=enabled)
        self._tasks[task.id] = task

        if self._scheduler is not None and enabled:
            self._schedule(task, start_immediately)

        logger.info("Added interval task: %s (every %ss)", name, seconds)
        return task

    def _schedule(self, task: ScheduledTask, start_immediately: bool = False) -> None:
        assert self._scheduler is not None
        # An explicit next_run_time of None would add the job paused
        extra: dict[str, Any] = {}
        if start_immediately:
            extra["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.run_task,
            trigger=IntervalTrigger(seconds=task.interval_seconds),
            args=[task.id],
            id=task.id,
            name=task.name,
            max_instances=1,
            coalesce=True,
            **extra,
        )

    async def run_task(self, task_id: str) -> bool:
        """Execute a task once.

        A failing run is logged and counted; the schedule keeps going.

        Args:
            task_id: ID of the task to execute.

        Returns:
            True if the run succeeded.
        """
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return False

        bind_context(task=task.name)
        logger.debug("Executing scheduled task: %s", task.name)
        try:
            await task.func()
        except Exception as e:
            task.error_count += 1
            task.last_error = str(e)
            logger.error("Scheduled task %s failed: %s", task.name, e, exc_info=True)
            return False
        finally:
            clear_context()

        task.last_run = datetime.now(timezone.utc)
        task.run_count += 1
        return True

    def remove_task(self, task_id: str) -> bool:
        """Remove a scheduled task.

        Returns:
            True if removed.
        """
        if task_id not in self._tasks:
            return False

        if self._scheduler is not None and self._scheduler.get_job(task_id) is not None:
            self._scheduler.remove_job(task_id)

        del self._tasks[task_id]
        logger.info("Removed scheduled task: %s", task_id)
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for task in self._tasks.values():
            if task.enabled:
                self._schedule(task)
        self._scheduler.start()

        logger.info("Analytics scheduler started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self._scheduler is None:
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Analytics scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "is_running": self.is_running,
            "task_count": len(self._tasks),
            "enabled_count": sum(1 for t in self._tasks.values() if t.enabled),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


# Singleton instance
_scheduler: AnalyticsScheduler | None = None


def get_scheduler() -> AnalyticsScheduler:
    """Get the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AnalyticsScheduler()
    return _scheduler


async def start_scheduler(
    service: AnalyticsService,
    interval_seconds: float,
) -> AnalyticsScheduler:
    """Start the scheduler and register the alert refresh job.

    Args:
        service: Analytics service whose alerts are refreshed.
        interval_seconds: Refresh interval.

    Returns:
        Started scheduler instance.
    """
    scheduler = get_scheduler()
    await scheduler.start()

    if not any(t.name == ALERT_REFRESH_TASK for t in scheduler.list_tasks()):
        scheduler.add_interval_task(
            name=ALERT_REFRESH_TASK,
            func=service.refresh_alerts,
            seconds=interval_seconds,
        )

    return scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
