# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background job infrastructure.

Periodic analytics jobs run on APScheduler's AsyncIOScheduler inside the
API process.

Scheduler:
    from src.infrastructure.background import start_scheduler, stop_scheduler

    # Start scheduler with the alert refresh job
    await start_scheduler(service, interval_seconds=300)

    # Stop at shutdown
    await stop_scheduler()
"""

from src.infrastructure.background.scheduler import (
    ALERT_REFRESH_TASK,
    AnalyticsScheduler,
    ScheduledTask,
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "ALERT_REFRESH_TASK",
    "AnalyticsScheduler",
    "ScheduledTask",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
