"""Delayed jobs on rq-scheduler.

Jobs land on the `attempts` queue when due; run `rqscheduler` and
`rq worker attempts` next to the API for them to execute.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from rq_scheduler import Scheduler

from exam_portal.connections.redis import get_queue_redis


logger = logging.getLogger(__name__)

QUEUE_NAME = "attempts"


def get_scheduler() -> Scheduler:
    return Scheduler(queue_name=QUEUE_NAME, connection=get_queue_redis())


def schedule_at(run_at: datetime, func: Callable, *args, job_id: str | None = None, **kwargs) -> None:
    """Enqueue `func(*args, **kwargs)` at `run_at`; an existing job with the same id is replaced."""
    if run_at.tzinfo is None:
        run_at = run_at.replace(tzinfo=timezone.utc)
    scheduler = get_scheduler()
    if job_id is not None and job_id in scheduler:
        scheduler.cancel(job_id)
        logger.debug("Replaced scheduled job %s", job_id)
    if job_id is not None:
        kwargs["job_id"] = job_id
    scheduler.enqueue_at(run_at, func, *args, **kwargs)
