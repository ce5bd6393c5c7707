"""Server-side finalisation of attempts left open past their deadline.

Starting an attempt schedules a job at start + duration + grace. The job, and
the reconcile pass run at startup, submit the last saved answers with the
deadline as end time. Finalising goes through the same conditional save as a
student submit, so whichever lands first wins.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from redis.exceptions import RedisError

from exam_portal.models.attempt import Attempt, LifecycleState
from exam_portal.models.base import as_utc, utcnow
from exam_portal.models.exam import Exam
from exam_portal.services.attempts import finalize_attempt, resolve_exam
from exam_portal.services.scheduler import schedule_at
from exam_portal.utils.base import InvalidState
from exam_portal.utils.config import settings


logger = logging.getLogger(__name__)


def attempt_deadline(attempt: Attempt, exam: Exam) -> datetime:
    return as_utc(attempt.start_time) + timedelta(minutes=exam.duration_minutes)


def expiry_job_id(attempt_id: str) -> str:
    return f"attempt-expiry:{attempt_id}"


def schedule_attempt_expiry(attempt: Attempt, exam: Exam) -> None:
    """Queue the overdue check; a scheduling failure never fails the start."""
    run_at = attempt_deadline(attempt, exam) + timedelta(seconds=settings.attempt_grace_seconds)
    try:
        schedule_at(run_at, expire_attempt, str(attempt.id), job_id=expiry_job_id(str(attempt.id)))
    except RedisError as exc:
        logger.warning("Could not schedule expiry for attempt %s: %s", attempt.id, exc)
        return
    logger.debug("Scheduled expiry for attempt %s at %s", attempt.id, run_at.isoformat())


def expire_attempt(attempt_id: str, now: datetime | None = None) -> bool:
    """Submit an in-progress attempt whose deadline and grace have passed.

    Returns True when this call finalised the attempt.
    """
    attempt: Attempt | None = Attempt.objects(id=attempt_id).first()
    if attempt is None or not attempt.is_in_progress:
        return False
    exam = resolve_exam(attempt)
    if exam is None:
        logger.warning("Attempt %s has no resolvable exam; leaving it open", attempt_id)
        return False

    now = now or utcnow()
    deadline = attempt_deadline(attempt, exam)
    if now < deadline + timedelta(seconds=settings.attempt_grace_seconds):
        return False

    try:
        finalize_attempt(attempt, end_time=deadline)
    except InvalidState:
        logger.info("Attempt %s was submitted before expiry ran", attempt_id)
        return False
    logger.info("Expired overdue attempt %s with deadline %s", attempt_id, deadline.isoformat())
    return True


def reconcile_overdue_attempts(now: datetime | None = None) -> int:
    """Finalise every overdue in-progress attempt; returns how many were closed."""
    now = now or utcnow()
    expired = 0
    for attempt in Attempt.objects(state=LifecycleState.IN_PROGRESS.value, exam__exists=True):
        if expire_attempt(str(attempt.id), now=now):
            expired += 1
    if expired:
        logger.info("Reconciled %d overdue attempts", expired)
    return expired
