"""Admin results summary for an exam.

Summaries are read-mostly, so they are cached in Redis for a short TTL and
dropped whenever an attempt for the exam is submitted, abandoned, imported
or deleted. The cache is best effort: when Redis is down the summary is
computed straight from the attempts.
"""
from __future__ import annotations

import logging
from typing import Any

from bson.objectid import ObjectId
from redis.exceptions import RedisError

from exam_portal.models.attempt import Attempt, LifecycleState, Outcome
from exam_portal.models.exam import Exam
from exam_portal.services.cache import cache_delete, cache_get_json, cache_set_json
from exam_portal.utils.base import NotFound
from exam_portal.utils.config import settings


logger = logging.getLogger(__name__)

# RuntimeError covers a process where Redis was never initialised
CACHE_ERRORS = (RedisError, RuntimeError)

EASY_THRESHOLD = 70
MEDIUM_THRESHOLD = 40


def summary_cache_key(exam_id: str) -> str:
    return f"exam-summary:{exam_id}"


def difficulty_for(correct_rate: float) -> str:
    if correct_rate >= EASY_THRESHOLD:
        return "Easy"
    if correct_rate >= MEDIUM_THRESHOLD:
        return "Medium"
    return "Hard"


def invalidate_exam_summary(exam_id: str) -> None:
    try:
        cache_delete(summary_cache_key(exam_id))
    except CACHE_ERRORS as exc:
        logger.warning("Could not invalidate summary cache for exam %s: %s", exam_id, exc)


def compute_exam_summary(exam: Exam) -> dict[str, Any]:
    attempts = list(Attempt.objects(exam=exam.id))
    completed = [a for a in attempts if a.state == LifecycleState.COMPLETED.value]

    times = [a.time_taken for a in completed if a.time_taken is not None]
    scores = [a.score for a in completed if a.score is not None]

    insights = []
    for idx, question in enumerate(exam.questions):
        correct = 0
        for attempt in completed:
            selected = next((ans.selected_option for ans in attempt.answers if ans.question_index == idx), None)
            if selected is not None and selected == question.correct_answer:
                correct += 1
        rate = round(100 * correct / len(completed)) if completed else 0
        insights.append({
            "question_index": idx,
            "text": question.text,
            "correct_count": correct,
            "correct_rate": rate,
            "difficulty": difficulty_for(rate),
        })

    return {
        "exam_id": str(exam.id),
        "exam_name": exam.title,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "total_attempts": len(attempts),
        "completed": len(completed),
        "in_progress": sum(1 for a in attempts if a.state == LifecycleState.IN_PROGRESS.value),
        "abandoned": sum(1 for a in attempts if a.state == LifecycleState.ABANDONED.value),
        "passed": sum(1 for a in completed if a.outcome == Outcome.PASS.value),
        "failed": sum(1 for a in completed if a.outcome == Outcome.FAIL.value),
        "average_time_minutes": round(sum(times) / len(times)) if times else 0,
        "average_score": round(sum(scores) / len(scores), 2) if scores else 0,
        "questions": insights,
    }


def get_exam_summary(exam_id: str) -> dict[str, Any]:
    exam: Exam | None = Exam.objects(id=exam_id).first() if ObjectId.is_valid(exam_id) else None
    if not exam:
        raise NotFound("Exam not found")

    key = summary_cache_key(exam_id)
    try:
        cached = cache_get_json(key)
    except CACHE_ERRORS as exc:
        logger.warning("Summary cache read failed for exam %s: %s", exam_id, exc)
        cached = None
    if cached is not None:
        return cached

    summary = compute_exam_summary(exam)
    try:
        cache_set_json(key, summary, ttl_seconds=settings.summary_cache_ttl_seconds)
    except CACHE_ERRORS as exc:
        logger.warning("Summary cache write failed for exam %s: %s", exam_id, exc)
    return summary
