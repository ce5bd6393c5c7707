"""Server-side lifecycle of exam and assignment attempts.

Timed-exam attempts follow a small state machine: `in_progress` is the only
initial and non-terminal state; submit moves it to `completed` (graded with
an outcome when the exam still resolves) and abandon moves it to
`abandoned`. Every write guarded by that state is a conditional save, so two
racing requests cannot both finalise the same attempt.

Assignment attempts are keyed by (user, assignment, subject) and only carry a
status; they bypass the state machine.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict
from datetime import datetime
from typing import Any, Iterable

from bson.objectid import ObjectId
from mongoengine.errors import NotUniqueError, SaveConditionError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from exam_portal.models.attempt import (
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    LifecycleState,
    split_status,
)
from exam_portal.models.base import as_utc, utcnow
from exam_portal.models.exam import Exam
from exam_portal.models.user import User
from exam_portal.services.results import invalidate_exam_summary
from exam_portal.services.scoring import normalize_selection, outcome_for, score_answers
from exam_portal.utils.base import Conflict, Forbidden, InvalidInput, InvalidState, NotFound, Unavailable


logger = logging.getLogger(__name__)

IN_PROGRESS = LifecycleState.IN_PROGRESS.value
IN_PROGRESS_CONDITION = {"state": IN_PROGRESS}

# Fields a partial update may touch
UPDATABLE_FIELDS = ("answers", "last_saved_index", "time_left")


def _object_id(value: str | None) -> ObjectId | None:
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def _read(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def get_attempt_or_404(attempt_id: str) -> Attempt:
    oid = _object_id(attempt_id)
    attempt: Attempt | None = Attempt.objects(id=oid).first() if oid else None
    if not attempt:
        raise NotFound("Attempt not found")
    return attempt


def resolve_exam(attempt: Attempt) -> Exam | None:
    """The attempt's exam, or None when it has none or it was deleted."""
    exam_id = attempt.ref_id("exam")
    if exam_id is None:
        return None
    return Exam.objects(id=exam_id).first()


def is_owner(attempt: Attempt, user: User) -> bool:
    return attempt.ref_id("user") == user.id


def _load_for_write(attempt_id: str, user: User, action: str, state_message: str) -> Attempt:
    attempt = get_attempt_or_404(attempt_id)
    if not is_owner(attempt, user):
        raise Forbidden(f"Not authorized to {action} this attempt")
    if not attempt.is_in_progress:
        raise InvalidState(state_message)
    return attempt


def _save_in_progress(attempt: Attempt, state_message: str) -> Attempt:
    try:
        attempt.save(save_condition=IN_PROGRESS_CONDITION)
    except SaveConditionError:
        # Another request moved the attempt out of in_progress first
        raise InvalidState(state_message)
    return attempt


def to_answer_documents(answers: Iterable[Any] | None, exam: Exam | None = None) -> list[AttemptAnswer]:
    """Ungraded answer documents with selections converted to option indexes."""
    questions = exam.questions if exam is not None else []
    documents: list[AttemptAnswer] = []
    for answer in answers or []:
        idx = _read(answer, "question_index")
        if idx is None:
            continue
        idx = int(idx)
        question = questions[idx] if 0 <= idx < len(questions) else None
        documents.append(AttemptAnswer(
            question_index=idx,
            selected_option=normalize_selection(question, _read(answer, "selected_option")),
        ))
    return documents


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, halves rounded up."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, int(math.floor(seconds / 60 + 0.5)))


def _apply_grading(attempt: Attempt, answers: Iterable[Any], exam: Exam) -> None:
    result = score_answers(answers, exam.questions)
    attempt.answers = [AttemptAnswer(**asdict(graded)) for graded in result.answers]
    attempt.score = result.total_score
    attempt.total_marks_obtained = result.total_score
    attempt.total_marks = result.total_marks
    attempt.total_questions = len(exam.questions)
    attempt.exam_name = attempt.exam_name or exam.title


def _answered_count(attempt: Attempt) -> int:
    return sum(1 for answer in attempt.answers if answer.selected_option is not None)


def start_attempt(user: User, exam_id: str) -> tuple[Attempt, bool]:
    """Return the caller's in-progress attempt for the exam, creating it if needed.

    The find-or-create is a single upsert; the partial unique index on
    (user, exam) for in-progress attempts settles concurrent starts.
    Returns (attempt, created).
    """
    oid = _object_id(exam_id)
    exam: Exam | None = Exam.objects(id=oid).first() if oid else None
    if not exam or not exam.is_open():
        raise Unavailable("Exam not available")

    fresh = Attempt(
        user=user,
        exam=exam,
        state=IN_PROGRESS,
        start_time=utcnow(),
        time_left=exam.duration_minutes * 60,
        answers=[],
        exam_name=exam.title,
        student_name=user.name,
        student_email=user.email,
        total_questions=len(exam.questions),
    )
    fresh.validate()
    key = {"user": user.id, "exam": exam.id, "state": IN_PROGRESS}
    on_insert = fresh.to_mongo().to_dict()
    for field in ("_id", *key):
        on_insert.pop(field, None)

    coll = Attempt._get_collection()
    try:
        existing = coll.find_one_and_update(
            key,
            {"$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
    except DuplicateKeyError:
        # A concurrent start inserted the attempt first
        existing = True

    attempt: Attempt | None = Attempt.objects(user=user.id, exam=exam.id, state=IN_PROGRESS).first()
    if attempt is None:
        raise InvalidState("Attempt could not be started")
    created = existing is None
    if created:
        invalidate_exam_summary(str(exam.id))
    logger.info("%s attempt %s for user %s on exam %s",
                "Started" if created else "Resumed", attempt.id, user.id, exam.id)
    return attempt, created


def save_progress(
    attempt_id: str,
    user: User,
    answers: Iterable[Any],
    current_index: int,
    time_left: int | None,
) -> Attempt:
    """Autosave: overwrite answers, question pointer and remaining time (last write wins)."""
    message = "Attempt already completed"
    attempt = _load_for_write(attempt_id, user, "update", message)
    attempt.answers = to_answer_documents(answers, resolve_exam(attempt))
    attempt.last_saved_index = current_index
    attempt.time_left = time_left
    return _save_in_progress(attempt, message)


def update_attempt(attempt_id: str, user: User, changes: dict[str, Any]) -> Attempt:
    """Partial update; only keys present in `changes` are applied."""
    message = "Cannot update completed attempt"
    attempt = _load_for_write(attempt_id, user, "update", message)
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidInput(f"Cannot update fields: {', '.join(sorted(unknown))}")

    if changes.get("answers") is not None:
        attempt.answers = to_answer_documents(changes["answers"], resolve_exam(attempt))
    if changes.get("last_saved_index") is not None:
        attempt.last_saved_index = changes["last_saved_index"]
    if changes.get("time_left") is not None:
        attempt.time_left = changes["time_left"]
    return _save_in_progress(attempt, message)


def finalize_attempt(
    attempt: Attempt,
    answers: Iterable[Any] | None = None,
    end_time: datetime | None = None,
) -> Attempt:
    """Terminal submit transition shared by the API and overdue-attempt expiry.

    Answers default to the last saved ones. With a resolvable exam the answers
    are graded and the outcome set; otherwise the attempt is only completed.
    """
    message = "Attempt already submitted"
    if not attempt.is_in_progress:
        raise InvalidState(message)

    exam = resolve_exam(attempt)
    submitted = list(answers) if answers is not None else list(attempt.answers)
    attempt.end_time = as_utc(end_time) or utcnow()
    attempt.time_taken = minutes_between(attempt.start_time, attempt.end_time)
    attempt.state = LifecycleState.COMPLETED.value

    if exam is not None:
        _apply_grading(attempt, submitted, exam)
        attempt.outcome = outcome_for(attempt.score, exam.passing_marks).value
    else:
        attempt.answers = to_answer_documents(submitted)
        attempt.outcome = None
    attempt.answered_questions = _answered_count(attempt)

    _save_in_progress(attempt, message)
    logger.info("Submitted attempt %s: score=%s outcome=%s", attempt.id, attempt.score, attempt.outcome)
    if exam is not None:
        invalidate_exam_summary(str(exam.id))
    return attempt


def submit_attempt(
    attempt_id: str,
    user: User,
    answers: Iterable[Any] | None = None,
    end_time: datetime | None = None,
) -> Attempt:
    attempt = _load_for_write(attempt_id, user, "submit", "Attempt already submitted")
    return finalize_attempt(attempt, answers=answers, end_time=end_time)


def abandon_attempt(attempt_id: str, user: User) -> Attempt:
    message = "Attempt already completed or abandoned"
    attempt = _load_for_write(attempt_id, user, "abandon", message)
    attempt.state = LifecycleState.ABANDONED.value
    _save_in_progress(attempt, message)
    logger.info("Abandoned attempt %s", attempt.id)

    exam_id = attempt.ref_id("exam")
    if exam_id is not None:
        invalidate_exam_summary(str(exam_id))
    return attempt


def list_user_attempts(user_id: str, current_user: User) -> list[Attempt]:
    if not current_user.is_admin and str(current_user.id) != user_id:
        raise Forbidden("Not authorized to view these attempts")
    oid = _object_id(user_id)
    if oid is None:
        return []
    return list(Attempt.objects(user=oid).order_by("-end_time"))


def list_exam_attempts(exam_id: str, current_user: User) -> list[Attempt]:
    """All attempts for an exam for admins; the caller's own otherwise."""
    oid = _object_id(exam_id)
    if oid is None:
        return []
    query: dict[str, Any] = {"exam": oid}
    if not current_user.is_admin:
        query["user"] = current_user.id
    return list(Attempt.objects(**query).order_by("-end_time"))


def get_attempt(attempt_id: str, current_user: User) -> Attempt:
    attempt = get_attempt_or_404(attempt_id)
    if not current_user.is_admin and not is_owner(attempt, current_user):
        raise Forbidden("Not authorized to view this attempt")
    return attempt


def delete_attempt(attempt_id: str) -> None:
    """Hard delete; callers are gated to admins at the route."""
    attempt = get_attempt_or_404(attempt_id)
    exam_id = attempt.ref_id("exam")
    attempt.delete()
    logger.info("Deleted attempt %s", attempt_id)
    if exam_id is not None:
        invalidate_exam_summary(str(exam_id))


def upsert_assignment_status(user: User, assignment_id: str | None, subject_id: str | None,
                             status: str | None) -> Attempt:
    """Find-or-create the (user, assignment, subject) attempt and overwrite its status."""
    if not assignment_id or not subject_id or not status:
        raise InvalidInput("Missing required fields")
    if status not in AttemptStatus.values():
        raise InvalidInput(f"Unknown status: {status}")

    state, outcome = split_status(status)
    now = utcnow()
    update: dict[str, Any] = {
        "set__assignment_status": status,
        "set__state": state,
        "set__updated_at": now,
        "set_on_insert__start_time": now,
        "set_on_insert__created_at": now,
        "set_on_insert__answers": [],
        "set_on_insert__metadata": {},
        "set_on_insert__last_saved_index": 0,
        "set_on_insert__total_marks_obtained": 0,
    }
    if outcome is None:
        update["unset__outcome"] = True
    else:
        update["set__outcome"] = outcome

    queryset = Attempt.objects(user=user.id, assignment=assignment_id, subject=subject_id)
    try:
        attempt = queryset.modify(upsert=True, new=True, **update)
    except NotUniqueError:
        # Lost the insert race; the row exists now, so this is a plain update
        attempt = queryset.modify(upsert=True, new=True, **update)
    return attempt


def list_assignment_attempts(user: User, subject_id: str) -> list[Attempt]:
    return list(Attempt.objects(user=user.id, subject=subject_id))


def create_attempt(current_user: User, payload: dict[str, Any]) -> Attempt:
    """Import a fully formed attempt.

    At most one attempt may exist per (user, exam). When the exam resolves,
    correctness and score are recomputed from the answer key rather than
    trusted from the payload.
    """
    owner_id = payload.get("user") or str(current_user.id)
    if not current_user.is_admin and owner_id != str(current_user.id):
        raise Forbidden("Not authorized to create attempts for another user")
    owner_oid = _object_id(owner_id)
    owner: User | None = User.objects(id=owner_oid).first() if owner_oid else None
    if not owner:
        raise NotFound("User not found")

    exam: Exam | None = None
    if payload.get("exam"):
        exam_oid = _object_id(payload["exam"])
        exam = Exam.objects(id=exam_oid).first() if exam_oid else None
        if not exam:
            raise NotFound("Exam not found")
        if Attempt.objects(user=owner.id, exam=exam.id).first():
            raise Conflict("You have already attempted this exam. Only one attempt is allowed.")

    status = payload.get("status") or AttemptStatus.COMPLETED.value
    if status not in AttemptStatus.values():
        raise InvalidInput(f"Unknown status: {status}")
    state, outcome = split_status(status)

    attempt = Attempt(
        user=owner,
        exam=exam,
        state=state,
        outcome=outcome,
        start_time=as_utc(payload.get("start_time")) or utcnow(),
        end_time=as_utc(payload.get("end_time")),
        time_taken=payload.get("time_taken"),
        student_name=payload.get("student_name") or owner.name,
        student_email=payload.get("student_email") or owner.email,
        exam_name=payload.get("exam_name"),
        total_questions=payload.get("total_questions"),
        answered_questions=payload.get("answered_questions"),
    )
    answers = payload.get("answers") or []
    if exam is not None:
        _apply_grading(attempt, answers, exam)
        if state == LifecycleState.COMPLETED.value:
            attempt.outcome = outcome_for(attempt.score, exam.passing_marks).value
    else:
        attempt.answers = to_answer_documents(answers)
        attempt.score = payload.get("score")
        attempt.total_marks_obtained = payload.get("score") or 0

    if attempt.answered_questions is None:
        attempt.answered_questions = _answered_count(attempt)
    if attempt.time_taken is None and attempt.end_time is not None:
        attempt.time_taken = minutes_between(attempt.start_time, attempt.end_time)

    try:
        attempt.save()
    except NotUniqueError:
        raise Conflict("You have already attempted this exam. Only one attempt is allowed.")
    logger.info("Imported attempt %s for user %s (status=%s)", attempt.id, owner.id, attempt.status)
    if exam is not None:
        invalidate_exam_summary(str(exam.id))
    return attempt
