from datetime import datetime

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from exam_portal.models.user import User
from exam_portal.services import attempts as attempt_service
from exam_portal.services.auth import get_current_user, require_admin
from exam_portal.services.expiry import schedule_attempt_expiry
from exam_portal.services.results import get_exam_summary


router = APIRouter()


class AnswerBody(BaseModel):
    question_index: int = Field(ge=0)
    # Option index, numeric string or option text; stored as an index
    selected_option: int | str | None = None


def _dump_answers(answers: list[AnswerBody] | None) -> list[dict] | None:
    if answers is None:
        return None
    return [a.model_dump() for a in answers]


@router.get("/user/{user_id}")
def list_user_attempts(user_id: str, current_user: User = Depends(get_current_user)) -> list[dict]:
    """PROTECTED: Attempts of a user, newest end time first (self or admin)."""
    attempts = attempt_service.list_user_attempts(user_id, current_user)
    return [a.to_output() for a in attempts]


@router.get("/exam/{exam_id}")
def list_exam_attempts(exam_id: str, current_user: User = Depends(get_current_user)) -> list[dict]:
    """PROTECTED: Attempts for an exam; students only see their own."""
    attempts = attempt_service.list_exam_attempts(exam_id, current_user)
    return [a.to_output() for a in attempts]


@router.get("/exam/{exam_id}/summary")
def exam_summary(exam_id: str, _: User = Depends(require_admin)) -> dict:
    """ADMIN: Pass/fail counts, timing and per-question difficulty for an exam."""
    return get_exam_summary(exam_id)


@router.get("/user-assignments/{subject_id}")
def list_user_assignments(subject_id: str, current_user: User = Depends(get_current_user)) -> list[dict]:
    """PROTECTED: The caller's assignment attempts for a subject."""
    attempts = attempt_service.list_assignment_attempts(current_user, subject_id)
    return [a.to_output() for a in attempts]


@router.get("/{attempt_id}")
def get_attempt(attempt_id: str, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: A single attempt (owner or admin)."""
    return attempt_service.get_attempt(attempt_id, current_user).to_output()


class StartBody(BaseModel):
    exam_id: str


@router.post("/start")
def start_attempt(
    body: StartBody,
    response: Response,
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Start or resume the caller's attempt (201 when created, 200 when resumed)."""
    attempt, created = attempt_service.start_attempt(current_user, body.exam_id)
    if created:
        response.status_code = 201
        # Only fresh attempts need an expiry job; resumed ones already have one
        schedule_attempt_expiry(attempt, attempt_service.resolve_exam(attempt))
    return attempt.to_output()


class ProgressBody(BaseModel):
    answers: list[AnswerBody] = []
    current_index: int = Field(0, ge=0)
    time_left: int | None = Field(None, ge=0)


@router.post("/{attempt_id}/progress")
def save_progress(
    attempt_id: str,
    body: ProgressBody,
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Autosave answers, question pointer and remaining time."""
    attempt = attempt_service.save_progress(
        attempt_id,
        current_user,
        answers=_dump_answers(body.answers),
        current_index=body.current_index,
        time_left=body.time_left,
    )
    return attempt.to_output()


class UpdateBody(BaseModel):
    answers: list[AnswerBody] | None = None
    last_saved_index: int | None = Field(None, ge=0)
    time_left: int | None = Field(None, ge=0)


@router.put("/{attempt_id}")
def update_attempt(
    attempt_id: str,
    body: UpdateBody,
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Partial update of an in-progress attempt."""
    changes = body.model_dump(exclude_unset=True)
    if "answers" in changes:
        changes["answers"] = _dump_answers(body.answers)
    return attempt_service.update_attempt(attempt_id, current_user, changes).to_output()


class SubmitBody(BaseModel):
    answers: list[AnswerBody] | None = None
    end_time: datetime | None = None


@router.post("/{attempt_id}/submit")
def submit_attempt(
    attempt_id: str,
    body: SubmitBody | None = None,
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Finalise and grade; answers default to the last saved ones."""
    body = body or SubmitBody()
    attempt = attempt_service.submit_attempt(
        attempt_id,
        current_user,
        answers=_dump_answers(body.answers),
        end_time=body.end_time,
    )
    return attempt.to_output()


@router.post("/{attempt_id}/abandon")
def abandon_attempt(attempt_id: str, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Abandon an in-progress attempt."""
    return attempt_service.abandon_attempt(attempt_id, current_user).to_output()


@router.delete("/{attempt_id}")
def delete_attempt(attempt_id: str, _: User = Depends(require_admin)) -> dict:
    """ADMIN: Hard-delete an attempt."""
    attempt_service.delete_attempt(attempt_id)
    return {"message": "Attempt deleted successfully"}


class AssignmentStatusBody(BaseModel):
    assignment_id: str | None = None
    subject_id: str | None = None
    status: str | None = None


@router.post("/assignment-status")
def assignment_status(
    body: AssignmentStatusBody,
    current_user: User = Depends(get_current_user),
) -> dict:
    """PROTECTED: Upsert the caller's status for an assignment."""
    attempt = attempt_service.upsert_assignment_status(
        current_user, body.assignment_id, body.subject_id, body.status
    )
    return {"success": True, "attempt": attempt.to_output()}


class CreateBody(BaseModel):
    user: str | None = None
    exam: str | None = None
    answers: list[AnswerBody] = []
    score: float | None = None
    status: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    time_taken: int | None = Field(None, ge=0)
    student_name: str | None = None
    student_email: str | None = None
    exam_name: str | None = None
    total_questions: int | None = Field(None, ge=0)
    answered_questions: int | None = Field(None, ge=0)


@router.post("", status_code=201)
def create_attempt(body: CreateBody, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Import a fully formed attempt (one per user and exam)."""
    payload = body.model_dump()
    payload["answers"] = _dump_answers(body.answers)
    return attempt_service.create_attempt(current_user, payload).to_output()
