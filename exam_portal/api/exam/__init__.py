from datetime import datetime

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from exam_portal.models.exam import Exam, ExamQuestion
from exam_portal.models.user import User
from exam_portal.services.auth import get_current_user, require_admin
from exam_portal.utils.base import NotFound


router = APIRouter()


@router.get("")
def list_exams(_: User = Depends(get_current_user)) -> list[dict]:
    """PROTECTED: Active exams without their questions."""
    # Keep payload lightweight; the paper is fetched per exam when taking it
    exams: list[Exam] = Exam.objects(is_active=True).order_by("start_time")
    return [e.to_output(exclude=["questions"]) for e in exams]


@router.get("/{exam_id}")
def get_exam(exam_id: str, current_user: User = Depends(get_current_user)) -> dict:
    """PROTECTED: Exam snapshot; the answer key is only included for admins."""
    exam: Exam | None = Exam.objects(id=exam_id).first() if ObjectId.is_valid(exam_id) else None
    if not exam:
        raise NotFound("Exam not found")
    return exam.to_output(include_answer_key=current_user.is_admin)


class QuestionBody(BaseModel):
    text: str
    options: list[str] = Field(min_length=1)
    correct_answer: int = Field(ge=0)
    marks: int = Field(1, ge=0)


class ExamBody(BaseModel):
    title: str
    subject: str
    description: str | None = None
    questions: list[QuestionBody] = []
    duration_minutes: int = Field(60, ge=1)
    passing_marks: int = Field(0, ge=0)
    is_active: bool = True
    start_time: datetime | None = None
    end_time: datetime | None = None


@router.post("", status_code=201)
def create_exam(body: ExamBody, _: User = Depends(require_admin)) -> dict:
    """ADMIN: Create an exam with its answer key."""
    data = body.model_dump()
    questions = [ExamQuestion(**q) for q in data.pop("questions")]
    exam = Exam(questions=questions, **data)
    # Model validation rejects out-of-range answer keys and inverted windows
    exam.save()
    return exam.to_output(include_answer_key=True)
