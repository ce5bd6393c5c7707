from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone

from exam_portal.connections.mongo import init_mongo, close_mongo
from exam_portal.models.exam import Exam, ExamQuestion
from exam_portal.models.user import User
from exam_portal.services.auth import hash_password
from exam_portal.utils.base import UserRole
from exam_portal.utils.logging import configure_logging


logger = logging.getLogger(__name__)

USER_FIXTURES = [
    ("Admin Example", "admin@example.com", "Secret123!", UserRole.ADMIN.value),
    ("Alice Example", "alice@example.com", "Secret123!", UserRole.STUDENT.value),
    ("Bob Example", "bob@example.com", "Secret123!", UserRole.STUDENT.value),
    ("Carol Example", "carol@example.com", "Secret123!", UserRole.STUDENT.value),
]

EXAM_FIXTURES = [
    ("Algebra Basics", "math", 10, 30),
    ("Cell Biology", "biology", 8, 20),
    ("World Geography", "geography", 12, 45),
]


def _ensure_users() -> list[User]:
    users: list[User] = []
    for name, email, pwd, role in USER_FIXTURES:
        user = User.objects(email=email).first()
        if not user:
            user = User(name=name, email=email, password=hash_password(pwd), role=role)
            user.save()
        users.append(user)
    return users


def _build_questions(title: str, count: int, rng: random.Random) -> list[ExamQuestion]:
    questions = []
    for i in range(1, count + 1):
        questions.append(ExamQuestion(
            text=f"{title}: question {i}",
            options=[f"Option {idx + 1}" for idx in range(4)],
            correct_answer=rng.randint(0, 3),
            # every fourth question is worth double
            marks=2 if i % 4 == 0 else 1,
        ))
    return questions


def _ensure_exams(rng: random.Random) -> list[Exam]:
    exams: list[Exam] = []
    now = datetime.now(timezone.utc)
    for title, subject, count, duration in EXAM_FIXTURES:
        exam = Exam.objects(title=title).first()
        if not exam:
            questions = _build_questions(title, count, rng)
            total = sum(q.marks for q in questions)
            exam = Exam(
                title=title,
                subject=subject,
                description=f"Practice exam on {subject}",
                questions=questions,
                duration_minutes=duration,
                passing_marks=(total * 4 + 9) // 10,
                start_time=now - timedelta(days=1),
                end_time=now + timedelta(days=30),
            )
            exam.save()
        exams.append(exam)
    return exams


def seed_fixtures(seed_value: int | None = None) -> tuple[list[User], list[Exam]]:
    """Create demo users and exams unless they already exist."""
    rng = random.Random(seed_value)
    users = _ensure_users()
    exams = _ensure_exams(rng)
    logger.info("Seeded %d users and %d exams", len(users), len(exams))
    return users, exams


def seed() -> None:
    configure_logging()
    init_mongo()
    try:
        seed_fixtures()
    finally:
        close_mongo()


if __name__ == "__main__":
    seed()
