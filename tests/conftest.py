import uuid

import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient
from mongoengine import connect, disconnect

import main
from exam_portal.connections.redis import set_redis
from exam_portal.models.exam import Exam, ExamQuestion
from exam_portal.models.user import User
from exam_portal.services import expiry
from exam_portal.services.auth import create_tokens, hash_password
from exam_portal.utils.base import UserRole


@pytest.fixture(autouse=True)
def mongo():
    connect(
        db=f"exam-portal-test-{uuid.uuid4().hex}",
        alias="default",
        host="mongodb://localhost",
        mongo_client_class=mongomock.MongoClient,
        tz_aware=True,
    )
    yield
    disconnect(alias="default")


@pytest.fixture(autouse=True)
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    set_redis(client)
    yield client
    set_redis(None)


@pytest.fixture(autouse=True)
def scheduled(monkeypatch):
    """Expiry jobs recorded instead of queued."""
    jobs = []

    def fake_schedule_at(run_at, func, *args, **kwargs):
        jobs.append({"run_at": run_at, "func": func, "args": args, "kwargs": kwargs})

    monkeypatch.setattr(expiry, "schedule_at", fake_schedule_at)
    return jobs


@pytest.fixture
def client() -> TestClient:
    # No context manager: the lifespan would connect to real Mongo and Redis
    return TestClient(main.app)


def _make_user(name: str, email: str, role: str = UserRole.STUDENT.value) -> User:
    user = User(name=name, email=email, password=hash_password("Secret123!"), role=role)
    user.save()
    return user


@pytest.fixture
def student() -> User:
    return _make_user("Alice Student", "alice@example.com")


@pytest.fixture
def other_student() -> User:
    return _make_user("Bob Student", "bob@example.com")


@pytest.fixture
def admin() -> User:
    return _make_user("Ada Admin", "admin@example.com", role=UserRole.ADMIN.value)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_tokens(user).access_token}"}


@pytest.fixture
def student_headers(student):
    return auth_headers(student)


@pytest.fixture
def other_headers(other_student):
    return auth_headers(other_student)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


def make_exam(**overrides) -> Exam:
    """Two questions worth 2 marks each, answer key [0, 1], passing at 2."""
    fields = dict(
        title="Sample Exam",
        subject="general",
        questions=[
            ExamQuestion(text="First?", options=["A", "B", "C"], correct_answer=0, marks=2),
            ExamQuestion(text="Second?", options=["A", "B", "C"], correct_answer=1, marks=2),
        ],
        duration_minutes=30,
        passing_marks=2,
    )
    fields.update(overrides)
    exam = Exam(**fields)
    exam.save()
    return exam


@pytest.fixture
def exam() -> Exam:
    return make_exam()
