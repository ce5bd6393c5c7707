import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import main
from conftest import make_exam
from exam_portal.client import (
    CameraUnavailable,
    ExamDraft,
    ExamSession,
    InvalidTransition,
    MemoryDraftStorage,
    PortalApi,
    SessionState,
    draft_key,
    run_session,
)
from exam_portal.models.attempt import Attempt
from exam_portal.services.auth import create_tokens


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeCamera:
    def __init__(self, fail=False):
        self.fail = fail
        self.acquired = 0
        self.released = 0

    def acquire(self):
        if self.fail:
            raise CameraUnavailable("permission denied")
        self.acquired += 1

    def release(self):
        self.released += 1


class CountingApi(PortalApi):
    """Counts submit-like calls and can await a hook while one is in flight."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.submit_calls = 0
        self.during_submit = None

    async def _finish(self, call):
        self.submit_calls += 1
        if self.during_submit is not None:
            await self.during_submit()
        return await call()

    async def submit_attempt(self, attempt_id, answers, end_time=None):
        return await self._finish(lambda: super(CountingApi, self).submit_attempt(attempt_id, answers, end_time))

    async def create_attempt(self, payload):
        return await self._finish(lambda: super(CountingApi, self).create_attempt(payload))


def asgi_http() -> httpx.AsyncClient:
    # No lifespan: the app would connect to real Mongo and Redis
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=main.app), base_url="http://testserver")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryDraftStorage()


@pytest.fixture
def api(student):
    return CountingApi(asgi_http(), token=create_tokens(student).access_token)


@pytest.fixture
def make_session(api, storage, clock, student, exam):
    def factory(**kwargs):
        kwargs.setdefault("camera", FakeCamera())
        user = {"id": str(student.id), "name": student.name, "email": student.email}
        return ExamSession(api, storage, user, kwargs.pop("exam_id", str(exam.id)), clock=clock, **kwargs)
    return factory


async def _answering(session):
    await session.load()
    session.begin()
    return session


def _answer_all_correctly(session):
    session.select(0)
    session.next()
    session.select(1)
    session.next()


@pytest.mark.asyncio
async def test_full_flow_imports_attempt_when_none_exists(make_session, storage, exam, api):
    session = make_session()
    await session.load()
    assert session.state is SessionState.READY
    assert session.time_left == 30 * 60

    session.begin()
    assert session.state is SessionState.ANSWERING
    _answer_all_correctly(session)
    assert session.state is SessionState.CONFIRMING

    storage.set(draft_key(str(exam.id)), "{}")
    summary = await session.confirm_submit()

    assert session.state is SessionState.DONE
    assert api.submit_calls == 1
    assert summary.score == 4
    assert summary.total_marks == 4
    assert summary.percentage == 100.0
    assert summary.status == "Pass"
    assert summary.answered_questions == 2
    assert summary.total_questions == 2
    assert summary.exam_name == exam.title
    assert storage.get(draft_key(str(exam.id))) is None
    assert Attempt.objects.get(id=summary.attempt_id).state == "completed"


@pytest.mark.asyncio
async def test_login_and_profile_give_the_session_user(student, exam, storage, clock):
    api = PortalApi(asgi_http())
    tokens = await api.login("alice@example.com", "Secret123!")
    assert api.token == tokens["access_token"]

    user = await api.profile()
    assert user["id"] == str(student.id)
    assert "password" not in user

    session = ExamSession(api, storage, user, str(exam.id), camera=FakeCamera(), clock=clock)
    await _answering(session)
    session.select(0)
    summary = await session.submit()
    assert summary.student_name == student.name
    assert Attempt.objects.get(id=summary.attempt_id).user.id == student.id


@pytest.mark.asyncio
async def test_submit_uses_the_in_progress_attempt(make_session, api, exam):
    started = await api.start_attempt(str(exam.id))
    session = await _answering(make_session())
    session.select(0)

    summary = await session.submit()
    assert summary.attempt_id == started["id"]
    assert summary.score == 2
    # 2 of 4 marks is 50 %, above the fixed 40 % cutoff
    assert summary.status == "Pass"


@pytest.mark.asyncio
async def test_submit_after_finished_attempt_is_an_error(make_session, api, exam):
    started = await api.start_attempt(str(exam.id))
    await api.abandon_attempt(started["id"])
    session = await _answering(make_session())

    assert await session.submit() is None
    assert session.state is SessionState.ERROR
    assert "already submitted" in session.error


@pytest.mark.asyncio
async def test_autosave_then_reload_restores_identical_draft(make_session, clock):
    session = await _answering(make_session())
    session.select(2)
    session.next()
    clock.advance(10)
    await session.tick()
    assert session.autosave() is True
    saved = session.draft.model_copy(deep=True)

    reloaded = make_session()
    await reloaded.load()
    assert reloaded.draft == saved
    assert reloaded.current_index == 1
    assert reloaded.time_left == 30 * 60 - 10


@pytest.mark.asyncio
async def test_countdown_reads_the_wall_clock(make_session, clock):
    session = await _answering(make_session())

    clock.advance(61.7)
    assert await session.tick() == 30 * 60 - 62
    clock.advance(0.2)
    assert await session.tick() == 30 * 60 - 62


@pytest.mark.asyncio
async def test_nested_submit_while_expiry_submit_in_flight_is_ignored(make_session, api, clock):
    session = await _answering(make_session())
    session.request_submit()

    async def manual_submit():
        assert await session.submit() is None

    api.during_submit = manual_submit
    clock.advance(30 * 60)
    assert await session.tick() == 0
    await session.submit()

    assert api.submit_calls == 1
    assert session.state is SessionState.DONE


@pytest.mark.asyncio
async def test_manual_confirm_overlapping_expiry_submit_sends_once(make_session, api, clock):
    session = await _answering(make_session())
    session.request_submit()
    release = asyncio.Event()
    api.during_submit = release.wait

    clock.advance(30 * 60)
    expiry = asyncio.create_task(session.tick())
    # The expiry submit runs until its first network await
    await asyncio.sleep(0)
    assert session.state is SessionState.SUBMITTING

    assert await session.confirm_submit() is None
    release.set()
    assert await expiry == 0

    assert api.submit_calls == 1
    assert session.state is SessionState.DONE
    assert session.summary is not None


@pytest.mark.asyncio
async def test_slow_submit_does_not_stall_the_event_loop(make_session, api, storage, exam):
    storage.set(draft_key(str(exam.id)), ExamDraft(answers={0: 0}, time_left=0).model_dump_json())
    session = await _answering(make_session())

    async def slow_network():
        await asyncio.sleep(0.5)

    api.during_submit = slow_network
    loop = asyncio.get_running_loop()
    worst_gap = 0.0
    finished = False

    async def heartbeat():
        nonlocal worst_gap
        last = loop.time()
        while not finished:
            await asyncio.sleep(0.01)
            now = loop.time()
            worst_gap = max(worst_gap, now - last)
            last = now

    beat = asyncio.create_task(heartbeat())
    await run_session(session, tick_interval=0.01)
    finished = True
    await beat

    assert session.state is SessionState.DONE
    assert api.submit_calls == 1
    assert worst_gap < 0.2


@pytest.mark.asyncio
async def test_maybe_autosave_follows_interval(make_session, clock, storage, exam):
    session = await _answering(make_session(autosave_interval=30))

    clock.advance(29)
    assert session.maybe_autosave() is False
    clock.advance(1)
    assert session.maybe_autosave() is True
    assert ExamDraft.model_validate_json(storage.get(draft_key(str(exam.id)))).time_left == 30 * 60


@pytest.mark.asyncio
async def test_autosave_failures_do_not_interrupt(make_session):
    class BrokenStorage(MemoryDraftStorage):
        def set(self, key, value):
            raise OSError("disk full")

    session = make_session()
    session.storage = BrokenStorage()
    await _answering(session)

    assert session.autosave() is False
    assert session.state is SessionState.ANSWERING


@pytest.mark.asyncio
async def test_degraded_camera_mode_warns_and_continues(make_session):
    session = await _answering(make_session(camera=FakeCamera(fail=True)))
    assert session.state is SessionState.ANSWERING
    assert session.camera_warning


@pytest.mark.asyncio
async def test_required_camera_failure_is_an_error(make_session):
    session = await _answering(make_session(camera=FakeCamera(fail=True), require_camera=True))
    assert session.state is SessionState.ERROR


@pytest.mark.asyncio
async def test_close_releases_camera_and_ignores_late_result(make_session, api, storage, exam):
    camera = FakeCamera()
    session = await _answering(make_session(camera=camera))
    session.autosave()

    async def close_mid_flight():
        session.close()

    api.during_submit = close_mid_flight
    assert await session.submit() is None
    assert camera.released == 1
    assert session.summary is None
    assert storage.get(draft_key(str(exam.id))) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("exam_id", [None, "64b000000000000000000000"])
async def test_load_failures_move_to_error(make_session, exam_id):
    session = make_session(exam_id=exam_id)
    await session.load()
    assert session.state is SessionState.ERROR


@pytest.mark.asyncio
async def test_inactive_exam_is_not_available(make_session):
    inactive = make_exam(title="Hidden", is_active=False)
    session = make_session(exam_id=str(inactive.id))
    await session.load()
    assert session.state is SessionState.ERROR
    assert session.error == "Exam not available"


@pytest.mark.asyncio
async def test_selecting_on_an_exam_without_questions_is_rejected(make_session):
    empty = make_exam(title="Empty", questions=[])
    session = await _answering(make_session(exam_id=str(empty.id)))

    with pytest.raises(InvalidTransition, match="no questions"):
        session.select(0)
    assert session.state is SessionState.ANSWERING


@pytest.mark.asyncio
async def test_navigation_is_bounds_checked(make_session):
    session = await _answering(make_session())

    session.previous()
    assert session.current_index == 0
    session.go_to(1)
    assert session.current_index == 1
    with pytest.raises(IndexError):
        session.go_to(5)
    with pytest.raises(ValueError):
        session.select(9)
    session.select(2)
    session.clear_choice()
    assert session.draft.answers == {}

    session.request_submit()
    with pytest.raises(InvalidTransition):
        session.select(0)
    session.cancel_submit()
    assert session.state is SessionState.ANSWERING
    with pytest.raises(InvalidTransition):
        await session.confirm_submit()


@pytest.mark.asyncio
async def test_run_session_submits_when_time_runs_out(make_session, storage, exam, api, clock):
    storage.set(draft_key(str(exam.id)), ExamDraft(answers={0: 0}, time_left=3).model_dump_json())
    camera = FakeCamera()
    session = await _answering(make_session(camera=camera))

    # Each tick moves the fake clock forward a second
    wall_clock_tick = session.tick

    async def tick(now=None):
        clock.advance(1)
        return await wall_clock_tick(now)

    session.tick = tick
    await run_session(session, tick_interval=0)

    assert session.state is SessionState.DONE
    assert api.submit_calls == 1
    assert session.summary.score == 2
    assert camera.released == 1
