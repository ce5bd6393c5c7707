"""Headless exam-taking session.

The session walks one student through one exam:

    loading -> ready -> camera_check -> answering <-> confirming -> submitting -> done

with `error` reachable from any step that fetches or submits. Time is read
from an injectable clock so the countdown and autosave cadence can be
driven deterministically; `SessionTimers` drives them in real time. Network
calls are coroutines so a submit in flight never stalls the event loop.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from exam_portal.client.api import PortalApi, PortalApiError
from exam_portal.client.config import ClientSettings
from exam_portal.client.proctoring import CameraDevice, CameraUnavailable, NoCamera
from exam_portal.client.storage import DraftStorage, ExamDraft, FileDraftStorage, draft_key


logger = logging.getLogger(__name__)

CAMERA_WARNING = "Camera access is required for this exam. Please enable your camera and refresh."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    CAMERA_CHECK = "camera_check"
    ANSWERING = "answering"
    CONFIRMING = "confirming"
    SUBMITTING = "submitting"
    DONE = "done"
    ERROR = "error"


class InvalidTransition(Exception):
    pass


@dataclass
class ReviewSummary:
    attempt_id: str
    exam_id: str
    exam_name: str
    student_name: str
    score: float
    total_marks: int
    percentage: float
    status: str
    total_questions: int
    answered_questions: int
    time_taken: int  # seconds


class ExamSession:
    def __init__(
        self,
        api: PortalApi,
        storage: DraftStorage,
        user: dict,
        exam_id: str | None,
        camera: CameraDevice | None = None,
        clock: Callable[[], datetime] = _utcnow,
        autosave_interval: float = 30.0,
        pass_percentage: float = 40.0,
        require_camera: bool = False,
    ):
        self.api = api
        self.storage = storage
        self.user = user
        self.exam_id = exam_id
        self.camera = camera or NoCamera()
        self.clock = clock
        self.autosave_interval = autosave_interval
        self.pass_percentage = pass_percentage
        self.require_camera = require_camera

        self.state = SessionState.LOADING
        self.exam: dict | None = None
        self.questions: list[dict] = []
        self.draft: ExamDraft | None = None
        self.error: str | None = None
        self.camera_warning: str | None = None
        self.summary: ReviewSummary | None = None
        self.closed = False

        self._camera_active = False
        self._submitting = False
        self._started_at: datetime | None = None
        self._end_at: datetime | None = None
        self._last_autosave: datetime | None = None

    @classmethod
    def from_settings(
        cls,
        api: PortalApi,
        user: dict,
        exam_id: str,
        settings: ClientSettings | None = None,
        camera: CameraDevice | None = None,
    ) -> "ExamSession":
        settings = settings or ClientSettings()
        return cls(
            api,
            FileDraftStorage(settings.draft_dir),
            user,
            exam_id,
            camera=camera,
            autosave_interval=settings.autosave_interval_seconds,
            pass_percentage=settings.pass_percentage,
            require_camera=settings.require_camera,
        )

    @property
    def key(self) -> str:
        return draft_key(self.exam_id or "")

    @property
    def duration_seconds(self) -> int:
        return int((self.exam or {}).get("duration_minutes") or 0) * 60

    @property
    def current_index(self) -> int:
        return self.draft.current_index if self.draft else 0

    @property
    def time_left(self) -> int:
        return self.draft.time_left if self.draft else 0

    def _fail(self, message: str) -> None:
        logger.error("Exam session %s failed: %s", self.exam_id, message)
        self.error = message
        self.state = SessionState.ERROR

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"Expected state {allowed}, session is {self.state.value}")

    # loading -> ready

    async def load(self) -> None:
        self.state = SessionState.LOADING
        if not self.exam_id:
            return self._fail("Exam ID is missing.")
        try:
            exam = await self.api.get_exam(self.exam_id)
        except PortalApiError as exc:
            return self._fail(exc.message)
        if not exam or not exam.get("is_active"):
            return self._fail("Exam not available")

        self.exam = exam
        self.questions = exam.get("questions") or []
        self.draft = self._restore_draft() or ExamDraft(time_left=self.duration_seconds)
        if not 0 <= self.draft.current_index < max(len(self.questions), 1):
            self.draft.current_index = 0
        self.state = SessionState.READY

    def _restore_draft(self) -> ExamDraft | None:
        try:
            raw = self.storage.get(self.key)
        except Exception as exc:
            logger.warning("Could not read draft %s: %s", self.key, exc)
            return None
        if not raw:
            return None
        try:
            return ExamDraft.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable draft %s: %s", self.key, exc)
            return None

    # ready -> camera_check -> answering

    def begin(self) -> None:
        self._require(SessionState.READY)
        self.state = SessionState.CAMERA_CHECK
        try:
            self.camera.acquire()
            self._camera_active = True
        except CameraUnavailable as exc:
            logger.warning("Camera unavailable for exam %s: %s", self.exam_id, exc)
            self.camera_warning = CAMERA_WARNING
            if self.require_camera:
                return self._fail(CAMERA_WARNING)

        now = self.clock()
        self._end_at = now + timedelta(seconds=self.draft.time_left)
        # Resumed drafts have already used part of the duration
        self._started_at = self._end_at - timedelta(seconds=self.duration_seconds)
        self._last_autosave = now
        self.state = SessionState.ANSWERING

    # answering

    def select(self, option: int) -> None:
        self._require(SessionState.ANSWERING)
        if not self.questions:
            raise InvalidTransition("Exam has no questions to answer")
        options = self.questions[self.current_index].get("options") or []
        if not 0 <= option < len(options):
            raise ValueError(f"Option {option} is out of range")
        self.draft.answers[self.current_index] = option

    def clear_choice(self, index: int | None = None) -> None:
        self._require(SessionState.ANSWERING)
        self.draft.answers.pop(self.current_index if index is None else index, None)

    def next(self) -> None:
        self._require(SessionState.ANSWERING)
        if self.current_index < len(self.questions) - 1:
            self.draft.current_index += 1
        else:
            self.state = SessionState.CONFIRMING

    def previous(self) -> None:
        self._require(SessionState.ANSWERING)
        if self.current_index > 0:
            self.draft.current_index -= 1

    def go_to(self, index: int) -> None:
        self._require(SessionState.ANSWERING)
        if not 0 <= index < len(self.questions):
            raise IndexError(f"Question {index} does not exist")
        self.draft.current_index = index

    def request_submit(self) -> None:
        self._require(SessionState.ANSWERING)
        self.state = SessionState.CONFIRMING

    def cancel_submit(self) -> None:
        self._require(SessionState.CONFIRMING)
        self.state = SessionState.ANSWERING

    async def confirm_submit(self) -> ReviewSummary | None:
        # A timer-driven submit may already be in flight
        if not self._submitting:
            self._require(SessionState.CONFIRMING)
        return await self.submit()

    # timers

    async def tick(self, now: datetime | None = None) -> int:
        """Recompute time left from the end instant; submits once it reaches zero."""
        if self._end_at is None or self.state not in (SessionState.ANSWERING, SessionState.CONFIRMING):
            return self.time_left
        now = now or self.clock()
        remaining = max(0, math.floor((self._end_at - now).total_seconds()))
        self.draft.time_left = remaining
        if remaining == 0:
            logger.info("Time is up for exam %s; submitting", self.exam_id)
            await self.submit()
        return remaining

    def autosave(self) -> bool:
        if self.draft is None:
            return False
        try:
            self.storage.set(self.key, self.draft.model_dump_json())
        except Exception as exc:
            logger.warning("Autosave failed for exam %s: %s", self.exam_id, exc)
            return False
        return True

    def maybe_autosave(self, now: datetime | None = None) -> bool:
        now = now or self.clock()
        if self._last_autosave is not None and (now - self._last_autosave).total_seconds() < self.autosave_interval:
            return False
        self._last_autosave = now
        return self.autosave()

    # submitting -> done

    def _answer_payload(self) -> list[dict]:
        return [
            {"question_index": idx, "selected_option": option}
            for idx, option in sorted(self.draft.answers.items())
        ]

    async def _reconcile(self, answers: list[dict], end_time: datetime) -> dict:
        attempts = await self.api.list_user_attempts(self.user["id"])
        mine = [a for a in attempts if a.get("exam") == self.exam_id]
        in_progress = next((a for a in mine if a.get("state") == "in_progress"), None)
        if in_progress is not None:
            return await self.api.submit_attempt(in_progress["id"], answers, end_time=end_time)
        if mine:
            raise PortalApiError(400, "Attempt already submitted")

        payload: dict[str, Any] = {
            "user": self.user["id"],
            "exam": self.exam_id,
            "answers": answers,
            "status": "completed",
            "start_time": (self._started_at or end_time).isoformat(),
            "end_time": end_time.isoformat(),
            "student_name": self.user.get("name"),
            "student_email": self.user.get("email"),
            "exam_name": (self.exam or {}).get("title"),
            "total_questions": len(self.questions),
            "answered_questions": len(answers),
        }
        return await self.api.create_attempt(payload)

    async def submit(self) -> ReviewSummary | None:
        """Submit once; repeated calls while a submit is in flight or done are no-ops."""
        if self._submitting or self.state == SessionState.DONE:
            logger.info("Submit for exam %s already handled", self.exam_id)
            return None
        if self._end_at is None or self.state not in (
            SessionState.ANSWERING, SessionState.CONFIRMING, SessionState.ERROR,
        ):
            raise InvalidTransition(f"Cannot submit from {self.state.value}")

        self._submitting = True
        self.state = SessionState.SUBMITTING
        try:
            attempt = await self._reconcile(self._answer_payload(), self.clock())
        except PortalApiError as exc:
            self._fail(f"Failed to submit exam: {exc.message}")
            return None
        finally:
            self._submitting = False

        # The attempt is persisted, so the draft goes even if the session was closed
        try:
            self.storage.clear(self.key)
        except Exception as exc:
            logger.warning("Could not clear draft %s: %s", self.key, exc)

        if self.closed:
            logger.info("Session for exam %s closed before submit returned", self.exam_id)
            return None
        self.summary = self._summarize(attempt)
        self.state = SessionState.DONE
        return self.summary

    def _summarize(self, attempt: dict) -> ReviewSummary:
        score = float(attempt.get("score") or 0)
        total_marks = attempt.get("total_marks")
        if total_marks is None:
            total_marks = sum(int(q.get("marks", 1)) for q in self.questions)
        percentage = round(100.0 * score / total_marks, 2) if total_marks else 0.0
        return ReviewSummary(
            attempt_id=attempt.get("id", ""),
            exam_id=self.exam_id,
            exam_name=(self.exam or {}).get("title", ""),
            student_name=self.user.get("name", ""),
            score=score,
            total_marks=int(total_marks),
            percentage=percentage,
            status="Pass" if percentage >= self.pass_percentage else "Fail",
            total_questions=len(self.questions),
            answered_questions=len(self.draft.answers),
            time_taken=max(0, self.duration_seconds - self.draft.time_left),
        )

    def close(self) -> None:
        self.closed = True
        if self._camera_active:
            try:
                self.camera.release()
            except Exception as exc:
                logger.warning("Could not release camera: %s", exc)
            self._camera_active = False
