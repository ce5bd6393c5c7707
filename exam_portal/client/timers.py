from __future__ import annotations

import asyncio
import logging

from exam_portal.client.session import ExamSession, SessionState


logger = logging.getLogger(__name__)

FINISHED_STATES = (SessionState.DONE, SessionState.ERROR)


class SessionTimers:
    """Countdown and autosave loops for one session, cancelled together."""

    def __init__(self, session: ExamSession, tick_interval: float = 1.0, autosave_interval: float | None = None):
        self.session = session
        self.tick_interval = tick_interval
        self.autosave_interval = autosave_interval if autosave_interval is not None else session.autosave_interval
        self._tasks: list[asyncio.Task] = []

    def _running(self) -> bool:
        return not self.session.closed and self.session.state not in FINISHED_STATES

    async def _countdown(self) -> None:
        while self._running():
            await self.session.tick()
            if not self._running():
                break
            await asyncio.sleep(self.tick_interval)

    async def _autosave(self) -> None:
        while self._running():
            await asyncio.sleep(self.autosave_interval)
            if self._running():
                self.session.autosave()

    def start(self) -> None:
        self._tasks = [
            asyncio.create_task(self._countdown()),
            asyncio.create_task(self._autosave()),
        ]

    async def wait(self) -> None:
        """Block until the countdown loop ends (submitted, failed or closed)."""
        if self._tasks:
            await self._tasks[0]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def run_session(session: ExamSession, tick_interval: float = 1.0) -> None:
    """Drive an answering session until it finishes, then tear it down."""
    timers = SessionTimers(session, tick_interval=tick_interval)
    timers.start()
    try:
        await timers.wait()
    finally:
        await timers.stop()
        session.close()
        logger.info("Session for exam %s ended in state %s", session.exam_id, session.state.value)
