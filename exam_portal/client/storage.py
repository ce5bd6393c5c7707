"""Durable storage for in-progress exam drafts.

The session only talks to the small `DraftStorage` port, so a browser-like
key/value store, a directory of JSON files, or a dict in tests all work.
"""
from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field


DRAFT_KEY_PREFIX = "exam_progress_"


def draft_key(exam_id: str) -> str:
    return f"{DRAFT_KEY_PREFIX}{exam_id}"


class ExamDraft(BaseModel):
    """Snapshot of a session: selected option per question index, pointer and remaining seconds."""
    answers: dict[int, int] = Field(default_factory=dict)
    current_index: int = 0
    time_left: int = 0


class DraftStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class MemoryDraftStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def clear(self, key: str) -> None:
        self._items.pop(key, None)


class FileDraftStorage:
    """One JSON file per key inside `directory`."""

    def __init__(self, directory: str | os.PathLike) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write then rename so a crash never leaves a half-written draft
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, self._path(key))
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def clear(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
