"""Pure grading of submitted answers against an exam's answer key.

Nothing here touches the database, so the same functions grade on submit,
on import, and when finalising overdue attempts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from exam_portal.models.attempt import Outcome


@dataclass
class GradedAnswer:
    question_index: int
    selected_option: int | None
    is_correct: bool
    marks_obtained: float


@dataclass
class ScoreResult:
    total_score: float = 0
    total_marks: int = 0
    answers: list[GradedAnswer] = field(default_factory=list)

    @property
    def percentage(self) -> float:
        if not self.total_marks:
            return 0.0
        return round(100.0 * self.total_score / self.total_marks, 2)


def _read(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def normalize_selection(question: Any | None, value: Any) -> int | None:
    """Convert a submitted selection into the canonical option index.

    Accepts an int, a numeric string, or the option's text (matched without
    regard to case). Anything else, including unmatched text, is `None`.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return int(text)
    if question is None:
        return None
    lowered = text.lower()
    for idx, option in enumerate(_read(question, "options") or []):
        if str(option).strip().lower() == lowered:
            return idx
    return None


def score_answers(answers: Iterable[Any], questions: Sequence[Any]) -> ScoreResult:
    """Grade answers against questions.

    Every question adds its marks to `total_marks`; a matching selection adds
    them to `total_score`. Answers pointing at a question index that does not
    exist are kept, marked incorrect, and never raise.
    """
    result = ScoreResult()
    by_index: dict[int, GradedAnswer] = {}
    order: list[int] = []

    for answer in answers or []:
        idx = _read(answer, "question_index")
        if idx is None or isinstance(idx, bool):
            continue
        idx = int(idx)
        question = questions[idx] if 0 <= idx < len(questions) else None
        selected = normalize_selection(question, _read(answer, "selected_option"))
        if idx not in by_index:
            order.append(idx)
        # Last entry for an index wins
        by_index[idx] = GradedAnswer(question_index=idx, selected_option=selected, is_correct=False, marks_obtained=0)

    for idx, question in enumerate(questions):
        marks = _read(question, "marks")
        marks = 1 if marks is None else marks
        result.total_marks += int(marks)

        graded = by_index.get(idx)
        if graded is None or graded.selected_option is None:
            continue
        if graded.selected_option == _read(question, "correct_answer"):
            graded.is_correct = True
            graded.marks_obtained = marks
            result.total_score += marks

    result.answers = [by_index[idx] for idx in order]
    return result


def outcome_for(total_score: float, passing_marks: float | None) -> Outcome:
    if total_score >= (passing_marks or 0):
        return Outcome.PASS
    return Outcome.FAIL
