from datetime import datetime
from mongoengine import (
    BooleanField,
    DateTimeField,
    EmbeddedDocumentField,
    IntField,
    ListField,
    StringField,
    ValidationError,
)

from exam_portal.models.base import BaseDocument, BaseEmbeddedDocument, as_utc, utcnow


class ExamQuestion(BaseEmbeddedDocument):
    """Embedded: one question of an exam.

    Fields:
    - text (str),
    - options (list[str]),
    - correct_answer (int): index into options,
    - marks (int): weight awarded when answered correctly.
    """
    text = StringField(required=True, null=False)
    options = ListField(StringField(), required=True, null=False, default=list)
    correct_answer = IntField(required=True, null=False, min_value=0)
    marks = IntField(required=True, null=False, default=1, min_value=0)


class Exam(BaseDocument):
    """Exam document.

    Holds the ordered question list and the answer key used for grading, the
    duration and passing threshold, and an optional availability window.

    Fields:
    - title/subject/description (str)
    - questions (list[ExamQuestion])
    - duration_minutes (int)
    - passing_marks (int): minimum score for a passing outcome
    - is_active (bool)
    - start_time/end_time (datetime|None): availability window
    """
    title = StringField(required=True, null=False)
    subject = StringField(required=True, null=False)
    description = StringField(required=False)
    questions = ListField(EmbeddedDocumentField(ExamQuestion), null=False, default=list)

    duration_minutes = IntField(required=True, null=False, default=60, min_value=1)
    passing_marks = IntField(required=True, null=False, default=0, min_value=0)
    is_active = BooleanField(required=True, null=False, default=True)
    start_time = DateTimeField(required=False)
    end_time = DateTimeField(required=False)

    meta = {
        "collection": "exams",
        "indexes": [
            {"fields": ["is_active", "start_time"]},
            {"fields": ["subject"]},
        ],
    }

    def validate(self, clean=True):
        super().validate(clean)
        for idx, question in enumerate(self.questions):
            if not question.options:
                raise ValidationError(f"Question {idx} needs at least one option")
            if question.correct_answer >= len(question.options):
                raise ValidationError(f"Question {idx} correct_answer is out of range")
        if self.start_time and self.end_time and as_utc(self.end_time) <= as_utc(self.start_time):
            raise ValidationError("end_time must be after start_time")

    @property
    def total_marks(self) -> int:
        return sum(int(q.marks or 0) for q in self.questions)

    def is_open(self, now: datetime | None = None) -> bool:
        """Active and, when a window is configured, inside it."""
        if not self.is_active:
            return False
        now = now or utcnow()
        if self.start_time and as_utc(self.start_time) > now:
            return False
        if self.end_time and as_utc(self.end_time) < now:
            return False
        return True

    def to_output(self, fields=None, exclude=None, include_answer_key: bool = False):
        output = super().to_output(fields, exclude)
        output["total_marks"] = self.total_marks
        output["total_questions"] = len(self.questions)
        if include_answer_key or "questions" not in output:
            return output

        # Students receive the paper without the answer key
        for question in output["questions"]:
            question.pop("correct_answer", None)
        return output
