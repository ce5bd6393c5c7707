from mongoengine import (
    BooleanField,
    DateTimeField,
    EmbeddedDocumentField,
    FloatField,
    IntField,
    ListField,
    ReferenceField,
    StringField,
)

from exam_portal.models.base import BaseDocument, BaseEmbeddedDocument
from exam_portal.models.exam import Exam
from exam_portal.models.user import User
from exam_portal.utils.base import BaseEnum


class LifecycleState(BaseEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Outcome(BaseEnum):
    PASS = "pass"
    FAIL = "fail"


class AttemptStatus(BaseEnum):
    """Legacy single-field status, kept for API consumers and import payloads."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    ATTEMPTED = "attempted"
    PASS = "Pass"
    FAIL = "Fail"


TERMINAL_STATES = (LifecycleState.COMPLETED.value, LifecycleState.ABANDONED.value)


def split_status(status: str) -> tuple[str, str | None]:
    """Map a legacy status onto (lifecycle state, outcome)."""
    if status == AttemptStatus.IN_PROGRESS.value:
        return LifecycleState.IN_PROGRESS.value, None
    if status == AttemptStatus.ABANDONED.value:
        return LifecycleState.ABANDONED.value, None
    if status == AttemptStatus.PASS.value:
        return LifecycleState.COMPLETED.value, Outcome.PASS.value
    if status == AttemptStatus.FAIL.value:
        return LifecycleState.COMPLETED.value, Outcome.FAIL.value
    return LifecycleState.COMPLETED.value, None


class AttemptAnswer(BaseEmbeddedDocument):
    """Embedded: a student's selection for one question.

    Fields:
    - question_index (int),
    - selected_option (int|None): option index, the canonical representation,
    - is_correct (bool|None): set once graded,
    - marks_obtained (float).
    """
    question_index = IntField(required=True, null=False, min_value=0)
    selected_option = IntField(required=False)
    is_correct = BooleanField(required=False)
    marks_obtained = FloatField(required=True, null=False, default=0)


class Attempt(BaseDocument):
    """One student's interaction with one exam or assignment.

    Fields:
    - user/exam (refs); assignment/subject (str) for assignment attempts
    - state (in_progress/completed/abandoned) and outcome (pass/fail, graded only)
    - assignment_status (str): legacy status written by the assignment path
    - start_time/end_time, time_taken (minutes), time_left (seconds), last_saved_index
    - answers (list[AttemptAnswer])
    - score/total_marks_obtained/total_marks
    - student_name/student_email/exam_name/total_questions/answered_questions:
      reporting copies taken at submit or import
    """
    user = ReferenceField(document_type=User, required=True, null=False)
    exam = ReferenceField(document_type=Exam, required=False)
    assignment = StringField(required=False)
    subject = StringField(required=False)

    state = StringField(required=True, null=False, default=LifecycleState.IN_PROGRESS.value,
                        choices=LifecycleState.choices())
    outcome = StringField(required=False, choices=Outcome.choices())
    assignment_status = StringField(required=False, choices=AttemptStatus.choices())

    start_time = DateTimeField(required=True, null=False)
    end_time = DateTimeField(required=False)
    time_taken = IntField(required=False)
    time_left = IntField(required=False, min_value=0)
    last_saved_index = IntField(required=True, null=False, default=0, min_value=0)

    answers = ListField(EmbeddedDocumentField(AttemptAnswer), null=False, default=list)
    score = FloatField(required=False)
    total_marks_obtained = FloatField(required=True, null=False, default=0)
    total_marks = IntField(required=False)

    student_name = StringField(required=False)
    student_email = StringField(required=False)
    exam_name = StringField(required=False)
    total_questions = IntField(required=False)
    answered_questions = IntField(required=False)

    meta = {
        "collection": "attempts",
        "indexes": [
            {
                "fields": ["user", "exam"],
                "unique": True,
                "name": "one_in_progress_attempt_per_exam",
                "partialFilterExpression": {"state": LifecycleState.IN_PROGRESS.value, "exam": {"$exists": True}},
            },
            {
                "fields": ["user", "assignment", "subject"],
                "unique": True,
                "name": "one_attempt_per_assignment",
                "partialFilterExpression": {"assignment": {"$exists": True}},
            },
            {"fields": ["exam", "user"]},
            {"fields": ["user", "-end_time"]},
        ],
    }

    @property
    def status(self) -> str:
        if self.assignment_status:
            return self.assignment_status
        if self.outcome == Outcome.PASS.value:
            return AttemptStatus.PASS.value
        if self.outcome == Outcome.FAIL.value:
            return AttemptStatus.FAIL.value
        return self.state

    @property
    def is_in_progress(self) -> bool:
        return self.state == LifecycleState.IN_PROGRESS.value

    def to_output(self, fields=None, exclude=None):
        output = super().to_output(fields, exclude)
        output["status"] = self.status
        return output
