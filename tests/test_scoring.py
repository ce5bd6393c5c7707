from exam_portal.models.attempt import Outcome
from exam_portal.models.exam import ExamQuestion
from exam_portal.services.scoring import normalize_selection, outcome_for, score_answers


def _questions(n=2, marks=2):
    return [
        ExamQuestion(text=f"Q{i}", options=["A", "B", "C"], correct_answer=i % 3, marks=marks)
        for i in range(n)
    ]


def test_two_question_example_pass_and_fail():
    questions = _questions()

    right = score_answers([{"question_index": 0, "selected_option": 0},
                           {"question_index": 1, "selected_option": 1}], questions)
    assert right.total_score == 4
    assert right.total_marks == 4
    assert outcome_for(right.total_score, 2) is Outcome.PASS

    wrong = score_answers([{"question_index": 0, "selected_option": 1},
                           {"question_index": 1, "selected_option": 0}], questions)
    assert wrong.total_score == 0
    assert outcome_for(wrong.total_score, 2) is Outcome.FAIL


def test_all_correct_scores_n_times_m():
    questions = _questions(n=5, marks=3)
    answers = [{"question_index": i, "selected_option": i % 3} for i in range(5)]
    result = score_answers(answers, questions)
    assert result.total_score == 15
    assert result.percentage == 100.0
    assert all(a.is_correct for a in result.answers)


def test_no_answers_scores_zero_and_fails_positive_threshold():
    result = score_answers([], _questions(n=3, marks=1))
    assert result.total_score == 0
    assert result.total_marks == 3
    assert result.answers == []
    assert outcome_for(result.total_score, 1) is Outcome.FAIL


def test_unknown_question_index_is_ignored_without_raising():
    result = score_answers([{"question_index": 7, "selected_option": 0},
                           {"question_index": 0, "selected_option": 0}], _questions())
    assert result.total_score == 2
    unknown = result.answers[0]
    assert unknown.question_index == 7
    assert unknown.is_correct is False
    assert unknown.marks_obtained == 0


def test_last_answer_for_a_question_wins():
    result = score_answers([{"question_index": 0, "selected_option": 2},
                           {"question_index": 0, "selected_option": 0}], _questions())
    assert len(result.answers) == 1
    assert result.answers[0].selected_option == 0
    assert result.total_score == 2


def test_missing_marks_default_to_one():
    questions = [{"options": ["x", "y"], "correct_answer": 1, "marks": None}]
    result = score_answers([{"question_index": 0, "selected_option": 1}], questions)
    assert result.total_marks == 1
    assert result.total_score == 1


def test_normalize_selection_accepts_text_and_numeric_strings():
    question = ExamQuestion(text="Capital?", options=["Paris", "Rome"], correct_answer=0)
    assert normalize_selection(question, "paris") == 0
    assert normalize_selection(question, " Rome ") == 1
    assert normalize_selection(question, "1") == 1
    assert normalize_selection(question, 1) == 1
    assert normalize_selection(question, "Berlin") is None
    assert normalize_selection(question, True) is None
    assert normalize_selection(None, "Paris") is None


def test_text_answers_are_graded_against_the_key():
    questions = _questions()
    result = score_answers([{"question_index": 0, "selected_option": "a"},
                           {"question_index": 1, "selected_option": "C"}], questions)
    assert [a.selected_option for a in result.answers] == [0, 2]
    assert result.total_score == 2


def test_zero_passing_marks_always_pass():
    assert outcome_for(0, 0) is Outcome.PASS
    assert outcome_for(0, None) is Outcome.PASS
