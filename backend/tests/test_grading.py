"""
Tests for the grading engine.
"""

import pytest

from exam_engine.models.online_test import OnlineTest
from exam_engine.services.grading import (
    grade_answer, grade_attempt, is_blank, round_half_up, served_total_marks
)

from conftest import ALL_CORRECT, sample_questions

MCQ = {"id": "m", "type": "mcq", "options": ["a", "b", "c", "d"],
       "correctIndices": [2], "marks": 4, "negativeMarks": 1}
MSQ = {"id": "s", "type": "msq", "options": ["a", "b", "c", "d"],
       "correctIndices": [0, 2], "marks": 4, "negativeMarks": 2}
RANGE = {"id": "r", "type": "fillblank", "isNumberRange": True,
         "numberRangeMin": 10, "numberRangeMax": 20, "marks": 2, "negativeMarks": 1}
TEXT = {"id": "t", "type": "fillblank", "fillBlankAnswer": "Newton", "marks": 2}


class TestGradeAnswer:
    """Per-question grading rules."""

    @pytest.mark.parametrize("answer,expected", [
        (2, (True, 4)),
        (0, (False, -1)),
        (None, (False, 0)),
    ])
    def test_mcq_worked_example(self, answer, expected):
        assert grade_answer(MCQ, answer) == expected

    def test_mcq_rejects_booleans_and_strings(self):
        assert grade_answer(MCQ, True) == (False, -1)
        assert grade_answer(MCQ, "2") == (False, -1)

    def test_msq_requires_exact_set(self):
        assert grade_answer(MSQ, [2, 0]) == (True, 4)
        assert grade_answer(MSQ, [0]) == (False, -2)
        assert grade_answer(MSQ, [0, 1, 2]) == (False, -2)
        assert grade_answer(MSQ, []) == (False, 0)

    def test_range_worked_example(self):
        assert grade_answer(RANGE, "15 ") == (True, 2)
        assert grade_answer(RANGE, "21") == (False, -1)

    def test_range_bounds_are_inclusive_and_input_is_stripped(self):
        assert grade_answer(RANGE, "10")[0] is True
        assert grade_answer(RANGE, 20)[0] is True
        assert grade_answer(RANGE, " 1 5 ")[0] is True

    def test_range_non_numeric_is_incorrect(self):
        assert grade_answer(RANGE, "fifteen") == (False, -1)
        assert grade_answer(RANGE, "nan") == (False, -1)

    def test_range_reads_leading_number(self):
        assert grade_answer(RANGE, "15cm") == (True, 2)
        assert grade_answer(RANGE, "1 2.5 kg")[0] is True
        assert grade_answer(RANGE, "+1.2e1")[0] is True
        assert grade_answer(RANGE, "25abc") == (False, -1)
        assert grade_answer(RANGE, "cm15") == (False, -1)

    def test_mcq_accepts_integral_float_index(self):
        assert grade_answer(MCQ, 2.0) == (True, 4)
        assert grade_answer(MCQ, 2.5) == (False, -1)

    def test_msq_accepts_integral_float_indices(self):
        assert grade_answer(MSQ, [0.0, 2.0]) == (True, 4)

    def test_text_normalizes_whitespace_and_case(self):
        assert grade_answer(TEXT, "  newton ") == (True, 2)
        assert grade_answer(TEXT, "Joule") == (False, 0)

    def test_text_case_sensitive(self):
        question = dict(TEXT, caseSensitive=True)
        assert grade_answer(question, "Newton")[0] is True
        assert grade_answer(question, "newton")[0] is False

    def test_broad_is_never_auto_graded(self):
        broad = {"id": "b", "type": "broad", "marks": 5, "negativeMarks": 2}
        assert grade_answer(broad, "A long essay") == (False, 0)

    def test_unknown_question_scores_zero(self):
        assert grade_answer(None, 1) == (False, 0)

    @pytest.mark.parametrize("question", [MCQ, MSQ, RANGE, TEXT])
    @pytest.mark.parametrize("answer", [None, "", []])
    def test_blank_answers_score_exactly_zero(self, question, answer):
        assert grade_answer(question, answer) == (False, 0)

    @pytest.mark.parametrize("answer", [0, 1, 2, 3, [0], [0, 2], [1, 3], None])
    def test_choice_awards_are_plus_marks_minus_penalty_or_zero(self, answer):
        question = MSQ if isinstance(answer, list) else MCQ
        _, marks = grade_answer(question, answer)
        assert marks in (question["marks"], -question["negativeMarks"], 0)
        assert (marks == 0) == is_blank(answer)


class TestGradeAttempt:
    """Aggregation over a snapshot."""

    def test_all_correct(self):
        result = grade_attempt(sample_questions(), ALL_CORRECT)

        assert result.score == 12
        assert result.total_marks == 15
        assert result.percentage == 80
        assert result.passed is True
        assert result.correct_count == 4
        assert result.unanswered_count == 0

    def test_total_is_floored_after_summation(self):
        answers = [
            {"questionId": "q1", "answer": 0},
            {"questionId": "q2", "answer": [1]},
            {"questionId": "q4", "answer": "wrong"},
        ]
        result = grade_attempt(sample_questions(), answers)

        assert sum(a.marks_awarded for a in result.answers) == -4
        assert result.score == 0
        assert result.percentage == 0
        assert result.incorrect_count == 3

    def test_deductions_offset_credit_before_flooring(self):
        answers = [{"questionId": "q1", "answer": 2}, {"questionId": "q2", "answer": [1]}]
        result = grade_attempt(sample_questions(), answers)
        assert result.score == 2

    def test_total_uses_only_served_questions(self):
        snapshot = sample_questions()[:2]
        result = grade_attempt(snapshot, ALL_CORRECT)

        assert result.total_marks == 8
        assert result.score == 8
        assert result.percentage == 100
        # answers to questions outside the snapshot earn nothing
        assert {a.question_id: a.marks_awarded for a in result.answers}["q3"] == 0

    def test_last_record_wins_for_duplicate_question_ids(self):
        answers = [{"questionId": "q1", "answer": 0}, {"questionId": "q1", "answer": 2}]
        result = grade_attempt(sample_questions(), answers)

        assert len(result.answers) == 1
        assert result.answers[0].is_correct is True

    def test_malformed_records_are_ignored(self):
        result = grade_attempt(sample_questions(), [None, {"answer": 2}, "junk"])
        assert result.score == 0
        assert result.answers == []

    def test_empty_snapshot_uses_unit_total(self):
        result = grade_attempt([], [])
        assert result.total_marks == 1
        assert result.percentage == 0

    def test_passing_threshold(self):
        answers = [{"questionId": "q1", "answer": 2}, {"questionId": "q3", "answer": "12"}]
        result = grade_attempt(sample_questions(), answers, passing_percentage=40)
        assert result.percentage == 40
        assert result.passed is True

        assert grade_attempt(sample_questions(), answers, passing_percentage=41).passed is False

    def test_comprehension_sub_questions_are_graded(self):
        snapshot = [{
            "id": "c1", "type": "comprehension", "comprehensionText": "Passage",
            "subQuestions": [
                {"id": "c1a", "type": "mcq", "options": ["x", "y"], "correctIndices": [1], "marks": 2},
                {"id": "c1b", "type": "mcq", "options": ["x", "y"], "correctIndices": [0], "marks": 2},
            ],
        }]
        result = grade_attempt(snapshot, [{"questionId": "c1a", "answer": 1}])

        assert served_total_marks(snapshot) == 4
        assert result.score == 2
        assert result.percentage == 50


class TestRounding:
    def test_half_rounds_up(self):
        assert round_half_up(62.5) == 63
        assert round_half_up(0.5) == 1
        assert round_half_up(33.3) == 33


class TestTotalMarks:
    """Stored pool totals and served totals agree on the marks default."""

    def test_questions_without_marks_count_one(self):
        pool = [
            {"id": "a", "type": "mcq", "correctIndices": [0]},
            {"id": "b", "type": "fillblank", "fillBlankAnswer": "x", "marks": 0},
            {"id": "c", "type": "comprehension", "subQuestions": [
                {"id": "c1", "type": "mcq", "correctIndices": [1]},
                {"id": "c2", "type": "mcq", "correctIndices": [0], "marks": 3},
            ]},
        ]
        test = OnlineTest(title="Marks", created_by="admin@example.com")
        test.questions_list = pool

        assert served_total_marks(pool) == 6
        assert test.total_marks == served_total_marks(pool)
