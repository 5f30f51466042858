"""
Tests for question selection, stripping and duration derivation.
"""

import random

from exam_engine.services.selection import (
    derive_duration_minutes, fisher_yates, preview_questions, select_questions,
    snapshot_questions, strip_question
)

from conftest import sample_questions


def _pool(n):
    return [{"id": "q{}".format(i), "type": "mcq", "options": ["a", "b"], "correctIndices": [0], "marks": 1}
            for i in range(n)]


class TestSelectQuestions:

    def test_truncation_takes_prefix_of_shuffled_order(self):
        pool = _pool(5)
        full = fisher_yates(pool, random.Random(42))
        selected = select_questions(pool, {"maxQuestionsToAttempt": 2}, random.Random(42))

        assert [q["id"] for q in selected] == [q["id"] for q in full[:2]]

    def test_no_shuffle_keeps_authored_order(self):
        pool = _pool(5)
        selected = select_questions(pool, {}, random.Random(1))
        assert [q["id"] for q in selected] == [q["id"] for q in pool]

    def test_shuffle_is_a_permutation(self):
        pool = _pool(10)
        selected = select_questions(pool, {"shuffleQuestions": True}, random.Random(7))
        assert sorted(q["id"] for q in selected) == sorted(q["id"] for q in pool)

    def test_cap_larger_than_pool_serves_everything(self):
        selected = select_questions(_pool(3), {"maxQuestionsToAttempt": 10}, random.Random(3))
        assert len(selected) == 3

    def test_invalid_cap_is_ignored(self):
        selected = select_questions(_pool(3), {"maxQuestionsToAttempt": "lots"}, random.Random(3))
        assert len(selected) == 3

    def test_capped_draws_differ_between_attempts(self):
        pool = _pool(10)
        config = {"maxQuestionsToAttempt": 4, "shuffleQuestions": True}
        draws = {
            tuple(q["id"] for q in select_questions(pool, config, random.Random(seed)))
            for seed in range(20)
        }
        assert all(len(d) == 4 for d in draws)
        assert len(draws) > 1

    def test_snapshot_is_a_deep_copy(self):
        pool = _pool(2)
        selected = select_questions(pool, {})
        selected[0]["options"].append("c")
        assert pool[0]["options"] == ["a", "b"]


class TestStripping:

    def test_correct_answers_and_solutions_removed(self):
        for question in snapshot_questions(sample_questions()):
            assert "correctIndices" not in question
            assert "fillBlankAnswer" not in question
            assert "numberRangeMin" not in question
            assert "numberRangeMax" not in question
            assert "solutionText" not in question

    def test_options_and_flags_kept(self):
        by_id = {q["id"]: q for q in snapshot_questions(sample_questions())}
        assert by_id["q1"]["options"] == ["A", "B", "C", "D"]
        assert by_id["q3"]["isNumberRange"] is True
        assert by_id["q4"]["caseSensitive"] is False

    def test_comprehension_sub_questions_stripped(self):
        question = {
            "id": "c", "type": "comprehension", "comprehensionText": "Read this",
            "subQuestions": [{"id": "c1", "type": "mcq", "options": ["x"], "correctIndices": [0],
                              "solutionText": "x"}],
        }
        stripped = strip_question(question)
        assert stripped["comprehensionText"] == "Read this"
        assert stripped["subQuestions"] == [{"id": "c1", "type": "mcq", "options": ["x"]}]

    def test_preview_shuffles_only_when_configured(self):
        pool = _pool(6)
        unshuffled = preview_questions(pool, {"maxQuestionsToAttempt": 2}, random.Random(5))
        assert [q["id"] for q in unshuffled] == [q["id"] for q in pool]

        shuffled = preview_questions(pool, {"shuffleQuestions": True}, random.Random(5))
        expected = fisher_yates([strip_question(q) for q in pool], random.Random(5))
        assert [q["id"] for q in shuffled] == [q["id"] for q in expected]


class TestDuration:

    def test_explicit_duration_without_per_question_timer(self):
        assert derive_duration_minutes(_pool(3), {}, 45) == 45

    def test_per_question_limits_are_summed_and_rounded_up(self):
        questions = [{"id": "a", "timeLimit": 90}, {"id": "b"}, {"id": "c", "timeLimit": 45}]
        config = {"enablePerQuestionTimer": True, "perQuestionDuration": 30}
        # 90 + 30 + 45 = 165s
        assert derive_duration_minutes(questions, config, 10) == 3

    def test_default_sixty_seconds_per_question(self):
        assert derive_duration_minutes(_pool(3), {"enablePerQuestionTimer": True}) == 3

    def test_comprehension_counts_each_sub_question(self):
        questions = [{"id": "c", "type": "comprehension", "subQuestions": [{"id": "x"}, {"id": "y"}]}]
        assert derive_duration_minutes(questions, {"enablePerQuestionTimer": True}) == 2
