"""Tests for quiz scoring (partial credit with deduction)."""

from __future__ import annotations

import pytest

from models.conversation import ConversationTurn
from services.scoring import score_question, score_session, score_turn

OPTIONS = ["A", "B", "C", "D"]


def _quiz_turn(selected: list[int], correct: list[int] | None) -> ConversationTurn:
    return ConversationTurn.from_submission(
        question="Q", options=OPTIONS, selected_indices=selected,
        correct_indices=correct, is_quiz=True,
    )


class TestScoreQuestion:
    def test_all_correct_selected(self):
        score = score_question([0, 1], [0, 1], 4)
        assert (score.final_score, score.possible) == (2, 2)
        assert score.display() == "2/2"

    def test_nothing_selected(self):
        score = score_question([0, 1], [], 4)
        assert score.raw_score == 0
        assert score.display() == "0/2"

    def test_everything_selected_nets_zero(self):
        score = score_question([0, 1], [0, 1, 2, 3], 4)
        assert score.penalty_per_incorrect == -1
        assert score.raw_score == 0
        assert score.display() == "0/2"

    def test_one_right_one_wrong_cancel_out(self):
        score = score_question([0, 1], [0, 2], 4)
        assert score.correctly_selected == 1
        assert score.wrongly_selected == 1
        assert score.incorrect_count == 2
        assert score.penalty_per_incorrect == -1
        assert score.raw_score == 0
        assert score.final_score == 0
        assert score.possible == 2
        assert score.display() == "0/2"

    def test_only_wrong_selected_floored(self):
        score = score_question([0, 1], [2, 3], 4)
        assert score.raw_score == -2
        assert score.final_score == 0
        assert score.display() == "0/2"

    def test_no_correct_answers_is_distinct(self):
        score = score_question([], [1], 4)
        assert not score.has_correct_answers
        assert score.display() == "0/0 (no correct answers defined)"
        assert score.display() != score_question([0, 1], [], 4).display()

    def test_fractional_penalty(self):
        score = score_question([0], [0, 1], 4)
        assert score.penalty_per_incorrect == pytest.approx(-1 / 3)
        assert score.final_score == pytest.approx(2 / 3)
        assert score.display() == "0.666667/1"

    def test_every_option_correct_has_no_penalty(self):
        score = score_question([0, 1], [0], 2)
        assert score.incorrect_count == 0
        assert score.penalty_per_incorrect == 0
        assert score.display() == "1/2"

    def test_duplicate_indices_count_once(self):
        assert score_question([0, 0], [0, 0], 4).display() == "1/1"


class TestScoreTurns:
    def test_essay_turn_not_gradable(self):
        turn = ConversationTurn.from_submission(question="Q", options=OPTIONS, selected_indices=[0])
        assert score_turn(turn) is None

    def test_quiz_turn_without_answers_not_gradable(self):
        assert score_turn(_quiz_turn([0], None)) is None

    def test_session_total(self):
        turns = [
            _quiz_turn([0, 1], [0, 1]),
            _quiz_turn([2, 3], [0, 1]),
            _quiz_turn([0], [0]),
            _quiz_turn([0], None),
        ]
        total = score_session(turns)
        assert (total.total, total.possible, total.graded) == (3, 5, 3)
        assert total.display() == "3/5"

    def test_empty_session(self):
        assert score_session([]).display() == "0/0 (no correct answers defined)"
