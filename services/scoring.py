"""Quiz scoring — partial credit with deduction.

Each correct option selected earns 1 point.  Each wrong option selected
costs ``C / (O - C)`` points, where C is the number of correct options and
O the number of options, so selecting every option nets zero.  The result
is floored at 0 and reported out of C.

A question with no correct options scores ``0/0``, which is shown as
"no correct answers defined" rather than as a failing score.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from models.conversation import ConversationTurn

NO_CORRECT_ANSWERS = "no correct answers defined"


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class QuestionScore:
    correctly_selected: int
    wrongly_selected: int
    incorrect_count: int
    penalty_per_incorrect: float
    raw_score: float
    final_score: float
    possible: int

    @property
    def has_correct_answers(self) -> bool:
        return self.possible > 0

    def display(self) -> str:
        if not self.has_correct_answers:
            return f"0/0 ({NO_CORRECT_ANSWERS})"
        return f"{_fmt(self.final_score)}/{self.possible}"


def score_question(
    correct_indices: Iterable[int],
    selected_indices: Iterable[int],
    option_count: int,
) -> QuestionScore:
    correct = set(correct_indices)
    selected = set(selected_indices)

    correctly_selected = len(selected & correct)
    wrongly_selected = len(selected - correct)
    incorrect_count = option_count - len(correct)
    penalty = -(len(correct) / incorrect_count) if incorrect_count > 0 else 0.0
    raw = correctly_selected * 1 + wrongly_selected * penalty

    return QuestionScore(
        correctly_selected=correctly_selected,
        wrongly_selected=wrongly_selected,
        incorrect_count=incorrect_count,
        penalty_per_incorrect=penalty,
        raw_score=raw,
        final_score=max(0.0, raw),
        possible=len(correct),
    )


def score_turn(turn: ConversationTurn) -> QuestionScore | None:
    """Score a quiz turn, or None if it is not gradable yet."""
    if not turn.is_quiz or turn.correct_indices is None:
        return None
    return score_question(turn.correct_indices, turn.selected_indices, len(turn.options))


@dataclass(frozen=True)
class SessionScore:
    total: float
    possible: int
    graded: int

    def display(self) -> str:
        if self.possible == 0:
            return f"0/0 ({NO_CORRECT_ANSWERS})"
        return f"{_fmt(self.total)}/{self.possible}"


def score_session(turns: Sequence[ConversationTurn]) -> SessionScore:
    """Sum final scores and possible points over every gradable turn."""
    total = 0.0
    possible = 0
    graded = 0
    for turn in turns:
        score = score_turn(turn)
        if score is None:
            continue
        total += score.final_score
        possible += score.possible
        graded += 1
    return SessionScore(total=total, possible=possible, graded=graded)
