"""Conversation models: turns, grading feedback and per-topic sessions.

A session is the ordered log of question/answer exchanges for one topic.
The whole log is replayed into the prompt on every turn, and in quiz mode a
background grading call fills in the feedback fields of one specific turn.
"""

from __future__ import annotations

import re
import time

from pydantic import Field, model_validator

from models.base import CamelModel

NO_SELECTION_ANSWER = "No selection made"


class OptionFeedback(CamelModel):
    """Grader verdict for one option of a quiz question."""

    index: int
    is_correct: bool
    explanation: str = ""


class QuizFeedback(CamelModel):
    """Result of a grading call for one answered quiz question."""

    feedback: str
    option_feedback: list[OptionFeedback] = Field(default_factory=list)
    correct_indices: list[int] = Field(default_factory=list)


def _dedupe(indices: list[int]) -> list[int]:
    seen: set[int] = set()
    out: list[int] = []
    for idx in indices:
        if idx not in seen:
            seen.add(idx)
            out.append(idx)
    return out


class ConversationTurn(CamelModel):
    """One question/answer exchange, optionally graded."""

    question: str
    answer: str
    options: list[str] = Field(default_factory=list)
    selected_indices: list[int] = Field(default_factory=list)
    free_text: str = ""
    feedback: str | None = None
    option_feedback: list[OptionFeedback] | None = None
    correct_indices: list[int] | None = None
    is_quiz: bool = False
    has_feedback: bool = False

    @model_validator(mode="after")
    def _check_indices(self) -> ConversationTurn:
        n = len(self.options)
        self.selected_indices = _dedupe(self.selected_indices)
        for idx in self.selected_indices:
            if not 0 <= idx < n:
                raise ValueError(f"selected index {idx} out of range for {n} options")
        if self.correct_indices is not None:
            self.correct_indices = _dedupe(self.correct_indices)
            for idx in self.correct_indices:
                if not 0 <= idx < n:
                    raise ValueError(f"correct index {idx} out of range for {n} options")
        if self.has_feedback and (self.feedback is None or self.option_feedback is None):
            raise ValueError("hasFeedback requires feedback and optionFeedback")
        return self

    @classmethod
    def from_submission(
        cls,
        question: str,
        options: list[str],
        selected_indices: list[int],
        free_text: str = "",
        correct_indices: list[int] | None = None,
        is_quiz: bool = False,
    ) -> ConversationTurn:
        """Build a turn from what the user picked, composing the answer text.

        Selected option texts are comma-joined; free text is appended as
        ``| Additional: ...``.  An empty submission is recorded as
        ``"No selection made"`` so every option counts as not selected.
        """
        free_text = free_text.strip()
        selected = _dedupe(selected_indices)
        chosen = ", ".join(options[i] for i in selected if 0 <= i < len(options))

        if free_text:
            answer = f"{chosen} | Additional: {free_text}" if chosen else f"Additional: {free_text}"
        else:
            answer = chosen or NO_SELECTION_ANSWER

        return cls(
            question=question,
            answer=answer,
            options=options,
            selected_indices=selected,
            free_text=free_text,
            correct_indices=correct_indices,
            is_quiz=is_quiz,
        )

    def apply_feedback(self, result: QuizFeedback) -> None:
        """Record a completed grading call on this turn."""
        n = len(self.options)
        bad = [i for i in result.correct_indices if not 0 <= i < n]
        if bad:
            raise ValueError(f"correct indices {bad} out of range for {n} options")
        self.feedback = result.feedback
        self.option_feedback = list(result.option_feedback)
        if result.correct_indices:
            self.correct_indices = _dedupe(result.correct_indices)
        self.has_feedback = True

    @property
    def not_selected_options(self) -> list[str]:
        chosen = set(self.selected_indices)
        return [opt for i, opt in enumerate(self.options) if i not in chosen]


_SLUG_RE = re.compile(r"[^a-z0-9]+")


def derive_context_id(context: str, length: int = 40) -> str:
    """Derive a session key from the first characters of the topic text.

    ``"My Trip to Japan!"`` becomes ``"my-trip-to-japan"``.  Topics with no
    usable characters fall back to ``"untitled"``.
    """
    slug = _SLUG_RE.sub("-", context.strip()[:length].lower()).strip("-")
    return slug or "untitled"


class Session(CamelModel):
    """All state for one topic: the topic text, the model and the turn log."""

    context_id: str
    context: str
    model: str | None = None
    turns: list[ConversationTurn] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def append_turn(self, turn: ConversationTurn) -> int:
        """Append a turn and return its position.

        The position is the turn's stable identity: a grading call started
        for this turn must write back to this index, not to "the last turn".
        """
        self.turns.append(turn)
        self.updated_at = time.time()
        return len(self.turns) - 1

    def apply_feedback(self, turn_index: int, result: QuizFeedback) -> ConversationTurn:
        """Attach grading feedback to the turn captured at ``turn_index``."""
        if not 0 <= turn_index < len(self.turns):
            raise IndexError(f"turn {turn_index} does not exist in session {self.context_id}")
        turn = self.turns[turn_index]
        turn.apply_feedback(result)
        self.updated_at = time.time()
        return turn

    @property
    def question_count(self) -> int:
        return len(self.turns)
