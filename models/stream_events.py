"""SSE event payload models for question and text streaming.

Four event types travel over ``data: <json>\\n\\n`` frames:

- ``chunk``: a newly generated piece of free-form text (essay, analysis).
- ``mcq``:   the current best-effort multiple-choice question.
- ``done``:  the stream finished successfully.
- ``error``: the stream failed; carries the message and the model used.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from models.base import CamelModel


class MCQDraft(CamelModel):
    """Best-effort multiple-choice question extracted from a stream."""

    question: str | None = None
    options: list[str] = Field(default_factory=list)
    correct_indices: list[int] | None = None


class ChunkEvent(CamelModel):
    type: Literal["chunk"] = "chunk"
    text: str


class McqEvent(CamelModel):
    """Emitted whenever any extracted MCQ field changes."""

    type: Literal["mcq"] = "mcq"
    question: str | None = None
    options: list[str] = Field(default_factory=list)
    correct_indices: list[int] | None = None

    @classmethod
    def from_draft(cls, draft: MCQDraft) -> McqEvent:
        return cls(
            question=draft.question,
            options=list(draft.options),
            correct_indices=None if draft.correct_indices is None else list(draft.correct_indices),
        )

    def to_draft(self) -> MCQDraft:
        return MCQDraft(
            question=self.question,
            options=list(self.options),
            correct_indices=None if self.correct_indices is None else list(self.correct_indices),
        )


class DoneEvent(CamelModel):
    type: Literal["done"] = "done"


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    error: str
    model: str | None = None


StreamEvent = Annotated[
    Union[ChunkEvent, McqEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
