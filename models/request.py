"""API request / response models."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from models.base import CamelModel
from models.conversation import ConversationTurn, OptionFeedback


class GenerateQuestionRequest(CamelModel):
    """POST /api/generate-question — request body."""

    context: str = ""
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    system_prompt: str | None = None
    api_key: str = ""
    model: str | None = None
    mode: Literal["essay", "quiz"] = "essay"


class FinalizeRequest(CamelModel):
    """POST /api/finalize — request body."""

    context: str = ""
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    refinement: str | None = None
    previous_essay: str | None = None
    api_key: str = ""
    model: str | None = None


class QuizFeedbackRequest(CamelModel):
    """POST /api/quiz-feedback — request body."""

    question: str = ""
    options: list[str] = Field(default_factory=list)
    selected_indices: list[int] | None = None
    correct_indices: list[int] | None = None
    context: str | None = None
    api_key: str = ""
    model: str | None = None


class QuizFeedbackResponse(CamelModel):
    """POST /api/quiz-feedback — response body."""

    feedback: str
    option_feedback: list[OptionFeedback] = Field(default_factory=list)
    correct_indices: list[int] = Field(default_factory=list)


class QuizFinalizeRequest(CamelModel):
    """POST /api/quiz-finalize — request body."""

    context: str = ""
    conversation_history: list[ConversationTurn] = Field(default_factory=list)
    api_key: str = ""
    model: str | None = None


class KeyCheckRequest(CamelModel):
    """POST /api/test-gemini-key — request body."""

    api_key: str = ""
    model: str | None = None


class KeyCheckResponse(CamelModel):
    valid: bool
    greeting: str | None = None
    error: str | None = None


class ModelInfo(CamelModel):
    """One generation-capable upstream model."""

    name: str
    display_name: str
    description: str = ""
    supported_methods: list[str] = Field(default_factory=list)


class ModelListResponse(CamelModel):
    models: list[ModelInfo] = Field(default_factory=list)


class SystemPromptResponse(CamelModel):
    prompt: str


class SystemPromptUpdate(CamelModel):
    """PUT /api/system-prompt — an empty prompt restores the default."""

    prompt: str = ""


# ── Sessions ─────────────────────────────────────────────────


class CreateSessionRequest(CamelModel):
    """POST /api/sessions — request body."""

    context: str
    model: str | None = None


class SubmitTurnRequest(CamelModel):
    """POST /api/sessions/{contextId}/turns — one answered question."""

    question: str
    options: list[str] = Field(default_factory=list)
    selected_indices: list[int] = Field(default_factory=list)
    free_text: str = ""
    correct_indices: list[int] | None = None
    is_quiz: bool = False


class SubmitTurnResponse(CamelModel):
    turn_index: int
    turn: ConversationTurn


class QuestionScoreOut(CamelModel):
    turn_index: int
    final_score: float
    possible: int
    display: str


class SessionScoreResponse(CamelModel):
    """GET /api/sessions/{contextId}/score — response body."""

    total: float
    possible: int
    graded: int
    display: str
    questions: list[QuestionScoreOut] = Field(default_factory=list)
