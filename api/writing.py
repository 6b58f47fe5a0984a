"""Writing assistant API — question, essay and quiz endpoints.

Streaming endpoints answer with SSE frames (``data: <json>\\n\\n``) carrying
``chunk`` / ``mcq`` / ``done`` / ``error`` events; see
:mod:`services.event_stream`.

Endpoints:
- ``POST /api/generate-question``  — next MCQ for a topic (SSE)
- ``POST /api/finalize``           — essay synthesis / refinement (SSE)
- ``POST /api/quiz-feedback``      — grade one quiz answer (JSON)
- ``POST /api/quiz-finalize``      — quiz performance analysis (SSE)
- ``GET|PUT /api/system-prompt``   — question template
- ``GET /api/list-models``         — generation-capable models
- ``POST /api/test-gemini-key``    — validate an API key
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

from config.settings import get_settings
from errors import TransportError, UpstreamError, WritingAssistantError
from models.request import (
    FinalizeRequest,
    GenerateQuestionRequest,
    KeyCheckRequest,
    KeyCheckResponse,
    ModelListResponse,
    QuizFeedbackRequest,
    QuizFeedbackResponse,
    QuizFinalizeRequest,
    SystemPromptResponse,
    SystemPromptUpdate,
)
from services.event_stream import SSE_HEADERS
from services.gemini_client import get_gemini_client
from services.generation import (
    check_key,
    generate_feedback,
    quiz_score_lines,
    stream_question,
    stream_text,
)
from services.model_catalog import select_generation_models
from services.prompt_resolver import (
    load_template,
    resolve_analysis_prompt,
    resolve_finalize_prompt,
    resolve_question_prompt,
)
from services.session_store import get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["writing"])


def _require_api_key(api_key: str) -> str:
    if not api_key or not api_key.strip():
        raise HTTPException(status_code=400, detail="API key is required")
    return api_key.strip()


def _require_context(context: str) -> str:
    if not context or not context.strip():
        raise HTTPException(status_code=400, detail="Context is required")
    return context.strip()


def _sse_response(stream) -> StreamingResponse:
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)


# ── Streaming endpoints ─────────────────────────────────────


@router.post("/generate-question")
async def generate_question(req: GenerateQuestionRequest):
    """Stream the next multiple-choice question for a topic.

    The template is, in order: ``systemPrompt`` from the request, the
    stored custom template, the built-in one for the mode.
    """
    api_key = _require_api_key(req.api_key)
    context = _require_context(req.context)
    quiz = req.mode == "quiz"

    template = req.system_prompt
    if not template or not template.strip():
        template = None if quiz else await get_session_store().get_system_prompt()

    prompt = resolve_question_prompt(context, req.conversation_history, template, quiz=quiz)
    logger.info(
        "[Question] mode=%s model=%s history=%d prompt=%d chars",
        req.mode, req.model, len(req.conversation_history), len(prompt),
    )
    return _sse_response(stream_question(get_gemini_client(), prompt, api_key, req.model, quiz=quiz))


@router.post("/finalize")
async def finalize(req: FinalizeRequest):
    """Stream the synthesized essay, or a refinement of ``previousEssay``."""
    api_key = _require_api_key(req.api_key)
    context = _require_context(req.context)

    prompt = resolve_finalize_prompt(
        context, req.conversation_history, req.refinement, req.previous_essay,
    )
    logger.info(
        "[Finalize] model=%s history=%d refinement=%s",
        req.model, len(req.conversation_history), bool(req.refinement),
    )
    return _sse_response(stream_text(get_gemini_client(), prompt, api_key, req.model))


@router.post("/quiz-finalize")
async def quiz_finalize(req: QuizFinalizeRequest):
    """Stream a performance analysis for a finished quiz."""
    api_key = _require_api_key(req.api_key)
    context = _require_context(req.context)

    score_text = quiz_score_lines(req.conversation_history)
    prompt = resolve_analysis_prompt(context, req.conversation_history, score_text)
    logger.info("[QuizFinalize] model=%s questions=%d", req.model, len(req.conversation_history))
    return _sse_response(stream_text(get_gemini_client(), prompt, api_key, req.model))


# ── JSON endpoints ──────────────────────────────────────────


@router.post("/quiz-feedback", response_model=QuizFeedbackResponse)
async def quiz_feedback(req: QuizFeedbackRequest):
    """Grade one answered quiz question.

    Upstream failures are returned as ``{"error": ...}`` with the upstream
    HTTP status.
    """
    api_key = _require_api_key(req.api_key)
    if not req.question or not req.options or req.selected_indices is None or req.correct_indices is None:
        raise HTTPException(
            status_code=400,
            detail="Question, options, selectedIndices, and correctIndices are required",
        )

    try:
        result = await generate_feedback(
            get_gemini_client(),
            req.question,
            req.options,
            req.selected_indices,
            req.correct_indices,
            api_key,
            context=req.context,
            model=req.model,
        )
    except UpstreamError as e:
        status = e.status_code if e.status_code and 400 <= e.status_code < 600 else 500
        return JSONResponse(
            status_code=status,
            content={"error": e.message, "errorDetails": e.details, "model": e.model},
        )
    except TransportError as e:
        return JSONResponse(status_code=502, content={"error": str(e)})

    return QuizFeedbackResponse(
        feedback=result.feedback,
        option_feedback=result.option_feedback,
        correct_indices=result.correct_indices,
    )


@router.get("/system-prompt", response_model=SystemPromptResponse)
async def get_system_prompt():
    """The question template in effect: stored custom text or the default."""
    stored = await get_session_store().get_system_prompt()
    return SystemPromptResponse(prompt=stored or load_template("question"))


@router.get("/system-prompt/default", response_model=SystemPromptResponse)
async def get_default_system_prompt():
    return SystemPromptResponse(prompt=load_template("question"))


@router.put("/system-prompt", response_model=SystemPromptResponse)
async def put_system_prompt(req: SystemPromptUpdate):
    await get_session_store().set_system_prompt(req.prompt)
    stored = await get_session_store().get_system_prompt()
    logger.info("[SystemPrompt] custom=%s", stored is not None)
    return SystemPromptResponse(prompt=stored or load_template("question"))


@router.get("/list-models")
async def list_models(api_key: str = Query("", alias="apiKey")):
    """Generation-capable models, recommended first.

    Upstream failures are reported as ``{"error": ...}`` with status 200 so
    a settings page can show them inline.
    """
    api_key = _require_api_key(api_key)
    try:
        raw = await get_gemini_client().list_models(api_key)
    except UpstreamError as e:
        return {"error": e.message or "Failed to fetch models"}
    except WritingAssistantError as e:
        return {"error": str(e)}

    models = select_generation_models(raw, get_settings().recommended_models)
    return ModelListResponse(models=models).model_dump(by_alias=True)


@router.post("/test-gemini-key", response_model=KeyCheckResponse, response_model_exclude_none=True)
async def check_gemini_key(req: KeyCheckRequest):
    api_key = _require_api_key(req.api_key)
    return await check_key(get_gemini_client(), api_key, req.model)
