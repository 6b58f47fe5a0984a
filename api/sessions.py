"""Session API — topics, answered turns, grading write-back and scores."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from errors import CorruptHistoryError
from models.conversation import ConversationTurn, QuizFeedback, Session
from models.request import (
    CreateSessionRequest,
    QuestionScoreOut,
    SessionScoreResponse,
    SubmitTurnRequest,
    SubmitTurnResponse,
)
from services.scoring import score_session, score_turn
from services.session_store import SessionNotFoundError, SessionSummary, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


async def _require(context_id: str) -> Session:
    try:
        return await get_session_store().require(context_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0])) from e


@router.get("", response_model=list[SessionSummary])
async def list_sessions():
    """All sessions, most answered questions first."""
    return await get_session_store().list_sessions()


@router.post("", response_model=Session, status_code=201)
async def create_session(req: CreateSessionRequest):
    if not req.context.strip():
        raise HTTPException(status_code=400, detail="Context is required")
    return await get_session_store().create(req.context, req.model)


@router.get("/{context_id}", response_model=Session)
async def get_session(context_id: str):
    return await _require(context_id)


@router.delete("/{context_id}", status_code=204)
async def delete_session(context_id: str):
    await _require(context_id)
    await get_session_store().delete(context_id)


@router.post("/{context_id}/turns", response_model=SubmitTurnResponse, status_code=201)
async def submit_turn(context_id: str, req: SubmitTurnRequest):
    """Record an answered question; the returned index identifies the turn."""
    await _require(context_id)
    try:
        turn = ConversationTurn.from_submission(
            question=req.question,
            options=req.options,
            selected_indices=req.selected_indices,
            free_text=req.free_text,
            correct_indices=req.correct_indices,
            is_quiz=req.is_quiz,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False)) from e

    try:
        index = await get_session_store().append_turn(context_id, turn)
    except CorruptHistoryError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return SubmitTurnResponse(turn_index=index, turn=turn)


@router.put("/{context_id}/turns/{turn_index}/feedback", response_model=ConversationTurn)
async def apply_feedback(context_id: str, turn_index: int, req: QuizFeedback):
    """Attach grading results to the turn at ``turn_index``."""
    await _require(context_id)
    try:
        return await get_session_store().apply_feedback(context_id, turn_index, req)
    except CorruptHistoryError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/{context_id}/score", response_model=SessionScoreResponse)
async def get_score(context_id: str):
    session = await _require(context_id)
    total = score_session(session.turns)
    questions = []
    for index, turn in enumerate(session.turns):
        score = score_turn(turn)
        if score is not None:
            questions.append(QuestionScoreOut(
                turn_index=index,
                final_score=score.final_score,
                possible=score.possible,
                display=score.display(),
            ))
    return SessionScoreResponse(
        total=total.total,
        possible=total.possible,
        graded=total.graded,
        display=total.display(),
        questions=questions,
    )
