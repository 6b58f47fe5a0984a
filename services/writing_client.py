"""Async consumer of the writing assistant API.

Drives the turn-taking flow from the user's side of the wire: it decodes
the SSE streams, keeps the session log in a :class:`SessionStore`, and in
quiz mode grades each answer in the background.

Usage::

    async with httpx.AsyncClient(base_url="http://localhost:5000") as http:
        wa = WritingAssistantClient(http, api_key="...")
        session = await wa.start_session("A thank-you note to my mentor")
        draft = await wa.next_question(session.context_id)
        await wa.submit_answer(session.context_id, draft, [0], "she taught me Python")
        essay = await wa.finalize(session.context_id)
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable

import httpx

from errors import IncompleteResult, TransportError, UpstreamError, WritingAssistantError
from models.conversation import ConversationTurn, QuizFeedback, Session
from models.errors import ErrorCode, split_error
from models.stream_events import ChunkEvent, DoneEvent, ErrorEvent, McqEvent, MCQDraft, StreamEvent
from services.event_stream import EventStreamDecoder
from services.field_extractor import validate_mcq
from services.session_store import InMemoryKeyValueStore, SessionStore

logger = logging.getLogger(__name__)


def error_from_event(event: ErrorEvent) -> WritingAssistantError:
    """Rebuild a domain exception from a stream ``error`` event."""
    code, detail = split_error(event.error)
    if code is ErrorCode.INCOMPLETE_RESULT:
        return IncompleteResult(detail)
    if code is ErrorCode.TRANSPORT_ERROR:
        return TransportError(detail)
    return UpstreamError(detail, model=event.model)


def _response_error(response: httpx.Response, body: bytes) -> UpstreamError:
    detail = body.decode("utf-8", errors="replace")[:300] or f"HTTP {response.status_code}"
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error") or detail
    return UpstreamError(str(detail), status_code=response.status_code)


class WritingAssistantClient:
    """One user's view of the service: their API key, model and sessions."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        model: str | None = None,
        store: SessionStore | None = None,
    ) -> None:
        self._http = http
        self.api_key = api_key
        self.model = model
        self.store = store or SessionStore(InMemoryKeyValueStore())
        self._grading: set[asyncio.Task[QuizFeedback | None]] = set()

    # -- transport -----------------------------------------------------------

    async def _events(self, path: str, payload: dict[str, Any]) -> AsyncIterator[StreamEvent]:
        decoder = EventStreamDecoder()
        try:
            async with self._http.stream("POST", path, json=payload) as response:
                if not response.is_success:
                    raise _response_error(response, await response.aread())
                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        yield event
        except httpx.HTTPError as e:
            raise TransportError(f"Stream from {path} broken: {e}") from e
        for event in decoder.close():
            yield event
        if decoder.dropped:
            logger.warning("%s: dropped %d malformed frames", path, decoder.dropped)

    def _payload(self, session: Session, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "context": session.context,
            "conversationHistory": [
                t.model_dump(by_alias=True, exclude_none=True) for t in session.turns
            ],
            "apiKey": self.api_key,
        }
        model = session.model or self.model
        if model:
            payload["model"] = model
        payload.update({k: v for k, v in extra.items() if v is not None})
        return payload

    # -- sessions ------------------------------------------------------------

    async def start_session(self, context: str) -> Session:
        return await self.store.create(context, self.model)

    # -- questions -----------------------------------------------------------

    async def next_question(
        self,
        context_id: str,
        quiz: bool = False,
        on_update: Callable[[MCQDraft], None] | None = None,
    ) -> MCQDraft:
        """Stream the next question; ``on_update`` sees every partial draft.

        A stream that ends without ``done`` still counts when its last
        ``mcq`` is usable.

        Raises:
            IncompleteResult: no usable question arrived.
            UpstreamError: the server reported an upstream failure.
            TransportError: the connection broke.
        """
        session = await self.store.require(context_id)
        payload = self._payload(session, mode="quiz" if quiz else "essay")
        system_prompt = await self.store.get_system_prompt()
        if system_prompt and not quiz:
            payload["systemPrompt"] = system_prompt

        last: MCQDraft | None = None
        finished = False
        async with aclosing(self._events("/api/generate-question", payload)) as events:
            async for event in events:
                if isinstance(event, McqEvent):
                    last = event.to_draft()
                    if on_update is not None:
                        on_update(last)
                elif isinstance(event, DoneEvent):
                    finished = True
                    break
                elif isinstance(event, ErrorEvent):
                    raise error_from_event(event)

        if last is None:
            raise IncompleteResult("Stream ended without a question")
        if not finished:
            logger.warning("Question stream for %s ended without done; using last mcq", context_id)
        return validate_mcq(last, quiz=quiz)

    async def submit_answer(
        self,
        context_id: str,
        draft: MCQDraft,
        selected_indices: list[int],
        free_text: str = "",
        quiz: bool = False,
    ) -> int:
        """Record the answer and return the turn's index.

        In quiz mode grading starts in the background and writes back to
        that index when it completes, whatever was appended meanwhile.
        """
        turn = ConversationTurn.from_submission(
            question=draft.question or "",
            options=list(draft.options),
            selected_indices=selected_indices,
            free_text=free_text,
            correct_indices=draft.correct_indices if quiz else None,
            is_quiz=quiz,
        )
        index = await self.store.append_turn(context_id, turn)
        if quiz:
            task = asyncio.create_task(self._grade_in_background(context_id, index))
            self._grading.add(task)
            task.add_done_callback(self._grading.discard)
        return index

    # -- grading -------------------------------------------------------------

    async def grade_turn(self, context_id: str, turn_index: int) -> QuizFeedback:
        """Grade the turn at ``turn_index`` and store the result on it."""
        session = await self.store.require(context_id)
        turn = session.turns[turn_index]
        payload: dict[str, Any] = {
            "question": turn.question,
            "options": turn.options,
            "selectedIndices": turn.selected_indices,
            "correctIndices": turn.correct_indices or [],
            "context": session.context,
            "apiKey": self.api_key,
        }
        model = session.model or self.model
        if model:
            payload["model"] = model

        try:
            response = await self._http.post("/api/quiz-feedback", json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Grading request failed: {e}") from e
        if not response.is_success:
            raise _response_error(response, response.content)

        feedback = QuizFeedback.model_validate(response.json())
        await self.store.apply_feedback(context_id, turn_index, feedback)
        return feedback

    async def _grade_in_background(self, context_id: str, turn_index: int) -> QuizFeedback | None:
        try:
            return await self.grade_turn(context_id, turn_index)
        except WritingAssistantError as e:
            logger.warning("Grading turn %d of %s failed: %s", turn_index, context_id, e)
            return None

    async def wait_for_grading(self) -> None:
        """Wait until every background grading call has finished."""
        if self._grading:
            await asyncio.gather(*self._grading)

    # -- free text -----------------------------------------------------------

    async def _collect_text(
        self,
        path: str,
        payload: dict[str, Any],
        on_chunk: Callable[[str], None] | None,
    ) -> str:
        parts: list[str] = []
        async with aclosing(self._events(path, payload)) as events:
            async for event in events:
                if isinstance(event, ChunkEvent):
                    parts.append(event.text)
                    if on_chunk is not None:
                        on_chunk(event.text)
                elif isinstance(event, DoneEvent):
                    break
                elif isinstance(event, ErrorEvent):
                    raise error_from_event(event)
        return "".join(parts)

    async def finalize(
        self,
        context_id: str,
        refinement: str | None = None,
        previous_essay: str | None = None,
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Stream the essay (or its refinement) and return the full text."""
        session = await self.store.require(context_id)
        payload = self._payload(session, refinement=refinement, previousEssay=previous_essay)
        return await self._collect_text("/api/finalize", payload, on_chunk)

    async def analyze_quiz(
        self,
        context_id: str,
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Wait for pending grades, then stream the performance analysis."""
        await self.wait_for_grading()
        session = await self.store.require(context_id)
        return await self._collect_text("/api/quiz-finalize", self._payload(session), on_chunk)
