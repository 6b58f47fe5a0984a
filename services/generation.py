"""Generation pipelines: upstream stream → extractor/relay → SSE frames.

Three shapes of work go to the model:

- **question**: streamed, parsed incrementally into an MCQ draft; every
  change of the draft is forwarded as an ``mcq`` event and the final,
  validated draft closes the stream.
- **text**: streamed, relayed verbatim as ``chunk`` events (essay,
  refinement, quiz analysis).
- **feedback**: one-shot; the JSON verdict is parsed, with a fallback built
  from the known correct answers when the model's JSON is unusable.

Every streaming pipeline is an async generator of ready-to-send SSE strings
that ends with exactly one ``done`` or ``error`` event.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, AsyncIterator, Sequence

from pydantic import ValidationError

from config.llm_config import GenerationConfig
from config.prompts.quiz import KEY_CHECK_PROMPT
from errors import WritingAssistantError
from models.conversation import ConversationTurn, OptionFeedback, QuizFeedback
from models.errors import classify_exception
from models.request import KeyCheckResponse
from services.event_stream import EventStreamEncoder
from services.field_extractor import (
    MCQ_FIELDS,
    QUIZ_FIELDS,
    StreamAccumulator,
    draft_from_values,
    parse_json_object,
    validate_mcq,
)
from services.gemini_client import GeminiClient
from services.prompt_resolver import resolve_feedback_prompt
from services.scoring import score_session, score_turn
from services.text_relay import PlainTextRelay
from services.upstream_framing import UpstreamLineDecoder

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK = "Feedback generated successfully."
DEFAULT_GREETING = "Hello! Your API key is working."

# Grading should be steady rather than creative.
FEEDBACK_CONFIG = GenerationConfig(temperature=0.2)


async def _upstream_texts(
    client: GeminiClient,
    prompt: str,
    api_key: str,
    model: str,
) -> AsyncIterator[str]:
    """Generated text pieces, recovered line by line from the raw stream."""
    lines = UpstreamLineDecoder()
    async for raw in client.stream(prompt, api_key, model):
        for text in lines.feed(raw):
            yield text
    for text in lines.flush():
        yield text
    logger.debug(
        "Upstream stream: %d lines, %d without text", lines.lines_seen, lines.lines_skipped,
    )


# ── Question pipeline ────────────────────────────────────────


async def stream_question(
    client: GeminiClient,
    prompt: str,
    api_key: str,
    model: str | None = None,
    quiz: bool = False,
) -> AsyncGenerator[str, None]:
    """Stream one multiple-choice question as ``mcq`` events.

    Partial drafts are emitted whenever a field changes.  After the
    upstream ends the full buffer is re-parsed, validated and sent as the
    last ``mcq`` before ``done``.  In quiz mode a draft without valid
    ``correctIndices`` is an error.
    """
    enc = EventStreamEncoder()
    model = model or client.default_model
    acc = StreamAccumulator(QUIZ_FIELDS if quiz else MCQ_FIELDS)
    emitted = 0

    try:
        async for text in _upstream_texts(client, prompt, api_key, model):
            changed = acc.feed(text)
            if changed is not None:
                emitted += 1
                yield enc.mcq(draft_from_values(changed))

        final = validate_mcq(draft_from_values(acc.finalize()), quiz=quiz)
        logger.info(
            "Question ready: model=%s options=%d partial_updates=%d buffer=%d chars",
            model, len(final.options), emitted, len(acc.buffer),
        )
        yield enc.mcq(final)
        yield enc.done()

    except WritingAssistantError as e:
        logger.warning("Question stream failed (model=%s): %s", model, e)
        if acc.buffer:
            logger.debug("Unparsed question buffer: %.500s", acc.buffer)
        yield enc.error(classify_exception(e), model)
    except Exception as e:
        logger.exception("Question stream crashed (model=%s)", model)
        yield enc.error(classify_exception(e), model)


# ── Text pipeline ────────────────────────────────────────────


async def stream_text(
    client: GeminiClient,
    prompt: str,
    api_key: str,
    model: str | None = None,
) -> AsyncGenerator[str, None]:
    """Relay free-form generated text as ``chunk`` events, then ``done``."""
    enc = EventStreamEncoder()
    model = model or client.default_model
    relay = PlainTextRelay()

    try:
        async for text in _upstream_texts(client, prompt, api_key, model):
            piece = relay.feed(text)
            if piece is not None:
                yield enc.chunk(piece)
        logger.info("Text stream complete: model=%s chars=%d", model, len(relay))
        yield enc.done()

    except WritingAssistantError as e:
        logger.warning("Text stream failed after %d chars (model=%s): %s", len(relay), model, e)
        yield enc.error(classify_exception(e), model)
    except Exception as e:
        logger.exception("Text stream crashed (model=%s)", model)
        yield enc.error(classify_exception(e), model)


# ── Feedback (one-shot) ──────────────────────────────────────


def fallback_option_feedback(option_count: int, correct_indices: Sequence[int]) -> list[OptionFeedback]:
    correct = set(correct_indices)
    return [
        OptionFeedback(
            index=idx,
            is_correct=idx in correct,
            explanation=(
                "This is a correct answer." if idx in correct else "This is not a correct answer."
            ),
        )
        for idx in range(option_count)
    ]


def parse_feedback(text: str, options: Sequence[str], correct_indices: Sequence[int]) -> QuizFeedback:
    """Turn the grader's reply into :class:`QuizFeedback`.

    Unparseable replies keep the raw text as the overall feedback and mark
    each option from the known correct answers.  ``correctIndices`` always
    echoes the request, never the model.
    """
    data = parse_json_object(text)
    if data is None:
        logger.warning("Feedback reply is not JSON (%d chars); using fallback", len(text))
        return QuizFeedback(
            feedback=text or DEFAULT_FEEDBACK,
            option_feedback=fallback_option_feedback(len(options), correct_indices),
            correct_indices=list(correct_indices),
        )

    option_feedback: list[OptionFeedback] = []
    for item in data.get("optionFeedback") or []:
        try:
            option_feedback.append(OptionFeedback.model_validate(item))
        except ValidationError:
            logger.debug("Dropping malformed optionFeedback entry: %r", item)

    feedback = data.get("feedback")
    return QuizFeedback(
        feedback=feedback if isinstance(feedback, str) and feedback else text,
        option_feedback=option_feedback,
        correct_indices=list(correct_indices),
    )


async def generate_feedback(
    client: GeminiClient,
    question: str,
    options: Sequence[str],
    selected_indices: Sequence[int],
    correct_indices: Sequence[int],
    api_key: str,
    context: str | None = None,
    model: str | None = None,
) -> QuizFeedback:
    """Grade one answered quiz question.

    Raises:
        UpstreamError: the model refused the request.
        TransportError: the model could not be reached.
    """
    prompt = resolve_feedback_prompt(question, options, selected_indices, correct_indices, context)
    text = await client.generate(prompt, api_key, model, config=FEEDBACK_CONFIG)
    return parse_feedback(text.strip(), options, correct_indices)


async def check_key(client: GeminiClient, api_key: str, model: str | None = None) -> KeyCheckResponse:
    """Validate an API key with a tiny generation; never raises."""
    try:
        greeting = await client.generate(KEY_CHECK_PROMPT, api_key, model)
    except WritingAssistantError as e:
        logger.info("API key check failed: %s", e)
        return KeyCheckResponse(valid=False, error=str(e) or "Invalid API key")
    return KeyCheckResponse(valid=True, greeting=greeting.strip() or DEFAULT_GREETING)


def quiz_score_lines(turns: Sequence[ConversationTurn]) -> str:
    """One ``Qn: x/y`` line per graded question, plus the total."""
    lines = []
    for number, turn in enumerate(turns, start=1):
        score = score_turn(turn)
        if score is not None:
            lines.append(f"Q{number}: {score.display()}")
    lines.append(f"Total: {score_session(turns).display()}")
    return "\n".join(lines)
