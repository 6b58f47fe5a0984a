"""FastAPI endpoint tests using httpx.AsyncClient."""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from errors import UpstreamError
from main import app
from models.stream_events import ChunkEvent, DoneEvent, ErrorEvent, McqEvent
from services.session_store import HISTORY_PREFIX, get_session_store
from tests.helpers import FakeGemini, decode_sse, upstream_body


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _gemini(fake: FakeGemini):
    return patch("api.writing.get_gemini_client", return_value=fake)


QUESTION_TEXT = '{"question": "Who is it for?", "options": ["Friends", "Family"]}'


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_request_id_echoed(client):
    resp = await client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert resp.headers["x-request-id"] == "abc123"


# ── generate-question ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_generate_question_requires_api_key(client):
    resp = await client.post("/api/generate-question", json={"context": "A toast"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_generate_question_requires_context(client):
    resp = await client.post("/api/generate-question", json={"apiKey": "k", "context": "  "})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_generate_question_streams_mcq(client):
    fake = FakeGemini(chunks=[upstream_body([QUESTION_TEXT[:20], QUESTION_TEXT[20:]])])
    with _gemini(fake):
        resp = await client.post("/api/generate-question", json={
            "context": "A toast for my sister",
            "conversationHistory": [],
            "apiKey": "k",
            "model": "gemini-pro-latest",
        })

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"].startswith("no-cache")

    events = decode_sse([resp.content])
    assert events[-2] == McqEvent(question="Who is it for?", options=["Friends", "Family"])
    assert events[-1] == DoneEvent()
    assert fake.models_used == ["gemini-pro-latest"]
    assert "A toast for my sister" in fake.prompts[0]


@pytest.mark.asyncio
async def test_generate_question_non_bmp_characters(client):
    text = '{"question": "Pick \U0001F600 one", "options": ["\U0001F44D", "b"]}'
    fake = FakeGemini(chunks=[upstream_body([text[:16], text[16:]])])
    with _gemini(fake):
        resp = await client.post("/api/generate-question", json={
            "context": "Emoji", "conversationHistory": [], "apiKey": "k",
        })

    assert resp.status_code == 200
    events = decode_sse([resp.content])
    assert events[-2] == McqEvent(question="Pick \U0001F600 one", options=["\U0001F44D", "b"])
    assert events[-1] == DoneEvent()


@pytest.mark.asyncio
async def test_generate_question_replays_history(client):
    fake = FakeGemini(chunks=[upstream_body([QUESTION_TEXT])])
    history = [{
        "question": "Tone?",
        "answer": "Warm",
        "options": ["Warm", "Formal"],
        "selectedIndices": [0],
    }]
    with _gemini(fake):
        await client.post("/api/generate-question", json={
            "context": "Topic", "conversationHistory": history, "apiKey": "k",
        })
    assert "Q: Tone?\nA: Warm\nNot selected: Formal" in fake.prompts[0]


@pytest.mark.asyncio
async def test_generate_question_uses_stored_system_prompt(client):
    fake = FakeGemini(chunks=[upstream_body([QUESTION_TEXT])])
    await client.put("/api/system-prompt", json={"prompt": "Custom: {Context}"})
    with _gemini(fake):
        await client.post("/api/generate-question", json={"context": "Topic", "apiKey": "k"})
    assert fake.prompts[0] == "Custom: Topic"


@pytest.mark.asyncio
async def test_generate_question_request_prompt_wins(client):
    fake = FakeGemini(chunks=[upstream_body([QUESTION_TEXT])])
    await client.put("/api/system-prompt", json={"prompt": "Stored: {Context}"})
    with _gemini(fake):
        await client.post("/api/generate-question", json={
            "context": "Topic", "apiKey": "k", "systemPrompt": "Sent: {Context}",
        })
    assert fake.prompts[0] == "Sent: Topic"


@pytest.mark.asyncio
async def test_generate_question_upstream_error_event(client):
    fake = FakeGemini(error=UpstreamError("API key not valid", status_code=400))
    with _gemini(fake):
        resp = await client.post("/api/generate-question", json={
            "context": "Topic", "apiKey": "bad", "model": "gemini-pro-latest",
        })
    assert resp.status_code == 200
    assert decode_sse([resp.content]) == [
        ErrorEvent(error="UPSTREAM_ERROR: API key not valid", model="gemini-pro-latest"),
    ]


@pytest.mark.asyncio
async def test_generate_question_invalid_mode(client):
    resp = await client.post("/api/generate-question", json={
        "context": "Topic", "apiKey": "k", "mode": "poem",
    })
    assert resp.status_code == 422


# ── finalize / quiz-finalize ───────────────────────────────────


@pytest.mark.asyncio
async def test_finalize_streams_chunks(client):
    fake = FakeGemini(chunks=[upstream_body(["Dear sis,", " cheers!"])])
    with _gemini(fake):
        resp = await client.post("/api/finalize", json={"context": "A toast", "apiKey": "k"})
    assert decode_sse([resp.content]) == [
        ChunkEvent(text="Dear sis,"), ChunkEvent(text=" cheers!"), DoneEvent(),
    ]


@pytest.mark.asyncio
async def test_finalize_refinement(client):
    fake = FakeGemini(chunks=[upstream_body(["Short."])])
    with _gemini(fake):
        await client.post("/api/finalize", json={
            "context": "A toast", "apiKey": "k",
            "refinement": "Make it shorter", "previousEssay": "Long essay",
        })
    assert "Long essay" in fake.prompts[0]
    assert "Make it shorter" in fake.prompts[0]


@pytest.mark.asyncio
async def test_quiz_finalize_includes_score(client):
    fake = FakeGemini(chunks=[upstream_body(["Great job."])])
    history = [{
        "question": "2+2?", "answer": "4", "options": ["3", "4"],
        "selectedIndices": [1], "correctIndices": [1], "isQuiz": True,
        "feedback": "Correct", "optionFeedback": [], "hasFeedback": True,
    }]
    with _gemini(fake):
        resp = await client.post("/api/quiz-finalize", json={
            "context": "Arithmetic", "conversationHistory": history, "apiKey": "k",
        })
    assert decode_sse([resp.content])[-1] == DoneEvent()
    assert "Total: 1/1" in fake.prompts[0]
    assert "Feedback: Correct" in fake.prompts[0]


# ── quiz-feedback ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_quiz_feedback(client):
    fake = FakeGemini(reply='{"feedback": "Nice", "optionFeedback": [{"index": 1, "isCorrect": true, "explanation": "4"}]}')
    with _gemini(fake):
        resp = await client.post("/api/quiz-feedback", json={
            "question": "2+2?", "options": ["3", "4"], "selectedIndices": [1],
            "correctIndices": [1], "apiKey": "k",
        })
    assert resp.status_code == 200
    data = resp.json()
    assert data["feedback"] == "Nice"
    assert data["optionFeedback"] == [{"index": 1, "isCorrect": True, "explanation": "4"}]
    assert data["correctIndices"] == [1]


@pytest.mark.asyncio
async def test_quiz_feedback_requires_fields(client):
    resp = await client.post("/api/quiz-feedback", json={
        "question": "2+2?", "options": ["3", "4"], "selectedIndices": [1], "apiKey": "k",
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_quiz_feedback_upstream_status(client):
    fake = FakeGemini(generate_error=UpstreamError("Quota exceeded", model="m", status_code=429))
    with _gemini(fake):
        resp = await client.post("/api/quiz-feedback", json={
            "question": "Q", "options": ["a"], "selectedIndices": [], "correctIndices": [0],
            "apiKey": "k",
        })
    assert resp.status_code == 429
    assert resp.json()["error"] == "Quota exceeded"


# ── settings endpoints ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_system_prompt_default_and_reset(client):
    default = (await client.get("/api/system-prompt")).json()["prompt"]
    assert "{Context}" in default

    await client.put("/api/system-prompt", json={"prompt": "Mine: {Context}"})
    assert (await client.get("/api/system-prompt")).json()["prompt"] == "Mine: {Context}"
    assert (await client.get("/api/system-prompt/default")).json()["prompt"] == default

    await client.put("/api/system-prompt", json={"prompt": ""})
    assert (await client.get("/api/system-prompt")).json()["prompt"] == default


@pytest.mark.asyncio
async def test_list_models(client):
    fake = FakeGemini(models=[
        {"name": "models/other", "displayName": "Other", "supportedGenerationMethods": ["generateContent"]},
        {"name": "models/gemini-flash-latest", "displayName": "Flash", "supportedGenerationMethods": ["generateContent"]},
        {"name": "models/embedder", "supportedGenerationMethods": ["embedContent"]},
    ])
    with _gemini(fake):
        resp = await client.get("/api/list-models", params={"apiKey": "k"})
    models = resp.json()["models"]
    assert [m["name"] for m in models] == ["gemini-flash-latest", "other"]
    assert models[0]["displayName"] == "Flash"
    assert models[0]["supportedMethods"] == ["generateContent"]


@pytest.mark.asyncio
async def test_list_models_error_is_200(client):
    fake = FakeGemini(generate_error=UpstreamError("API key not valid", status_code=400))
    with _gemini(fake):
        resp = await client.get("/api/list-models", params={"apiKey": "bad"})
    assert resp.status_code == 200
    assert resp.json() == {"error": "API key not valid"}


@pytest.mark.asyncio
async def test_list_models_requires_key(client):
    assert (await client.get("/api/list-models")).status_code == 400


@pytest.mark.asyncio
async def test_check_key(client):
    with _gemini(FakeGemini(reply="Hello, I'm Gemini.")):
        resp = await client.post("/api/test-gemini-key", json={"apiKey": "k"})
    assert resp.json() == {"valid": True, "greeting": "Hello, I'm Gemini."}


@pytest.mark.asyncio
async def test_check_key_invalid(client):
    fake = FakeGemini(generate_error=UpstreamError("API key not valid", status_code=400))
    with _gemini(fake):
        resp = await client.post("/api/test-gemini-key", json={"apiKey": "bad"})
    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "error": "API key not valid"}


# ── sessions ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_session_lifecycle(client):
    resp = await client.post("/api/sessions", json={"context": "Quiz on fractions"})
    assert resp.status_code == 201
    context_id = resp.json()["contextId"]
    assert context_id == "quiz-on-fractions"

    turn = await client.post(f"/api/sessions/{context_id}/turns", json={
        "question": "1/2 + 1/4?", "options": ["3/4", "2/6", "0.75"],
        "selectedIndices": [0, 1], "correctIndices": [0, 2], "isQuiz": True,
    })
    assert turn.status_code == 201
    assert turn.json()["turnIndex"] == 0
    assert turn.json()["turn"]["answer"] == "3/4, 2/6"

    score = (await client.get(f"/api/sessions/{context_id}/score")).json()
    assert score["display"] == "0/2"
    assert score["questions"][0]["turnIndex"] == 0

    feedback = await client.put(f"/api/sessions/{context_id}/turns/0/feedback", json={
        "feedback": "Half right", "optionFeedback": [], "correctIndices": [0, 2],
    })
    assert feedback.status_code == 200
    assert feedback.json()["hasFeedback"] is True

    listing = (await client.get("/api/sessions")).json()
    assert listing == [{"contextId": context_id, "context": "Quiz on fractions", "questionCount": 1}]

    assert (await client.delete(f"/api/sessions/{context_id}")).status_code == 204
    assert (await client.get(f"/api/sessions/{context_id}")).status_code == 404


@pytest.mark.asyncio
async def test_session_turn_validation(client):
    await client.post("/api/sessions", json={"context": "Topic"})
    resp = await client.post("/api/sessions/topic/turns", json={
        "question": "Q", "options": ["a"], "selectedIndices": [4],
    })
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_feedback_for_unknown_turn(client):
    await client.post("/api/sessions", json={"context": "Topic"})
    resp = await client.put("/api/sessions/topic/turns/7/feedback", json={"feedback": "x"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_session(client):
    assert (await client.get("/api/sessions/missing/score")).status_code == 404


@pytest.mark.asyncio
async def test_corrupt_history_is_kept(client):
    await client.post("/api/sessions", json={"context": "Topic"})
    kv = get_session_store()._kv
    corrupt = '[{"question":"Q1","answer":"a","options":["a"],"selectedIndices":[5]}]'
    await kv.set(HISTORY_PREFIX + "topic", corrupt)

    resp = await client.post("/api/sessions/topic/turns", json={
        "question": "Q2", "options": ["a", "b"], "selectedIndices": [0],
    })
    assert resp.status_code == 409
    assert await kv.get(HISTORY_PREFIX + "topic") == corrupt
