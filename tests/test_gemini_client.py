"""Tests for services/gemini_client.py — HTTP client for the Gemini API."""

from __future__ import annotations

import json

import httpx
import pytest

from config.llm_config import GenerationConfig
from errors import TransportError, UpstreamError
from services.gemini_client import (
    GeminiClient,
    build_request_body,
    get_gemini_client,
    upstream_error_message,
)
from tests.helpers import upstream_body


def _ok(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


async def _started(handler) -> GeminiClient:
    client = GeminiClient(transport=httpx.MockTransport(handler))
    await client.start()
    return client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestUpstreamErrorMessage:
    def test_object_body(self):
        body = json.dumps({"error": {"code": 400, "message": "API key not valid"}})
        assert upstream_error_message(body, "fallback") == "API key not valid"

    def test_array_body(self):
        body = json.dumps([{"error": {"message": "Quota exceeded"}}])
        assert upstream_error_message(body, "fallback") == "Quota exceeded"

    def test_string_error(self):
        assert upstream_error_message('{"error": "nope"}', "fallback") == "nope"

    def test_not_json(self):
        assert upstream_error_message("<html>502</html>", "fallback") == "fallback"


class TestRequestBody:
    def test_prompt_only(self):
        assert build_request_body("hi") == {"contents": [{"parts": [{"text": "hi"}]}]}

    def test_generation_config(self):
        body = build_request_body("hi", GenerationConfig(temperature=0.2, max_output_tokens=100))
        assert body["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 100}

    def test_empty_config_omitted(self):
        assert "generationConfig" not in build_request_body("hi", GenerationConfig())


# ---------------------------------------------------------------------------
# generateContent
# ---------------------------------------------------------------------------


class TestGenerate:
    async def test_returns_candidate_text(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _ok("Hello there")

        client = await _started(handler)
        try:
            assert await client.generate("Say hi", "k-123", "gemini-pro-latest") == "Hello there"
        finally:
            await client.close()

        request = seen[0]
        assert request.url.path.endswith("/models/gemini-pro-latest:generateContent")
        assert request.url.params["key"] == "k-123"
        assert json.loads(request.content)["contents"][0]["parts"][0]["text"] == "Say hi"

    async def test_default_model(self):
        paths: list[str] = []

        def handler(request):
            paths.append(request.url.path)
            return _ok("x")

        client = await _started(handler)
        await client.generate("p", "k")
        await client.close()
        assert paths[0].endswith(f"/models/{client.default_model}:generateContent")

    async def test_empty_candidates(self):
        client = await _started(lambda request: httpx.Response(200, json={"candidates": []}))
        assert await client.generate("p", "k") == ""
        await client.close()

    async def test_upstream_error(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Resource exhausted"}})

        client = await _started(handler)
        with pytest.raises(UpstreamError) as exc_info:
            await client.generate("p", "k", "gemini-pro-latest")
        await client.close()

        err = exc_info.value
        assert err.message == "Resource exhausted"
        assert err.status_code == 429
        assert err.model == "gemini-pro-latest"

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = await _started(handler)
        with pytest.raises(TransportError):
            await client.generate("p", "k")
        await client.close()

    async def test_not_started(self):
        with pytest.raises(RuntimeError, match="not started"):
            await GeminiClient().generate("p", "k")


# ---------------------------------------------------------------------------
# streamGenerateContent
# ---------------------------------------------------------------------------


class TestStream:
    async def test_yields_raw_body(self):
        body = upstream_body(["Hello", " world"])

        def handler(request):
            assert request.url.path.endswith(":streamGenerateContent")
            return httpx.Response(200, text=body)

        client = await _started(handler)
        pieces = [piece async for piece in client.stream("p", "k")]
        await client.close()
        assert "".join(pieces) == body

    async def test_chunked_body(self):
        async def chunks():
            for part in (b'[{"candidates": ', b"[]}\n", b"]"):
                yield part

        client = await _started(lambda request: httpx.Response(200, content=chunks()))
        pieces = [piece async for piece in client.stream("p", "k")]
        await client.close()
        assert "".join(pieces) == '[{"candidates": []}\n]'

    async def test_error_status_raises_before_yielding(self):
        def handler(request):
            return httpx.Response(400, json=[{"error": {"message": "API key not valid"}}])

        client = await _started(handler)
        with pytest.raises(UpstreamError, match="API key not valid") as exc_info:
            async for _ in client.stream("p", "k", "gemini-flash-latest"):
                pytest.fail("no text expected")
        await client.close()
        assert exc_info.value.model == "gemini-flash-latest"
        assert exc_info.value.status_code == 400

    async def test_network_error(self):
        def handler(request):
            raise httpx.ReadError("reset", request=request)

        client = await _started(handler)
        with pytest.raises(TransportError):
            async for _ in client.stream("p", "k"):
                pass
        await client.close()


# ---------------------------------------------------------------------------
# Model listing / lifecycle
# ---------------------------------------------------------------------------


class TestListModels:
    async def test_lists(self):
        models = [{"name": "models/gemini-flash-latest", "supportedGenerationMethods": ["generateContent"]}]
        client = await _started(lambda request: httpx.Response(200, json={"models": models}))
        assert await client.list_models("k") == models
        await client.close()

    async def test_error(self):
        client = await _started(lambda request: httpx.Response(403, json={"error": {"message": "denied"}}))
        with pytest.raises(UpstreamError, match="denied"):
            await client.list_models("k")
        await client.close()


class TestLifecycle:
    async def test_start_is_idempotent_and_close_resets(self):
        client = GeminiClient(transport=httpx.MockTransport(lambda request: _ok("x")))
        await client.start()
        first = client._http
        await client.start()
        assert client._http is first
        await client.close()
        assert client._http is None

    def test_singleton(self):
        assert get_gemini_client() is get_gemini_client()
