"""HTTP client for the Gemini REST API.

Wraps ``httpx.AsyncClient`` with:
- ``generateContent`` / ``streamGenerateContent`` URL construction
- per-request API key (the key belongs to the user, not the service)
- upstream error body parsing into :class:`UpstreamError`
- request timing logs
- connection-pool lifecycle tied to FastAPI lifespan

Streams are read without a timeout; only non-streaming calls use
``settings.upstream_timeout``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator

import httpx

from config.llm_config import GenerationConfig
from config.settings import get_settings
from errors import TransportError, UpstreamError
from services.upstream_framing import candidate_text

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_client: GeminiClient | None = None

GENERATION_METHODS = ("generateContent", "streamGenerateContent")


def upstream_error_message(body: str, default: str) -> str:
    """Pull ``error.message`` out of an upstream error body.

    Gemini answers with ``{"error": {...}}`` or, on streaming endpoints,
    ``[{"error": {...}}]``.  Anything else falls back to ``default``.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return default
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return default
    error = payload.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return message if isinstance(message, str) and message else default
    if isinstance(error, str) and error:
        return error
    return default


def build_request_body(prompt: str, config: GenerationConfig | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
    if config is not None:
        generation_config = config.to_request_field()
        if generation_config:
            body["generationConfig"] = generation_config
    return body


class GeminiClient:
    """Async HTTP client for the Gemini ``models`` endpoints."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        self._base_url = settings.gemini_api_base.rstrip("/")
        self._timeout = settings.upstream_timeout
        self._default_model = settings.default_model
        self._default_config = settings.get_default_generation_config()
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Create the underlying ``httpx.AsyncClient`` connection pool."""
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=30,
                max_keepalive_connections=15,
                keepalive_expiry=30,
            ),
        )
        logger.info("GeminiClient started, base_url=%s", self._base_url)

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("GeminiClient closed")

    @property
    def default_model(self) -> str:
        return self._default_model

    # -- public API ----------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        api_key: str,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> str:
        """Single-shot generation.  Returns the first candidate's text."""
        client = self._ensure_started()
        model = model or self._default_model
        path = f"/models/{model}:generateContent"
        body = build_request_body(prompt, self._resolve_config(config))

        t0 = time.monotonic()
        try:
            response = await client.post(path, params={"key": api_key}, json=body)
        except httpx.HTTPError as exc:
            logger.warning("POST %s → network error: %s", path, exc)
            raise TransportError(f"Could not reach Gemini: {exc}") from exc
        elapsed_ms = (time.monotonic() - t0) * 1000

        if not response.is_success:
            raise self._error_from_response(response.status_code, response.text, model, elapsed_ms)

        logger.info("POST %s → %d (%.0fms)", path, response.status_code, elapsed_ms)
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise UpstreamError(
                "Gemini returned a non-JSON response", model=model,
                status_code=response.status_code, details=response.text[:300],
            ) from exc
        return candidate_text(payload) or ""

    async def stream(
        self,
        prompt: str,
        api_key: str,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[str]:
        """Streaming generation.  Yields decoded pieces of the raw body.

        The pieces are arbitrary slices of the upstream JSON fragments; use
        :class:`services.upstream_framing.UpstreamLineDecoder` to recover the
        generated text.
        """
        client = self._ensure_started()
        model = model or self._default_model
        path = f"/models/{model}:streamGenerateContent"
        body = build_request_body(prompt, self._resolve_config(config))

        t0 = time.monotonic()
        received = 0
        try:
            async with client.stream(
                "POST", path, params={"key": api_key}, json=body,
                timeout=httpx.Timeout(None, connect=self._timeout),
            ) as response:
                if not response.is_success:
                    raw = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._error_from_response(
                        response.status_code, raw, model, (time.monotonic() - t0) * 1000,
                    )
                logger.info("POST %s → %d, streaming", path, response.status_code)
                async for text in response.aiter_text():
                    received += len(text)
                    yield text
        except httpx.HTTPError as exc:
            logger.warning("POST %s → stream broken after %d chars: %s", path, received, exc)
            raise TransportError(f"Connection to Gemini lost: {exc}") from exc

        logger.info(
            "POST %s → stream complete, %d chars (%.0fms)",
            path, received, (time.monotonic() - t0) * 1000,
        )

    async def list_models(self, api_key: str) -> list[dict[str, Any]]:
        """Raw model entries from ``GET /models``."""
        client = self._ensure_started()
        try:
            response = await client.get("/models", params={"key": api_key})
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not reach Gemini: {exc}") from exc
        if not response.is_success:
            raise self._error_from_response(response.status_code, response.text, None, 0.0)
        models = response.json().get("models") or []
        logger.info("GET /models → %d models", len(models))
        return models

    # -- internals -----------------------------------------------------------

    def _resolve_config(self, config: GenerationConfig | None) -> GenerationConfig:
        if config is None:
            return self._default_config
        return self._default_config.merge(config)

    @staticmethod
    def _error_from_response(
        status_code: int, body: str, model: str | None, elapsed_ms: float
    ) -> UpstreamError:
        message = upstream_error_message(body, f"Gemini API error: HTTP {status_code}")
        logger.warning(
            "Gemini %s → %d (%.0fms): %s", model or "models", status_code, elapsed_ms, message,
        )
        return UpstreamError(message, model=model, status_code=status_code, details=body[:500])

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("GeminiClient not started — call await client.start() first")
        return self._http


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------

def get_gemini_client() -> GeminiClient:
    """Return the module-level GeminiClient singleton (create if needed)."""
    global _client
    if _client is None:
        _client = GeminiClient()
    return _client
