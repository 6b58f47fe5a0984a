"""Test helpers: upstream body builders, SSE decoding and a fake Gemini client."""

from __future__ import annotations

import json
from typing import Any, Iterable

from services.event_stream import EventStreamDecoder


def upstream_body(texts: Iterable[str]) -> str:
    """A ``streamGenerateContent`` body in the pretty-printed array form."""
    objects = []
    for text in texts:
        objects.append(
            "{\n"
            '  "candidates": [\n'
            "    {\n"
            '      "content": {\n'
            '        "parts": [\n'
            "          {\n"
            f'            "text": {json.dumps(text)}\n'
            "          }\n"
            "        ],\n"
            '        "role": "model"\n'
            "      }\n"
            "    }\n"
            "  ]\n"
            "}"
        )
    return "[" + "\n,\n".join(objects) + "\n]"


def compact_body(texts: Iterable[str]) -> str:
    """The one-object-per-line form of the same body."""
    lines = [
        json.dumps({"candidates": [{"content": {"parts": [{"text": t}], "role": "model"}}]})
        for t in texts
    ]
    return "[" + "\n,".join(lines) + "]\n"


def split_every(text: str, size: int) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


def decode_sse(frames: Iterable[str | bytes]) -> list:
    decoder = EventStreamDecoder()
    events = []
    for frame in frames:
        events.extend(decoder.feed(frame))
    events.extend(decoder.close())
    return events


class FakeGemini:
    """Replays canned upstream output; records every call."""

    default_model = "gemini-flash-latest"

    def __init__(
        self,
        chunks: Iterable[str] = (),
        error: Exception | None = None,
        reply: str = "",
        generate_error: Exception | None = None,
        models: list[dict[str, Any]] | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.reply = reply
        self.generate_error = generate_error
        self.models = models or []
        self.prompts: list[str] = []
        self.models_used: list[str | None] = []

    async def stream(self, prompt, api_key, model=None, config=None):
        self.prompts.append(prompt)
        self.models_used.append(model)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def generate(self, prompt, api_key, model=None, config=None):
        self.prompts.append(prompt)
        self.models_used.append(model)
        if self.generate_error is not None:
            raise self.generate_error
        return self.reply

    async def list_models(self, api_key):
        if self.generate_error is not None:
            raise self.generate_error
        return self.models
