"""Upstream model listing, filtered and ordered for a model picker."""

from __future__ import annotations

from typing import Any, Sequence

from models.request import ModelInfo
from services.gemini_client import GENERATION_METHODS


def to_model_info(raw: dict[str, Any]) -> ModelInfo:
    name = str(raw.get("name", "")).replace("models/", "", 1)
    return ModelInfo(
        name=name,
        display_name=raw.get("displayName") or name,
        description=raw.get("description") or "",
        supported_methods=list(raw.get("supportedGenerationMethods") or []),
    )


def select_generation_models(
    raw_models: Sequence[dict[str, Any]],
    recommended: Sequence[str],
) -> list[ModelInfo]:
    """Keep models that can generate content; recommended ones first.

    Recommended models keep the order of ``recommended``; the rest are
    sorted by display name.
    """
    models = [
        to_model_info(m)
        for m in raw_models
        if any(method in (m.get("supportedGenerationMethods") or []) for method in GENERATION_METHODS)
    ]
    rank = {name: i for i, name in enumerate(recommended)}
    preferred = sorted((m for m in models if m.name in rank), key=lambda m: rank[m.name])
    others = sorted((m for m in models if m.name not in rank), key=lambda m: m.display_name.lower())
    return preferred + others
