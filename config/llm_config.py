"""Reusable generation parameters for Gemini requests.

GenerationConfig is a standalone Pydantic model that can be:
- embedded in Settings as the global default,
- declared per-pipeline for task-specific tuning (e.g. cooler grading),
- passed per-call for one-off overrides.

Priority chain (low → high):
    .env global defaults  →  pipeline-level GenerationConfig  →  per-call overrides
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerationConfig(BaseModel):
    """Gemini ``generationConfig`` parameters.

    All fields are optional.  ``None`` means "use the model's default".
    """

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=0)
    max_output_tokens: int | None = Field(default=None, gt=0)
    stop_sequences: list[str] | None = Field(default=None, description="Stop sequences")
    response_mime_type: str | None = Field(
        default=None, description="'application/json' for structured output"
    )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def merge(self, overrides: GenerationConfig) -> GenerationConfig:
        """Return a new config: *self* as base, *overrides* wins on non-None fields."""
        base = self.model_dump(exclude_none=True)
        over = overrides.model_dump(exclude_none=True)
        base.update(over)
        return GenerationConfig(**base)

    def to_request_field(self) -> dict:
        """Convert to the camelCase ``generationConfig`` request object."""
        names = {
            "temperature": "temperature",
            "top_p": "topP",
            "top_k": "topK",
            "max_output_tokens": "maxOutputTokens",
            "stop_sequences": "stopSequences",
            "response_mime_type": "responseMimeType",
        }
        out: dict = {}
        for field, wire_name in names.items():
            val = getattr(self, field)
            if val is not None:
                out[wire_name] = val
        return out
