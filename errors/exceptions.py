"""Domain-specific exceptions for the guided writing assistant.

These exceptions let the generation pipelines and API layers distinguish
between upstream failures, recoverable parse failures and unusable results,
and respond with the appropriate SSE ``error`` event or HTTP error.
"""

from __future__ import annotations

from typing import Any


class WritingAssistantError(Exception):
    """Base class for all domain errors."""


class UpstreamError(WritingAssistantError):
    """The language-model backend answered with a non-2xx status.

    Carries the upstream message and, where known, the model that failed so
    the user can retry with a different one.
    """

    def __init__(
        self,
        message: str,
        model: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        self.message = message
        self.model = model
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class StreamDecodeError(WritingAssistantError):
    """A single SSE frame or upstream line could not be decoded.

    Never fatal: the decoder logs it and moves on to the next frame.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


class IncompleteResult(WritingAssistantError):
    """The stream ended without a usable structured result."""


class TransportError(WritingAssistantError):
    """The network connection failed while a stream was being read."""


class CorruptHistoryError(WritingAssistantError):
    """A stored turn log no longer validates.

    Raised by write paths so the stored log is left untouched.
    """

    def __init__(self, context_id: str, details: str = "") -> None:
        self.context_id = context_id
        self.details = details
        super().__init__(f"Stored history for session '{context_id}' is corrupt")
