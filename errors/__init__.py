"""Custom exception hierarchy for the guided writing assistant."""

from errors.exceptions import (
    CorruptHistoryError,
    IncompleteResult,
    StreamDecodeError,
    TransportError,
    UpstreamError,
    WritingAssistantError,
)

__all__ = [
    "CorruptHistoryError",
    "IncompleteResult",
    "StreamDecodeError",
    "TransportError",
    "UpstreamError",
    "WritingAssistantError",
]
