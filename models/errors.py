"""Structured error codes for SSE ``error`` events.

Errors surfaced inside a stream follow the format::

    {ERROR_CODE}: {human_readable_detail}

The browser shows the detail and keeps the code for retry decisions
(``UPSTREAM_ERROR`` offers a model switch, the others a plain retry).
"""

from __future__ import annotations

import re
from enum import Enum

from errors import IncompleteResult, TransportError, UpstreamError


class ErrorCode(str, Enum):
    """Stable error codes shared with the frontend."""

    INVALID_REQUEST = "INVALID_REQUEST"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INCOMPLETE_RESULT = "INCOMPLETE_RESULT"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


def format_error(code: ErrorCode, detail: str) -> str:
    """Format an error for the SSE ``error`` field.

    Returns:
        ``{ERROR_CODE}: {detail}``
    """
    return f"{code}: {detail}"


_CODE_PREFIX_RE = re.compile(r"^([A-Z_]+): (.*)$", re.DOTALL)


def split_error(text: str) -> tuple[ErrorCode | None, str]:
    """Split ``"CODE: detail"`` back into its parts.

    Unknown or missing prefixes yield ``(None, text)``.
    """
    match = _CODE_PREFIX_RE.match(text)
    if match:
        try:
            return ErrorCode(match.group(1)), match.group(2)
        except ValueError:
            pass
    return None, text


def classify_exception(exc: BaseException) -> str:
    """Map a raised exception to a formatted SSE error string.

    Classification order (first match wins):
        1. ``UpstreamError``: the backend refused the request.
        2. ``IncompleteResult``: no usable structured value was produced.
        3. ``TransportError``: the connection dropped mid-stream.
        4. Fallback: ``INTERNAL_ERROR``.
    """
    if isinstance(exc, UpstreamError):
        return format_error(ErrorCode.UPSTREAM_ERROR, exc.message)
    if isinstance(exc, IncompleteResult):
        return format_error(ErrorCode.INCOMPLETE_RESULT, str(exc))
    if isinstance(exc, TransportError):
        return format_error(ErrorCode.TRANSPORT_ERROR, str(exc))
    return format_error(ErrorCode.INTERNAL_ERROR, str(exc) or type(exc).__name__)
