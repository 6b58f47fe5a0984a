"""Translate the upstream streaming body into plain text pieces.

``streamGenerateContent`` answers with JSON fragments spread over lines
(a JSON array, pretty-printed or one object per line depending on the
model).  Each line is handled on its own:

1. strict ``json.loads`` (after trimming array punctuation) and read
   ``candidates[0].content.parts[0].text``;
2. otherwise a regex for ``"text": "..."`` on the raw line;
3. otherwise the line is skipped.

Lines that do not carry text (``"role": "model"``, usage metadata, brackets)
are expected and skipped silently.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from services.field_extractor import decode_escapes, scrub_surrogates

logger = logging.getLogger(__name__)

_TEXT_RE = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)"?')


def candidate_text(payload: Any) -> str | None:
    """Return ``candidates[0].content.parts[0].text`` or None."""
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return scrub_surrogates(text) if isinstance(text, str) else None


def extract_line_text(line: str) -> str | None:
    """Pull the generated text out of one upstream line, if any."""
    stripped = line.strip()
    if not stripped:
        return None

    trimmed = stripped.lstrip("[,").rstrip(",]").strip()
    if trimmed:
        try:
            return candidate_text(json.loads(trimmed))
        except json.JSONDecodeError:
            pass

    match = _TEXT_RE.search(stripped)
    if match and match.group(1):
        return decode_escapes(match.group(1))
    return None


class UpstreamLineDecoder:
    """Buffer upstream text and yield generated text line by line.

    Owned by a single stream; ``flush`` handles whatever is left when the
    upstream body ends without a trailing newline.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.lines_seen = 0
        self.lines_skipped = 0

    def feed(self, chunk: str) -> list[str]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._texts(lines)

    def flush(self) -> list[str]:
        rest, self._buffer = self._buffer, ""
        return self._texts([rest])

    def _texts(self, lines: list[str]) -> list[str]:
        texts: list[str] = []
        for line in lines:
            if not line.strip():
                continue
            self.lines_seen += 1
            text = extract_line_text(line)
            if text:
                texts.append(text)
            else:
                self.lines_skipped += 1
        return texts
