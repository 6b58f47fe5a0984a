"""Plain-text stream relay for free-form generations (essay, analysis).

No structure is parsed: each decoded upstream text piece is forwarded as-is.
The relay keeps the full text for logging and so a finished essay can be
handed back for refinement.
"""

from __future__ import annotations


class PlainTextRelay:
    """Append-only relay; each emission is exactly the text not yet sent."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._sent = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return self._sent

    def feed(self, text: str) -> str | None:
        """Record ``text`` and return it, or None for an empty piece."""
        if not text:
            return None
        self._parts.append(text)
        self._sent += len(text)
        return text
