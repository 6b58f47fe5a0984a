"""Incremental JSON field extraction for streamed LLM output.

The model is asked for a single JSON object such as::

    {"question": "...", "options": ["...", "..."], "correctIndices": [0, 2]}

but the text arrives token by token, so the object is syntactically
incomplete until the very last chunk.  :class:`StreamAccumulator` keeps the
growing buffer for one request and, after every chunk, derives the best
value currently available for each tracked field:

- a string field whose closing quote has not arrived yet yields everything
  after the opening quote (a *partial* value);
- an array field whose ``]`` has not arrived yet yields the strings (or
  integers) already closed off, de-duplicated;
- once the closing delimiter is present the value is *complete* and exact.

Extraction is an ordered chain of strategies, each returning a tagged
:class:`Extraction`.  The chain stops at the first ``COMPLETE`` result and
otherwise keeps the best ``PARTIAL`` one.  While streaming only the key scan
runs; the final pass tries strict ``json.loads`` first and is authoritative.

Usage::

    acc = StreamAccumulator(MCQ_FIELDS)
    for chunk in chunks:
        changed = acc.feed(chunk)
        if changed is not None:
            show(draft_from_values(changed))
    final = draft_from_values(acc.finalize())
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Sequence

from errors import IncompleteResult
from models.stream_events import MCQDraft

logger = logging.getLogger(__name__)


# ── Field specs ──────────────────────────────────────────────


class FieldKind(str, Enum):
    STRING = "string"
    STRING_ARRAY = "string_array"
    INT_ARRAY = "int_array"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: FieldKind


MCQ_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("question", FieldKind.STRING),
    FieldSpec("options", FieldKind.STRING_ARRAY),
)

QUIZ_FIELDS: tuple[FieldSpec, ...] = MCQ_FIELDS + (
    FieldSpec("correctIndices", FieldKind.INT_ARRAY),
)


# ── Tagged extraction results ────────────────────────────────


class ExtractionStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Extraction:
    status: ExtractionStatus
    value: Any = None

    @classmethod
    def complete(cls, value: Any) -> Extraction:
        return cls(ExtractionStatus.COMPLETE, value)

    @classmethod
    def partial(cls, value: Any) -> Extraction:
        return cls(ExtractionStatus.PARTIAL, value)

    @classmethod
    def not_found(cls) -> Extraction:
        return cls(ExtractionStatus.NOT_FOUND)

    @property
    def found(self) -> bool:
        return self.status is not ExtractionStatus.NOT_FOUND


class ExtractionStrategy(Protocol):
    def extract(self, buffer: str, spec: FieldSpec) -> Extraction: ...


# ── Text helpers ─────────────────────────────────────────────

_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
}

_HIGH_SURROGATES = (0xD800, 0xDBFF)
_LOW_SURROGATES = (0xDC00, 0xDFFF)
REPLACEMENT_CHAR = "\ufffd"
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def _hex_value(digits: str) -> int | None:
    if len(digits) != 4 or not set(digits) <= _HEX_DIGITS:
        return None
    return int(digits, 16)


def _is_unicode_escape_prefix(text: str) -> bool:
    """True for ``""``, ``"\\"``, ``"\\u"`` and ``"\\u"`` plus up to three hex digits."""
    if not "\\u".startswith(text[:2]):
        return False
    return set(text[2:]) <= _HEX_DIGITS


def scrub_surrogates(text: str) -> str:
    """Join surrogate pairs and replace lone surrogates with U+FFFD.

    Strings decoded by ``json.loads`` keep an unpaired ``\\ud83d`` as a lone
    surrogate, which cannot be encoded as UTF-8.
    """
    return text.encode("utf-16", "surrogatepass").decode("utf-16", "replace")


def decode_escapes(raw: str) -> str:
    r"""Decode JSON backslash escapes in a (possibly truncated) string body.

    ``\"``, ``\n``, ``\r`` and the other JSON escapes are decoded; unknown
    escapes such as LaTeX ``\(`` are kept verbatim.  A trailing lone
    backslash or a cut-off ``\uXX`` is dropped, so the decoded form of a
    prefix is always a prefix of the decoded whole.  A surrogate pair such
    as ``\ud83d\ude00`` becomes one code point; a high surrogate at the end
    waits for its low half, and any other lone surrogate becomes U+FFFD.
    """
    if "\\" not in raw:
        return raw

    out: list[str] = []
    i = 0
    n = len(raw)
    while i < n:
        ch = raw[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= n:
            break  # dangling backslash: the escape is still in flight
        nxt = raw[i + 1]
        if nxt in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[nxt])
            i += 2
        elif nxt == "u":
            hex_digits = raw[i + 2 : i + 6]
            if len(hex_digits) < 4:
                break
            code = _hex_value(hex_digits)
            if code is None:
                out.append(raw[i : i + 6])
                i += 6
                continue
            i += 6
            if _HIGH_SURROGATES[0] <= code <= _HIGH_SURROGATES[1]:
                rest = raw[i : i + 6]
                if len(rest) < 6 and _is_unicode_escape_prefix(rest):
                    break  # the low half is still in flight
                low = _hex_value(rest[2:]) if rest.startswith("\\u") else None
                if low is not None and _LOW_SURROGATES[0] <= low <= _LOW_SURROGATES[1]:
                    out.append(chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)))
                    i += 6
                else:
                    out.append(REPLACEMENT_CHAR)
            elif _LOW_SURROGATES[0] <= code <= _LOW_SURROGATES[1]:
                out.append(REPLACEMENT_CHAR)
            else:
                out.append(chr(code))
        else:
            out.append(ch + nxt)
            i += 2
    return "".join(out)


def strip_code_fence(text: str) -> str:
    """Remove a markdown code fence wrapped around the whole text.

    If the text starts with triple backticks the first line (the fence with
    an optional language tag) and the closing fence line are dropped.
    """
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    lines = stripped.split("\n")
    lines.pop(0)
    if lines and lines[-1].strip().startswith("```"):
        lines.pop()
    return "\n".join(lines).strip()


def _scan_string(buffer: str, start: int) -> tuple[str, int | None]:
    """Scan a JSON string body beginning right after its opening quote.

    Returns ``(raw_body, end)`` where ``end`` is the index of the closing
    quote, or ``None`` if the string is still open.
    """
    escaped = False
    for i in range(start, len(buffer)):
        ch = buffer[i]
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            return buffer[start:i], i
    return buffer[start:], None


def _dedupe(values: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


def _partial_items(items: list[Any]) -> Extraction:
    # An open array with nothing closed yet has no value to show.
    if not items:
        return Extraction.not_found()
    return Extraction.partial(_dedupe(items))


# ── Strategies ───────────────────────────────────────────────


class KeyScanStrategy:
    """Locate ``"<field>":`` in the raw buffer and read its value by hand.

    Works on any prefix of the final text, fences and surrounding prose
    included.  Only the first occurrence of the key is considered.
    """

    _patterns: dict[tuple[str, str], re.Pattern[str]] = {}

    @classmethod
    def _key_pattern(cls, name: str, opener: str) -> re.Pattern[str]:
        key = (name, opener)
        pattern = cls._patterns.get(key)
        if pattern is None:
            pattern = re.compile(r'"' + re.escape(name) + r'"\s*:\s*' + re.escape(opener))
            cls._patterns[key] = pattern
        return pattern

    def extract(self, buffer: str, spec: FieldSpec) -> Extraction:
        if spec.kind is FieldKind.STRING:
            return self._extract_string(buffer, spec.name)
        if spec.kind is FieldKind.STRING_ARRAY:
            return self._extract_string_array(buffer, spec.name)
        return self._extract_int_array(buffer, spec.name)

    def _extract_string(self, buffer: str, name: str) -> Extraction:
        match = self._key_pattern(name, '"').search(buffer)
        if match is None:
            return Extraction.not_found()
        raw, end = _scan_string(buffer, match.end())
        if end is None:
            return Extraction.partial(decode_escapes(raw))
        return Extraction.complete(decode_escapes(raw))

    def _extract_string_array(self, buffer: str, name: str) -> Extraction:
        match = self._key_pattern(name, "[").search(buffer)
        if match is None:
            return Extraction.not_found()

        items: list[str] = []
        i = match.end()
        n = len(buffer)
        while i < n:
            ch = buffer[i]
            if ch == '"':
                raw, end = _scan_string(buffer, i + 1)
                if end is None:
                    break  # unterminated item: not shown until its quote closes
                items.append(decode_escapes(raw))
                i = end + 1
                continue
            if ch == "]":
                return Extraction.complete(items)
            i += 1
        return _partial_items(items)

    def _extract_int_array(self, buffer: str, name: str) -> Extraction:
        match = self._key_pattern(name, "[").search(buffer)
        if match is None:
            return Extraction.not_found()

        items: list[int] = []
        token = ""
        for ch in buffer[match.end():]:
            if ch.isdigit() or (ch == "-" and not token):
                token += ch
                continue
            if token and token != "-":
                items.append(int(token))
            token = ""
            if ch == "]":
                return Extraction.complete(items)
        # A trailing token may still grow ("1" -> "12"), so it is left out.
        return _partial_items(items)


class StrictJsonStrategy:
    """Parse the whole (fence-stripped) buffer with ``json.loads``.

    Falls back to the outermost ``{...}`` span when the model wrapped the
    object in prose.  Fields of the wrong type count as not found so the
    next strategy gets a chance.
    """

    def extract(self, buffer: str, spec: FieldSpec) -> Extraction:
        obj = parse_json_object(buffer)
        if obj is None or spec.name not in obj:
            return Extraction.not_found()
        value = _coerce(obj[spec.name], spec.kind)
        if value is None:
            return Extraction.not_found()
        return Extraction.complete(value)


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Strictly parse a JSON object out of model output, or return None."""
    cleaned = strip_code_fence(text)
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start and (start, end) != (0, len(cleaned) - 1):
        candidates.append(cleaned[start : end + 1])
    for candidate in candidates:
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


def _coerce(value: Any, kind: FieldKind) -> Any:
    if kind is FieldKind.STRING:
        return value if isinstance(value, str) else None
    if not isinstance(value, list):
        return None
    if kind is FieldKind.STRING_ARRAY:
        if any(isinstance(v, (dict, list)) for v in value):
            return None
        return [v if isinstance(v, str) else json.dumps(v) for v in value]
    out: list[int] = []
    for v in value:
        if isinstance(v, bool):
            return None
        if isinstance(v, int):
            out.append(v)
        elif isinstance(v, str) and v.strip().lstrip("-").isdigit():
            out.append(int(v.strip()))
        else:
            return None
    return out


def run_chain(
    strategies: Sequence[ExtractionStrategy], buffer: str, spec: FieldSpec
) -> Extraction:
    """Run strategies in order; first COMPLETE wins, else the first PARTIAL."""
    best = Extraction.not_found()
    for strategy in strategies:
        result = strategy.extract(buffer, spec)
        if result.status is ExtractionStatus.COMPLETE:
            return result
        if result.status is ExtractionStatus.PARTIAL and not best.found:
            best = result
    return best


STREAMING_CHAIN: tuple[ExtractionStrategy, ...] = (KeyScanStrategy(),)
FINAL_CHAIN: tuple[ExtractionStrategy, ...] = (StrictJsonStrategy(), KeyScanStrategy())


# ── Accumulator ──────────────────────────────────────────────


class StreamAccumulator:
    """Per-request buffer plus the last value emitted for each field.

    One instance per in-flight generation call; never shared.
    """

    def __init__(
        self,
        fields: Sequence[FieldSpec],
        streaming_chain: Sequence[ExtractionStrategy] = STREAMING_CHAIN,
        final_chain: Sequence[ExtractionStrategy] = FINAL_CHAIN,
    ) -> None:
        self.fields = tuple(fields)
        self.buffer = ""
        self.done = False
        self._streaming_chain = tuple(streaming_chain)
        self._final_chain = tuple(final_chain)
        self._emitted: dict[str, Any] = {spec.name: None for spec in self.fields}
        self._complete: set[str] = set()

    def snapshot(self) -> dict[str, Any]:
        """Copy of the last emitted value of every field."""
        return {
            name: list(value) if isinstance(value, list) else value
            for name, value in self._emitted.items()
        }

    def feed(self, chunk: str) -> dict[str, Any] | None:
        """Append ``chunk`` and re-derive all fields.

        Returns the new snapshot when at least one field changed, else
        ``None``.
        """
        if self.done:
            raise RuntimeError("accumulator already finalized")
        if not chunk:
            return None
        self.buffer += chunk

        changed = False
        for spec in self.fields:
            if spec.name in self._complete:
                continue
            result = run_chain(self._streaming_chain, self.buffer, spec)
            if not result.found:
                continue
            previous = self._emitted[spec.name]
            if result.status is ExtractionStatus.COMPLETE:
                self._complete.add(spec.name)
            elif previous is not None and len(result.value) < len(previous):
                continue
            if result.value != previous:
                self._emitted[spec.name] = result.value
                changed = True

        return self.snapshot() if changed else None

    def finalize(self) -> dict[str, Any]:
        """Authoritative end-of-stream read over the full buffer.

        Pure function of the buffer, so calling it again gives the same
        values.  Overrides whatever partial values were emitted.
        """
        self.done = True
        values: dict[str, Any] = {}
        for spec in self.fields:
            result = run_chain(self._final_chain, self.buffer, spec)
            values[spec.name] = result.value if result.found else None
        self._emitted = values
        self._complete = {spec.name for spec in self.fields}
        logger.debug(
            "Final extraction over %d chars: %s",
            len(self.buffer),
            {k: (v if not isinstance(v, str) else v[:60]) for k, v in values.items()},
        )
        return self.snapshot()


# ── MCQ helpers ──────────────────────────────────────────────


def draft_from_values(values: dict[str, Any]) -> MCQDraft:
    return MCQDraft(
        question=values.get("question"),
        options=list(values.get("options") or []),
        correct_indices=values.get("correctIndices"),
    )


def validate_mcq(draft: MCQDraft, quiz: bool = False) -> MCQDraft:
    """Reject drafts that cannot be shown as a question.

    Raises:
        IncompleteResult: question empty, no options, or (quiz mode) missing
            or out-of-range ``correctIndices``.
    """
    if not draft.question or not draft.question.strip():
        raise IncompleteResult("Model response did not contain a question")
    if not draft.options:
        raise IncompleteResult("Model response did not contain any options")
    if quiz:
        if draft.correct_indices is None:
            raise IncompleteResult("Quiz question is missing correctIndices")
        bad = [i for i in draft.correct_indices if not 0 <= i < len(draft.options)]
        if bad:
            raise IncompleteResult(
                f"Quiz question has correctIndices {bad} outside 0..{len(draft.options) - 1}"
            )
    return draft
