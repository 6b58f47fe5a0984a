"""Session persistence — key-value storage of topics and turn logs.

The storage layout mirrors what the browser keeps in local storage:

- ``context:{contextId}``  → topic text
- ``history:{contextId}``  → JSON array of turns (camelCase)
- ``model:{contextId}``    → model selected for that session
- ``model``                → last selected model
- ``system-prompt``        → user-edited question template

:class:`KeyValueStore` is the storage collaborator; :class:`SessionStore`
layers session semantics on top.  The interface is designed for an easy swap
to another key-value backend.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from pydantic import TypeAdapter, ValidationError

from errors import CorruptHistoryError
from models.base import CamelModel
from models.conversation import ConversationTurn, QuizFeedback, Session, derive_context_id

logger = logging.getLogger(__name__)

_turns_adapter: TypeAdapter[list[ConversationTurn]] = TypeAdapter(list[ConversationTurn])

CONTEXT_PREFIX = "context:"
HISTORY_PREFIX = "history:"
MODEL_PREFIX = "model:"
MODEL_KEY = "model"
SYSTEM_PROMPT_KEY = "system-prompt"


class SessionNotFoundError(KeyError):
    """No session is stored under the given context id."""

    def __init__(self, context_id: str) -> None:
        self.context_id = context_id
        super().__init__(f"Session '{context_id}' not found")


class SessionSummary(CamelModel):
    context_id: str
    context: str
    question_count: int


# ── Abstract Interface ───────────────────────────────────────


class KeyValueStore(ABC):
    """Abstract string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]: ...


# ── In-Memory Implementation ────────────────────────────────


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store.  Nothing survives a restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


# ── Session semantics ────────────────────────────────────────


class SessionStore:
    """Load, update and delete sessions stored in a :class:`KeyValueStore`.

    Read-modify-write operations on one session are serialized with a
    per-session lock, so a background grading write cannot interleave with
    a turn being appended.
    """

    def __init__(self, kv: KeyValueStore, context_id_length: int = 40) -> None:
        self._kv = kv
        self._context_id_length = context_id_length
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, context_id: str) -> asyncio.Lock:
        lock = self._locks.get(context_id)
        if lock is None:
            lock = self._locks[context_id] = asyncio.Lock()
        return lock

    def context_id_for(self, context: str) -> str:
        return derive_context_id(context, self._context_id_length)

    async def _load_turns(self, context_id: str, strict: bool = False) -> list[ConversationTurn]:
        """Read the stored turn log.

        Reads show a corrupt log as empty.  Write paths pass ``strict=True``
        so a corrupt log is reported instead of being overwritten.
        """
        raw = await self._kv.get(HISTORY_PREFIX + context_id)
        if not raw:
            return []
        try:
            return _turns_adapter.validate_json(raw)
        except ValidationError as e:
            if strict:
                raise CorruptHistoryError(context_id, str(e)) from e
            logger.error("Corrupt history for session %s; showing it as empty", context_id)
            return []

    async def _save_turns(self, context_id: str, turns: list[ConversationTurn]) -> None:
        data = _turns_adapter.dump_json(turns, by_alias=True, exclude_none=True)
        await self._kv.set(HISTORY_PREFIX + context_id, data.decode("utf-8"))

    # -- sessions ------------------------------------------------------------

    async def get(self, context_id: str, strict: bool = False) -> Session | None:
        context = await self._kv.get(CONTEXT_PREFIX + context_id)
        if context is None:
            return None
        return Session(
            context_id=context_id,
            context=context,
            model=await self._kv.get(MODEL_PREFIX + context_id),
            turns=await self._load_turns(context_id, strict=strict),
        )

    async def require(self, context_id: str, strict: bool = False) -> Session:
        session = await self.get(context_id, strict=strict)
        if session is None:
            raise SessionNotFoundError(context_id)
        return session

    async def create(self, context: str, model: str | None = None) -> Session:
        """Create the session for ``context``, or return the existing one.

        Two topics that share their leading characters map to the same
        session; the newer topic text replaces the stored one.
        """
        context = context.strip()
        context_id = self.context_id_for(context)
        async with self._lock(context_id):
            await self._kv.set(CONTEXT_PREFIX + context_id, context)
            if model:
                await self._kv.set(MODEL_PREFIX + context_id, model)
            session = Session(
                context_id=context_id,
                context=context,
                model=await self._kv.get(MODEL_PREFIX + context_id),
                turns=await self._load_turns(context_id),
            )
        logger.info(
            "[Session] context_id=%s turns=%d model=%s",
            context_id, session.question_count, session.model,
        )
        return session

    async def list_sessions(self) -> list[SessionSummary]:
        """All sessions, most answered questions first, then by topic."""
        summaries: list[SessionSummary] = []
        for key in await self._kv.keys(CONTEXT_PREFIX):
            context_id = key[len(CONTEXT_PREFIX):]
            if not context_id:
                continue
            session = await self.get(context_id)
            if session is None:
                continue
            summaries.append(SessionSummary(
                context_id=context_id,
                context=session.context,
                question_count=session.question_count,
            ))
        summaries.sort(key=lambda s: (-s.question_count, s.context))
        return summaries

    async def delete(self, context_id: str) -> None:
        async with self._lock(context_id):
            for prefix in (CONTEXT_PREFIX, HISTORY_PREFIX, MODEL_PREFIX):
                await self._kv.delete(prefix + context_id)
        self._locks.pop(context_id, None)
        logger.info("[Session] deleted context_id=%s", context_id)

    # -- turns ---------------------------------------------------------------

    async def append_turn(self, context_id: str, turn: ConversationTurn) -> int:
        """Append a turn and return its index (the turn's identity)."""
        async with self._lock(context_id):
            session = await self.require(context_id, strict=True)
            index = session.append_turn(turn)
            await self._save_turns(context_id, session.turns)
        return index

    async def apply_feedback(
        self, context_id: str, turn_index: int, feedback: QuizFeedback
    ) -> ConversationTurn:
        """Write grading results into the turn captured at ``turn_index``."""
        async with self._lock(context_id):
            session = await self.require(context_id, strict=True)
            turn = session.apply_feedback(turn_index, feedback)
            await self._save_turns(context_id, session.turns)
        return turn

    # -- preferences ---------------------------------------------------------

    async def get_model(self) -> str | None:
        return await self._kv.get(MODEL_KEY)

    async def set_model(self, model: str, context_id: str | None = None) -> None:
        await self._kv.set(MODEL_KEY, model)
        if context_id:
            await self._kv.set(MODEL_PREFIX + context_id, model)

    async def get_system_prompt(self) -> str | None:
        return await self._kv.get(SYSTEM_PROMPT_KEY)

    async def set_system_prompt(self, prompt: str) -> None:
        if prompt.strip():
            await self._kv.set(SYSTEM_PROMPT_KEY, prompt)
        else:
            await self._kv.delete(SYSTEM_PROMPT_KEY)


# ── Module-level Singleton ───────────────────────────────────

_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get the singleton session store instance."""
    global _store
    if _store is None:
        from config.settings import get_settings

        settings = get_settings()
        _store = SessionStore(InMemoryKeyValueStore(), settings.context_id_length)
        logger.info("Initialized in-memory SessionStore")
    return _store
