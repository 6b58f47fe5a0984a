"""Shared pytest fixtures.

Provides:
- autouse reset of module-level singletons (settings, session store,
  upstream client)
- ``session_store``: fresh in-memory SessionStore per test
"""

from __future__ import annotations

import pytest

import services.gemini_client as gemini_module
import services.session_store as store_module
from config.settings import get_settings
from services.session_store import InMemoryKeyValueStore, SessionStore


@pytest.fixture(autouse=True)
def reset_singletons():
    get_settings.cache_clear()
    store_module._store = None
    gemini_module._client = None
    yield
    store_module._store = None
    gemini_module._client = None
    get_settings.cache_clear()


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore(InMemoryKeyValueStore())
