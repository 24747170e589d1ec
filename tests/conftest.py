"""
Globale Test-Fixtures fuer Voice-GPT.

  - memory_store: MemoryStateStore mit leerem Zustand
  - redis_mock: AsyncMock Redis Client
  - make_session: baut eine Mock-aiohttp-Session mit festen Antworten
  - openai_payload: baut eine Responses-API Antwort aus Text
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from voice_gpt.state_store import MemoryStateStore


@pytest.fixture
def memory_store():
    return MemoryStateStore()


@pytest.fixture
def redis_mock():
    """AsyncMock Redis Client mit Key-Value-Speicher."""
    mock = AsyncMock()
    _store: dict[str, str] = {}

    async def _get(key):
        return _store.get(key)

    async def _set(key, value, **kwargs):
        _store[key] = value

    async def _exists(key):
        return 1 if key in _store else 0

    mock.get = AsyncMock(side_effect=_get)
    mock.set = AsyncMock(side_effect=_set)
    mock.exists = AsyncMock(side_effect=_exists)
    mock.close = AsyncMock()
    mock._store = _store
    return mock


def _make_response(status=200, body=None, text=None):
    """Mock-Response samt Async-Context-Manager."""
    if text is None:
        text = json.dumps(body) if body is not None else ""
    resp = MagicMock(
        status=status,
        text=AsyncMock(return_value=text),
        json=AsyncMock(return_value=body),
    )
    return AsyncMock(
        __aenter__=AsyncMock(return_value=resp),
        __aexit__=AsyncMock(return_value=False),
    )


@pytest.fixture
def make_session():
    """Erzeugt eine Session deren request() der Reihe nach antworten."""

    def _factory(*responses):
        session = MagicMock()
        cms = [_make_response(**r) if isinstance(r, dict) else r for r in responses]
        session.request = MagicMock(side_effect=cms)
        return session

    return _factory


@pytest.fixture
def openai_payload():
    """Responses-API Antwort mit einer output_text Nachricht."""

    def _payload(text: str) -> dict:
        return {
            "output": [
                {"type": "reasoning", "summary": []},
                {
                    "type": "message",
                    "content": [{"type": "output_text", "text": text}],
                },
            ]
        }

    return _payload


@pytest.fixture
def make_response():
    """Einzelne Mock-Response (Async-Context-Manager)."""
    return _make_response
