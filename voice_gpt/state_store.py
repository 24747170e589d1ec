"""
State-Store - duenne Schicht ueber den Zustandsspeicher der Hausautomation

Backends:
  - MemoryStateStore: In-Process (Tests, eingebettete Nutzung)
  - RedisStateStore: redis.asyncio, Wert als JSON {"val": ..., "ack": ...}
  - HomeAssistantStateStore: HA REST /api/states/<id>, ack als Attribut

read() liefert explizit Optional[StateValue]. Die Helfer get_value(),
safe_set() und write_command() werfen nie: Fehler werden geloggt und als
Default / No-Op behandelt, transiente State-Fehler sind nicht fatal.
"""

import abc
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
import redis.asyncio as aioredis

from .constants import COMMAND_WRITE_DELAY_MS, HA_SESSION_TIMEOUT, REDIS_STATE_PREFIX
from .time_utils import sleep

logger = logging.getLogger(__name__)


@dataclass
class StateValue:
    val: Any
    ack: bool = False


class StateStore(abc.ABC):
    """Gemeinsame Schnittstelle aller Backends."""

    name = "abstract"

    @abc.abstractmethod
    async def read(self, state_id: str) -> Optional[StateValue]:
        """State lesen, None wenn nicht vorhanden."""

    @abc.abstractmethod
    async def write(self, state_id: str, val: Any, ack: bool = False) -> None:
        """State schreiben (darf werfen)."""

    @abc.abstractmethod
    async def exists(self, state_id: str) -> bool:
        """Prueft ob der State existiert."""

    async def close(self) -> None:
        return None

    async def get_value(self, state_id: str, default: Any = None) -> Any:
        """Wert eines States oder ``default`` (leere ID, fehlt, None, Fehler)."""
        if not state_id:
            return default
        try:
            state = await self.read(state_id)
        except Exception as e:
            logger.debug("State %s nicht lesbar: %s", state_id, e)
            return default
        if state is None or state.val is None:
            return default
        return state.val

    async def safe_set(self, state_id: str, val: Any, ack: bool = False) -> bool:
        """Schreibt nur wenn sich Wert oder ack aendern.

        Returns:
            True wenn geschrieben wurde.
        """
        if not state_id:
            return False
        if not isinstance(ack, bool):
            ack = False
        try:
            current = await self.read(state_id)
        except Exception as e:
            logger.debug("State %s vor dem Schreiben nicht lesbar: %s", state_id, e)
            current = None
        if current is not None and current.val == val and current.ack == ack:
            return False
        try:
            await self.write(state_id, val, ack)
            return True
        except Exception as e:
            logger.warning("State %s nicht schreibbar: %s", state_id, e)
            return False

    async def write_command(
        self, state_id: str, val: Any, delay_ms: int = COMMAND_WRITE_DELAY_MS,
    ) -> None:
        """Command-State robust ausloesen: erst leeren, dann den Wert setzen.

        Erzeugt auch bei wiederholt gleichem Kommando ein Change-Event.
        """
        text = str(val or "")
        try:
            await self.write(state_id, "", False)
        except Exception as e:
            logger.warning("Command %s: Leeren fehlgeschlagen: %s", state_id, e)
        await sleep(delay_ms or COMMAND_WRITE_DELAY_MS)
        try:
            await self.write(state_id, text, False)
        except Exception as e:
            logger.warning("Command %s: Schreiben fehlgeschlagen: %s", state_id, e)


class MemoryStateStore(StateStore):
    name = "memory"

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._states: dict[str, StateValue] = {}
        self.writes: list[tuple[str, Any, bool]] = []
        for key, val in (initial or {}).items():
            self._states[key] = StateValue(val, True)

    async def read(self, state_id: str) -> Optional[StateValue]:
        return self._states.get(state_id)

    async def write(self, state_id: str, val: Any, ack: bool = False) -> None:
        self._states[state_id] = StateValue(val, ack)
        self.writes.append((state_id, val, ack))

    async def exists(self, state_id: str) -> bool:
        return state_id in self._states


class RedisStateStore(StateStore):
    name = "redis"

    def __init__(self, redis_client, prefix: str = REDIS_STATE_PREFIX):
        self.redis = redis_client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisStateStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    def _key(self, state_id: str) -> str:
        return f"{self.prefix}{state_id}"

    async def read(self, state_id: str) -> Optional[StateValue]:
        raw = await self.redis.get(self._key(state_id))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (ValueError, TypeError):
            # Fremd geschriebener Klartext
            return StateValue(raw, False)
        if not isinstance(data, dict):
            return StateValue(data, False)
        return StateValue(data.get("val"), bool(data.get("ack", False)))

    async def write(self, state_id: str, val: Any, ack: bool = False) -> None:
        await self.redis.set(self._key(state_id), json.dumps({"val": val, "ack": ack}))

    async def exists(self, state_id: str) -> bool:
        try:
            return bool(await self.redis.exists(self._key(state_id)))
        except Exception as e:
            logger.debug("Redis exists(%s) fehlgeschlagen: %s", state_id, e)
            return False

    async def close(self) -> None:
        await self.redis.close()


class HomeAssistantStateStore(StateStore):
    """States ueber die HA REST API (entity_id als State-ID)."""

    name = "homeassistant"

    def __init__(self, ha_url: str, ha_token: str):
        self.ha_url = ha_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {ha_token}",
            "Content-Type": "application/json",
        }
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: asyncio.Lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                timeout = aiohttp.ClientTimeout(total=HA_SESSION_TIMEOUT)
                self._session = aiohttp.ClientSession(timeout=timeout)
            return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def read(self, state_id: str) -> Optional[StateValue]:
        session = await self._get_session()
        async with session.get(
            f"{self.ha_url}/api/states/{state_id}", headers=self._headers,
        ) as resp:
            if resp.status == 404:
                return None
            if resp.status != 200:
                body = await resp.text()
                raise RuntimeError(f"HA GET {state_id} -> {resp.status}: {body[:200]}")
            data = await resp.json()
        attrs = data.get("attributes") or {}
        return StateValue(data.get("state"), bool(attrs.get("ack", False)))

    async def write(self, state_id: str, val: Any, ack: bool = False) -> None:
        session = await self._get_session()
        payload = {"state": "" if val is None else str(val), "attributes": {"ack": ack}}
        async with session.post(
            f"{self.ha_url}/api/states/{state_id}", headers=self._headers, json=payload,
        ) as resp:
            if resp.status not in (200, 201):
                body = await resp.text()
                raise RuntimeError(f"HA POST {state_id} -> {resp.status}: {body[:200]}")

    async def exists(self, state_id: str) -> bool:
        try:
            return await self.read(state_id) is not None
        except Exception as e:
            logger.debug("HA exists(%s) fehlgeschlagen: %s", state_id, e)
            return False


def create_state_store(backend: str, redis_url: str = "", ha_url: str = "", ha_token: str = "") -> StateStore:
    """Backend nach Konfiguration erzeugen (unbekannt → memory)."""
    backend = (backend or "memory").lower()
    if backend == "redis":
        return RedisStateStore.from_url(redis_url)
    if backend in ("homeassistant", "ha"):
        return HomeAssistantStateStore(ha_url, ha_token)
    if backend != "memory":
        logger.warning("Unbekanntes State-Backend '%s', nutze memory", backend)
    return MemoryStateStore()
