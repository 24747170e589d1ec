"""
OpenAI API Client - Responses API fuer Greeting/Decision Texte

Features:
  - Shared aiohttp.ClientSession (lazy, Lock-geschuetzt)
  - Ein Versuch pro Call, hartes Timeout, kein Retry
  - Circuit Breaker: nach mehreren Fehlern wird der Remote-Pfad uebersprungen
  - JSON-Objekt-Modus mit Fallback auf den ersten {...} Block im Text
  - Modell-Aufloesung ("auto") mit zeitlich begrenztem Cache der Modell-Liste

Endpoints:
  POST /v1/responses  -> {output: [{type: "message", content: [{type: "output_text", text}]}]}
  GET  /v1/models     -> {data: [{id: ...}]}
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from .circuit_breaker import CircuitBreaker
from .constants import (
    MODEL_CACHE_HOURS,
    OPENAI_DEFAULT_BASE_URL,
    OPENAI_MODEL_AUTO,
    OPENAI_TIMEOUT_JSON,
    OPENAI_TIMEOUT_MODELS,
    OPENAI_TIMEOUT_TEXT,
    OPENAI_VERBOSITY_TEXT,
)
from .errors import MalformedResponse, NetworkFailure, RemoteHTTPError, RemoteTimeoutError

logger = logging.getLogger(__name__)


def extract_response_text(resp_json: Any) -> str:
    """Sammelt alle output_text Fragmente aus output[] Nachrichten.

    Unerwartete Strukturen ergeben einen leeren String.
    """
    if not isinstance(resp_json, dict):
        return ""
    output = resp_json.get("output")
    if not isinstance(output, list):
        return ""
    parts = []
    for item in output:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for c in content:
            if isinstance(c, dict) and c.get("type") == "output_text" and isinstance(c.get("text"), str):
                parts.append(c["text"])
    return " ".join(parts).strip()


def extract_first_json_object(text: str) -> str:
    """Schneidet den Bereich vom ersten '{' bis zum letzten '}' aus."""
    s = str(text or "")
    start = s.find("{")
    end = s.rfind("}")
    if start >= 0 and end > start:
        return s[start:end + 1]
    return ""


def parse_json_object(text: str) -> Any:
    """Parst Modell-Text als JSON, notfalls den ersten {...} Block."""
    try:
        return json.loads(text)
    except ValueError as e:
        candidate = extract_first_json_object(text)
        if not candidate:
            raise MalformedResponse(f"Kein JSON in Antwort: {text[:80]!r}") from e
        try:
            return json.loads(candidate)
        except ValueError as e2:
            raise MalformedResponse(f"JSON-Block nicht parsebar: {candidate[:80]!r}") from e2


class OpenAIClient:
    """Asynchroner Client fuer die OpenAI Responses API.

    Der API-Key wird pro Call uebergeben, da er je Anfrage aus Parametern
    oder einem State kommen kann.
    """

    def __init__(
        self,
        base_url: str = OPENAI_DEFAULT_BASE_URL,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.breaker = breaker or CircuitBreaker("openai")
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: asyncio.Lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gibt die shared aiohttp Session zurueck (lazy init)."""
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self) -> None:
        """Schliesst die HTTP Session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _request_json(
        self,
        method: str,
        path: str,
        api_key: str,
        body: Optional[dict] = None,
        timeout: float = OPENAI_TIMEOUT_TEXT,
    ) -> Any:
        """Ein einzelner JSON-Request. Wirft NetworkFailure / MalformedResponse."""
        if not self.breaker.is_available:
            raise NetworkFailure("OpenAI Circuit offen")

        headers = {"Authorization": f"Bearer {api_key}"}
        session = await self._get_session()
        try:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                json=body,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    logger.warning("OpenAI %s %s -> %d: %s", method, path, resp.status, text[:200])
                    self.breaker.record_failure()
                    raise RemoteHTTPError(resp.status, text)
                self.breaker.record_success()
        except RemoteHTTPError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("OpenAI %s %s Timeout nach %.1fs", method, path, timeout)
            self.breaker.record_failure()
            raise RemoteTimeoutError(f"Timeout nach {timeout}s") from e
        except aiohttp.ClientError as e:
            logger.warning("OpenAI nicht erreichbar: %s", e)
            self.breaker.record_failure()
            raise NetworkFailure(str(e)) from e
        except BaseException:
            # Auch Abbruch oder Dekodierfehler beenden den HALF_OPEN Test-Call
            self.breaker.record_failure()
            raise

        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedResponse(f"Antwort ist kein JSON: {text[:80]!r}") from e

    async def responses(
        self,
        api_key: str,
        model: str,
        instructions: str,
        input_text: str,
        verbosity: str = OPENAI_VERBOSITY_TEXT,
        timeout: float = OPENAI_TIMEOUT_TEXT,
    ) -> str:
        """Freitext-Antwort (alle output_text Fragmente zusammengefuegt)."""
        body = {
            "model": model,
            "instructions": instructions,
            "input": input_text,
            "text": {"verbosity": verbosity},
        }
        result = await self._request_json("POST", "/responses", api_key, body, timeout)
        return extract_response_text(result)

    async def responses_json_object(
        self,
        api_key: str,
        model: str,
        instructions: str,
        input_text: str,
        verbosity: str = OPENAI_VERBOSITY_TEXT,
        timeout: float = OPENAI_TIMEOUT_JSON,
    ) -> Any:
        """Antwort im JSON-Objekt-Modus, geparst.

        Returns:
            Geparstes JSON oder None wenn das Modell keinen Text liefert.
        """
        body = {
            "model": model,
            "instructions": instructions,
            "input": input_text,
            "text": {
                "verbosity": verbosity,
                "format": {"type": "json_object"},
            },
        }
        result = await self._request_json("POST", "/responses", api_key, body, timeout)
        text = extract_response_text(result)
        if not text:
            return None
        return parse_json_object(text)

    async def list_models(self, api_key: str, timeout: float = OPENAI_TIMEOUT_MODELS) -> list[str]:
        """Listet alle fuer den Key verfuegbaren Modell-IDs."""
        result = await self._request_json("GET", "/models", api_key, timeout=timeout)
        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, list):
            return []
        return [m["id"] for m in data if isinstance(m, dict) and m.get("id")]


class ModelResolver:
    """Waehlt das Modell und cacht die Modell-Liste fuer ``cache_hours``.

    Der Cache wird nur ueber sein Alter invalidiert.
    """

    def __init__(self, cache_hours: float = MODEL_CACHE_HOURS):
        self.cache_hours = cache_hours
        self._models: Optional[list[str]] = None
        self._fetched_at: float = 0.0

    def _cache_valid(self) -> bool:
        if self._models is None:
            return False
        return (time.monotonic() - self._fetched_at) <= self.cache_hours * 3600

    async def resolve(
        self,
        client: OpenAIClient,
        api_key: str,
        desired: Optional[str] = OPENAI_MODEL_AUTO,
        prefer: Optional[list[str]] = None,
    ) -> Optional[str]:
        """Gibt das Zielmodell zurueck oder None.

        Konkretes ``desired`` wird direkt verwendet, bei "auto" entscheidet
        die Praeferenzliste ueber die verfuegbaren Modelle.
        """
        if desired and desired != OPENAI_MODEL_AUTO:
            return desired

        if self._cache_valid():
            ids = self._models or []
        else:
            ids = await client.list_models(api_key)
            self._models = ids
            self._fetched_at = time.monotonic()
            logger.info("Modell-Liste aktualisiert (%d Modelle)", len(ids))

        for model in prefer or []:
            if model in ids:
                return model
        return ids[0] if ids else None

    def reset(self) -> None:
        self._models = None
        self._fetched_at = 0.0
