"""
Greeting/Decision Generator: Begruessung + Ansage fuer Alexa-TTS.

Ablauf von VoiceGreetingService.generate():
  1. API-Key aufloesen (explizit > State-Lookup > Konfiguration)
  2. Kein Key → lokaler Generator
  3. Modell aufloesen ("auto" → gecachte Modell-Liste + Praeferenzen)
  4. Kein Modell → lokaler Generator
  5. Ein Remote-Call im JSON-Objekt-Modus (hartes Timeout, kein Retry)
  6. Kuerzen; identisch mit letzter Ausgabe (Raum|Sender|Tageszeit) → lokal
  7. Jeder Fehler → lokal. generate() wirft nie.
  8. Erfolg → Voice-Memo aktualisieren

Der lokale Generator nutzt den NonRepeatingPicker, damit Begruessungen
und Witze nicht direkt hintereinander wiederholt werden.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import aiohttp

from .config import get_greeting_config, get_model_prefer, settings
from .constants import (
    CLIP_ELLIPSIS,
    LOCAL_JOKE_CHANCE,
    LOCAL_MAX_DECISION_CHARS,
    LOCAL_MAX_GREETING_CHARS,
    OPENAI_MODEL_AUTO,
    OPENAI_VERBOSITY_GREETING,
    REMOTE_MAX_DECISION_CHARS,
    REMOTE_MAX_GREETING_CHARS,
)
from .errors import (
    CredentialMissing,
    DuplicateOutput,
    MalformedResponse,
    ModelUnresolvable,
    VoiceGptError,
)
from .openai_client import ModelResolver, OpenAIClient
from .picker import NonRepeatingPicker, chance
from .schemas import GreetingDecision, GreetingRequest
from .state_store import StateStore
from .time_utils import day_part, hhmm

logger = logging.getLogger(__name__)

DEFAULT_GREETINGS = [
    "Hallo du da… ich mach ein bisschen Radio an.",
    "Hey, was geht ab? Ich starte Musik.",
    "Oh, damit habe ich jetzt nicht gerechnet!",
    "Gääähn… jetzt hast du mich geweckt.",
    "So. Wir beide… und ein bisschen Musik.",
    "Ich bin bereit. Lass uns was hören.",
]

DEFAULT_JOKES = [
    "Kurzer Service-Hinweis: Der Kaffee ist leider noch nicht im WLAN.",
    "Ich wollte ja Sport machen… aber dann hat mich die Couch bedroht.",
    "Ich bin nicht faul. Ich bin im Energiesparmodus.",
    "Wenn ich ein Körper hätte, würde ich jetzt mitwippen.",
]

_OPENERS = {
    "morgen": "Guten Morgen! Es ist {time}.",
    "tag": "Guten Tag! Es ist {time}.",
    "abend": "Guten Abend! Es ist {time}.",
    "nacht": "Pssst… es ist {time}.",
}

_TONES = {
    0: "freundlich und sachlich",
    1: "locker, sympathisch",
    2: "locker, witzig, aber nicht albern",
}

_INSTRUCTIONS = (
    "Du gibst NUR ein JSON-Objekt zurück. Kein Text außerhalb JSON. "
    "Deutsch, Alexa-TTS geeignet, kein SSML. "
    "Sicher: keine Beleidigungen gegen Personen/Gruppen, keine politischen Inhalte, "
    "keine Sexualinhalte."
)


def clip(text, max_len: Optional[int]) -> str:
    """Trimmt und kuerzt auf ``max_len`` Zeichen inkl. Auslassungszeichen."""
    s = str(text if text is not None else "").strip()
    if not max_len or len(s) <= max_len:
        return s
    return s[:max_len - 1].strip() + CLIP_ELLIPSIS


class LocalGreetingBuilder:
    """Lokaler Fallback ohne externe Abhaengigkeit."""

    def __init__(self, picker: NonRepeatingPicker):
        self.picker = picker

    def build(self, request: GreetingRequest) -> GreetingDecision:
        try:
            return self._build(request)
        except Exception as e:
            logger.warning("Lokale Begruessung fehlgeschlagen, nutze Minimal-Text: %s", e)
            return GreetingDecision(
                greeting=DEFAULT_GREETINGS[0],
                decision=clip(f"Ich starte jetzt {request.station}.", LOCAL_MAX_DECISION_CHARS),
            )

    def _build(self, request: GreetingRequest) -> GreetingDecision:
        now = request.now or datetime.now()
        cfg = get_greeting_config()
        greetings = request.greetings or cfg.get("greetings") or DEFAULT_GREETINGS
        jokes = request.jokes or cfg.get("jokes") or DEFAULT_JOKES

        greeting = self.picker.pick(f"greet:{request.room}", greetings) or DEFAULT_GREETINGS[0]

        decision = _OPENERS[day_part(now)].format(time=hhmm(now))
        decision += f" Ich starte jetzt {request.station}."
        if request.is_dark:
            decision += " Weil es dunkel ist, mache ich Licht an."
        if chance(LOCAL_JOKE_CHANCE):
            joke = self.picker.pick(f"joke:{request.room}", jokes)
            if joke:
                decision += f" {joke}"

        return GreetingDecision(
            greeting=clip(greeting, request.max_greeting_chars or LOCAL_MAX_GREETING_CHARS),
            decision=clip(decision, request.max_decision_chars or LOCAL_MAX_DECISION_CHARS),
        )


@dataclass
class VoiceMemoEntry:
    last_ts: float
    greeting: str
    decision: str


class VoiceMemo:
    """Letzte Ausgabe pro Raum|Sender|Tageszeit (nur ein Schritt Historie)."""

    def __init__(self):
        self._entries: dict[str, VoiceMemoEntry] = {}

    @staticmethod
    def key_for(request: GreetingRequest, now: datetime) -> str:
        return f"{request.room}|{request.station}|{day_part(now)}"

    def get(self, key: str) -> Optional[VoiceMemoEntry]:
        return self._entries.get(key)

    def remember(self, key: str, result: GreetingDecision) -> None:
        self._entries[key] = VoiceMemoEntry(time.time(), result.greeting, result.decision)

    def is_duplicate(self, key: str, result: GreetingDecision) -> bool:
        entry = self._entries.get(key)
        return (
            entry is not None
            and entry.greeting == result.greeting
            and entry.decision == result.decision
        )

    def reset(self) -> None:
        self._entries.clear()


def build_prompt_input(request: GreetingRequest, now: datetime, max_g: int, max_d: int) -> str:
    """Kontext + Regeln fuer das Modell."""
    style = request.style
    tone = _TONES.get(style.humor_level, _TONES[1])
    dark_text = (
        "Es ist dunkel; Licht wird eingeschaltet/bleibt an."
        if request.is_dark else "Licht bleibt unverändert."
    )
    extra = (request.extra_context or "").strip()

    lines = [
        "Kontext:",
        f"- Raum: {request.room}",
        f"- Tageszeit: {day_part(now)}",
        f"- Uhrzeit: {hhmm(now)}",
        f"- Sender: {request.station}",
        f"- Licht: {dark_text}",
    ]
    if extra:
        lines.append(f"- Extra: {extra}")
    lines += [
        "",
        'Erzeuge JSON: {"greeting":"...","decision":"..."}',
        "Regeln:",
        f"- greeting: 1–2 Sätze, natürlich, {tone}, max {max_g} Zeichen.",
        f"- decision: {'2–3 Sätze' if style.slightly_longer else 'max 2 Sätze'}, max {max_d} Zeichen.",
        '- decision MUSS enthalten: Uhrzeit UND "Ich starte <Sender>".',
        "- Optional: 1 kurzer, neuer Witz (keine Wiederholung von Standard-Floskeln).",
        '- Optional: 0–1 mildes Wort (z.B. "Mist", "verdammt", "so ein Käse") – nie gegen Personen.',
    ]
    if style.vivid:
        lines.append("- Sprachbilder erlaubt, aber kurz und verständlich.")
    return "\n".join(lines) + "\n"


class VoiceGreetingService:
    """Besitzt alle In-Memory-Caches (Picker, Modell-Cache, Voice-Memo).

    Wird einmal beim Start erzeugt; reset() leert alles (Tests, /api/voice/reset).
    """

    def __init__(
        self,
        client: Optional[OpenAIClient] = None,
        state_store: Optional[StateStore] = None,
        picker: Optional[NonRepeatingPicker] = None,
        resolver: Optional[ModelResolver] = None,
        default_api_key: Optional[str] = None,
    ):
        self.client = client or OpenAIClient(settings.openai_base_url)
        self.state_store = state_store
        self.picker = picker or NonRepeatingPicker()
        self.resolver = resolver or ModelResolver(settings.model_cache_hours)
        self.memo = VoiceMemo()
        self.local = LocalGreetingBuilder(self.picker)
        self.default_api_key = settings.openai_api_key if default_api_key is None else default_api_key

    async def close(self) -> None:
        await self.client.close()

    def reset(self) -> None:
        self.picker.reset()
        self.resolver.reset()
        self.memo.reset()
        self.client.breaker.reset()

    async def _resolve_api_key(self, request: GreetingRequest) -> str:
        """Expliziter Key > State-Lookup > Konfiguration.

        Raises:
            CredentialMissing: Keine Quelle liefert einen Key.
        """
        api_key = (request.api_key or "").strip()
        if api_key:
            return api_key
        state_id = request.api_key_state or settings.api_key_state
        if state_id and self.state_store is not None:
            try:
                api_key = str(await self.state_store.get_value(state_id, "") or "").strip()
            except Exception as e:
                logger.warning("API-Key Lookup (%s) fehlgeschlagen: %s", state_id, e)
                api_key = ""
            if api_key:
                return api_key
        api_key = (self.default_api_key or "").strip()
        if not api_key:
            raise CredentialMissing("Kein API-Key (Parameter, State, Konfiguration)")
        return api_key

    def _local(self, request: GreetingRequest, memo_key: str, remember: bool) -> GreetingDecision:
        result = self.local.build(request)
        if remember:
            self.memo.remember(memo_key, result)
        return result

    async def generate(self, request: Optional[GreetingRequest] = None) -> GreetingDecision:
        """Liefert immer ein {greeting, decision} Paar, wirft nie."""
        request = request or GreetingRequest()
        now = request.now or datetime.now()
        if request.now is None:
            request = request.model_copy(update={"now": now})
        memo_key = VoiceMemo.key_for(request, now)

        try:
            api_key = await self._resolve_api_key(request)
        except CredentialMissing:
            logger.info("Greeting lokal (kein API-Key)")
            return self._local(request, memo_key, remember=True)

        try:
            return await self._generate_remote(request, api_key, now, memo_key)
        except ModelUnresolvable:
            logger.info("Greeting lokal (kein Modell verfuegbar)")
            return self._local(request, memo_key, remember=True)
        except DuplicateOutput:
            logger.info("Remote-Greeting identisch mit letzter Ausgabe, lokale Variante")
            return self._local(request, memo_key, remember=False)
        except (VoiceGptError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Remote-Greeting fehlgeschlagen (%s), lokaler Fallback: %s",
                           type(e).__name__, e)
            return self._local(request, memo_key, remember=False)
        except Exception as e:
            logger.error("Unerwarteter Fehler im Remote-Greeting: %s", e, exc_info=True)
            return self._local(request, memo_key, remember=False)

    async def _generate_remote(
        self, request: GreetingRequest, api_key: str, now: datetime, memo_key: str,
    ) -> GreetingDecision:
        desired = request.model_desired or OPENAI_MODEL_AUTO
        if desired == OPENAI_MODEL_AUTO:
            desired = settings.openai_model or OPENAI_MODEL_AUTO
        prefer = request.model_prefer or get_model_prefer()

        model = await self.resolver.resolve(self.client, api_key, desired, prefer)
        if not model:
            raise ModelUnresolvable("Keine Modelle fuer diesen Key")

        cfg = get_greeting_config()
        max_g = request.max_greeting_chars or cfg.get("max_greeting_chars") or REMOTE_MAX_GREETING_CHARS
        max_d = request.max_decision_chars or cfg.get("max_decision_chars") or REMOTE_MAX_DECISION_CHARS

        obj = await self.client.responses_json_object(
            api_key,
            model,
            _INSTRUCTIONS,
            build_prompt_input(request, now, max_g, max_d),
            verbosity=OPENAI_VERBOSITY_GREETING,
            timeout=request.timeout or settings.openai_timeout,
        )
        if obj is None:
            raise MalformedResponse("Leere Modell-Antwort")
        raw = GreetingDecision.from_remote(obj)
        result = GreetingDecision(greeting=clip(raw.greeting, max_g), decision=clip(raw.decision, max_d))

        if self.memo.is_duplicate(memo_key, result):
            raise DuplicateOutput(memo_key)

        self.memo.remember(memo_key, result)
        logger.info("Greeting via %s (%s)", model, memo_key)
        return result
