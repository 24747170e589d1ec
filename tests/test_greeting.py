"""
Tests fuer Greeting/Decision: clip(), LocalGreetingBuilder und
VoiceGreetingService (Remote-Pfad, Fallbacks, Anti-Repeat Memo).
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from voice_gpt.circuit_breaker import CircuitBreaker
from voice_gpt.errors import MalformedResponse, NetworkFailure, RemoteHTTPError, RemoteTimeoutError
from voice_gpt.greeting import (
    DEFAULT_GREETINGS,
    DEFAULT_JOKES,
    LocalGreetingBuilder,
    VoiceGreetingService,
    VoiceMemo,
    build_prompt_input,
    clip,
)
from voice_gpt.openai_client import OpenAIClient
from voice_gpt.picker import NonRepeatingPicker
from voice_gpt.schemas import GreetingDecision, GreetingRequest, GreetingStyle
from voice_gpt.state_store import MemoryStateStore

MORNING = datetime(2025, 12, 22, 7, 5)
EVENING = datetime(2025, 12, 22, 19, 30)

REMOTE = {"greeting": "Moin aus der Küche!", "decision": "Es ist 07:05. Ich starte SWR3."}


@pytest.fixture
def client_mock():
    """OpenAIClient Mock mit echtem Circuit Breaker."""
    mock = MagicMock()
    mock.breaker = CircuitBreaker("openai-test")
    mock.list_models = AsyncMock(return_value=["gpt-a", "gpt-b"])
    mock.responses_json_object = AsyncMock(return_value=dict(REMOTE))
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def service(client_mock, memory_store):
    return VoiceGreetingService(
        client=client_mock,
        state_store=memory_store,
        default_api_key="",
    )


def _request(**kwargs):
    params = {"room": "kueche", "station": "SWR3", "now": MORNING}
    params.update(kwargs)
    return GreetingRequest(**params)


# ============================================================
# clip()
# ============================================================

class TestClip:

    def test_short_unchanged(self):
        assert clip("  Hallo  ", 10) == "Hallo"

    def test_truncates_with_ellipsis(self):
        result = clip("Das ist ein sehr langer Satz", 10)
        assert len(result) <= 10
        assert result.endswith("…")

    def test_trims_before_ellipsis(self):
        assert clip("abcd efgh", 6) == "abcd…"

    def test_no_limit(self):
        assert clip("x" * 500, 0) == "x" * 500
        assert clip("x" * 500, None) == "x" * 500

    def test_none_is_empty(self):
        assert clip(None, 10) == ""


# ============================================================
# LocalGreetingBuilder
# ============================================================

class TestLocalGreetingBuilder:

    @pytest.fixture
    def builder(self):
        return LocalGreetingBuilder(NonRepeatingPicker())

    @pytest.mark.parametrize("now,opener", [
        (datetime(2025, 1, 1, 5, 0), "Guten Morgen! Es ist 05:00."),
        (datetime(2025, 1, 1, 11, 0), "Guten Tag! Es ist 11:00."),
        (datetime(2025, 1, 1, 17, 0), "Guten Abend! Es ist 17:00."),
        (datetime(2025, 1, 1, 23, 15), "Pssst… es ist 23:15."),
    ])
    def test_opener_by_day_part(self, builder, now, opener):
        with patch("voice_gpt.greeting.chance", return_value=False):
            result = builder.build(_request(now=now))
        assert result.decision == f"{opener} Ich starte jetzt SWR3."

    def test_greeting_from_default_list(self, builder):
        result = builder.build(_request())
        assert result.greeting in DEFAULT_GREETINGS

    def test_custom_greetings(self, builder):
        result = builder.build(_request(greetings=["Servus!"]))
        assert result.greeting == "Servus!"

    def test_dark_note(self, builder):
        with patch("voice_gpt.greeting.chance", return_value=False):
            result = builder.build(_request(is_dark=True))
        assert result.decision.endswith("Weil es dunkel ist, mache ich Licht an.")

    def test_joke_appended(self, builder):
        with patch("voice_gpt.greeting.chance", return_value=True):
            result = builder.build(_request())
        assert any(result.decision.endswith(j) for j in DEFAULT_JOKES)

    def test_joke_chance_is_55_percent(self, builder):
        with patch("voice_gpt.greeting.chance", return_value=False) as chance_mock:
            builder.build(_request())
        chance_mock.assert_called_once_with(0.55)

    def test_greetings_not_repeated_per_room(self, builder):
        seen = [builder.build(_request()).greeting for _ in range(len(DEFAULT_GREETINGS))]
        assert sorted(seen) == sorted(DEFAULT_GREETINGS)

    def test_respects_caps(self, builder):
        with patch("voice_gpt.greeting.chance", return_value=True):
            result = builder.build(_request(
                greetings=["Ein ausgesprochen langer Begrüßungssatz ohne Ende"],
                max_greeting_chars=20,
                max_decision_chars=30,
                is_dark=True,
            ))
        assert len(result.greeting) <= 20
        assert result.greeting.endswith("…")
        assert len(result.decision) <= 30
        assert result.decision.endswith("…")

    def test_default_caps(self, builder):
        with patch("voice_gpt.greeting.chance", return_value=True):
            result = builder.build(_request(
                greetings=["g" * 300], jokes=["j" * 600], is_dark=True,
            ))
        assert len(result.greeting) <= 120
        assert len(result.decision) <= 420

    def test_never_fails(self):
        picker = MagicMock()
        picker.pick = MagicMock(side_effect=RuntimeError("kaputt"))
        builder = LocalGreetingBuilder(picker)
        result = builder.build(_request())
        assert isinstance(result, GreetingDecision)
        assert result.greeting
        assert "SWR3" in result.decision


# ============================================================
# VoiceMemo / Prompt
# ============================================================

class TestVoiceMemo:

    def test_key(self):
        assert VoiceMemo.key_for(_request(), MORNING) == "kueche|SWR3|morgen"
        assert VoiceMemo.key_for(_request(), EVENING) == "kueche|SWR3|abend"

    def test_duplicate_detection(self):
        memo = VoiceMemo()
        result = GreetingDecision(**REMOTE)
        assert memo.is_duplicate("k", result) is False
        memo.remember("k", result)
        assert memo.is_duplicate("k", result) is True
        assert memo.is_duplicate("k", GreetingDecision(greeting="x", decision=REMOTE["decision"])) is False


class TestBuildPromptInput:

    def test_context_lines(self):
        text = build_prompt_input(_request(is_dark=True, extra_context=" Besuch da "), MORNING, 140, 520)
        assert "- Raum: kueche" in text
        assert "- Tageszeit: morgen" in text
        assert "- Uhrzeit: 07:05" in text
        assert "- Sender: SWR3" in text
        assert "Licht wird eingeschaltet" in text
        assert "- Extra: Besuch da" in text
        assert "max 140 Zeichen" in text
        assert "max 520 Zeichen" in text
        assert '"Ich starte <Sender>"' in text

    def test_style(self):
        style = GreetingStyle(humor_level=0, vivid=True, slightly_longer=False)
        text = build_prompt_input(_request(style=style), MORNING, 140, 520)
        assert "freundlich und sachlich" in text
        assert "max 2 Sätze" in text
        assert "Sprachbilder erlaubt" in text

    def test_default_style(self):
        text = build_prompt_input(_request(), MORNING, 140, 520)
        assert "locker, sympathisch" in text
        assert "2–3 Sätze" in text
        assert "Sprachbilder" not in text
        assert "- Extra:" not in text

    def test_invalid_humor_level_coerced(self):
        assert GreetingStyle(humor_level=7).humor_level == 1
        assert GreetingStyle(humor_level=2).humor_level == 2


# ============================================================
# VoiceGreetingService
# ============================================================

class TestCredentials:

    @pytest.mark.asyncio
    async def test_no_key_local_without_network(self, service, client_mock):
        result = await service.generate(_request())
        assert isinstance(result, GreetingDecision)
        assert "Ich starte jetzt SWR3." in result.decision
        client_mock.list_models.assert_not_called()
        client_mock.responses_json_object.assert_not_called()
        # lokales Ergebnis wird gemerkt
        entry = service.memo.get("kueche|SWR3|morgen")
        assert entry.greeting == result.greeting

    @pytest.mark.asyncio
    async def test_whitespace_key_is_no_key(self, service, client_mock):
        await service.generate(_request(api_key="   "))
        client_mock.responses_json_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_key_beats_state(self, service, client_mock, memory_store):
        await memory_store.write("javascript.0.openai_key", "sk-state", True)
        await service.generate(_request(api_key=" sk-explicit ", api_key_state="javascript.0.openai_key"))
        assert client_mock.responses_json_object.call_args[0][0] == "sk-explicit"

    @pytest.mark.asyncio
    async def test_state_key_used(self, service, client_mock, memory_store):
        await memory_store.write("javascript.0.openai_key", "sk-state", True)
        await service.generate(_request(api_key_state="javascript.0.openai_key"))
        assert client_mock.responses_json_object.call_args[0][0] == "sk-state"

    @pytest.mark.asyncio
    async def test_missing_state_key_local(self, service, client_mock):
        await service.generate(_request(api_key_state="javascript.0.missing"))
        client_mock.responses_json_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_configured_default_key(self, client_mock):
        svc = VoiceGreetingService(client=client_mock, default_api_key="sk-config")
        await svc.generate(_request(model_desired="gpt-fixed"))
        assert client_mock.responses_json_object.call_args[0][0] == "sk-config"


class TestRemotePath:

    @pytest.mark.asyncio
    async def test_success(self, service, client_mock):
        result = await service.generate(_request(api_key="sk", model_prefer=["gpt-b"]))
        assert result == GreetingDecision(**REMOTE)
        args, kwargs = client_mock.responses_json_object.call_args
        assert args[1] == "gpt-b"
        assert "NUR ein JSON-Objekt" in args[2]
        assert "- Uhrzeit: 07:05" in args[3]
        assert kwargs["verbosity"] == "medium"
        entry = service.memo.get("kueche|SWR3|morgen")
        assert (entry.greeting, entry.decision) == (REMOTE["greeting"], REMOTE["decision"])

    @pytest.mark.asyncio
    async def test_concrete_model_skips_listing(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_desired="gpt-fixed"))
        client_mock.list_models.assert_not_called()
        assert client_mock.responses_json_object.call_args[0][1] == "gpt-fixed"

    @pytest.mark.asyncio
    async def test_model_list_cached_across_calls(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_prefer=["gpt-a"]))
        await service.generate(_request(api_key="sk", model_prefer=["gpt-a"], now=EVENING))
        assert client_mock.list_models.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_passed(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_desired="m", timeout=3.5))
        assert client_mock.responses_json_object.call_args[1]["timeout"] == 3.5

    @pytest.mark.asyncio
    async def test_remote_output_clipped(self, service, client_mock):
        client_mock.responses_json_object = AsyncMock(return_value={
            "greeting": "  " + "Hallo " * 50, "decision": "D" * 1000,
        })
        result = await service.generate(_request(
            api_key="sk", model_desired="m", max_greeting_chars=50, max_decision_chars=100,
        ))
        assert len(result.greeting) <= 50 and result.greeting.endswith("…")
        assert len(result.decision) <= 100 and result.decision.endswith("…")
        assert not result.greeting.startswith(" ")


class TestFallbacks:

    def _assert_local(self, result):
        assert isinstance(result, GreetingDecision)
        assert "Ich starte jetzt SWR3." in result.decision
        assert result.greeting

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        RemoteTimeoutError("Timeout nach 9s"),
        NetworkFailure("refused"),
        RemoteHTTPError(500, "boom"),
        MalformedResponse("kein JSON"),
        TimeoutError(),
        ValueError("kaputt"),
        RuntimeError("unerwartet"),
    ])
    async def test_remote_errors_fall_back(self, service, client_mock, error):
        client_mock.responses_json_object = AsyncMock(side_effect=error)
        result = await service.generate(_request(api_key="sk", model_desired="m"))
        self._assert_local(result)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        None,
        {"greeting": "Hallo"},
        {"greeting": 1, "decision": 2},
        ["greeting", "decision"],
    ])
    async def test_malformed_payload_falls_back(self, service, client_mock, payload):
        client_mock.responses_json_object = AsyncMock(return_value=payload)
        result = await service.generate(_request(api_key="sk", model_desired="m"))
        self._assert_local(result)

    @pytest.mark.asyncio
    async def test_failure_not_memoised(self, service, client_mock):
        client_mock.responses_json_object = AsyncMock(side_effect=RemoteTimeoutError("t"))
        await service.generate(_request(api_key="sk", model_desired="m"))
        assert service.memo.get("kueche|SWR3|morgen") is None

    @pytest.mark.asyncio
    async def test_no_model_local_and_memoised(self, service, client_mock):
        client_mock.list_models = AsyncMock(return_value=[])
        result = await service.generate(_request(api_key="sk"))
        self._assert_local(result)
        client_mock.responses_json_object.assert_not_called()
        assert service.memo.get("kueche|SWR3|morgen").decision == result.decision

    @pytest.mark.asyncio
    async def test_model_listing_error_falls_back(self, service, client_mock):
        client_mock.list_models = AsyncMock(side_effect=RemoteHTTPError(401, "invalid key"))
        result = await service.generate(_request(api_key="sk"))
        self._assert_local(result)

    @pytest.mark.asyncio
    async def test_state_lookup_error_treated_as_no_key(self, client_mock):
        store = MagicMock()
        store.get_value = AsyncMock(side_effect=RuntimeError("store down"))
        svc = VoiceGreetingService(client=client_mock, state_store=store, default_api_key="")
        result = await svc.generate(_request(api_key_state="x"))
        self._assert_local(result)
        client_mock.responses_json_object.assert_not_called()


class TestAntiRepeat:

    @pytest.mark.asyncio
    async def test_identical_remote_output_forces_local(self, service, client_mock):
        first = await service.generate(_request(api_key="sk", model_desired="m"))
        second = await service.generate(_request(api_key="sk", model_desired="m"))
        assert first == GreetingDecision(**REMOTE)
        assert second != first
        assert "Ich starte jetzt SWR3." in second.decision

    @pytest.mark.asyncio
    async def test_duplicate_keeps_remote_memo(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_desired="m"))
        await service.generate(_request(api_key="sk", model_desired="m"))
        entry = service.memo.get("kueche|SWR3|morgen")
        assert entry.greeting == REMOTE["greeting"]

    @pytest.mark.asyncio
    async def test_other_day_part_not_duplicate(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_desired="m"))
        evening = await service.generate(_request(api_key="sk", model_desired="m", now=EVENING))
        assert evening == GreetingDecision(**REMOTE)

    @pytest.mark.asyncio
    async def test_different_output_passes(self, service, client_mock):
        await service.generate(_request(api_key="sk", model_desired="m"))
        client_mock.responses_json_object = AsyncMock(return_value={
            "greeting": "Na, wieder da?", "decision": "Es ist 07:05. Ich starte SWR3.",
        })
        result = await service.generate(_request(api_key="sk", model_desired="m"))
        assert result.greeting == "Na, wieder da?"


class TestServiceLifecycle:

    @pytest.mark.asyncio
    async def test_default_request(self, service):
        result = await service.generate()
        assert "Ich starte jetzt Radio." in result.decision

    @pytest.mark.asyncio
    async def test_reset_clears_state(self, service, client_mock):
        await service.generate(_request(api_key="sk"))
        service.reset()
        assert service.memo.get("kueche|SWR3|morgen") is None
        assert service.picker.remaining("greet:kueche") == 0
        await service.generate(_request(api_key="sk"))
        assert client_mock.list_models.await_count == 2

    @pytest.mark.asyncio
    async def test_close(self, service, client_mock):
        await service.close()
        client_mock.close.assert_awaited_once()


class TestRemoteRecovery:

    @pytest.mark.asyncio
    async def test_undecodable_reply_does_not_disable_remote(self, make_session, openai_payload):
        breaker = CircuitBreaker("openai-test", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        resp = MagicMock(status=200, text=AsyncMock(
            side_effect=UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
        ))
        broken = AsyncMock(
            __aenter__=AsyncMock(return_value=resp),
            __aexit__=AsyncMock(return_value=False),
        )
        session = make_session(broken, {"body": openai_payload(json.dumps(REMOTE))})
        client = OpenAIClient("https://api.example.test/v1", breaker=breaker)
        client._get_session = AsyncMock(return_value=session)
        service = VoiceGreetingService(client=client, state_store=MemoryStateStore(), default_api_key="")

        first = await service.generate(_request(api_key="sk", model_desired="m"))
        assert "Ich starte jetzt SWR3." in first.decision

        second = await service.generate(_request(api_key="sk", model_desired="m"))
        assert second.greeting == REMOTE["greeting"]
        assert second.decision == REMOTE["decision"]
        assert session.request.call_count == 2


class TestRequestLimits:

    @pytest.mark.parametrize("value", [0, -3])
    def test_non_positive_limits_invalid(self, value):
        with pytest.raises(ValidationError):
            GreetingRequest(max_greeting_chars=value)
        with pytest.raises(ValidationError):
            GreetingRequest(max_decision_chars=value)

    def test_unset_limits_stay_none(self):
        request = GreetingRequest()
        assert request.max_greeting_chars is None
        assert request.max_decision_chars is None
