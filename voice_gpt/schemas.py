"""Request/Response Schemas fuer Greeting/Decision."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import DEFAULT_ROOM, DEFAULT_STATION, OPENAI_MODEL_AUTO
from .errors import MalformedResponse


class GreetingStyle(BaseModel):
    """Stil fuer die LLM-Formulierung."""
    humor_level: int = 1  # 0 sachlich, 1 locker, 2 witzig
    vivid: bool = False
    slightly_longer: bool = True

    @field_validator("humor_level", mode="before")
    @classmethod
    def _coerce_humor(cls, v):
        return v if v in (0, 1, 2) and not isinstance(v, bool) else 1


class GreetingRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    room: str = DEFAULT_ROOM
    station: str = DEFAULT_STATION
    now: Optional[datetime] = None
    is_dark: bool = False
    extra_context: str = ""
    max_greeting_chars: Optional[int] = Field(None, ge=1)
    max_decision_chars: Optional[int] = Field(None, ge=1)
    style: GreetingStyle = Field(default_factory=GreetingStyle)

    # Credentials: expliziter Key schlaegt State-Lookup
    api_key: Optional[str] = None
    api_key_state: Optional[str] = None

    model_desired: str = OPENAI_MODEL_AUTO
    model_prefer: list[str] = Field(default_factory=list)
    timeout: Optional[float] = None

    # Eigene Listen fuer den lokalen Fallback
    greetings: Optional[list[str]] = None
    jokes: Optional[list[str]] = None

    @field_validator("room", "station", mode="before")
    @classmethod
    def _empty_to_default(cls, v, info):
        if v is None or str(v) == "":
            return DEFAULT_ROOM if info.field_name == "room" else DEFAULT_STATION
        return str(v)


class GreetingDecision(BaseModel):
    greeting: str
    decision: str

    @classmethod
    def from_remote(cls, obj: Any) -> "GreetingDecision":
        """Validiert das JSON-Objekt des Modells.

        Raises:
            MalformedResponse: Kein Objekt oder Felder fehlen / sind keine Strings.
        """
        if not isinstance(obj, dict):
            raise MalformedResponse(f"Kein JSON-Objekt: {type(obj).__name__}")
        greeting = obj.get("greeting")
        decision = obj.get("decision")
        if not isinstance(greeting, str) or not isinstance(decision, str):
            raise MalformedResponse("greeting/decision fehlen oder sind keine Strings")
        try:
            return cls(greeting=greeting, decision=decision)
        except ValidationError as e:
            raise MalformedResponse(str(e)) from e
