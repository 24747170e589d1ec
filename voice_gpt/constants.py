"""
Zentrale Konstanten fuer die Voice-GPT Helfer.

Timeouts, Laengenlimits und Wahrscheinlichkeiten an einem Ort statt
ueber die Module verstreut.
"""

from typing import Final

# ============================================================
# Timeouts (Sekunden)
# ============================================================

# OpenAI Responses API
OPENAI_TIMEOUT_TEXT: Final[float] = 8.0
OPENAI_TIMEOUT_JSON: Final[float] = 9.0
OPENAI_TIMEOUT_MODELS: Final[float] = 8.0

# Home Assistant State-Backend
HA_SESSION_TIMEOUT: Final[int] = 10

# ============================================================
# OpenAI
# ============================================================

OPENAI_DEFAULT_BASE_URL: Final[str] = "https://api.openai.com/v1"
OPENAI_MODEL_AUTO: Final[str] = "auto"
OPENAI_VERBOSITY_TEXT: Final[str] = "low"
OPENAI_VERBOSITY_GREETING: Final[str] = "medium"

# Modell-Liste wird so lange gecacht
MODEL_CACHE_HOURS: Final[float] = 6.0

# Circuit Breaker fuer die Remote-API
OPENAI_BREAKER_THRESHOLD: Final[int] = 3
OPENAI_BREAKER_RECOVERY: Final[float] = 60.0

# ============================================================
# Greeting / Decision
# ============================================================

# Lokaler Generator
LOCAL_MAX_GREETING_CHARS: Final[int] = 120
LOCAL_MAX_DECISION_CHARS: Final[int] = 420

# Remote (LLM darf etwas laenger)
REMOTE_MAX_GREETING_CHARS: Final[int] = 140
REMOTE_MAX_DECISION_CHARS: Final[int] = 520

# Wahrscheinlichkeit fuer einen Witz im lokalen Fallback
LOCAL_JOKE_CHANCE: Final[float] = 0.55

CLIP_ELLIPSIS: Final[str] = "…"

DEFAULT_ROOM: Final[str] = "raum"
DEFAULT_STATION: Final[str] = "Radio"

# ============================================================
# Picker / State
# ============================================================

PICKER_DEFAULT_KEY: Final[str] = "default"

# Pause zwischen Leeren und Setzen eines Command-States
COMMAND_WRITE_DELAY_MS: Final[int] = 150

REDIS_STATE_PREFIX: Final[str] = "vgpt:state:"
