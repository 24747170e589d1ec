"""
Zentrale Konfiguration - liest .env und settings.yaml
"""

import logging
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

from .constants import MODEL_CACHE_HOURS, OPENAI_DEFAULT_BASE_URL, OPENAI_TIMEOUT_JSON

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Umgebungsvariablen aus .env"""

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = OPENAI_DEFAULT_BASE_URL
    openai_model: str = "auto"
    openai_timeout: float = OPENAI_TIMEOUT_JSON
    model_cache_hours: float = MODEL_CACHE_HOURS

    # State-Backend: memory | redis | homeassistant
    state_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    ha_url: str = "http://192.168.1.100:8123"
    ha_token: str = ""

    # State-ID unter der der API-Key liegen kann (optional)
    api_key_state: str = ""

    # Server
    assistant_host: str = "0.0.0.0"
    assistant_port: int = 8210

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def load_yaml_config() -> dict:
    """Laedt settings.yaml, erzeugt sie aus .example wenn sie fehlt."""
    config_path = Path(__file__).parent.parent / "config" / "settings.yaml"
    example_path = config_path.with_suffix(".yaml.example")

    if not config_path.exists() and example_path.exists():
        import shutil
        shutil.copy2(example_path, config_path)

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if not isinstance(data, dict):
                    return {}
                return data
        except yaml.YAMLError as e:
            logger.warning("settings.yaml nicht lesbar: %s", e)
            return {}
    return {}


# Globale Instanzen
settings = Settings()
yaml_config = load_yaml_config()

# settings.yaml ueberschreibt .env fuer bestimmte Werte
_openai = yaml_config.get("openai") or {}
if _openai.get("model"):
    settings.openai_model = str(_openai["model"])
if _openai.get("cache_hours"):
    settings.model_cache_hours = float(_openai["cache_hours"])
if _openai.get("timeout"):
    settings.openai_timeout = float(_openai["timeout"])


def get_model_prefer() -> list[str]:
    """Bevorzugte Modelle in Reihenfolge (aus settings.yaml)."""
    prefer = (yaml_config.get("openai") or {}).get("prefer") or []
    return [str(m) for m in prefer if m]


def get_greeting_config() -> dict:
    """Greeting-Sektion aus settings.yaml (Listen, Limits, Stil)."""
    cfg = yaml_config.get("greeting") or {}
    return cfg if isinstance(cfg, dict) else {}
