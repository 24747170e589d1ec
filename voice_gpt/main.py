"""
Voice-GPT - HTTP-Schnittstelle (FastAPI Server)
Stellt den Greeting/Decision Generator fuer die Sprachassistent-Integration bereit.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel

from .config import settings
from .greeting import VoiceGreetingService
from .request_context import RequestContextMiddleware, setup_logging
from .schemas import GreetingDecision, GreetingRequest
from .state_store import create_state_store

setup_logging()
logger = logging.getLogger("voice-gpt")

state_store = create_state_store(
    settings.state_backend,
    redis_url=settings.redis_url,
    ha_url=settings.ha_url,
    ha_token=settings.ha_token,
)
service = VoiceGreetingService(state_store=state_store)


class CommandRequest(BaseModel):
    state_id: str
    value: str = ""
    delay_ms: int = 150


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup und Shutdown."""
    logger.info("Voice-GPT startet (State-Backend: %s, Modell: %s)",
                state_store.name, settings.openai_model)
    if not settings.openai_api_key and not settings.api_key_state:
        logger.info("Kein OpenAI API-Key konfiguriert, nur lokale Begruessungen")

    yield

    await service.close()
    await state_store.close()
    logger.info("Voice-GPT heruntergefahren.")


app = FastAPI(
    title="Voice-GPT",
    description="Begruessung/Ansage fuer Alexa-TTS mit lokalem Fallback",
    version="1.2.0",
    lifespan=lifespan,
)
app.add_middleware(RequestContextMiddleware)


# ----- API Endpoints -----

@app.get("/api/health")
async def health():
    """Health Check - Backend und Circuit Breaker Status."""
    return {
        "status": "ok",
        "state_backend": state_store.name,
        "openai": service.client.breaker.status(),
    }


@app.post("/api/voice/greeting", response_model=GreetingDecision)
async def voice_greeting(request: GreetingRequest):
    """
    Begruessung + Ansage erzeugen. Antwortet immer mit einem Paar.

    Beispiel:
    POST /api/voice/greeting
    {"room": "kueche", "station": "SWR3", "is_dark": true}
    """
    return await service.generate(request)


@app.post("/api/voice/command")
async def voice_command(request: CommandRequest):
    """Command-State robust ausloesen (leeren, kurz warten, setzen)."""
    await state_store.write_command(request.state_id, request.value, request.delay_ms)
    return {"success": True, "state_id": request.state_id}


@app.post("/api/voice/reset")
async def voice_reset():
    """In-Memory-Caches leeren (Picker, Modell-Liste, Voice-Memo)."""
    service.reset()
    return {"success": True}


def start():
    """Einstiegspunkt fuer den Server."""
    import uvicorn

    uvicorn.run(
        "voice_gpt.main:app",
        host=settings.assistant_host,
        port=settings.assistant_port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    start()
