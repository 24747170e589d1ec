"""
Request-ID pro HTTP-Anfrage + Logging-Setup.

Die ID kommt aus dem Header x-request-id (gekuerzt) oder wird neu erzeugt.
Ein Log-Filter haengt sie als '[req-<id>] ' an jede Zeile, die waehrend der
Anfrage geschrieben wird, und die Antwort spiegelt sie im Header zurueck.
"""

import logging
import uuid
from contextvars import ContextVar

REQUEST_ID_HEADER = b"x-request-id"
_MAX_ID_LEN = 64

_request_id: ContextVar[str] = ContextVar("voice_request_id", default="")


def get_request_id() -> str:
    return _request_id.get()


def _incoming_id(scope) -> str:
    for name, value in scope.get("headers") or ():
        if name.lower() == REQUEST_ID_HEADER:
            return value.decode("utf-8", errors="replace").strip()[:_MAX_ID_LEN]
    return ""


class RequestContextMiddleware:
    """ASGI-Middleware, nur fuer HTTP (Lifespan-Events laufen durch)."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        rid = _incoming_id(scope) or uuid.uuid4().hex[:12]
        token = _request_id.set(rid)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []), (REQUEST_ID_HEADER, rid.encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Setzt ``record.request_id`` (leer ausserhalb einer Anfrage)."""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = _request_id.get()
        record.request_id = f"[req-{rid}] " if rid else ""
        return True


LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(request_id)s%(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    for handler in root.handlers:
        handler.setFormatter(formatter)
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
