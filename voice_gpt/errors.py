"""
Fehler-Taxonomie fuer die Remote-Textgenerierung.

Alle Fehler werden an der Grenze des VoiceGreetingService abgefangen und
in ein lokales Ergebnis umgewandelt. Nach aussen dringt nichts durch.
"""


class VoiceGptError(Exception):
    """Basisklasse aller Voice-GPT Fehler."""


class CredentialMissing(VoiceGptError):
    """Kein API-Key aufloesbar."""


class ModelUnresolvable(VoiceGptError):
    """Kein passendes Modell verfuegbar."""


class NetworkFailure(VoiceGptError):
    """Transportfehler (Verbindung, Circuit offen, Timeout)."""


class RemoteTimeoutError(NetworkFailure):
    """Request hat das Zeitlimit ueberschritten."""


class RemoteHTTPError(NetworkFailure):
    """Antwort mit Status ausserhalb 2xx."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body[:300]}")


class MalformedResponse(VoiceGptError):
    """Antwort ist kein JSON oder hat nicht die erwartete Form."""


class DuplicateOutput(VoiceGptError):
    """Remote-Ausgabe identisch mit der letzten fuer denselben Schluessel."""
