"""
Circuit Breaker fuer die Remote-Textgenerierung.

Wenn die OpenAI API mehrfach hintereinander scheitert, wird der Remote-Pfad
fuer eine Weile uebersprungen und direkt lokal generiert:

  CLOSED    → Normalbetrieb, Fehler werden gezaehlt
  OPEN      → Remote-Calls werden sofort abgelehnt
  HALF_OPEN → Ein Test-Call, bei Erfolg → CLOSED, bei Fehler → OPEN

Keine Retries: ein Versuch pro Anfrage, danach Fallback.
"""

import logging
import time
from enum import Enum

from .constants import OPENAI_BREAKER_RECOVERY, OPENAI_BREAKER_THRESHOLD

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit Breaker fuer einen einzelnen externen Dienst."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = OPENAI_BREAKER_THRESHOLD,
        recovery_timeout: float = OPENAI_BREAKER_RECOVERY,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info("Circuit %s: OPEN -> HALF_OPEN", self.name)
        return self._state

    @property
    def is_available(self) -> bool:
        """True wenn ein Call gewagt werden darf (im HALF_OPEN nur einer)."""
        current = self.state
        if current == CircuitState.CLOSED:
            return True
        if current == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit %s: %s -> CLOSED", self.name, self._state.value.upper())
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    "Circuit %s: -> OPEN (%d Fehler in Folge)", self.name, self._failures,
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            self._probe_in_flight = False

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    def status(self) -> dict:
        """Status fuer den Health-Endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failures,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }
