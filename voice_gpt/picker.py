"""
Zufallsauswahl mit Wiederholungsschutz.

NonRepeatingPicker arbeitet pro Schluessel mit einem "Beutel" aus
Indizes: Alle Elemente kommen einmal in zufaelliger Reihenfolge dran,
bevor neu gemischt wird. Zusaetzlich wird der direkt vorherige Treffer
(pro Schluessel) vermieden, sofern noch ein anderer Index im Beutel ist.
"""

import logging
import random
from typing import Any, Optional

from .constants import PICKER_DEFAULT_KEY

logger = logging.getLogger(__name__)


def pick(items) -> Optional[Any]:
    """Zufaelliges Element oder None bei leerer / ungueltiger Liste."""
    if not isinstance(items, (list, tuple)) or not items:
        return None
    return random.choice(items)


def chance(p: float) -> bool:
    return random.random() < p


class NonRepeatingPicker:
    """Zyklische Zufallsauswahl pro Schluessel (Bag + Last-Pick-Memo)."""

    def __init__(self):
        self._bags: dict[str, list[int]] = {}
        self._last_pick: dict[str, Any] = {}

    def pick(self, key: Optional[str], items) -> Optional[Any]:
        """Naechstes Element fuer ``key``.

        Gibt None zurueck wenn ``items`` leer oder keine Liste ist.
        """
        if not isinstance(items, (list, tuple)) or not items:
            return None
        key = str(key or PICKER_DEFAULT_KEY)

        bag = self._bags.get(key)
        # Liste kann zwischen zwei Aufrufen geschrumpft sein
        if bag and max(bag) >= len(items):
            logger.debug("Picker '%s': Liste geaendert, Beutel wird neu gemischt", key)
            bag = None
        if not bag:
            bag = list(range(len(items)))
            random.shuffle(bag)
            self._bags[key] = bag

        idx = bag.pop(0)
        value = items[idx]

        # Direkte Wiederholung vermeiden: naechsten Index ziehen,
        # den ersten wieder vorne einreihen
        if (
            len(items) > 1
            and self._last_pick.get(key)
            and str(value) == str(self._last_pick[key])
            and bag
        ):
            idx2 = bag.pop(0)
            bag.insert(0, idx)
            value = items[idx2]

        self._last_pick[key] = value
        return value

    def remaining(self, key: Optional[str]) -> int:
        """Anzahl noch nicht gezogener Indizes im aktuellen Zyklus."""
        return len(self._bags.get(str(key or PICKER_DEFAULT_KEY)) or [])

    def reset(self) -> None:
        """Vergisst alle Beutel und letzten Treffer."""
        self._bags.clear()
        self._last_pick.clear()
