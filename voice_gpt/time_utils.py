"""Uhrzeit- und Tageszeit-Helfer fuer die Sprachausgabe."""

import asyncio
from datetime import datetime
from typing import Optional


def pad2(n) -> str:
    return str(n).zfill(2)


def hhmm(dt: Optional[datetime] = None) -> str:
    """Uhrzeit als 'HH:MM'."""
    dt = dt or datetime.now()
    return f"{pad2(dt.hour)}:{pad2(dt.minute)}"


def day_part(dt: Optional[datetime] = None) -> str:
    """Tageszeit-Bucket: morgen (5-10), tag (11-16), abend (17-21), sonst nacht."""
    dt = dt or datetime.now()
    hour = dt.hour
    if 5 <= hour < 11:
        return "morgen"
    elif 11 <= hour < 17:
        return "tag"
    elif 17 <= hour < 22:
        return "abend"
    return "nacht"


async def sleep(ms: float) -> None:
    await asyncio.sleep(ms / 1000)
