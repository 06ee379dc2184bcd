"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class Reading:
    """A single energy-consumption sample in kW.

    ``id`` is assigned by the store on append and is ``None`` before that.
    """

    timestamp: str
    consumption: float
    id: Optional[int] = None

    def as_pair(self) -> tuple[str, float]:
        return (self.timestamp, self.consumption)
