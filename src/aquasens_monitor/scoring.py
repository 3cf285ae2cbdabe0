from __future__ import annotations
from enum import Enum
from typing import List, Tuple
from .reading import SensorReading

BASELINE = 100


class Band(str, Enum):
    SAFE = "safe"
    WASHING_ONLY = "washing_only"
    UNSAFE = "unsafe"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Band.SAFE: "SAFE TO DRINK",
    Band.WASHING_ONLY: "WASHING ONLY",
    Band.UNSAFE: "UNSAFE",
}


def deductions(r: SensorReading) -> List[Tuple[str, int]]:
    """Return the (dimension, points) deductions that apply to a reading.

    Each dimension contributes at most one entry; the inner band is only
    checked when the outer one did not match.
    """
    out: List[Tuple[str, int]] = []
    if r.ph < 6.5 or r.ph > 8.5:
        out.append(("ph", 20))
    elif r.ph < 7.0 or r.ph > 8.0:
        out.append(("ph", 10))

    if r.tds > 600:
        out.append(("tds", 30))
    elif r.tds > 300:
        out.append(("tds", 15))

    if r.turbidity > 10:
        out.append(("turbidity", 30))
    elif r.turbidity > 5:
        out.append(("turbidity", 15))

    if r.temperature < 10 or r.temperature > 30:
        out.append(("temperature", 10))
    return out


def score(r: SensorReading) -> int:
    """Purity score in [0, 100]: baseline minus all deductions, clamped once."""
    total = BASELINE - sum(points for _, points in deductions(r))
    return max(0, min(BASELINE, total))


def band(s: int) -> Band:
    if s >= 80:
        return Band.SAFE
    if s >= 50:
        return Band.WASHING_ONLY
    return Band.UNSAFE
