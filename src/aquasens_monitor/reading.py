from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict


@dataclass(frozen=True)
class SensorReading:
    """One sample from the water probe.

    Units: ph (dimensionless), tds (ppm), turbidity (NTU), temperature (°C).
    """
    ph: float
    tds: float
    turbidity: float
    temperature: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


# Value shown before the first sample arrives
DEFAULT_READING = SensorReading(ph=7.2, tds=120.0, turbidity=2.5, temperature=22.5)
