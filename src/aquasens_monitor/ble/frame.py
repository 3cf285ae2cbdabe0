from __future__ import annotations
import math, re
from dataclasses import dataclass
from typing import Union
from ..reading import SensorReading

# Probe notify frames are ASCII text "ph,tds,turbidity,temperature"
_DELIM = ","
_FIELD_COUNT = 4
_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


@dataclass(frozen=True)
class Accepted:
    reading: SensorReading


@dataclass(frozen=True)
class Rejected:
    reason: str


FrameResult = Union[Accepted, Rejected]


def _field(text: str) -> float:
    s = text.strip()
    if not _NUMBER.fullmatch(s):
        raise ValueError(f"not a decimal number: {text!r}")
    v = float(s)
    if not math.isfinite(v):
        # e.g. a 400-digit integer overflows to inf
        raise ValueError(f"not finite: {text!r}")
    return v


def decode(frame: Union[bytes, bytearray, str]) -> FrameResult:
    """Decode one notification payload.

    Accepts exactly four comma separated decimal fields, in order:
      - ph: acidity (dimensionless)
      - tds: dissolved solids (ppm)
      - turbidity: NTU
      - temperature: Celsius

    Fields are positional only, so a firmware that reorders them still
    decodes. Returns Rejected for anything else; never raises.
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            text = bytes(frame).decode("utf-8")
        except UnicodeDecodeError:
            return Rejected("frame is not valid UTF-8")
    else:
        text = frame
    parts = text.split(_DELIM)
    if len(parts) != _FIELD_COUNT:
        return Rejected(f"expected {_FIELD_COUNT} fields, got {len(parts)}")
    try:
        ph, tds, turbidity, temperature = (_field(p) for p in parts)
    except ValueError as e:
        return Rejected(str(e))
    return Accepted(SensorReading(ph=ph, tds=tds, turbidity=turbidity, temperature=temperature))
