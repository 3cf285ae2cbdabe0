from __future__ import annotations
import asyncio, random
from typing import Callable, Optional
from .reading import SensorReading


class DemoGenerator:
    """Synthetic probe that stands in for a live link.

    Every `period_s` it delivers one plausible reading to the registered
    observer, unless it is disabled or `blocked()` reports a live link.
    Value ranges (lower bound inclusive, upper exclusive):
      - ph 6.5 .. 8.5, one decimal
      - tds 80 .. 280 ppm, integral
      - turbidity 1 .. 9 NTU, one decimal
      - temperature 20 .. 28 °C, one decimal
    """
    def __init__(self, period_s: float = 5.0, *, rng: Optional[random.Random] = None,
                 seed: Optional[int] = None, blocked: Optional[Callable[[], bool]] = None,
                 enabled: bool = True):
        self.period_s = float(period_s)
        self.rng = rng if rng is not None else random.Random(seed)
        self._blocked = blocked or (lambda: False)
        self._enabled = enabled
        self._on_reading: Optional[Callable[[SensorReading], None]] = None
        self._task: Optional[asyncio.Task] = None

    def on_reading(self, fn: Callable[[SensorReading], None]):
        self._on_reading = fn

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self):
        self._enabled = True

    def disable(self):
        self._enabled = False

    @property
    def active(self) -> bool:
        return self._enabled and not self._blocked()

    def _tenths(self, lo: float, span: float) -> float:
        return round(lo + self.rng.randrange(int(span * 10)) / 10.0, 1)

    def sample(self) -> SensorReading:
        return SensorReading(
            ph=self._tenths(6.5, 2.0),
            tds=float(self.rng.randrange(80, 280)),
            turbidity=self._tenths(1.0, 8.0),
            temperature=self._tenths(20.0, 8.0),
        )

    def tick(self) -> Optional[SensorReading]:
        """Deliver one reading now if the generator is active."""
        if not self.active:
            return None
        r = self.sample()
        if self._on_reading:
            self._on_reading(r)
        return r

    async def run(self):
        try:
            while True:
                await asyncio.sleep(self.period_s)
                self.tick()
        except asyncio.CancelledError:
            return

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
