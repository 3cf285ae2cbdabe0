from __future__ import annotations
import asyncio, random
from typing import Any, Dict, List, Optional
from .channel import ReadingQueue
from .config import AppCfg, load_config
from .demo import DemoGenerator
from .logs import NdjsonLogger
from .reading import DEFAULT_READING, SensorReading
from .scoring import Band, band, deductions, score
from .ble.bleak_link import BleakLinkProvider, select_target
from .ble.connection import ConnectionManager, ConnectionState
from .ble.link import LinkProvider


class Monitor:
    """Keeps the latest reading from whichever source is active and scores it.

    Live link and demo generator share one observer (`_on_reading`); the demo
    generator is switched off as soon as the link reports CONNECTED, so only
    one of them feeds readings at a time.
    """
    def __init__(self, cfg: AppCfg, provider: Optional[LinkProvider] = None, *,
                 rng: Optional[random.Random] = None, logger: Optional[NdjsonLogger] = None):
        self.cfg = cfg
        if logger is None:
            logger = NdjsonLogger(cfg.logging.dir, cfg.logging.file_prefix,
                                  dual_file=cfg.logging.dual_file, debug_subdir=cfg.logging.debug_subdir)
            logger.mode = cfg.logging.mode
            if cfg.logging.verbose_whitelist:
                logger.verbose_whitelist = set(cfg.logging.verbose_whitelist)
        self.logger = logger
        if provider is None:
            provider = BleakLinkProvider(
                cfg.link.adapter,
                selector=select_target(cfg.link.target),
                scan_timeout_s=cfg.link.scan_timeout_sec,
                connect_timeout_s=cfg.link.connect_timeout_sec,
            )
        self.link = ConnectionManager(
            provider,
            service_uuid=cfg.link.service_uuid,
            characteristic_uuid=cfg.link.characteristic_uuid,
            name_prefixes=cfg.link.name_prefixes,
            logger=self.logger,
        )
        self.link.on_state(self._on_state)
        self.demo = DemoGenerator(
            cfg.demo.period_sec,
            rng=rng,
            seed=cfg.demo.seed,
            blocked=lambda: self.link.state.is_connected,
            enabled=cfg.demo.enabled,
        )
        self.demo.on_reading(self._on_reading)
        self.latest: SensorReading = DEFAULT_READING
        self.testing = False
        self._was_connected = False
        self._queues: List[ReadingQueue] = []
        self._status_task: Optional[asyncio.Task] = None

    # ---------- reading path ----------
    @property
    def score(self) -> int:
        return score(self.latest)

    @property
    def band(self) -> Band:
        return band(self.score)

    @property
    def source(self) -> Optional[str]:
        if self.link.state.is_connected:
            return "live"
        if self.demo.active:
            return "demo"
        return None

    def _on_reading(self, r: SensorReading):
        self.latest = r
        s = score(r)
        self.logger.write({"type": "event", "msg": "reading", "data": {
            **r.as_dict(),
            "score": s,
            "band": band(s).value,
            "deductions": dict(deductions(r)),
            "source": self.source,
        }})
        for q in self._queues:
            q.put(r)

    def subscribe(self, maxsize: int = 16) -> ReadingQueue:
        q = ReadingQueue(maxsize)
        self._queues.append(q)
        return q

    # ---------- link ----------
    def _on_state(self, st: ConnectionState):
        if st.is_connected:
            self._was_connected = True
            if self.demo.enabled:
                self.demo.disable()
                self.logger.write({"type": "info", "msg": "demo_mode", "data": {"enabled": False, "reason": "connected"}})
        elif self._was_connected:
            self._was_connected = False
            if self.cfg.demo.resume_on_disconnect:
                self.demo.enable()
                self.logger.write({"type": "info", "msg": "demo_mode", "data": {"enabled": True, "reason": "disconnected"}})

    async def connect(self):
        await self.link.connect(self._on_reading)

    async def disconnect(self):
        await self.link.disconnect()

    async def toggle_connection(self):
        if self.link.state.is_connected:
            await self.disconnect()
        else:
            await self.connect()

    def set_demo_mode(self, on: bool) -> bool:
        """Switch demo mode; refused while a live link is connected."""
        if self.link.state.is_connected:
            return False
        if on:
            self.demo.enable()
        else:
            self.demo.disable()
        self.logger.write({"type": "info", "msg": "demo_mode", "data": {"enabled": bool(on), "reason": "user"}})
        return True

    async def start_test(self, delay_s: float = 2.0) -> Optional[SensorReading]:
        """Simulated water test: after `delay_s`, take one demo sample if demo mode applies."""
        if self.testing:
            return None
        self.testing = True
        try:
            await asyncio.sleep(delay_s)
        finally:
            self.testing = False
        return self.demo.tick()

    def snapshot(self) -> Dict[str, Any]:
        st = self.link.state
        s = self.score
        return {
            "status": st.status.value,
            "device": st.device,
            "error": st.error,
            "reading": self.latest.as_dict(),
            "score": s,
            "band": band(s).value,
            "label": band(s).label,
            "demo": self.demo.enabled,
            "source": self.source,
        }

    # ---------- lifecycle ----------
    async def _status_loop(self, every_s: float):
        try:
            while True:
                await asyncio.sleep(every_s)
                self.logger.write({"type": "status", "msg": "alive", "data": self.snapshot()})
        except asyncio.CancelledError:
            return

    def start(self):
        self.demo.start()
        every = self.cfg.logging.status_every_sec
        if every > 0 and self._status_task is None:
            self._status_task = asyncio.create_task(self._status_loop(every))

    async def stop(self):
        await self.demo.stop()
        if self._status_task:
            self._status_task.cancel()
            try:
                await self._status_task
            except asyncio.CancelledError:
                pass
            self._status_task = None
        await self.link.disconnect()
        for q in self._queues:
            q.close()
        self._queues.clear()


def format_reading(r: SensorReading, s: int) -> str:
    return (f"pH {r.ph:.1f} | TDS {r.tds:.0f} ppm | turbidity {r.turbidity:.1f} NTU | "
            f"{r.temperature:.1f} °C | score {s:3d} {band(s).label}")


async def run(config_path: Optional[str], *, connect: bool = False):
    cfg = load_config(config_path)
    mon = Monitor(cfg)
    q = mon.subscribe()
    mon.start()

    async def _echo():
        async for r in q:
            print(f"[{mon.source or '-'}] {format_reading(r, score(r))}")

    echo = asyncio.create_task(_echo())
    try:
        if connect:
            await mon.connect()
            st = mon.link.state
            if st.is_connected:
                print(f"[i] connected to {st.device or '(unnamed)'}")
            else:
                print(f"[!] {st.error}")
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        await mon.stop()
        await echo
        mon.logger.close()
