from __future__ import annotations
import asyncio, pathlib, sys
from asyncio.subprocess import PIPE
from typing import Any, Callable, List, Optional, Sequence
from bleak import BleakClient, BleakScanner
from .link import Link, LinkProvider, Peripheral, matches_prefix
from ..errors import CharacteristicNotFound, ServiceNotFound

# One scanner at a time per process; BlueZ answers InProgress otherwise
scan_lock = asyncio.Lock()

Selector = Callable[[List[Peripheral]], Optional[Peripheral]]


async def bluez_scan_off():
    """Best-effort: stop a lingering bluetoothctl discovery before we scan.

    Linux only; a missing bluetoothctl is ignored.
    """
    if not sys.platform.startswith("linux"):
        return
    try:
        proc = await asyncio.create_subprocess_exec(
            "bluetoothctl", "--timeout", "1", "scan", "off", stdout=PIPE, stderr=PIPE
        )
        await proc.communicate()
    except OSError:
        pass


def select_target(target: Optional[str] = None) -> Selector:
    """Selector that prefers `target` (address or name) and otherwise the strongest signal."""
    def pick(candidates: List[Peripheral]) -> Optional[Peripheral]:
        if target:
            t = target.lower()
            for p in candidates:
                if p.address.lower() == t or t in (p.name or "").lower():
                    return p
            return None
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.rssi if p.rssi is not None else -999)
    return pick


class BleakLink(Link):
    def __init__(self, client: BleakClient, peripheral: Peripheral):
        self.client = client
        self.peripheral = peripheral

    async def resolve_service(self, uuid: str) -> Any:
        svc = self.client.services.get_service(uuid)
        if svc is None:
            raise ServiceNotFound(f"service {uuid} not found on {self.peripheral.address}")
        return svc

    async def resolve_characteristic(self, service: Any, uuid: str) -> Any:
        ch = service.get_characteristic(uuid)
        if ch is None:
            raise CharacteristicNotFound(f"characteristic {uuid} not found in service {service.uuid}")
        return ch

    async def subscribe(self, characteristic: Any, callback: Callable[[bytes], None]) -> None:
        def cb(_, data: bytearray):
            callback(bytes(data))
        await self.client.start_notify(characteristic, cb)

    async def unsubscribe(self, characteristic: Any) -> None:
        if self.client.is_connected:
            await self.client.stop_notify(characteristic)

    async def close(self) -> None:
        await self.client.disconnect()


class BleakLinkProvider(LinkProvider):
    def __init__(self, adapter: Optional[str] = "hci0", *, selector: Optional[Selector] = None,
                 scan_timeout_s: float = 8.0, connect_timeout_s: float = 20.0):
        self.adapter = adapter
        self.selector = selector or select_target()
        self.scan_timeout_s = scan_timeout_s
        self.connect_timeout_s = connect_timeout_s

    def available(self) -> bool:
        if not sys.platform.startswith("linux"):
            # CoreBluetooth / WinRT report a missing radio at connect time
            return True
        root = pathlib.Path("/sys/class/bluetooth")
        if not root.exists():
            return False
        if self.adapter:
            return (root / self.adapter).exists()
        return any(root.glob("hci*"))

    async def scan(self) -> List[Peripheral]:
        """All advertising peripherals seen during one scan window."""
        await bluez_scan_off()
        async with scan_lock:
            try:
                found = await BleakScanner.discover(timeout=self.scan_timeout_s, return_adv=True, adapter=self.adapter)
            except TypeError:
                # adapter kwarg differs across bleak versions / backends
                found = await BleakScanner.discover(timeout=self.scan_timeout_s, return_adv=True)
        out: List[Peripheral] = []
        for addr, (dev, adv) in found.items():
            out.append(Peripheral(address=addr, name=adv.local_name or dev.name, rssi=adv.rssi))
        out.sort(key=lambda p: p.rssi if p.rssi is not None else -999, reverse=True)
        return out

    async def discover(self, prefixes: Sequence[str]) -> Optional[Peripheral]:
        candidates = [p for p in await self.scan() if matches_prefix(p.name, prefixes)]
        return self.selector(candidates)

    async def open(self, peripheral: Peripheral, on_lost: Callable[[], None]) -> Link:
        client = BleakClient(
            peripheral.address,
            disconnected_callback=lambda _c: on_lost(),
            timeout=self.connect_timeout_s,
            adapter=self.adapter,
        )
        # Retry on transient InProgress
        last_err: Optional[Exception] = None
        for _ in range(3):
            try:
                await client.connect()
                last_err = None
                break
            except Exception as e:
                last_err = e
                if "InProgress" in str(e):
                    await asyncio.sleep(1.0)
                    continue
                break
        if last_err:
            raise last_err
        return BleakLink(client, peripheral)
