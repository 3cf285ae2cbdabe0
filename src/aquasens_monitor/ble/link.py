from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

# Probe firmware exposes a single notify characteristic under a vendor service
SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
CHARACTERISTIC_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"
NAME_PREFIXES = ("ESP32", "AquaSens")


@dataclass(frozen=True)
class Peripheral:
    address: str
    name: Optional[str] = None
    rssi: Optional[int] = None


def matches_prefix(name: Optional[str], prefixes: Sequence[str]) -> bool:
    return bool(name) and any(name.startswith(p) for p in prefixes)


class Link(ABC):
    """An open connection to one peripheral."""

    peripheral: Peripheral

    @abstractmethod
    async def resolve_service(self, uuid: str) -> Any:
        """Return a service handle; raise ServiceNotFound if absent."""

    @abstractmethod
    async def resolve_characteristic(self, service: Any, uuid: str) -> Any:
        """Return a characteristic handle; raise CharacteristicNotFound if absent."""

    @abstractmethod
    async def subscribe(self, characteristic: Any, callback: Callable[[bytes], None]) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self, characteristic: Any) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class LinkProvider(ABC):
    """Platform BLE capability the connection manager is written against."""

    @abstractmethod
    def available(self) -> bool:
        """Synchronous check that the platform can do BLE at all."""

    @abstractmethod
    async def discover(self, prefixes: Sequence[str]) -> Optional[Peripheral]:
        """Return the selected peripheral, or None when nothing was chosen."""

    @abstractmethod
    async def open(self, peripheral: Peripheral, on_lost: Callable[[], None]) -> Link:
        """Connect; `on_lost` fires if the link later drops on its own."""
