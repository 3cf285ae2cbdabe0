from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type, TypeVar
from .frame import Rejected, decode
from .link import CHARACTERISTIC_UUID, NAME_PREFIXES, SERVICE_UUID, Link, LinkProvider
from ..errors import (
    CapabilityUnavailable, CharacteristicNotFound, DiscoveryFailed, LinkError,
    LinkEstablishmentFailed, ServiceNotFound, SubscriptionFailed,
)
from ..logs import NdjsonLogger
from ..reading import SensorReading

T = TypeVar("T")


class _Superseded(Exception):
    """A newer connect/disconnect replaced this connect attempt."""


class _Pending:
    """Link opened by a connect attempt that has not reached CONNECTED yet."""
    def __init__(self):
        self.link: Optional[Link] = None
        self.char: Any = None


class Status(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionState:
    status: Status
    device: Optional[str] = None  # only while CONNECTED
    error: Optional[str] = None   # only while FAILED

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls(Status.DISCONNECTED)

    @classmethod
    def connecting(cls) -> "ConnectionState":
        return cls(Status.CONNECTING)

    @classmethod
    def connected(cls, device: Optional[str]) -> "ConnectionState":
        return cls(Status.CONNECTED, device=device)

    @classmethod
    def failed(cls, error: str) -> "ConnectionState":
        return cls(Status.FAILED, error=error)

    @property
    def is_connected(self) -> bool:
        return self.status is Status.CONNECTED


class ConnectionManager:
    """Lifecycle of the single BLE link to a water probe.

    connect() runs capability check -> discovery -> link -> service ->
    characteristic -> subscribe. Any failure ends in FAILED with a message;
    nothing is raised to the caller. Decoded frames go to the observer passed
    to connect(); malformed frames are dropped.

    Callers must not start a second connect() before the first one reaches
    CONNECTED or FAILED; disconnect() may be called at any time and cancels
    an attempt in flight. The observer only goes live once the state is
    CONNECTED.
    """
    def __init__(self, provider: LinkProvider, *, service_uuid: str = SERVICE_UUID,
                 characteristic_uuid: str = CHARACTERISTIC_UUID,
                 name_prefixes: Sequence[str] = NAME_PREFIXES,
                 logger: Optional[NdjsonLogger] = None):
        self.provider = provider
        self.service_uuid = service_uuid
        self.characteristic_uuid = characteristic_uuid
        self.name_prefixes = tuple(name_prefixes)
        self.logger = logger
        self._state = ConnectionState.disconnected()
        self._listeners: List[Callable[[ConnectionState], None]] = []
        self._observer: Optional[Callable[[SensorReading], None]] = None
        self._link: Optional[Link] = None
        self._char: Any = None
        # Bumped on every connect/teardown; callbacks from older sessions are ignored
        self._session = 0
        self._lost_session: Optional[int] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def on_state(self, fn: Callable[[ConnectionState], None]):
        self._listeners.append(fn)

    def _log(self, obj: dict):
        if self.logger:
            self.logger.write(obj)

    def _set(self, st: ConnectionState):
        if st == self._state:
            return
        self._state = st
        self._log({"type": "status", "msg": "link_state", "data": {
            "status": st.status.value, "device": st.device, "error": st.error}})
        for fn in list(self._listeners):
            try:
                fn(st)
            except Exception as e:
                self._log({"type": "warn", "msg": "state_listener_error", "data": {
                    "status": st.status.value, "error": repr(e)}})

    def _check(self, sid: int):
        if sid != self._session:
            raise _Superseded()

    async def _step(self, err: Type[LinkError], aw: Awaitable[T]) -> T:
        try:
            return await aw
        except LinkError:
            raise
        except Exception as e:
            raise err(str(e) or type(e).__name__) from e

    async def connect(self, on_reading: Callable[[SensorReading], None]):
        self._session += 1
        sid = self._session
        self._lost_session = None
        self._set(ConnectionState.connecting())
        pending = _Pending()
        try:
            name = await self._establish(sid, pending)
        except _Superseded:
            # disconnect() ran meanwhile and already settled the state
            await self._close(pending.link, pending.char)
            return
        except LinkError as e:
            await self._close(pending.link, pending.char)
            if sid != self._session:
                return
            self._session += 1
            self._set(ConnectionState.failed(str(e) or type(e).__name__))
            return
        self._link, self._char = pending.link, pending.char
        self._set(ConnectionState.connected(name))
        # Frames that arrive before this point are dropped; the demo source is
        # already blocked once the observer goes live.
        if sid == self._session:
            self._observer = on_reading

    async def _establish(self, sid: int, pending: "_Pending") -> Optional[str]:
        try:
            ok = self.provider.available()
        except Exception:
            ok = False
        if not ok:
            raise CapabilityUnavailable("capability unavailable")

        peripheral = await self._step(DiscoveryFailed, self.provider.discover(self.name_prefixes))
        self._check(sid)
        if peripheral is None:
            raise DiscoveryFailed("connection failed")
        self._log({"type": "info", "msg": "peripheral_selected", "data": {
            "address": peripheral.address, "name": peripheral.name, "rssi": peripheral.rssi}})

        pending.link = await self._step(
            LinkEstablishmentFailed, self.provider.open(peripheral, lambda: self._on_lost(sid)))
        self._check(sid)
        svc = await self._step(ServiceNotFound, pending.link.resolve_service(self.service_uuid))
        self._check(sid)
        char = await self._step(
            CharacteristicNotFound, pending.link.resolve_characteristic(svc, self.characteristic_uuid))
        self._check(sid)

        await self._step(SubscriptionFailed, pending.link.subscribe(char, lambda data: self._on_frame(sid, data)))
        pending.char = char
        self._check(sid)
        if self._lost_session == sid:
            raise LinkEstablishmentFailed("link lost during setup")
        return peripheral.name

    def _on_frame(self, sid: int, data: bytes):
        if sid != self._session or self._observer is None:
            return
        res = decode(data)
        if isinstance(res, Rejected):
            self._log({"type": "debug", "msg": "frame_rejected", "data": {
                "reason": res.reason, "raw": bytes(data).hex()}})
            return
        self._observer(res.reading)

    def _on_lost(self, sid: int):
        if sid != self._session:
            return
        if not self._state.is_connected:
            # Dropped mid-handshake; connect() turns this into FAILED
            self._lost_session = sid
            return
        self._session += 1
        self._observer = None
        self._link = None
        self._char = None
        self._log({"type": "info", "msg": "link_lost", "data": {"device": self._state.device}})
        self._set(ConnectionState.disconnected())

    async def _close(self, link: Optional[Link], char: Any):
        if link is None:
            return
        if char is not None:
            try:
                await link.unsubscribe(char)
            except Exception as e:
                self._log({"type": "warn", "msg": "teardown_error", "data": {"step": "unsubscribe", "error": repr(e)}})
        try:
            await link.close()
        except Exception as e:
            self._log({"type": "warn", "msg": "teardown_error", "data": {"step": "close", "error": repr(e)}})

    async def disconnect(self):
        """Best-effort teardown; always ends DISCONNECTED, never raises.

        Also cancels a connect() still in flight: it closes whatever link it
        opened and leaves the state alone.
        """
        link, char = self._link, self._char
        self._session += 1
        self._observer = None
        self._link = None
        self._char = None
        self._set(ConnectionState.disconnected())
        await self._close(link, char)
