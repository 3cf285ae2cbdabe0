import asyncio

import pytest

from aquasens_monitor.ble.connection import ConnectionManager, ConnectionState, Status
from aquasens_monitor.ble.link import Peripheral
from aquasens_monitor.reading import SensorReading

from fakes import FakeProvider, ListLogger


def make(provider=None, logger=None):
    provider = provider or FakeProvider()
    mgr = ConnectionManager(provider, logger=logger)
    history = []
    mgr.on_state(history.append)
    return mgr, provider, history


def test_connect_success_path():
    mgr, provider, history = make()
    got = []
    asyncio.run(mgr.connect(got.append))

    assert [s.status for s in history] == [Status.CONNECTING, Status.CONNECTED]
    assert mgr.state == ConnectionState.connected("AquaSens-01")
    assert mgr.state.error is None

    provider.link.push(b"7.2,120,2.5,22.5")
    assert got == [SensorReading(7.2, 120.0, 2.5, 22.5)]


def test_malformed_frames_are_dropped_without_state_change():
    log = ListLogger()
    mgr, provider, history = make(logger=log)
    got = []
    asyncio.run(mgr.connect(got.append))
    before = list(history)

    provider.link.push(b"7.2,120,2.5")
    provider.link.push(b"a,120,2.5,22.5")
    provider.link.push(b"\xff\xfe")
    assert got == []
    assert history == before
    assert mgr.state.is_connected
    assert len(log.msgs("frame_rejected")) == 3


def test_discovery_only_offers_known_prefixes():
    provider = FakeProvider([
        Peripheral("00:01", "HeartRate", -30),
        Peripheral("00:02", None, -35),
        Peripheral("00:03", "ESP32-probe", -70),
    ])
    mgr, _, _ = make(provider)
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.device == "ESP32-probe"


def test_capability_unavailable_stops_before_discovery():
    provider = FakeProvider(available=False)
    mgr, _, history = make(provider)
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state == ConnectionState.failed("capability unavailable")
    assert provider.discover_calls == 0
    assert Status.CONNECTED not in [s.status for s in history]


@pytest.mark.parametrize("fail_at", ["cancel", "discover", "open"])
def test_failure_before_link_is_open(fail_at):
    provider = FakeProvider(fail_at=fail_at)
    mgr, _, history = make(provider)
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.status is Status.FAILED
    assert mgr.state.error
    assert mgr.state.device is None
    assert Status.CONNECTED not in [s.status for s in history]


def test_no_selection_message():
    mgr, _, _ = make(FakeProvider(peripherals=[]))
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state == ConnectionState.failed("connection failed")


@pytest.mark.parametrize("fail_at", ["service", "characteristic", "subscribe", "lost_during_setup"])
def test_failure_after_link_open_closes_link(fail_at):
    provider = FakeProvider(fail_at=fail_at)
    mgr, _, history = make(provider)
    got = []
    asyncio.run(mgr.connect(got.append))
    assert mgr.state.status is Status.FAILED
    assert mgr.state.error
    assert Status.CONNECTED not in [s.status for s in history]
    assert provider.link.closed
    provider.link.push_late(b"7.2,120,2.5,22.5")
    assert got == []


def test_retry_after_failure():
    provider = FakeProvider(fail_at="open")
    mgr, _, history = make(provider)
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.status is Status.FAILED
    provider.fail_at = None
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.is_connected
    assert [s.status for s in history] == [
        Status.CONNECTING, Status.FAILED, Status.CONNECTING, Status.CONNECTED]


def test_disconnect_is_idempotent_and_clears_device():
    mgr, provider, _ = make()
    got = []

    async def scenario():
        await mgr.connect(got.append)
        await mgr.disconnect()
        await mgr.disconnect()

    asyncio.run(scenario())
    assert mgr.state == ConnectionState.disconnected()
    assert mgr.state.device is None
    assert provider.link.unsubscribed and provider.link.closed
    assert provider.link.close_calls == 1
    # a notification already queued by the stack must not reach the observer
    provider.link.push_late(b"7.2,120,2.5,22.5")
    assert got == []


def test_teardown_errors_are_swallowed_and_logged():
    log = ListLogger()
    provider = FakeProvider(fail_unsubscribe=True, fail_close=True)
    mgr, _, _ = make(provider, log)

    async def scenario():
        await mgr.connect(lambda r: None)
        await mgr.disconnect()

    asyncio.run(scenario())
    assert mgr.state == ConnectionState.disconnected()
    # close still attempted after unsubscribe failed
    assert provider.link.close_calls == 1
    steps = [r["data"]["step"] for r in log.msgs("teardown_error")]
    assert steps == ["unsubscribe", "close"]


def test_link_loss_goes_to_disconnected_not_failed():
    mgr, provider, history = make()
    got = []
    asyncio.run(mgr.connect(got.append))
    link = provider.link
    link.drop()
    assert mgr.state == ConnectionState.disconnected()
    assert history[-1].status is Status.DISCONNECTED
    link.push_late(b"7.2,120,2.5,22.5")
    assert got == []
    # a second loss callback from the same session is ignored
    link.drop()
    assert history.count(ConnectionState.disconnected()) == 1


def test_peripheral_without_name():
    class Nameless(FakeProvider):
        async def discover(self, prefixes):
            return Peripheral("AA:BB:CC:DD:EE:FF")

    mgr, _, _ = make(Nameless())
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.is_connected
    assert mgr.state.device is None


def test_state_changes_are_logged():
    log = ListLogger()
    mgr, _, _ = make(logger=log)
    asyncio.run(mgr.connect(lambda r: None))
    states = [r["data"]["status"] for r in log.msgs("link_state")]
    assert states == ["connecting", "connected"]


def _connect_then_disconnect(mgr, got, wait_s=0.01):
    async def scenario():
        task = asyncio.create_task(mgr.connect(got.append))
        await asyncio.sleep(wait_s)
        await mgr.disconnect()
        await task

    asyncio.run(scenario())


def test_disconnect_cancels_connect_during_discovery():
    provider = FakeProvider(delays={"discover": 0.05})
    mgr, _, history = make(provider)
    got = []
    _connect_then_disconnect(mgr, got)
    assert mgr.state == ConnectionState.disconnected()
    assert Status.CONNECTED not in [s.status for s in history]
    # the attempt stopped before opening a link
    assert provider.links == []


def test_disconnect_cancels_connect_after_link_opened():
    provider = FakeProvider(delays={"service": 0.05})
    mgr, _, history = make(provider)
    got = []
    _connect_then_disconnect(mgr, got)
    assert mgr.state == ConnectionState.disconnected()
    assert Status.CONNECTED not in [s.status for s in history]
    link = provider.link
    assert link.closed and link.close_calls == 1
    link.push_late(b"7.2,120,2.5,22.5")
    link.drop()
    assert got == []
    assert mgr.state == ConnectionState.disconnected()


def test_connect_works_again_after_cancelled_attempt():
    provider = FakeProvider(delays={"discover": 0.05})
    mgr, _, _ = make(provider)
    got = []
    _connect_then_disconnect(mgr, got)
    provider.delays = {}
    asyncio.run(mgr.connect(got.append))
    assert mgr.state.is_connected
    provider.link.push(b"7.2,120,2.5,22.5")
    assert len(got) == 1


def test_raising_state_listener_does_not_escape_connect():
    log = ListLogger()
    mgr, provider, _ = make(logger=log)

    def broken(st):
        raise ValueError("listener bug")

    mgr.on_state(broken)
    asyncio.run(mgr.connect(lambda r: None))
    assert mgr.state.is_connected
    provider.link.drop()
    assert mgr.state == ConnectionState.disconnected()
    errs = log.msgs("state_listener_error")
    assert [e["data"]["status"] for e in errs] == ["connecting", "connected", "disconnected"]


def test_frames_before_connected_are_not_delivered():
    provider = FakeProvider(fail_at="frame_during_subscribe")
    seen_states = []
    mgr, _, _ = make(provider)
    got = []

    def observer(r):
        seen_states.append(mgr.state.status)
        got.append(r)

    asyncio.run(mgr.connect(observer))
    assert mgr.state.is_connected
    assert got == []
    provider.link.push(b"7.0,100,1.0,21.0")
    assert len(got) == 1
    assert seen_states == [Status.CONNECTED]
