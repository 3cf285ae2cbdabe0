import asyncio
import random

from aquasens_monitor.demo import DemoGenerator


def test_samples_stay_in_range():
    gen = DemoGenerator(rng=random.Random(1))
    for _ in range(1000):
        s = gen.sample()
        assert 6.5 <= s.ph < 8.5
        assert 80 <= s.tds < 280 and s.tds == int(s.tds)
        assert 1.0 <= s.turbidity < 9.0
        assert 20.0 <= s.temperature < 28.0
        assert round(s.ph, 1) == s.ph


def test_seeded_sequences_repeat():
    a = DemoGenerator(seed=42)
    b = DemoGenerator(rng=random.Random(42))
    assert [a.sample() for _ in range(10)] == [b.sample() for _ in range(10)]


def test_tick_delivers_to_observer():
    got = []
    gen = DemoGenerator(seed=3)
    gen.on_reading(got.append)
    r = gen.tick()
    assert r is not None and got == [r]


def test_no_delivery_while_blocked_or_disabled():
    got = []
    connected = True
    gen = DemoGenerator(seed=3, blocked=lambda: connected)
    gen.on_reading(got.append)
    for _ in range(100):
        assert gen.tick() is None
    assert got == []

    connected = False
    gen.disable()
    assert gen.tick() is None
    gen.enable()
    assert gen.tick() is not None
    assert len(got) == 1


def test_periodic_loop_respects_block():
    got = []
    state = {"connected": True}
    gen = DemoGenerator(0.01, seed=5, blocked=lambda: state["connected"])
    gen.on_reading(got.append)

    async def scenario():
        gen.start()
        await asyncio.sleep(0.1)
        assert got == []
        state["connected"] = False
        await asyncio.sleep(0.1)
        await gen.stop()

    asyncio.run(scenario())
    assert len(got) >= 1
