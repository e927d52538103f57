import asyncio

from pushpipe.services.dedup import MemoryDedupWindow, RedisDedupWindow

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

def test_window_expires():
    clock = FakeClock()
    window = MemoryDedupWindow(window_seconds=60, clock=clock)
    key = ("site", "main", "abc")

    async def scenario():
        results = [await window.seen(key), await window.seen(key)]
        clock.now = 61
        results.append(await window.seen(key))
        return results

    assert asyncio.run(scenario()) == [False, True, False]

def test_window_is_bounded():
    window = MemoryDedupWindow(window_seconds=3600, max_entries=2)

    async def scenario():
        for sha in ("a", "b", "c"):
            await window.seen(("site", "main", sha))
        return await window.seen(("site", "main", "a"))

    # Oldest entry was evicted to respect the size bound
    assert asyncio.run(scenario()) is False
    assert len(window) == 2

class FakeRedis:
    def __init__(self):
        self.keys = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.keys:
            return None
        self.keys[key] = (value, ex)
        return True

def test_redis_window_uses_set_nx():
    client = FakeRedis()
    window = RedisDedupWindow("redis://unused", window_seconds=120, client=client)

    async def scenario():
        return [await window.seen(("site", "main", "abc")), await window.seen(("site", "main", "abc"))]

    assert asyncio.run(scenario()) == [False, True]
    [(value, ttl)] = client.keys.values()
    assert ttl == 120
