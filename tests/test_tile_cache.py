from parcel_tiles.tiles.cache import TileCache
from parcel_tiles.tiles.service import TileService


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeGenerator:
    def __init__(self, payload=b"\x1a\x02tile"):
        self.payload = payload
        self.calls = []
        self.holdings = None

    def generate(self, z, x, y):
        self.calls.append(("tile", z, x, y))
        return self.payload

    def generate_hybrid(self, z, x, y):
        self.calls.append(("hybrid", z, x, y))
        return self.payload


def test_second_request_is_a_hit():
    gen = FakeGenerator()
    service = TileService(gen, TileCache())
    first = service.tile(14, 100, 200)
    second = service.tile(14, 100, 200)
    assert first == second == gen.payload
    assert gen.calls == [("tile", 14, 100, 200)]
    stats = service.cache_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["keys"] == 1


def test_hybrid_and_plain_tiles_are_cached_apart():
    gen = FakeGenerator()
    service = TileService(gen, TileCache())
    service.tile(14, 1, 2)
    service.hybrid_tile(14, 1, 2)
    assert gen.calls == [("tile", 14, 1, 2), ("hybrid", 14, 1, 2)]


def test_empty_tiles_are_not_cached():
    gen = FakeGenerator(payload=None)
    service = TileService(gen, TileCache())
    assert service.tile(3, 1, 1) is None
    assert service.tile(3, 1, 1) is None
    assert len(gen.calls) == 2
    assert service.cache_stats()["keys"] == 0


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TileCache(ttl=60, clock=clock)
    cache.set((1, 0, 0), b"a")
    clock.now += 59
    assert cache.get((1, 0, 0)) == b"a"
    clock.now += 2
    assert cache.get((1, 0, 0)) is None
    assert cache.stats() == {"hits": 1, "misses": 1, "evictions": 0, "keys": 0}


def test_oldest_entry_is_evicted_when_full():
    clock = FakeClock()
    cache = TileCache(ttl=60, max_entries=2, clock=clock)
    for i in range(3):
        cache.set(("k", i), b"v")
        clock.now += 1
    stats = cache.stats()
    assert stats["evictions"] == 1
    assert stats["keys"] == 2
    assert cache.get(("k", 0)) is None
    assert cache.get(("k", 2)) == b"v"


def test_disabled_cache_always_misses():
    gen = FakeGenerator()
    service = TileService(gen, TileCache(enabled=False))
    service.tile(5, 1, 1)
    service.tile(5, 1, 1)
    assert len(gen.calls) == 2
    assert service.cache_stats()["hits"] == 0


def test_clear_resets_entries_and_stats():
    service = TileService(FakeGenerator(), TileCache())
    service.tile(1, 0, 0)
    service.tile(1, 0, 0)
    service.clear_cache()
    assert service.cache_stats() == {"hits": 0, "misses": 0, "evictions": 0, "keys": 0}


def test_rebuild_clears_cache(stores):
    from parcel_fixtures import smith_chain

    parcels, holdings = stores
    parcels.upsert_parcels(smith_chain())
    service = TileService(FakeGenerator(), TileCache(), holdings)
    service.tile(1, 0, 0)
    results = service.rebuild(["POLK"])
    assert results[0].clusters_created == 1
    assert service.cache_stats()["keys"] == 0
