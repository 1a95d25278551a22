"""Unit tests for the sharded metadata cache."""
import threading
import time
from datetime import timedelta
import pytest
from conftest import FakeClock, make_info
from fsm.config.models import CacheConfig
from fsm.infrastructure.metadata_cache import MetadataCache, canonical_key


def test_canonical_key_normalizes_separators():
    assert canonical_key("/a//b/") == "/a/b"
    assert canonical_key("//a/./b") == "/a/b"
    assert canonical_key("/a\\b") == "/a/b"
    assert canonical_key("/a/b/../c") == "/a/c"


def test_canonical_key_rejects_empty_path():
    with pytest.raises(ValueError):
        canonical_key("")


def test_get_returns_inserted_snapshot_and_counts_hit(small_cache):
    small_cache.insert("/data/x.txt", make_info("/data/x.txt", size=5))

    got = small_cache.get("/data//x.txt")

    assert got is not None
    assert got.size == 5
    stats = small_cache.stats()
    assert stats.hits == 1
    assert stats.misses == 0


def test_missing_key_counts_miss(small_cache):
    assert small_cache.get("/nowhere") is None
    assert small_cache.stats().misses == 1


def test_values_are_copied_in_and_out(small_cache):
    original = make_info("/data/x.txt", size=1)
    small_cache.insert("/data/x.txt", original)
    original.size = 999

    first = small_cache.get("/data/x.txt")
    first.size = 12345

    assert small_cache.get("/data/x.txt").size == 1


def test_lru_evicts_least_recently_accessed_key(small_cache):
    """k1,k2 inserted, k1 read, k3 inserted and read: k2 goes first."""
    small_cache.insert("/k1", make_info("/k1"))
    small_cache.insert("/k2", make_info("/k2"))
    assert small_cache.get("/k1") is not None
    small_cache.insert("/k3", make_info("/k3"))
    assert small_cache.get("/k3") is not None

    assert small_cache.get("/k2") is None
    assert small_cache.get("/k1") is not None
    assert small_cache.entry_count() == 2
    assert small_cache.stats().evictions == 1


def test_shard_quota_holds_after_every_insert(clock):
    config = CacheConfig(max_capacity=8, num_shards=4)
    cache = MetadataCache(config, clock=clock)
    assert config.shard_quota == 2

    for i in range(50):
        cache.insert(f"/dir/file{i}", make_info(f"/dir/file{i}"))
        assert all(size <= config.shard_quota for size in cache.shard_sizes())

    assert cache.entry_count() <= 8


def test_shard_index_is_deterministic(clock):
    a = MetadataCache(CacheConfig(num_shards=16), clock=clock)
    b = MetadataCache(CacheConfig(num_shards=16), clock=clock)
    for path in ["/a", "/b/c", "/very/long/path/name.txt"]:
        key = canonical_key(path)
        assert a.shard_index(key) == b.shard_index(key)


def test_ttl_expiry_is_idempotent(clock):
    config = CacheConfig(ttl=timedelta(seconds=10), tti=timedelta(seconds=100), num_shards=1)
    cache = MetadataCache(config, clock=clock)
    cache.insert("/x", make_info("/x"))

    clock.advance(9)
    assert cache.get("/x") is not None
    clock.advance(1)
    assert cache.get("/x") is None
    assert cache.get("/x") is None
    assert cache.stats().expirations == 1


def test_tti_expiry_refreshed_by_reads(clock):
    config = CacheConfig(ttl=timedelta(seconds=100), tti=timedelta(seconds=5), num_shards=1)
    cache = MetadataCache(config, clock=clock)
    cache.insert("/x", make_info("/x"))

    clock.advance(4)
    assert cache.get("/x") is not None
    clock.advance(4)
    assert cache.get("/x") is not None
    clock.advance(5)
    assert cache.get("/x") is None


def test_insert_sweeps_expired_entries_in_shard(clock):
    config = CacheConfig(ttl=timedelta(seconds=10), tti=timedelta(seconds=10), num_shards=1)
    cache = MetadataCache(config, clock=clock)
    cache.insert("/old", make_info("/old"))
    clock.advance(11)

    cache.insert("/new", make_info("/new"))

    assert cache.entry_count() == 1
    assert cache.stats().expirations == 1


def test_ttl_expired_entry_is_dropped_before_live_lru_victim(clock):
    config = CacheConfig(max_capacity=2, num_shards=1, ttl=timedelta(seconds=10), tti=timedelta(seconds=60))
    cache = MetadataCache(config, clock=clock)
    cache.insert("/k1", make_info("/k1"))
    clock.advance(1)
    cache.insert("/k2", make_info("/k2"))
    clock.advance(8)
    assert cache.get("/k1") is not None  # k1 is now most recently used
    clock.advance(1.5)

    cache.insert("/k3", make_info("/k3"))

    assert cache.get("/k2") is not None
    assert cache.get("/k3") is not None
    assert cache.entry_count() == 2
    assert cache.stats().expirations == 1
    assert cache.stats().evictions == 0


def test_memory_budget_evicts_globally_oldest(clock):
    config = CacheConfig(max_capacity=100_000, max_memory_mb=1, num_shards=4)
    cache = MetadataCache(config, clock=clock)

    for i in range(6000):
        clock.advance(0.001)
        cache.insert(f"/budget/entry_{i:05d}.bin", make_info(f"/budget/entry_{i:05d}.bin"))

    assert cache.weighted_size() <= config.max_memory_bytes
    assert cache.entry_count() < 6000
    assert cache.get("/budget/entry_00000.bin") is None
    assert cache.get("/budget/entry_05999.bin") is not None


def test_stats_disabled_touches_no_counters(clock):
    cache = MetadataCache(CacheConfig(enable_stats=False, num_shards=1), clock=clock)
    cache.insert("/x", make_info("/x"))
    cache.get("/x")
    cache.get("/y")

    stats = cache.stats()
    assert stats.hits == 0
    assert stats.misses == 0
    assert stats.hit_rate == 0.0


def test_get_or_load_caches_success_only(small_cache):
    calls = []

    def loader():
        calls.append(1)
        return make_info("/loaded", size=7)

    assert small_cache.get_or_load("/loaded", loader).size == 7
    assert small_cache.get_or_load("/loaded", loader).size == 7
    assert len(calls) == 1

    def failing():
        raise OSError("gone")

    with pytest.raises(OSError):
        small_cache.get_or_load("/broken", failing)
    assert small_cache.get("/broken") is None

    stats = small_cache.stats()
    assert stats.loads == 2
    assert stats.load_exceptions == 1


def test_invalidation_helpers(clock):
    cache = MetadataCache(CacheConfig(num_shards=4), clock=clock)
    for path in ["/p/a", "/p/b", "/p/sub/c", "/q/d"]:
        cache.insert(path, make_info(path))

    assert cache.invalidate("/p/a") is True
    assert cache.invalidate("/p/a") is False
    assert cache.invalidate_prefix("/p") == 2
    assert cache.entry_count() == 1
    assert cache.invalidate_entries_if(lambda key, info: info.name == "d") == 1
    assert cache.entry_count() == 0


def test_clear_and_purge_expired(clock):
    cache = MetadataCache(CacheConfig(ttl=timedelta(seconds=5), tti=timedelta(seconds=5), num_shards=2), clock=clock)
    cache.insert_batch([(f"/f{i}", make_info(f"/f{i}")) for i in range(4)])
    assert cache.entry_count() == 4
    assert cache.weighted_size() > 0
    assert cache.avg_entry_size() > 0

    clock.advance(6)
    assert cache.purge_expired() == 4
    assert cache.entry_count() == 0

    cache.insert("/again", make_info("/again"))
    cache.clear()
    assert cache.entry_count() == 0
    assert cache.weighted_size() == 0


def test_is_near_capacity(clock):
    cache = MetadataCache(CacheConfig(max_capacity=10, num_shards=1), clock=clock)
    for i in range(9):
        cache.insert(f"/n{i}", make_info(f"/n{i}"))
    assert not cache.is_near_capacity()
    cache.insert("/n9", make_info("/n9"))
    assert cache.is_near_capacity()


def test_health_check_warns_on_low_hit_rate(clock, caplog):
    cache = MetadataCache(CacheConfig(num_shards=1), clock=clock)
    for i in range(1001):
        cache.get(f"/miss{i}")

    with caplog.at_level("WARNING", logger="fsm.infrastructure.metadata_cache"):
        cache.health_check()

    assert "Low cache hit rate" in caplog.text


def test_sweeper_purges_expired_entries():
    clock = FakeClock()
    cache = MetadataCache(CacheConfig(ttl=timedelta(seconds=1), tti=timedelta(seconds=1), num_shards=2), clock=clock)
    cache.insert("/s", make_info("/s"))
    clock.advance(2)

    cache.start_sweeper(0.01)
    try:
        deadline = time.monotonic() + 2.0
        while cache.entry_count() and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        cache.stop_sweeper()

    assert cache.entry_count() == 0


def test_concurrent_access_stays_consistent(clock):
    config = CacheConfig(max_capacity=256, num_shards=8)
    cache = MetadataCache(config, clock=clock)
    errors = []

    def worker(n):
        try:
            for i in range(300):
                path = f"/t{n}/f{i % 50}"
                cache.insert(path, make_info(path, size=i))
                cache.get(path)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    assert cache.entry_count() <= config.shard_quota * config.num_shards
    assert all(size <= config.shard_quota for size in cache.shard_sizes())
