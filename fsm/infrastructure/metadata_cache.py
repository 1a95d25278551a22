"""Sharded, bounded cache of filesystem metadata snapshots.

Maps a canonical path to the last known ObjectInfo for it. Used by the
directory scanner's enrichment phase so revisiting a directory does not stat
every entry again.

Bounds enforced:
- per-shard entry quota (ceil(max_capacity / num_shards)), LRU eviction
- TTL: age since insertion
- TTI: age since last access
- aggregate approximate memory (max_memory_mb), global LRU eviction

Expired entries are never returned; `get` purges them on sight. Insert runs an
opportunistic sweep over the least recently used end of its shard. An optional
sweeper thread purges everything expired at a fixed interval.

Each shard has its own lock, entry map and counters, so lookups for paths in
different shards never contend. The memory pass takes one shard lock at a time.
"""

import logging
import os
import re
import sys
import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union
from pydantic import BaseModel
from fsm.config.models import CacheConfig
from fsm.domain.models import ObjectInfo

PathLike = Union[str, Path]

ENTRY_OVERHEAD_BYTES = 256  # dict slot, entry object, timestamps
_SLASHES = re.compile(r"/{2,}")


def canonical_key(path: PathLike) -> str:
    """Normalize a path into a cache key ("/a//b/" and "/a/b" share a key)."""
    text = os.fspath(path)
    if not text:
        raise ValueError("Invalid cache key: empty path")
    text = os.path.abspath(text).replace("\\", "/")
    return _SLASHES.sub("/", text)


def estimate_entry_size(key: str, info: ObjectInfo) -> int:
    """Approximate bytes held by one cache entry."""
    size = ENTRY_OVERHEAD_BYTES + sys.getsizeof(key) + sys.getsizeof(info.name)
    size += len(os.fspath(info.path))
    if info.extension:
        size += len(info.extension)
    return size


@dataclass
class CacheEntry:
    key: str
    info: ObjectInfo
    inserted_at: float
    last_access: float
    size_bytes: int
    shard_index: int


class CacheStatsSnapshot(BaseModel):
    hits: int = 0
    misses: int = 0
    loads: int = 0
    load_exceptions: int = 0
    evictions: int = 0
    expirations: int = 0
    total_load_time_s: float = 0.0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    @property
    def exception_rate(self) -> float:
        return self.load_exceptions / self.loads if self.loads else 0.0

    @property
    def average_load_penalty_s(self) -> float:
        return self.total_load_time_s / self.loads if self.loads else 0.0


class _Shard:
    """One independently locked partition. Callers hold `lock` for every method."""

    def __init__(self, index: int):
        self.index = index
        self.lock = threading.Lock()
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()  # LRU first
        self.bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def put(self, entry: CacheEntry) -> None:
        self.discard(entry.key)
        self.entries[entry.key] = entry
        self.bytes += entry.size_bytes

    def discard(self, key: str) -> Optional[CacheEntry]:
        entry = self.entries.pop(key, None)
        if entry is not None:
            self.bytes -= entry.size_bytes
        return entry

    def pop_lru(self) -> Optional[CacheEntry]:
        if not self.entries:
            return None
        _, entry = self.entries.popitem(last=False)
        self.bytes -= entry.size_bytes
        return entry

    def lru_head(self) -> Optional[CacheEntry]:
        for entry in self.entries.values():
            return entry
        return None


class MetadataCache:
    """Thread-safe sharded cache of ObjectInfo snapshots keyed by canonical path.

    Args:
        config: CacheConfig with capacity, TTL/TTI, memory budget, shard count.
        clock: Monotonic seconds source (injectable for tests).
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self.logger = logging.getLogger(__name__)
        self._clock = clock
        self._ttl = self.config.ttl.total_seconds()
        self._tti = self.config.tti.total_seconds()
        self._quota = self.config.shard_quota
        self._budget = self.config.max_memory_bytes
        self._stats_enabled = self.config.enable_stats
        self._shards = [_Shard(i) for i in range(self.config.num_shards)]

        self._memory_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._loads = 0
        self._load_exceptions = 0
        self._load_time = 0.0

        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()
        self._startup_time = clock()

    # ── Keys and shards ────────────────────────────────────────────────────────

    def shard_index(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8", "surrogateescape")) % len(self._shards)

    def _shard_for(self, path: PathLike) -> Tuple[str, _Shard]:
        key = canonical_key(path)
        return key, self._shards[self.shard_index(key)]

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self._ttl or now - entry.last_access >= self._tti

    # ── Core contract ──────────────────────────────────────────────────────────

    def get(self, path: PathLike) -> Optional[ObjectInfo]:
        """Return a copy of the cached snapshot, or None if absent or expired."""
        key, shard = self._shard_for(path)
        now = self._clock()
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is not None and self._is_expired(entry, now):
                shard.discard(key)
                entry = None
                if self._stats_enabled:
                    shard.expirations += 1
            if entry is None:
                if self._stats_enabled:
                    shard.misses += 1
                return None
            entry.last_access = now
            shard.entries.move_to_end(key)
            if self._stats_enabled:
                shard.hits += 1
            return entry.info.model_copy()

    def insert(self, path: PathLike, info: ObjectInfo) -> None:
        """Store a snapshot, then enforce shard quota, expiry and memory budget."""
        key, shard = self._shard_for(path)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            info=info.model_copy(),
            inserted_at=now,
            last_access=now,
            size_bytes=estimate_entry_size(key, info),
            shard_index=shard.index,
        )
        with shard.lock:
            shard.put(entry)
            self._sweep_shard(shard, now)
        if self.weighted_size() > self._budget:
            self._enforce_memory_budget()

    def invalidate(self, path: PathLike) -> bool:
        key, shard = self._shard_for(path)
        with shard.lock:
            return shard.discard(key) is not None

    def stats(self) -> CacheStatsSnapshot:
        if not self._stats_enabled:
            return CacheStatsSnapshot()
        snap = CacheStatsSnapshot()
        for shard in self._shards:
            with shard.lock:
                snap.hits += shard.hits
                snap.misses += shard.misses
                snap.evictions += shard.evictions
                snap.expirations += shard.expirations
        with self._load_lock:
            snap.loads = self._loads
            snap.load_exceptions = self._load_exceptions
            snap.total_load_time_s = self._load_time
        return snap

    # ── Eviction ───────────────────────────────────────────────────────────────

    def _drop_expired(self, shard: _Shard, keys: List[str]) -> None:
        for key in keys:
            shard.discard(key)
        if self._stats_enabled:
            shard.expirations += len(keys)

    def _sweep_shard(self, shard: _Shard, now: float) -> None:
        # TTI-expired entries sit at the LRU end, so the cheap pass stops at the first live head.
        while shard.entries:
            head = shard.lru_head()
            if head is None or not self._is_expired(head, now):
                break
            self._drop_expired(shard, [head.key])
        if len(shard.entries) > self._quota:
            # A recently read entry can be past its TTL anywhere in the order;
            # expired entries go before any live one is evicted.
            self._drop_expired(shard, [k for k, e in shard.entries.items() if self._is_expired(e, now)])
        while len(shard.entries) > self._quota:
            shard.pop_lru()
            if self._stats_enabled:
                shard.evictions += 1

    def _enforce_memory_budget(self) -> None:
        with self._memory_lock:
            evicted = 0
            while self.weighted_size() > self._budget:
                victim: Optional[_Shard] = None
                oldest = None
                for shard in self._shards:
                    with shard.lock:
                        head = shard.lru_head()
                        if head is not None and (oldest is None or head.last_access < oldest):
                            oldest = head.last_access
                            victim = shard
                if victim is None:
                    break
                with victim.lock:
                    if victim.pop_lru() is not None:
                        evicted += 1
                        if self._stats_enabled:
                            victim.evictions += 1
            if evicted:
                self.logger.debug(f"CACHE_MEMORY_EVICT: {evicted} entries (budget={self.config.max_memory_mb}MB)")

    def purge_expired(self) -> int:
        """Drop every expired entry in every shard. Returns how many were dropped."""
        now = self._clock()
        purged = 0
        for shard in self._shards:
            with shard.lock:
                expired = [k for k, e in shard.entries.items() if self._is_expired(e, now)]
                self._drop_expired(shard, expired)
                purged += len(expired)
        return purged

    # ── Convenience operations ────────────────────────────────────────────────

    def get_or_load(self, path: PathLike, loader: Callable[[], ObjectInfo]) -> ObjectInfo:
        """Return the cached snapshot or call `loader` and cache its result.

        Loader failures propagate and are not cached, so the next call retries.
        """
        cached = self.get(path)
        if cached is not None:
            return cached
        start = time.perf_counter()
        try:
            info = loader()
        except Exception:
            self._record_load(time.perf_counter() - start, success=False)
            raise
        self._record_load(time.perf_counter() - start, success=True)
        self.insert(path, info)
        return info

    def _record_load(self, duration: float, success: bool) -> None:
        if not self._stats_enabled:
            return
        with self._load_lock:
            self._loads += 1
            self._load_time += duration
            if not success:
                self._load_exceptions += 1

    def insert_batch(self, items: Iterable[Tuple[PathLike, ObjectInfo]]) -> None:
        for path, info in items:
            self.insert(path, info)

    def invalidate_entries_if(self, predicate: Callable[[str, ObjectInfo], bool]) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                doomed = [k for k, e in shard.entries.items() if predicate(k, e.info)]
                for key in doomed:
                    shard.discard(key)
                removed += len(doomed)
        return removed

    def invalidate_prefix(self, path: PathLike) -> int:
        """Drop `path` and everything below it (after a move/delete of a directory)."""
        root = canonical_key(path)
        prefix = root.rstrip("/") + "/"
        return self.invalidate_entries_if(lambda key, _info: key == root or key.startswith(prefix))

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
                shard.bytes = 0
        self.logger.info("Cache cleared")

    # ── Introspection ──────────────────────────────────────────────────────────

    def entry_count(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    def __len__(self) -> int:
        return self.entry_count()

    def weighted_size(self) -> int:
        """Approximate bytes held across all shards."""
        return sum(shard.bytes for shard in self._shards)

    def shard_sizes(self) -> List[int]:
        return [len(shard.entries) for shard in self._shards]

    def avg_entry_size(self) -> int:
        count = self.entry_count()
        return self.weighted_size() // count if count else 0

    def is_near_capacity(self) -> bool:
        return self.entry_count() > self.config.max_capacity * 0.9

    def health_check(self) -> None:
        """Log warnings for a low hit rate or memory overrun."""
        stats = self.stats()
        memory_mb = self.weighted_size() / (1024 * 1024)
        if stats.hit_rate < 0.5 and stats.hits + stats.misses > 1000:
            self.logger.warning(
                f"Low cache hit rate: {stats.hit_rate * 100:.2f}% (consider increasing cache size or TTL)"
            )
        if memory_mb > self.config.max_memory_mb:
            self.logger.warning(
                f"Cache memory usage ({memory_mb:.1f} MB) exceeds configured limit ({self.config.max_memory_mb} MB)"
            )
        if stats.exception_rate > 0.1 and stats.loads > 100:
            self.logger.warning(f"High cache load exception rate: {stats.exception_rate * 100:.2f}%")
        self.logger.debug(
            f"Cache health: entries={self.entry_count()}, memory={memory_mb:.1f}MB, "
            f"hit_rate={stats.hit_rate * 100:.2f}%, uptime={self._clock() - self._startup_time:.0f}s"
        )

    # ── Optional sweeper thread ────────────────────────────────────────────────

    def _sweep_loop(self, interval: float) -> None:
        while not self._sweeper_stop.wait(interval):
            purged = self.purge_expired()
            if purged:
                self.logger.debug(f"CACHE_SWEEP: purged {purged} expired entries")

    def start_sweeper(self, interval: float) -> None:
        """Starts a daemon thread that purges expired entries every `interval` seconds."""
        if self._sweeper is not None:
            return
        self._sweeper_stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval,), name="fsm-cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._sweeper_stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def __repr__(self) -> str:
        return (
            f"MetadataCache(entries={self.entry_count()}, shards={len(self._shards)}, "
            f"quota={self._quota}, max_memory_mb={self.config.max_memory_mb})"
        )
