"""Directory listing in two phases.

Phase 1 lists the directory with os.scandir and emits a ScanEntry per entry as
soon as it is classified, so a pane can render before any stat call finishes.
Phase 2 fills in size, mtime and (for directories) the child count, consulting
the MetadataCache first and falling back to lstat on a miss.

Each streaming scan gets a new generation number. Every ObjectInfo it produces
carries that number so consumers can discard output of superseded scans.
"""

import bisect
import itertools
import logging
import os
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union
from fsm.domain.models import (
    ObjectInfo,
    ObjectKind,
    ScanCompleted,
    ScanEnriched,
    ScanEntry,
    ScanError,
    ScanUpdate,
)
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import CancellationToken


def sort_key(info: ObjectInfo) -> Tuple[int, str]:
    """Directories first, then lexicographic by display name."""
    return (0 if info.is_dir else 1, info.name)


def sort_entries(entries: Iterable[ObjectInfo]) -> List[ObjectInfo]:
    return sorted(entries, key=sort_key)


def insert_sorted(entries: List[ObjectInfo], info: ObjectInfo) -> int:
    """Insert `info` at its sorted position, replacing an entry with the same path.

    An existing row whose kind changed (file replaced by a directory) sorts
    elsewhere; it is removed before the new snapshot is placed.

    Returns the index the entry ended up at.
    """
    key = sort_key(info)
    lo = bisect.bisect_left(entries, key, key=sort_key)
    hi = bisect.bisect_right(entries, key, lo=lo, key=sort_key)
    for i in range(lo, hi):
        if entries[i].path == info.path:
            entries[i] = info
            return i
    for i, entry in enumerate(entries):
        if entry.path == info.path:
            del entries[i]
            hi = bisect.bisect_right(entries, key, key=sort_key)
            break
    entries.insert(hi, info)
    return hi


def _cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.is_cancelled


class ScanStream:
    """Lazy, finite sequence of ScanUpdate records for one generation.

    Iterate it once. `generation` is known before iteration starts.
    """

    def __init__(self, path: Path, generation: int, updates: Iterator[ScanUpdate]):
        self.path = path
        self.generation = generation
        self._updates = updates
        self._started = False

    def __iter__(self) -> Iterator[ScanUpdate]:
        if self._started:
            raise RuntimeError(f"ScanStream for {self.path} (generation {self.generation}) is not restartable")
        self._started = True
        return self._updates


class DirectoryScanner:
    """Lists directories and enriches entries, optionally through a MetadataCache."""

    def __init__(self, cache: Optional[MetadataCache] = None, show_hidden: bool = False):
        self.cache = cache
        self.show_hidden = show_hidden
        self.logger = logging.getLogger(__name__)
        self._generations = itertools.count(1)
        self._generation_lock = threading.Lock()

    def next_generation(self) -> int:
        with self._generation_lock:
            return next(self._generations)

    # ── Phase 1: listing ───────────────────────────────────────────────────────

    def _classify(self, entry: os.DirEntry, generation: int) -> Union[ObjectInfo, ScanError, None]:
        """Build a listing-phase ObjectInfo, a ScanError, or None for a skipped hidden entry."""
        name = entry.name
        if not self.show_hidden and name.startswith("."):
            return None
        entry_path = Path(entry.path)
        try:
            if entry.is_symlink():
                kind = ObjectKind.SYMLINK
            elif entry.is_dir(follow_symlinks=False):
                kind = ObjectKind.DIRECTORY
            elif entry.is_file(follow_symlinks=False):
                kind = ObjectKind.FILE
            else:
                kind = ObjectKind.OTHER
        except OSError as e:
            return ScanError(path=entry_path, message=str(e))

        extension = None
        if kind != ObjectKind.DIRECTORY:
            extension = entry_path.suffix.lower().lstrip(".") or None
        return ObjectInfo(path=entry_path, name=name, kind=kind, extension=extension, generation=generation)

    def _iter_listing(self, it: Iterator[os.DirEntry], generation: int) -> Iterator[Union[ObjectInfo, ScanError]]:
        for entry in it:
            result = self._classify(entry, generation)
            if result is not None:
                yield result

    # ── Phase 2: enrichment ────────────────────────────────────────────────────

    @staticmethod
    def _count_children(path: Path) -> Optional[int]:
        try:
            with os.scandir(path) as it:
                return sum(1 for _ in it)
        except OSError:
            return None

    def load_metadata(self, info: ObjectInfo) -> ObjectInfo:
        """lstat `info.path` and return an enriched copy. Raises OSError."""
        st = os.lstat(info.path)
        return info.model_copy(
            update={
                "size": st.st_size,
                "modified": datetime.fromtimestamp(st.st_mtime),
                "items_count": self._count_children(info.path) if info.is_dir else None,
                "metadata_loaded": True,
            }
        )

    def _enrich_one(self, info: ObjectInfo) -> ObjectInfo:
        if self.cache is None:
            return self.load_metadata(info)
        loaded = self.cache.get_or_load(info.path, lambda: self.load_metadata(info))
        return loaded.model_copy(update={"generation": info.generation, "name": info.name})

    def enrich(self, entries: Iterable[ObjectInfo], cancel_token: Optional[CancellationToken] = None) -> Iterator[ScanUpdate]:
        """Yield ScanEnriched (or ScanError) for every entry still lacking size/mtime.

        Stops early, without a terminal record, once the token is cancelled.
        """
        for info in entries:
            if _cancelled(cancel_token):
                return
            if not info.needs_enrichment:
                continue
            try:
                yield ScanEnriched(info=self._enrich_one(info))
            except OSError as e:
                yield ScanError(path=info.path, message=e.strerror or str(e))

    # ── Public scans ───────────────────────────────────────────────────────────

    def scan_streaming(self, path: Union[str, Path], cancel_token: Optional[CancellationToken] = None) -> ScanStream:
        """Start a new generation and return its (not yet started) stream."""
        root = Path(path)
        generation = self.next_generation()
        return ScanStream(root, generation, self._stream(root, generation, cancel_token))

    def _stream(self, root: Path, generation: int, token: Optional[CancellationToken]) -> Iterator[ScanUpdate]:
        start = time.monotonic()
        self.logger.debug(f"SCAN_START: {root} (generation {generation})")
        try:
            it = os.scandir(root)
        except OSError as e:
            self.logger.warning(f"SCAN_ERROR: cannot open {root}: {e}")
            yield ScanError(path=root, message=e.strerror or str(e))
            yield ScanCompleted(count=0)
            return

        listed: List[ObjectInfo] = []
        with it:
            for result in self._iter_listing(it, generation):
                if _cancelled(token):
                    self.logger.debug(f"SCAN_CANCELLED: {root} (generation {generation}) during listing")
                    return
                if isinstance(result, ScanError):
                    yield result
                    continue
                listed.append(result)
                yield ScanEntry(info=result)

        yield from self.enrich(listed, token)
        if _cancelled(token):
            self.logger.debug(f"SCAN_CANCELLED: {root} (generation {generation}) during enrichment")
            return

        elapsed = time.monotonic() - start
        self.logger.debug(f"SCAN_DONE: {root} {len(listed)} entries in {elapsed * 1000:.1f}ms (generation {generation})")
        yield ScanCompleted(count=len(listed))

    def scan_dir(self, path: Union[str, Path]) -> List[ObjectInfo]:
        """List and enrich `path` in one go. Raises OSError if it cannot be opened."""
        root = Path(path)
        generation = self.next_generation()
        with os.scandir(root) as it:
            listed = [r for r in self._iter_listing(it, generation) if isinstance(r, ObjectInfo)]
        enriched = {u.info.path: u.info for u in self.enrich(listed) if isinstance(u, ScanEnriched)}
        return sort_entries(enriched.get(info.path, info) for info in listed)

    # ── Recursive size ─────────────────────────────────────────────────────────

    def calculate_size(self, info: ObjectInfo, cancel_token: Optional[CancellationToken] = None) -> Optional[ObjectInfo]:
        """Total size of everything under a directory. None if cancelled."""
        if not info.is_dir:
            return self.load_metadata(info)

        total = 0
        for root, dirs, files in os.walk(info.path):
            if _cancelled(cancel_token):
                self.logger.debug(f"SIZE_CANCELLED: {info.path}")
                return None
            for name in files:
                try:
                    total += os.lstat(os.path.join(root, name)).st_size
                except OSError:
                    continue

        modified = info.modified
        if modified is None:
            modified = datetime.fromtimestamp(os.lstat(info.path).st_mtime)
        updated = info.model_copy(
            update={
                "size": total,
                "size_calculated": True,
                "modified": modified,
                "items_count": self._count_children(info.path),
                "metadata_loaded": True,
            }
        )
        if self.cache is not None:
            self.cache.insert(info.path, updated)
        return updated
