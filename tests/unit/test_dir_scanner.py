"""Unit tests for DirectoryScanner."""
import os
import pytest
from conftest import make_info
from fsm.config.models import CacheConfig
from fsm.domain.models import ObjectKind, ScanCompleted, ScanEnriched, ScanEntry, ScanError
from fsm.infrastructure.dir_scanner import DirectoryScanner, insert_sorted, sort_entries
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import CancellationToken


def test_scan_dir_orders_directories_first_then_by_name(sample_tree):
    scanner = DirectoryScanner()

    entries = scanner.scan_dir(sample_tree)

    assert [e.name for e in entries] == ["A", "a.txt", "b.txt"]
    assert entries[0].kind == ObjectKind.DIRECTORY
    assert all(e.metadata_loaded for e in entries)
    assert entries[0].items_count == 1
    assert entries[1].extension == "txt"


def test_scan_dir_includes_hidden_when_enabled(sample_tree):
    entries = DirectoryScanner(show_hidden=True).scan_dir(sample_tree)
    assert [e.name for e in entries] == ["A", ".hidden", "a.txt", "b.txt"]


def test_scan_dir_raises_for_missing_directory(tmp_path):
    with pytest.raises(OSError):
        DirectoryScanner().scan_dir(tmp_path / "missing")


def test_streaming_scan_lists_then_enriches_then_completes(sample_tree):
    scanner = DirectoryScanner()
    stream = scanner.scan_streaming(sample_tree)

    updates = list(stream)

    entries = [u for u in updates if isinstance(u, ScanEntry)]
    enriched = [u for u in updates if isinstance(u, ScanEnriched)]
    assert len(entries) == 3
    assert len(enriched) == 3
    assert updates.index(enriched[0]) > updates.index(entries[-1])
    assert isinstance(updates[-1], ScanCompleted)
    assert updates[-1].count == 3
    assert all(u.info.generation == stream.generation for u in entries + enriched)
    assert all(u.info.size is not None for u in enriched)


def test_each_stream_gets_a_new_generation(sample_tree):
    scanner = DirectoryScanner()
    first = scanner.scan_streaming(sample_tree)
    second = scanner.scan_streaming(sample_tree)
    assert second.generation > first.generation


def test_stream_is_not_restartable(sample_tree):
    stream = DirectoryScanner().scan_streaming(sample_tree)
    list(stream)
    with pytest.raises(RuntimeError):
        iter(stream)


def test_unreadable_directory_yields_error_then_empty_completion(tmp_path):
    missing = tmp_path / "missing"

    updates = list(DirectoryScanner().scan_streaming(missing))

    assert len(updates) == 2
    assert isinstance(updates[0], ScanError)
    assert updates[0].path == missing
    assert updates[1] == ScanCompleted(count=0)


def test_cancelled_stream_ends_without_completion(sample_tree):
    token = CancellationToken()
    token.cancel()

    updates = list(DirectoryScanner().scan_streaming(sample_tree, cancel_token=token))

    assert not any(isinstance(u, ScanCompleted) for u in updates)


def test_enrichment_goes_through_cache(sample_tree, clock):
    cache = MetadataCache(CacheConfig(num_shards=4), clock=clock)
    scanner = DirectoryScanner(cache)

    list(scanner.scan_streaming(sample_tree))
    assert cache.entry_count() == 3
    list(scanner.scan_streaming(sample_tree))

    stats = cache.stats()
    assert stats.hits == 3
    assert stats.loads == 3


def test_enrich_reports_vanished_entries(tmp_path):
    ghost = make_info(tmp_path / "ghost.txt")

    updates = list(DirectoryScanner().enrich([ghost]))

    assert len(updates) == 1
    assert isinstance(updates[0], ScanError)


def test_insert_sorted_places_and_replaces(tmp_path):
    entries = sort_entries([make_info(tmp_path / "b.txt"), make_info(tmp_path / "d.txt")])

    index = insert_sorted(entries, make_info(tmp_path / "c.txt"))
    assert index == 1
    index = insert_sorted(entries, make_info(tmp_path / "Z", kind=ObjectKind.DIRECTORY))
    assert index == 0
    index = insert_sorted(entries, make_info(tmp_path / "c.txt", size=42))

    assert index == 2
    assert [e.name for e in entries] == ["Z", "b.txt", "c.txt", "d.txt"]
    assert entries[2].size == 42


def test_insert_sorted_moves_entry_whose_kind_changed(tmp_path):
    entries = sort_entries([make_info(tmp_path / "a.txt"), make_info(tmp_path / "item"), make_info(tmp_path / "z.txt")])

    index = insert_sorted(entries, make_info(tmp_path / "item", kind=ObjectKind.DIRECTORY))

    assert index == 0
    assert [e.name for e in entries] == ["item", "a.txt", "z.txt"]
    assert entries[0].is_dir


def test_calculate_size_sums_nested_files(tmp_path):
    root = tmp_path / "sized"
    (root / "nested").mkdir(parents=True)
    (root / "one.bin").write_bytes(b"x" * 10)
    (root / "nested" / "two.bin").write_bytes(b"y" * 20)
    info = make_info(root, kind=ObjectKind.DIRECTORY)

    updated = DirectoryScanner().calculate_size(info)

    assert updated.size == 30
    assert updated.size_calculated
    assert updated.items_count == 2


def test_calculate_size_returns_none_when_cancelled(tmp_path):
    token = CancellationToken()
    token.cancel()
    info = make_info(tmp_path, kind=ObjectKind.DIRECTORY)

    assert DirectoryScanner().calculate_size(info, token) is None


@pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
def test_permission_denied_directory_reports_error(tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0)
    try:
        updates = list(DirectoryScanner().scan_streaming(locked))
    finally:
        locked.chmod(0o755)
    assert isinstance(updates[0], ScanError)
    assert updates[-1] == ScanCompleted(count=0)
