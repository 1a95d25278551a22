"""Unit tests for FileOperationRunner."""
import errno
import pytest
from conftest import make_info
from fsm.config.models import CacheConfig
from fsm.domain.actions import FileOperationComplete, FileOperationProgress
from fsm.domain.models import FileOperation, FileOperationKind
from fsm.infrastructure.file_ops import PROGRESS_INTERVAL, FileOperationRunner, tree_size
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import CancellationToken


def run_op(kind, source, destination=None, token=None, cache=None):
    posted = []
    op = FileOperation(operation_id="op-1", kind=kind, source=source, destination=destination)
    runner = FileOperationRunner(op, posted.append, cache=cache)
    runner(token or CancellationToken())
    return posted


def completion(posted):
    done = [p for p in posted if isinstance(p, FileOperationComplete)]
    assert len(done) == 1
    return done[0]


def test_copy_file_reports_progress(tmp_path):
    source = tmp_path / "big.bin"
    source.write_bytes(b"\x01" * (PROGRESS_INTERVAL * 2 + 10))
    dest_dir = tmp_path / "out"
    dest_dir.mkdir()

    posted = run_op(FileOperationKind.COPY, source, dest_dir)

    assert (dest_dir / "big.bin").read_bytes() == source.read_bytes()
    progress = [p for p in posted if isinstance(p, FileOperationProgress)]
    assert len(progress) >= 2
    assert progress[-1].bytes_processed == progress[-1].total_bytes == source.stat().st_size
    assert completion(posted).error is None
    assert isinstance(posted[-1], FileOperationComplete)


def test_copy_directory_recursively(sample_tree, tmp_path):
    dest = tmp_path / "copy"

    run_op(FileOperationKind.COPY, sample_tree, dest)

    assert (dest / "a.txt").read_text() == "alpha\nneedle here\n"
    assert (dest / "A" / "inner.txt").read_text() == "x" * 20
    assert (dest / ".hidden").exists()


def test_copy_into_itself_fails(sample_tree):
    posted = []
    op = FileOperation(operation_id="op-1", kind=FileOperationKind.COPY, source=sample_tree, destination=sample_tree / "A")
    with pytest.raises(ValueError):
        FileOperationRunner(op, posted.append)(CancellationToken())
    assert "into itself" in completion(posted).error


def test_pre_cancelled_copy_leaves_nothing(tmp_path):
    source = tmp_path / "src.txt"
    source.write_text("data")
    token = CancellationToken()
    token.cancel()

    posted = run_op(FileOperationKind.COPY, source, tmp_path / "dst.txt", token=token)

    assert completion(posted).cancelled
    assert not (tmp_path / "dst.txt").exists()


def test_move_into_directory(tmp_path):
    source = tmp_path / "m.txt"
    source.write_text("move me")
    target_dir = tmp_path / "target"
    target_dir.mkdir()

    posted = run_op(FileOperationKind.MOVE, source, target_dir)

    assert not source.exists()
    assert (target_dir / "m.txt").read_text() == "move me"
    assert completion(posted).error is None


def test_cross_device_move_falls_back_to_copy(tmp_path, monkeypatch):
    source = tmp_path / "m.txt"
    source.write_text("far away")
    dest = tmp_path / "elsewhere.txt"

    def exdev(src, dst):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr("fsm.infrastructure.file_ops.os.rename", exdev)
    run_op(FileOperationKind.MOVE, source, dest)

    assert not source.exists()
    assert dest.read_text() == "far away"


def test_rename_onto_existing_target_fails(tmp_path):
    source = tmp_path / "a.txt"
    source.write_text("a")
    (tmp_path / "b.txt").write_text("b")
    posted = []
    op = FileOperation(operation_id="op-1", kind=FileOperationKind.RENAME, source=source, destination=tmp_path / "b.txt")

    with pytest.raises(FileExistsError):
        FileOperationRunner(op, posted.append)(CancellationToken())

    assert completion(posted).error
    assert (tmp_path / "b.txt").read_text() == "b"
    assert source.exists()


def test_rename(tmp_path):
    source = tmp_path / "a.txt"
    source.write_text("a")

    run_op(FileOperationKind.RENAME, source, tmp_path / "newname.txt")

    assert (tmp_path / "newname.txt").read_text() == "a"
    assert not source.exists()


def test_create_file_is_exclusive(tmp_path):
    path = tmp_path / "new.txt"
    run_op(FileOperationKind.CREATE_FILE, path)
    assert path.exists()

    path.write_text("keep")
    with pytest.raises(FileExistsError):
        run_op(FileOperationKind.CREATE_FILE, path)
    assert path.read_text() == "keep"


def test_create_directory(tmp_path):
    path = tmp_path / "nested" / "dir"
    run_op(FileOperationKind.CREATE_DIRECTORY, path)
    assert path.is_dir()
    with pytest.raises(FileExistsError):
        run_op(FileOperationKind.CREATE_DIRECTORY, path)


def test_delete_file_and_tree(sample_tree):
    run_op(FileOperationKind.DELETE, sample_tree / "b.txt")
    run_op(FileOperationKind.DELETE, sample_tree / "A")

    assert not (sample_tree / "b.txt").exists()
    assert not (sample_tree / "A").exists()
    with pytest.raises(FileNotFoundError):
        run_op(FileOperationKind.DELETE, sample_tree / "missing")


def test_copy_without_destination_is_an_error(tmp_path):
    posted = []
    op = FileOperation(operation_id="op-1", kind=FileOperationKind.COPY, source=tmp_path)
    with pytest.raises(ValueError):
        FileOperationRunner(op, posted.append)(CancellationToken())
    assert "destination" in completion(posted).error


def test_unexpected_error_still_posts_one_completion(tmp_path, monkeypatch):
    def symlink_loop(self, source, dest):
        raise RuntimeError("Symlink loop")

    monkeypatch.setattr(FileOperationRunner, "_copy", symlink_loop)
    posted = []
    op = FileOperation(operation_id="op-1", kind=FileOperationKind.COPY, source=tmp_path / "loop", destination=tmp_path)
    with pytest.raises(RuntimeError):
        FileOperationRunner(op, posted.append)(CancellationToken())
    assert completion(posted).error == "Symlink loop"


def test_touched_paths_are_invalidated(tmp_path, clock):
    cache = MetadataCache(CacheConfig(num_shards=2), clock=clock)
    source = tmp_path / "gone.txt"
    source.write_text("x")
    cache.insert(source, make_info(source))

    run_op(FileOperationKind.DELETE, source, cache=cache)

    assert cache.get(source) is None


def test_tree_size(sample_tree):
    assert tree_size(sample_tree / "A") == 20
    assert tree_size(sample_tree / "b.txt") == 6
    assert tree_size(sample_tree / "missing") == 0
