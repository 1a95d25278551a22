"""Copy/move/rename/create/delete as cancellable background work.

A FileOperationRunner executes one FileOperation inside a registry task and
reports through the `post` callable: FileOperationProgress while bytes move,
then exactly one FileOperationComplete (with `error` or `cancelled` set when
it did not succeed).
"""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Optional
from fsm.domain.actions import Action, FileOperationComplete, FileOperationProgress
from fsm.domain.models import FileOperation, FileOperationKind
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import CancellationToken

BUFFER_SIZE = 64 * 1024
PROGRESS_INTERVAL = 1024 * 1024


class OperationCancelled(Exception):
    """Raised inside a runner when the operation's token is set."""
    pass


def tree_size(path: Path) -> int:
    """Bytes under `path` (the file itself for a file). Unreadable entries count as 0."""
    if not path.is_dir() or path.is_symlink():
        try:
            return path.lstat().st_size
        except OSError:
            return 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


class FileOperationRunner:
    """Runs one FileOperation, posting progress and completion actions.

    Args:
        operation: What to do.
        post: Receives FileOperationProgress / FileOperationComplete.
        cache: Optional MetadataCache; touched paths are invalidated afterwards.
    """

    def __init__(self, operation: FileOperation, post: Callable[[Action], None], cache: Optional[MetadataCache] = None):
        self.operation = operation
        self.post = post
        self.cache = cache
        self.logger = logging.getLogger(__name__)
        self._token: Optional[CancellationToken] = None
        self._total = 0
        self._processed = 0
        self._last_report = 0

    def __call__(self, token: CancellationToken) -> None:
        self.run(token)

    def run(self, token: CancellationToken) -> None:
        op = self.operation
        self._token = token
        self.logger.info(f"FILE_OP_START: {op.kind.value} {op.source} -> {op.destination or '-'} ({op.operation_id})")
        try:
            self._check_cancelled()
            if op.kind == FileOperationKind.COPY:
                self._copy(op.source, self._require_destination())
            elif op.kind == FileOperationKind.MOVE:
                self._move(op.source, self._require_destination())
            elif op.kind == FileOperationKind.RENAME:
                self._rename(op.source, self._require_destination())
            elif op.kind == FileOperationKind.DELETE:
                self._delete(op.source)
            elif op.kind == FileOperationKind.CREATE_FILE:
                self._create_file(op.source)
            elif op.kind == FileOperationKind.CREATE_DIRECTORY:
                self._create_directory(op.source)
        except OperationCancelled:
            self.logger.debug(f"FILE_OP_CANCELLED: {op.kind.value} {op.source} ({op.operation_id})")
            self.post(FileOperationComplete(operation_id=op.operation_id, kind=op.kind, cancelled=True))
            return
        except Exception as e:
            # Every failure still yields exactly one completion; the task itself reports FAILED.
            self.logger.debug(f"FILE_OP_FAILED: {op.kind.value} {op.source} ({op.operation_id}): {e}")
            self.post(FileOperationComplete(operation_id=op.operation_id, kind=op.kind, error=str(e) or type(e).__name__))
            raise
        finally:
            self._invalidate()

        self.logger.info(f"FILE_OP_DONE: {op.kind.value} {op.source} ({op.operation_id})")
        self.post(FileOperationComplete(operation_id=op.operation_id, kind=op.kind))

    def _require_destination(self) -> Path:
        if self.operation.destination is None:
            raise ValueError(f"{self.operation.kind.value} needs a destination")
        return self.operation.destination

    def _check_cancelled(self) -> None:
        if self._token is not None and self._token.is_cancelled:
            raise OperationCancelled()

    def _invalidate(self) -> None:
        if self.cache is None:
            return
        self.cache.invalidate_prefix(self.operation.source)
        if self.operation.destination is not None:
            self.cache.invalidate_prefix(self.operation.destination)

    def _report(self, current_file: Path, force: bool = False) -> None:
        if force or self._processed - self._last_report >= PROGRESS_INTERVAL:
            self._last_report = self._processed
            self.post(
                FileOperationProgress(
                    operation_id=self.operation.operation_id,
                    bytes_processed=self._processed,
                    total_bytes=self._total,
                    current_file=current_file.name,
                )
            )

    # ── Copy ───────────────────────────────────────────────────────────────────

    @staticmethod
    def _final_destination(source: Path, dest: Path) -> Path:
        return dest / source.name if dest.is_dir() else dest

    def _copy(self, source: Path, dest: Path) -> None:
        if not source.exists() and not source.is_symlink():
            raise FileNotFoundError(errno.ENOENT, "Source does not exist", str(source))
        target = self._final_destination(source, dest)
        if target.resolve() == source.resolve():
            raise ValueError(f"Source and destination are the same: {source}")
        self._total = tree_size(source)
        if source.is_dir() and not source.is_symlink():
            if target.resolve().is_relative_to(source.resolve()):
                raise ValueError(f"Cannot copy {source} into itself")
            self._copy_tree(source, target)
        else:
            self._copy_file(source, target)
        self._report(target, force=True)

    def _copy_tree(self, source: Path, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        for entry in sorted(source.iterdir()):
            self._check_cancelled()
            dest = target / entry.name
            if entry.is_symlink():
                if dest.is_symlink() or dest.exists():
                    dest.unlink()
                os.symlink(os.readlink(entry), dest)
            elif entry.is_dir():
                self._copy_tree(entry, dest)
            else:
                self._copy_file(entry, dest)
        shutil.copystat(source, target)

    def _copy_file(self, source: Path, target: Path) -> None:
        if source.is_symlink():
            if target.is_symlink() or target.exists():
                target.unlink()
            os.symlink(os.readlink(source), target)
            return
        try:
            with open(source, "rb") as src, open(target, "wb") as dst:
                while True:
                    self._check_cancelled()
                    chunk = src.read(BUFFER_SIZE)
                    if not chunk:
                        break
                    dst.write(chunk)
                    self._processed += len(chunk)
                    self._report(source)
        except OperationCancelled:
            target.unlink(missing_ok=True)
            raise
        shutil.copymode(source, target)

    # ── Move / rename ──────────────────────────────────────────────────────────

    def _move(self, source: Path, dest: Path) -> None:
        target = self._final_destination(source, dest)
        if target.exists():
            raise FileExistsError(errno.EEXIST, "Destination already exists", str(target))
        try:
            os.rename(source, target)
            self.logger.debug(f"Move completed via rename: {source} -> {target}")
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
        self.logger.debug(f"Cross-device move, falling back to copy + delete: {source} -> {target}")
        self._copy(source, target)
        self._check_cancelled()
        self._delete(source)

    def _rename(self, source: Path, target: Path) -> None:
        if target.exists():
            raise FileExistsError(errno.EEXIST, "Destination already exists", str(target))
        os.rename(source, target)

    # ── Create / delete ────────────────────────────────────────────────────────

    def _create_file(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "x"):
            pass

    def _create_directory(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=False)

    def _delete(self, path: Path) -> None:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        elif not path.exists():
            raise FileNotFoundError(errno.ENOENT, "Path does not exist", str(path))
        else:
            path.unlink()
