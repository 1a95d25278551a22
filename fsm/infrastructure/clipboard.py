"""In-app clipboard of paths waiting to be pasted.

Entries are marked COPY (yank) or MOVE (cut). Pasting turns each entry into a
FileOperation request for the target directory; cut entries leave the
clipboard once their paste has been requested, copied entries stay so they can
be pasted again.
"""

import logging
import threading
import time
from collections import OrderedDict
from enum import Enum
from pathlib import Path
from typing import Callable, List, Tuple
from pydantic import BaseModel
from fsm.domain.models import FileOperationKind


class ClipboardError(Exception):
    pass


class ClipboardMode(str, Enum):
    COPY = "COPY"
    MOVE = "MOVE"


class ClipboardItem(BaseModel):
    path: Path
    mode: ClipboardMode
    added_at: float

    @property
    def operation_kind(self) -> FileOperationKind:
        return FileOperationKind.COPY if self.mode == ClipboardMode.COPY else FileOperationKind.MOVE


class Clipboard:
    """Ordered, bounded set of clipboard items keyed by path (oldest first).

    Args:
        max_items: Oldest items are dropped to make room beyond this.
        clock: Seconds source for `added_at`.
    """

    def __init__(self, max_items: int = 1000, clock: Callable[[], float] = time.time):
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        self.max_items = max_items
        self.logger = logging.getLogger(__name__)
        self._clock = clock
        self._lock = threading.Lock()
        self._items: "OrderedDict[Path, ClipboardItem]" = OrderedDict()

    def _add(self, path: Path, mode: ClipboardMode) -> ClipboardItem:
        if not path.exists() and not path.is_symlink():
            raise ClipboardError(f"File does not exist: {path}")
        with self._lock:
            current = self._items.get(path)
            if current is not None and current.mode == mode:
                raise ClipboardError(f"Already in clipboard: {path.name}")
            # Re-adding with the other mode replaces the entry.
            self._items.pop(path, None)
            while len(self._items) >= self.max_items:
                dropped, _ = self._items.popitem(last=False)
                self.logger.debug(f"CLIPBOARD_DROP_OLDEST: {dropped}")
            item = ClipboardItem(path=path, mode=mode, added_at=self._clock())
            self._items[path] = item
        self.logger.info(f"CLIPBOARD_ADD: {mode.value} {path}")
        return item

    def add_copy(self, path: Path) -> ClipboardItem:
        return self._add(path, ClipboardMode.COPY)

    def add_move(self, path: Path) -> ClipboardItem:
        return self._add(path, ClipboardMode.MOVE)

    def remove(self, path: Path) -> bool:
        with self._lock:
            return self._items.pop(path, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
        return count

    def items(self) -> List[ClipboardItem]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def is_empty(self) -> bool:
        return len(self) == 0

    def take_for_paste(self, target_dir: Path) -> Tuple[List[Tuple[FileOperationKind, Path]], List[str]]:
        """Paste requests for `target_dir` plus messages for items that cannot be pasted.

        Items whose source vanished are dropped. Cut items are removed once
        returned; copied items stay.
        """
        requests: List[Tuple[FileOperationKind, Path]] = []
        problems: List[str] = []
        with self._lock:
            for path, item in list(self._items.items()):
                if not path.exists() and not path.is_symlink():
                    problems.append(f"{path.name}: source no longer exists")
                    del self._items[path]
                    continue
                if path.parent == target_dir:
                    problems.append(f"{path.name}: already in {target_dir}")
                    continue
                requests.append((item.operation_kind, path))
                if item.mode == ClipboardMode.MOVE:
                    del self._items[path]
        return requests, problems
