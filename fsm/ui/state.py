import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from fsm.domain.models import ContentMatch, FileOperation, ObjectInfo, PromptPurpose
from fsm.infrastructure.clipboard import Clipboard, ClipboardItem
from fsm.infrastructure.task_registry import TaskHandle


class UIMode(str, Enum):
    NAVIGATION = "NAVIGATION"
    COMMAND = "COMMAND"


class UIOverlay(str, Enum):
    NONE = "NONE"
    PROMPT = "PROMPT"
    FILENAME_SEARCH = "FILENAME_SEARCH"
    CONTENT_SEARCH = "CONTENT_SEARCH"
    SEARCH_RESULTS = "SEARCH_RESULTS"
    CLIPBOARD = "CLIPBOARD"
    HELP = "HELP"


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Seconds before a notification disappears on its own; errors stay until dismissed.
AUTO_DISMISS_S: Dict[NotificationLevel, Optional[float]] = {
    NotificationLevel.INFO: 3.0,
    NotificationLevel.SUCCESS: 2.0,
    NotificationLevel.WARNING: 5.0,
    NotificationLevel.ERROR: None,
}


@dataclass
class Notification:
    message: str
    level: NotificationLevel
    created_at: float
    auto_dismiss_s: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.auto_dismiss_s is not None and now - self.created_at >= self.auto_dismiss_s


@dataclass
class PaneState:
    """One directory view."""
    cwd: Path
    entries: List[ObjectInfo] = field(default_factory=list)
    selected: int = 0
    generation: int = 0
    loading: bool = False
    scan_handle: Optional[TaskHandle] = None
    pending_select: Optional[Path] = None  # select this path once the scan lists it

    def selected_entry(self) -> Optional[ObjectInfo]:
        if 0 <= self.selected < len(self.entries):
            return self.entries[self.selected]
        return None

    def clamp_selection(self) -> None:
        if not self.entries:
            self.selected = 0
        else:
            self.selected = max(0, min(self.selected, len(self.entries) - 1))

    def select_path(self, path: Path) -> bool:
        for i, entry in enumerate(self.entries):
            if entry.path == path:
                self.selected = i
                return True
        return False


@dataclass
class ActiveOperation:
    operation: FileOperation
    handle: TaskHandle
    started_at: float
    bytes_processed: int = 0
    total_bytes: int = 0
    current_file: Optional[str] = None

    @property
    def progress(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(1.0, self.bytes_processed / self.total_bytes)


@dataclass(frozen=True)
class UISnapshot:
    """Read-only copy of UIState handed to the renderer."""
    cwd: Path
    entries: Tuple[ObjectInfo, ...]
    selected: int
    loading: bool
    mode: UIMode
    overlay: UIOverlay
    prompt_purpose: Optional[PromptPurpose]
    input_buffer: str
    notification: Optional[Notification]
    operations: Tuple[ActiveOperation, ...]
    search_query: str
    filename_results: Tuple[ObjectInfo, ...]
    content_results: Tuple[ContentMatch, ...]
    search_selected: int
    clipboard_items: Tuple[ClipboardItem, ...]
    clipboard_selected: int
    show_hidden: bool
    terminal_size: Tuple[int, int]


class UIState:
    """Thread-safe state for the interactive UI. Mutated only by the dispatcher."""

    def __init__(
        self,
        cwd: Path,
        show_hidden: bool = False,
        clock: Callable[[], float] = time.monotonic,
        clipboard: Optional[Clipboard] = None,
    ):
        self._lock = threading.RLock()
        self._clock = clock

        self.panes: List[PaneState] = [PaneState(cwd=cwd)]
        self.active_pane = 0
        self.mode = UIMode.NAVIGATION
        self.overlay = UIOverlay.NONE

        # Prompt
        self.prompt_purpose: Optional[PromptPurpose] = None
        self.prompt_target: Optional[Path] = None  # entry selected when the prompt opened
        self.input_buffer = ""

        self.notification: Optional[Notification] = None
        self.active_operations: Dict[str, ActiveOperation] = {}

        # Search
        self.search_query = ""
        self.filename_results: List[ObjectInfo] = []
        self.content_results: List[ContentMatch] = []
        self.search_selected = 0
        self.active_search_id: Optional[int] = None
        self.search_handle: Optional[TaskHandle] = None

        self.clipboard = clipboard if clipboard is not None else Clipboard()
        self.clipboard_selected = 0

        self.show_hidden = show_hidden
        self.terminal_size: Tuple[int, int] = (80, 24)
        self.redraw_requested = True

    def now(self) -> float:
        return self._clock()

    @property
    def pane(self) -> PaneState:
        with self._lock:
            return self.panes[self.active_pane]

    # ── Notifications ──────────────────────────────────────────────────────────

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        with self._lock:
            self.notification = Notification(
                message=message,
                level=level,
                created_at=self._clock(),
                auto_dismiss_s=AUTO_DISMISS_S[level],
            )
            self.redraw_requested = True

    def dismiss_notification(self) -> bool:
        with self._lock:
            if self.notification is None:
                return False
            self.notification = None
            self.redraw_requested = True
            return True

    def expire_notification(self) -> bool:
        """Drop the notification if its auto-dismiss time has passed."""
        with self._lock:
            if self.notification is not None and self.notification.is_expired(self._clock()):
                return self.dismiss_notification()
            return False

    # ── Prompt ─────────────────────────────────────────────────────────────────

    def open_prompt(self, purpose: PromptPurpose, overlay: UIOverlay = UIOverlay.PROMPT, initial: str = "") -> None:
        with self._lock:
            entry = self.pane.selected_entry()
            self.prompt_purpose = purpose
            self.prompt_target = entry.path if entry else None
            self.input_buffer = initial
            self.overlay = overlay
            self.redraw_requested = True

    def close_overlay(self) -> None:
        with self._lock:
            self.overlay = UIOverlay.NONE
            self.prompt_purpose = None
            self.prompt_target = None
            self.input_buffer = ""
            self.redraw_requested = True

    # ── Redraw ─────────────────────────────────────────────────────────────────

    def request_redraw(self) -> None:
        with self._lock:
            self.redraw_requested = True

    def take_redraw(self) -> bool:
        """Return and clear the redraw flag."""
        with self._lock:
            requested = self.redraw_requested
            self.redraw_requested = False
            return requested

    def snapshot(self) -> UISnapshot:
        with self._lock:
            pane = self.pane
            return UISnapshot(
                cwd=pane.cwd,
                entries=tuple(pane.entries),
                selected=pane.selected,
                loading=pane.loading,
                mode=self.mode,
                overlay=self.overlay,
                prompt_purpose=self.prompt_purpose,
                input_buffer=self.input_buffer,
                notification=self.notification,
                operations=tuple(self.active_operations.values()),
                search_query=self.search_query,
                filename_results=tuple(self.filename_results),
                content_results=tuple(self.content_results),
                search_selected=self.search_selected,
                clipboard_items=tuple(self.clipboard.items()),
                clipboard_selected=self.clipboard_selected,
                show_hidden=self.show_hidden,
                terminal_size=self.terminal_size,
            )
