"""Actions exchanged between the event multiplexer and the action dispatcher.

Every user-visible or system-visible intent is one of the flat Pydantic models
below. Key presses, background task results and internally generated follow-ups
all arrive at the dispatcher as Actions; nothing else crosses that boundary.

See `pipeline/multiplexer.py` for how the three sources are merged and
`ui/dispatcher.py` for the transition table.
"""

from pathlib import Path
from typing import List, Optional, Tuple, Type
from pydantic import BaseModel, Field
from .models import (
    ContentMatch,
    FileOperationKind,
    ObjectInfo,
    PromptPurpose,
    ScanUpdate,
    TaskKind,
    TaskStatus,
)


class Action(BaseModel):
    """Base class for all actions."""

    pass


# ── Navigation ─────────────────────────────────────────────────────────────────

class MoveSelectionUp(Action):
    pass

class MoveSelectionDown(Action):
    pass

class PageUp(Action):
    pass

class PageDown(Action):
    pass

class SelectFirst(Action):
    pass

class SelectLast(Action):
    pass

class EnterSelected(Action):
    """Enter the selected directory (or the directory of a selected search result)."""
    pass

class GoToParent(Action):
    pass

class GoToPath(Action):
    path: str

class ReloadDirectory(Action):
    pass

class ToggleShowHidden(Action):
    pass


# ── Modes and overlays ─────────────────────────────────────────────────────────

class EnterCommandMode(Action):
    pass

class ExitCommandMode(Action):
    pass

class ToggleHelp(Action):
    pass

class ToggleFileNameSearch(Action):
    pass

class ToggleContentSearch(Action):
    pass

class ShowInputPrompt(Action):
    """Open the generic prompt overlay; `purpose` decides what submitting it does."""
    purpose: PromptPurpose

class CloseOverlay(Action):
    pass

class InputChar(Action):
    char: str

class InputBackspace(Action):
    pass

class SubmitInputPrompt(Action):
    """Submit the prompt. `input=None` submits the typed buffer."""
    input: Optional[str] = None


# ── Search ─────────────────────────────────────────────────────────────────────

class FileNameSearch(Action):
    query: str

class ContentSearch(Action):
    query: str

class ShowFilenameSearchResults(Action):
    task_id: int
    query: str
    results: List[ObjectInfo] = Field(default_factory=list)

class ShowContentSearchResults(Action):
    task_id: int
    query: str
    results: List[ContentMatch] = Field(default_factory=list)


# ── File operations ────────────────────────────────────────────────────────────

class CopyEntry(Action):
    destination: str
    source: Optional[Path] = None  # None = current selection

class MoveEntry(Action):
    destination: str
    source: Optional[Path] = None

class RenameEntry(Action):
    new_name: str
    source: Optional[Path] = None

class CreateFile(Action):
    name: str

class CreateDirectory(Action):
    name: str

class DeleteEntry(Action):
    source: Optional[Path] = None

class CancelFileOperation(Action):
    operation_id: str

class FileOperationProgress(Action):
    operation_id: str
    bytes_processed: int
    total_bytes: int
    current_file: Optional[str] = None

class FileOperationComplete(Action):
    """Terminal result of a file operation; `error` is set on failure."""
    operation_id: str
    kind: FileOperationKind
    error: Optional[str] = None
    cancelled: bool = False


# ── Clipboard ──────────────────────────────────────────────────────────────────

class ClipboardCopy(Action):
    """Put an entry on the clipboard to be copied on paste."""
    source: Optional[Path] = None

class ClipboardCut(Action):
    """Put an entry on the clipboard to be moved on paste."""
    source: Optional[Path] = None

class ClipboardPaste(Action):
    """Start one file operation per clipboard item into the current directory."""
    pass

class ClipboardRemoveSelected(Action):
    pass

class ClearClipboard(Action):
    pass

class ToggleClipboardOverlay(Action):
    pass


# ── Directory data ─────────────────────────────────────────────────────────────

class DirectoryScanUpdate(Action):
    """One record of a streaming scan, tagged with the scan's generation."""
    path: Path
    generation: int
    update: ScanUpdate

class CalculateSize(Action):
    """Compute the recursive size of the selected directory in the background."""
    pass

class UpdateObjectInfo(Action):
    parent_dir: Path
    info: ObjectInfo


# ── System ─────────────────────────────────────────────────────────────────────

class ExecuteCommand(Action):
    line: str

class TaskFinished(Action):
    """Posted by the task registry when a background task leaves the registry."""
    task_id: int
    kind: TaskKind
    status: TaskStatus
    error: Optional[str] = None

class ShowNotification(Action):
    message: str
    level: str = "info"

class Tick(Action):
    """Periodic heartbeat from the multiplexer when no source is ready."""
    pass

class Resize(Action):
    width: int
    height: int

class Cancel(Action):
    """Escape key: cancel operations, dismiss, close or quit (first match wins)."""
    pass

class Quit(Action):
    pass

class NoOp(Action):
    pass


def _collect(base: Type[Action]) -> Tuple[Type[Action], ...]:
    found = []
    for sub in base.__subclasses__():
        found.append(sub)
        found.extend(_collect(sub))
    return tuple(found)


ALL_ACTIONS: Tuple[Type[Action], ...] = _collect(Action)
