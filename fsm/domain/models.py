from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel

class ObjectKind(str, Enum):
    DIRECTORY = "DIRECTORY"
    FILE = "FILE"
    SYMLINK = "SYMLINK"
    OTHER = "OTHER"  # sockets, fifos, devices

class ObjectInfo(BaseModel):
    """One filesystem entry as shown in a pane."""
    path: Path
    name: str
    kind: ObjectKind
    extension: Optional[str] = None
    size: Optional[int] = None
    modified: Optional[datetime] = None
    items_count: Optional[int] = None  # directories only
    generation: int = 0
    metadata_loaded: bool = False
    size_calculated: bool = False  # directories: size is the recursive total

    @property
    def is_dir(self) -> bool:
        return self.kind == ObjectKind.DIRECTORY

    @property
    def needs_enrichment(self) -> bool:
        return self.size is None or self.modified is None

class ScanUpdate(BaseModel):
    """Base class for records produced by a streaming directory scan."""
    pass

class ScanEntry(ScanUpdate):
    """Listing phase discovered an entry."""
    info: ObjectInfo

class ScanEnriched(ScanUpdate):
    """Enrichment phase filled in size/mtime for a listed entry."""
    info: ObjectInfo

class ScanCompleted(ScanUpdate):
    """Terminates a scan that was not cancelled."""
    count: int

class ScanError(ScanUpdate):
    """A single entry (or the directory itself) could not be read."""
    path: Path
    message: str

class TaskKind(str, Enum):
    SCAN = "SCAN"
    ENRICH = "ENRICH"
    SIZE = "SIZE"
    FILE_OPERATION = "FILE_OPERATION"
    FILENAME_SEARCH = "FILENAME_SEARCH"
    CONTENT_SEARCH = "CONTENT_SEARCH"

class TaskStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

class FileOperationKind(str, Enum):
    COPY = "COPY"
    MOVE = "MOVE"
    RENAME = "RENAME"
    DELETE = "DELETE"
    CREATE_FILE = "CREATE_FILE"
    CREATE_DIRECTORY = "CREATE_DIRECTORY"

class FileOperation(BaseModel):
    """A copy/move/rename/create/delete request handed to a background task."""
    operation_id: str
    kind: FileOperationKind
    source: Path
    destination: Optional[Path] = None

class PromptPurpose(str, Enum):
    COPY = "COPY"
    MOVE = "MOVE"
    RENAME = "RENAME"
    CREATE_FILE = "CREATE_FILE"
    CREATE_DIRECTORY = "CREATE_DIRECTORY"
    GO_TO_PATH = "GO_TO_PATH"
    COMMAND = "COMMAND"
    FILENAME_SEARCH = "FILENAME_SEARCH"
    CONTENT_SEARCH = "CONTENT_SEARCH"

class ContentMatch(BaseModel):
    path: Path
    line_number: int
    line: str

class KeyPress(BaseModel):
    """Decoded terminal key.

    `key` is a symbolic name ("enter", "esc", "up", "pagedown", "backspace",
    "tab", "delete", "home", "end") or the character itself for printable input.
    """
    key: str
    char: Optional[str] = None
    ctrl: bool = False

class TerminalResize(BaseModel):
    width: int
    height: int
