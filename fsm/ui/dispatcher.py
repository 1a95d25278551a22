"""Action dispatcher: the UI state machine.

Every Action coming out of the multiplexer is routed through one handler table
built in `_setup_handlers`. The table covers every Action type; dispatching a
type without a handler raises LookupError.

Handlers mutate UIState, spawn background tasks through the TaskRegistry, or
`emit` one follow-up Action into the multiplexer's internal queue. Background
tasks report back through `post_result` (the multiplexer's result channel), so
all state changes happen on the dispatch thread.
"""

import itertools
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type
from fsm.config.models import UiConfig
from fsm.domain.actions import (
    ALL_ACTIONS,
    Action,
    CalculateSize,
    Cancel,
    CancelFileOperation,
    ClearClipboard,
    ClipboardCopy,
    ClipboardCut,
    ClipboardPaste,
    ClipboardRemoveSelected,
    CloseOverlay,
    ContentSearch,
    CopyEntry,
    CreateDirectory,
    CreateFile,
    DeleteEntry,
    DirectoryScanUpdate,
    EnterCommandMode,
    EnterSelected,
    ExecuteCommand,
    ExitCommandMode,
    FileNameSearch,
    FileOperationComplete,
    FileOperationProgress,
    GoToParent,
    GoToPath,
    InputBackspace,
    InputChar,
    MoveEntry,
    MoveSelectionDown,
    MoveSelectionUp,
    NoOp,
    PageDown,
    PageUp,
    Quit,
    ReloadDirectory,
    RenameEntry,
    Resize,
    SelectFirst,
    SelectLast,
    ShowContentSearchResults,
    ShowFilenameSearchResults,
    ShowInputPrompt,
    ShowNotification,
    SubmitInputPrompt,
    TaskFinished,
    Tick,
    ToggleClipboardOverlay,
    ToggleContentSearch,
    ToggleFileNameSearch,
    ToggleHelp,
    ToggleShowHidden,
    UpdateObjectInfo,
)
from fsm.domain.models import (
    ContentMatch,
    FileOperation,
    FileOperationKind,
    KeyPress,
    ObjectInfo,
    ObjectKind,
    PromptPurpose,
    ScanCompleted,
    ScanEnriched,
    ScanEntry,
    ScanError,
    TaskKind,
    TaskStatus,
)
from fsm.infrastructure.clipboard import ClipboardError
from fsm.infrastructure.dir_scanner import DirectoryScanner, ScanStream, insert_sorted
from fsm.infrastructure.file_ops import FileOperationRunner
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.search import content_search_task, filename_search_task
from fsm.infrastructure.task_registry import CancellationToken, TaskRegistry
from fsm.ui.keymap import map_key
from fsm.ui.state import ActiveOperation, NotificationLevel, UIMode, UIOverlay, UIState

PROMPT_TITLES = {
    PromptPurpose.COPY: "Copy to",
    PromptPurpose.MOVE: "Move to",
    PromptPurpose.RENAME: "Rename to",
    PromptPurpose.CREATE_FILE: "New file",
    PromptPurpose.CREATE_DIRECTORY: "New directory",
    PromptPurpose.GO_TO_PATH: "Go to",
    PromptPurpose.COMMAND: ":",
    PromptPurpose.FILENAME_SEARCH: "Find file",
    PromptPurpose.CONTENT_SEARCH: "Search content",
}

# Prompts that act on the entry selected when they were opened.
TARGETED_PURPOSES = (PromptPurpose.COPY, PromptPurpose.MOVE, PromptPurpose.RENAME)

OPERATION_VERBS = {
    FileOperationKind.COPY: "Copied",
    FileOperationKind.MOVE: "Moved",
    FileOperationKind.RENAME: "Renamed",
    FileOperationKind.DELETE: "Deleted",
    FileOperationKind.CREATE_FILE: "Created file",
    FileOperationKind.CREATE_DIRECTORY: "Created directory",
}


def resolve_prompt_action(purpose: PromptPurpose, text: str, target: Optional[Path]) -> Action:
    """The concrete follow-up for submitting `text` to a prompt opened for `purpose`."""
    if purpose == PromptPurpose.COPY:
        return CopyEntry(destination=text, source=target)
    if purpose == PromptPurpose.MOVE:
        return MoveEntry(destination=text, source=target)
    if purpose == PromptPurpose.RENAME:
        return RenameEntry(new_name=text, source=target)
    if purpose == PromptPurpose.CREATE_FILE:
        return CreateFile(name=text)
    if purpose == PromptPurpose.CREATE_DIRECTORY:
        return CreateDirectory(name=text)
    if purpose == PromptPurpose.GO_TO_PATH:
        return GoToPath(path=text)
    if purpose == PromptPurpose.COMMAND:
        return ExecuteCommand(line=text)
    if purpose == PromptPurpose.FILENAME_SEARCH:
        return FileNameSearch(query=text)
    if purpose == PromptPurpose.CONTENT_SEARCH:
        return ContentSearch(query=text)
    raise LookupError(f"No follow-up action for prompt purpose {purpose}")


class ActionDispatcher:
    """Applies Actions to UIState.

    Args:
        state: The UI state (mutated only here).
        scanner: DirectoryScanner used for panes, enrichment and sizes.
        registry: TaskRegistry that owns every background task.
        emit: Queues a follow-up Action (multiplexer internal channel).
        post_result: Channel handed to background work for its results.
        cache: Optional MetadataCache, invalidated on reload.
        config: UI preferences (page size, search limits).
    """

    def __init__(
        self,
        state: UIState,
        scanner: DirectoryScanner,
        registry: TaskRegistry,
        emit: Callable[[Action], None],
        post_result: Callable[[Action], None],
        cache: Optional[MetadataCache] = None,
        config: Optional[UiConfig] = None,
    ):
        self.state = state
        self.scanner = scanner
        self.registry = registry
        self.emit = emit
        self.post_result = post_result
        self.cache = cache
        self.config = config or UiConfig()
        self.logger = logging.getLogger(__name__)
        self.quit_requested = False
        self._operation_ids = itertools.count(1)
        self._search_ids = itertools.count(1)
        self._handlers: Dict[Type[Action], Callable[[Any], None]] = {}
        self._setup_handlers()

    def _setup_handlers(self):
        h = self._handlers
        # Navigation
        h[MoveSelectionUp] = lambda a: self._move_selection(-1)
        h[MoveSelectionDown] = lambda a: self._move_selection(1)
        h[PageUp] = lambda a: self._move_selection(-self.config.page_size)
        h[PageDown] = lambda a: self._move_selection(self.config.page_size)
        h[SelectFirst] = self.on_select_first
        h[SelectLast] = self.on_select_last
        h[EnterSelected] = self.on_enter_selected
        h[GoToParent] = self.on_go_to_parent
        h[GoToPath] = self.on_go_to_path
        h[ReloadDirectory] = self.on_reload_directory
        h[ToggleShowHidden] = self.on_toggle_show_hidden
        # Modes and overlays
        h[EnterCommandMode] = self.on_enter_command_mode
        h[ExitCommandMode] = self.on_exit_command_mode
        h[ToggleHelp] = self.on_toggle_help
        h[ToggleFileNameSearch] = lambda a: self._toggle_search_prompt(UIOverlay.FILENAME_SEARCH, PromptPurpose.FILENAME_SEARCH)
        h[ToggleContentSearch] = lambda a: self._toggle_search_prompt(UIOverlay.CONTENT_SEARCH, PromptPurpose.CONTENT_SEARCH)
        h[ShowInputPrompt] = self.on_show_input_prompt
        h[CloseOverlay] = self.on_close_overlay
        h[InputChar] = self.on_input_char
        h[InputBackspace] = self.on_input_backspace
        h[SubmitInputPrompt] = self.on_submit_input_prompt
        # Search
        h[FileNameSearch] = self.on_filename_search
        h[ContentSearch] = self.on_content_search
        h[ShowFilenameSearchResults] = self.on_filename_results
        h[ShowContentSearchResults] = self.on_content_results
        # File operations
        h[CopyEntry] = self.on_copy_entry
        h[MoveEntry] = self.on_move_entry
        h[RenameEntry] = self.on_rename_entry
        h[CreateFile] = self.on_create_file
        h[CreateDirectory] = self.on_create_directory
        h[DeleteEntry] = self.on_delete_entry
        h[CancelFileOperation] = self.on_cancel_file_operation
        h[FileOperationProgress] = self.on_file_operation_progress
        h[FileOperationComplete] = self.on_file_operation_complete
        # Clipboard
        h[ClipboardCopy] = self.on_clipboard_copy
        h[ClipboardCut] = self.on_clipboard_cut
        h[ClipboardPaste] = self.on_clipboard_paste
        h[ClipboardRemoveSelected] = self.on_clipboard_remove_selected
        h[ClearClipboard] = self.on_clear_clipboard
        h[ToggleClipboardOverlay] = self.on_toggle_clipboard_overlay
        # Directory data
        h[DirectoryScanUpdate] = self.on_directory_scan_update
        h[CalculateSize] = self.on_calculate_size
        h[UpdateObjectInfo] = self.on_update_object_info
        # System
        h[ExecuteCommand] = self.on_execute_command
        h[TaskFinished] = self.on_task_finished
        h[ShowNotification] = self.on_show_notification
        h[Tick] = self.on_tick
        h[Resize] = self.on_resize
        h[Cancel] = self.on_cancel
        h[Quit] = self.on_quit
        h[NoOp] = lambda a: None

    def handles(self, action_type: Type[Action]) -> bool:
        return action_type in self._handlers

    def missing_handlers(self) -> List[Type[Action]]:
        return [cls for cls in ALL_ACTIONS if cls not in self._handlers]

    def dispatch(self, action: Action) -> bool:
        """Apply one action. Returns False once the application should quit."""
        handler = self._handlers.get(type(action))
        if handler is None:
            raise LookupError(f"No handler registered for action {type(action).__name__}")
        handler(action)
        if not isinstance(action, (Tick, NoOp)):
            self.state.request_redraw()
        return not self.quit_requested

    def map_input(self, key: KeyPress) -> Optional[Action]:
        """Key mapper for the multiplexer: reads the current mode/overlay."""
        return map_key(self.state.mode, self.state.overlay, key)

    def start(self, root: Path) -> None:
        self.load_directory(root)

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.state.notify(message, level)

    def _resolve(self, text: str) -> Path:
        """Absolute path for user input, relative to the current directory."""
        path = Path(os.path.expanduser(text))
        if not path.is_absolute():
            path = self.state.pane.cwd / path
        return Path(os.path.normpath(path))

    def _selected_path(self, explicit: Optional[Path]) -> Optional[Path]:
        if explicit is not None:
            return explicit
        entry = self.state.pane.selected_entry()
        return entry.path if entry else None

    @staticmethod
    def _is_navigable(entry: ObjectInfo) -> bool:
        return entry.is_dir or (entry.kind == ObjectKind.SYMLINK and entry.path.is_dir())

    # ── Directory loading ──────────────────────────────────────────────────────

    def load_directory(self, path: Path, select: Optional[Path] = None) -> bool:
        """Start a streaming scan of `path` into the active pane (new generation)."""
        if not path.is_dir():
            self._notify(f"Not a directory: {path}", NotificationLevel.ERROR)
            return False
        if not os.access(path, os.R_OK | os.X_OK):
            self._notify(f"Permission denied: {path}", NotificationLevel.ERROR)
            return False

        pane = self.state.pane
        if pane.scan_handle is not None:
            self.registry.cancel(pane.scan_handle)
        self.registry.cancel_all(kind=TaskKind.ENRICH)

        token = CancellationToken()
        stream = self.scanner.scan_streaming(path, cancel_token=token)
        pane.cwd = path
        pane.entries = []
        pane.selected = 0
        pane.generation = stream.generation
        pane.loading = True
        pane.pending_select = select
        pane.scan_handle = self.registry.spawn(self._pump(stream), TaskKind.SCAN, f"scan {path}", token=token)
        self.logger.debug(f"Loading {path} (generation {stream.generation})")
        return True

    def _pump(self, stream: ScanStream) -> Callable[[CancellationToken], None]:
        def work(token: CancellationToken) -> None:
            for update in stream:
                self.post_result(DirectoryScanUpdate(path=stream.path, generation=stream.generation, update=update))

        return work

    def _reload(self) -> None:
        pane = self.state.pane
        entry = pane.selected_entry()
        if self.cache is not None:
            cwd = pane.cwd
            self.cache.invalidate_entries_if(lambda _key, info: info.path.parent == cwd)
        self.load_directory(pane.cwd, select=entry.path if entry else None)

    # ── Navigation ─────────────────────────────────────────────────────────────

    def _move_selection(self, delta: int) -> None:
        state = self.state
        if state.overlay == UIOverlay.CLIPBOARD:
            count = len(state.clipboard)
            state.clipboard_selected = max(0, min(state.clipboard_selected + delta, count - 1))
            return
        if state.overlay == UIOverlay.SEARCH_RESULTS:
            count = len(state.filename_results) or len(state.content_results)
            if count:
                state.search_selected = max(0, min(state.search_selected + delta, count - 1))
            return
        pane = state.pane
        pane.selected += delta
        pane.clamp_selection()

    def on_select_first(self, action: SelectFirst):
        if self.state.overlay == UIOverlay.CLIPBOARD:
            self.state.clipboard_selected = 0
        elif self.state.overlay == UIOverlay.SEARCH_RESULTS:
            self.state.search_selected = 0
        else:
            self.state.pane.selected = 0

    def on_select_last(self, action: SelectLast):
        if self.state.overlay == UIOverlay.CLIPBOARD:
            self.state.clipboard_selected = max(0, len(self.state.clipboard) - 1)
        elif self.state.overlay == UIOverlay.SEARCH_RESULTS:
            count = len(self.state.filename_results) or len(self.state.content_results)
            self.state.search_selected = max(0, count - 1)
        else:
            pane = self.state.pane
            pane.selected = max(0, len(pane.entries) - 1)

    def on_enter_selected(self, action: EnterSelected):
        state = self.state
        if state.overlay == UIOverlay.SEARCH_RESULTS:
            self._open_search_result()
            return
        entry = state.pane.selected_entry()
        if entry is None:
            return
        if self._is_navigable(entry):
            self.load_directory(entry.path)
        else:
            self._notify(f"{entry.name} is not a directory")

    def _open_search_result(self) -> None:
        state = self.state
        results: List[Any] = state.filename_results or state.content_results
        if not (0 <= state.search_selected < len(results)):
            return
        hit = results[state.search_selected]
        if isinstance(hit, ContentMatch):
            target_dir, select = hit.path.parent, hit.path
        elif hit.is_dir:
            target_dir, select = hit.path, None
        else:
            target_dir, select = hit.path.parent, hit.path
        state.close_overlay()
        self.load_directory(target_dir, select=select)

    def on_go_to_parent(self, action: GoToParent):
        cwd = self.state.pane.cwd
        parent = cwd.parent
        if parent == cwd:
            return
        self.load_directory(parent, select=cwd)

    def on_go_to_path(self, action: GoToPath):
        self.load_directory(self._resolve(action.path))

    def on_reload_directory(self, action: ReloadDirectory):
        self._reload()

    def on_toggle_show_hidden(self, action: ToggleShowHidden):
        self.state.show_hidden = not self.state.show_hidden
        self.scanner.show_hidden = self.state.show_hidden
        self._notify(f"Hidden files {'shown' if self.state.show_hidden else 'hidden'}")
        self._reload()

    # ── Modes and overlays ─────────────────────────────────────────────────────

    def on_enter_command_mode(self, action: EnterCommandMode):
        self.state.mode = UIMode.COMMAND
        self.state.open_prompt(PromptPurpose.COMMAND)

    def on_exit_command_mode(self, action: ExitCommandMode):
        self.state.mode = UIMode.NAVIGATION
        if self.state.prompt_purpose == PromptPurpose.COMMAND:
            self.state.close_overlay()

    def on_toggle_help(self, action: ToggleHelp):
        if self.state.overlay == UIOverlay.HELP:
            self.state.close_overlay()
        else:
            self.state.close_overlay()
            self.state.overlay = UIOverlay.HELP

    def _toggle_search_prompt(self, overlay: UIOverlay, purpose: PromptPurpose) -> None:
        if self.state.overlay == overlay:
            self.state.close_overlay()
        else:
            self.state.open_prompt(purpose, overlay=overlay)

    def on_show_input_prompt(self, action: ShowInputPrompt):
        if action.purpose in TARGETED_PURPOSES and self.state.pane.selected_entry() is None:
            self._notify("Nothing selected", NotificationLevel.WARNING)
            return
        if action.purpose == PromptPurpose.COMMAND:
            self.state.mode = UIMode.COMMAND
        self.state.open_prompt(action.purpose)

    def on_close_overlay(self, action: CloseOverlay):
        if self.state.mode == UIMode.COMMAND:
            self.state.mode = UIMode.NAVIGATION
        self.state.close_overlay()

    def on_input_char(self, action: InputChar):
        self.state.input_buffer += action.char

    def on_input_backspace(self, action: InputBackspace):
        self.state.input_buffer = self.state.input_buffer[:-1]

    def on_submit_input_prompt(self, action: SubmitInputPrompt):
        state = self.state
        purpose = state.prompt_purpose
        target = state.prompt_target
        text = (action.input if action.input is not None else state.input_buffer).strip()
        state.close_overlay()
        if state.mode == UIMode.COMMAND:
            state.mode = UIMode.NAVIGATION
        if purpose is None or not text:
            return
        self.emit(resolve_prompt_action(purpose, text, target))

    # ── Search ─────────────────────────────────────────────────────────────────

    def _start_search(self, kind: TaskKind, query: str, factory) -> None:
        state = self.state
        if state.search_handle is not None:
            self.registry.cancel(state.search_handle)
        search_id = next(self._search_ids)
        state.active_search_id = search_id
        state.search_query = query
        work = factory(
            search_id,
            state.pane.cwd,
            query,
            self.post_result,
            max_results=self.config.max_search_results,
            show_hidden=state.show_hidden,
        )
        state.search_handle = self.registry.spawn(work, kind, f"search '{query}'")

    def on_filename_search(self, action: FileNameSearch):
        self._start_search(TaskKind.FILENAME_SEARCH, action.query, filename_search_task)

    def on_content_search(self, action: ContentSearch):
        self._start_search(TaskKind.CONTENT_SEARCH, action.query, content_search_task)

    def _show_results(self, search_id: int, query: str, filenames: List[ObjectInfo], contents: List[ContentMatch]) -> None:
        state = self.state
        if search_id != state.active_search_id:
            self.logger.debug(f"Dropping stale search results #{search_id}")
            return
        state.search_handle = None
        if not filenames and not contents:
            self._notify(f"No matches for '{query}'")
            return
        state.close_overlay()
        state.filename_results = filenames
        state.content_results = contents
        state.search_selected = 0
        state.overlay = UIOverlay.SEARCH_RESULTS

    def on_filename_results(self, action: ShowFilenameSearchResults):
        self._show_results(action.task_id, action.query, action.results, [])

    def on_content_results(self, action: ShowContentSearchResults):
        self._show_results(action.task_id, action.query, [], action.results)

    # ── File operations ────────────────────────────────────────────────────────

    def _start_operation(self, kind: FileOperationKind, source: Path, destination: Optional[Path] = None) -> str:
        operation_id = f"op-{next(self._operation_ids)}"
        operation = FileOperation(operation_id=operation_id, kind=kind, source=source, destination=destination)
        runner = FileOperationRunner(operation, self.post_result, cache=self.cache)
        handle = self.registry.spawn(runner, TaskKind.FILE_OPERATION, f"{kind.value.lower()} {source.name}")
        self.state.active_operations[operation_id] = ActiveOperation(
            operation=operation, handle=handle, started_at=self.state.now()
        )
        return operation_id

    def _transfer(self, kind: FileOperationKind, source: Optional[Path], destination: str) -> None:
        src = self._selected_path(source)
        if src is None:
            self._notify("Nothing selected", NotificationLevel.WARNING)
            return
        self._start_operation(kind, src, self._resolve(destination))

    def on_copy_entry(self, action: CopyEntry):
        self._transfer(FileOperationKind.COPY, action.source, action.destination)

    def on_move_entry(self, action: MoveEntry):
        self._transfer(FileOperationKind.MOVE, action.source, action.destination)

    def on_rename_entry(self, action: RenameEntry):
        src = self._selected_path(action.source)
        if src is None:
            self._notify("Nothing selected", NotificationLevel.WARNING)
            return
        name = action.new_name
        if "/" in name or name in (".", ".."):
            self._notify(f"Invalid name: {name}", NotificationLevel.ERROR)
            return
        self._start_operation(FileOperationKind.RENAME, src, src.parent / name)

    def on_create_file(self, action: CreateFile):
        self._start_operation(FileOperationKind.CREATE_FILE, self._resolve(action.name))

    def on_create_directory(self, action: CreateDirectory):
        self._start_operation(FileOperationKind.CREATE_DIRECTORY, self._resolve(action.name))

    def on_delete_entry(self, action: DeleteEntry):
        src = self._selected_path(action.source)
        if src is None:
            self._notify("Nothing selected", NotificationLevel.WARNING)
            return
        self._start_operation(FileOperationKind.DELETE, src)

    def on_cancel_file_operation(self, action: CancelFileOperation):
        active = self.state.active_operations.pop(action.operation_id, None)
        if active is None:
            return
        self.registry.cancel(active.handle)
        self._notify(f"Cancelled {active.operation.kind.value.lower()} of {active.operation.source.name}")

    def on_file_operation_progress(self, action: FileOperationProgress):
        active = self.state.active_operations.get(action.operation_id)
        if active is None:
            return
        active.bytes_processed = action.bytes_processed
        active.total_bytes = action.total_bytes
        active.current_file = action.current_file

    def on_file_operation_complete(self, action: FileOperationComplete):
        active = self.state.active_operations.pop(action.operation_id, None)
        if active is None:
            self.logger.debug(f"Ignoring late result for {action.operation_id}")
            return
        op = active.operation
        if action.cancelled:
            self._notify(f"Cancelled {op.kind.value.lower()} of {op.source.name}")
            return
        if action.error:
            self._notify(f"{op.kind.value.title().replace('_', ' ')} failed: {action.error}", NotificationLevel.ERROR)
            return

        self._notify(f"{OPERATION_VERBS[op.kind]} {op.source.name}", NotificationLevel.SUCCESS)
        pane = self.state.pane
        touched = [op.source.parent]
        if op.destination is not None:
            touched += [op.destination, op.destination.parent]
        if pane.cwd in touched:
            if op.kind in (FileOperationKind.CREATE_FILE, FileOperationKind.CREATE_DIRECTORY):
                select = op.source
            elif op.kind == FileOperationKind.RENAME:
                select = op.destination
            else:
                entry = pane.selected_entry()
                select = entry.path if entry else None
            self.load_directory(pane.cwd, select=select)

    # ── Clipboard ──────────────────────────────────────────────────────────────

    def _add_to_clipboard(self, source: Optional[Path], cut: bool) -> None:
        path = self._selected_path(source)
        if path is None:
            self._notify("Nothing selected", NotificationLevel.WARNING)
            return
        clipboard = self.state.clipboard
        try:
            if cut:
                clipboard.add_move(path)
            else:
                clipboard.add_copy(path)
        except ClipboardError as e:
            self._notify(str(e), NotificationLevel.WARNING)
            return
        verb = "Cut" if cut else "Copied"
        self._notify(f"{verb} {path.name} to clipboard ({len(clipboard)} item(s))", NotificationLevel.SUCCESS)

    def on_clipboard_copy(self, action: ClipboardCopy):
        self._add_to_clipboard(action.source, cut=False)

    def on_clipboard_cut(self, action: ClipboardCut):
        self._add_to_clipboard(action.source, cut=True)

    def on_clipboard_paste(self, action: ClipboardPaste):
        state = self.state
        if state.clipboard.is_empty():
            self._notify("Clipboard is empty", NotificationLevel.WARNING)
            return
        target = state.pane.cwd
        requests, problems = state.clipboard.take_for_paste(target)
        for kind, source in requests:
            self._start_operation(kind, source, target)
        state.clipboard_selected = max(0, min(state.clipboard_selected, len(state.clipboard) - 1))
        self.logger.info(f"CLIPBOARD_PASTE: {len(requests)} operation(s) into {target}, {len(problems)} skipped")
        if not requests:
            self._notify("Nothing pasted: " + "; ".join(problems), NotificationLevel.WARNING)
        elif problems:
            self._notify(f"Pasting {len(requests)} item(s); skipped " + "; ".join(problems), NotificationLevel.WARNING)
        else:
            self._notify(f"Pasting {len(requests)} item(s) into {target.name or target}")

    def on_clipboard_remove_selected(self, action: ClipboardRemoveSelected):
        state = self.state
        items = state.clipboard.items()
        if not 0 <= state.clipboard_selected < len(items):
            return
        state.clipboard.remove(items[state.clipboard_selected].path)
        state.clipboard_selected = max(0, min(state.clipboard_selected, len(state.clipboard) - 1))

    def on_clear_clipboard(self, action: ClearClipboard):
        count = self.state.clipboard.clear()
        self.state.clipboard_selected = 0
        self._notify(f"Cleared {count} clipboard item(s)")

    def on_toggle_clipboard_overlay(self, action: ToggleClipboardOverlay):
        if self.state.overlay == UIOverlay.CLIPBOARD:
            self.state.close_overlay()
        else:
            self.state.close_overlay()
            self.state.overlay = UIOverlay.CLIPBOARD
            self.state.clipboard_selected = 0

    # ── Directory data ─────────────────────────────────────────────────────────

    def on_directory_scan_update(self, action: DirectoryScanUpdate):
        pane = self.state.pane
        if action.generation != pane.generation:
            return
        update = action.update
        if isinstance(update, ScanEntry):
            self._insert_entry(update.info)
        elif isinstance(update, ScanEnriched):
            self._insert_entry(update.info)
        elif isinstance(update, ScanCompleted):
            pane.loading = False
            pane.scan_handle = None
            pane.pending_select = None
            pane.clamp_selection()
            self.logger.debug(f"Scan of {pane.cwd} completed: {update.count} entries")
            unsized = [e for e in pane.entries if e.needs_enrichment]
            if unsized:
                self._spawn_enrichment(unsized)
        elif isinstance(update, ScanError):
            if update.path == pane.cwd:
                self._notify(f"Cannot read {update.path}: {update.message}", NotificationLevel.ERROR)
            else:
                self._notify(f"{update.path.name}: {update.message}", NotificationLevel.WARNING)

    def _insert_entry(self, info: ObjectInfo) -> None:
        pane = self.state.pane
        before = len(pane.entries)
        index = insert_sorted(pane.entries, info)
        if pane.pending_select is not None and info.path == pane.pending_select:
            pane.selected = index
        elif len(pane.entries) > before and before > 0 and index <= pane.selected:
            pane.selected += 1

    def _spawn_enrichment(self, entries: List[ObjectInfo]) -> None:
        pane = self.state.pane
        path, generation = pane.cwd, pane.generation

        def work(token: CancellationToken) -> None:
            for update in self.scanner.enrich(entries, token):
                self.post_result(DirectoryScanUpdate(path=path, generation=generation, update=update))

        self.registry.spawn(work, TaskKind.ENRICH, f"enrich {path}")

    def on_calculate_size(self, action: CalculateSize):
        pane = self.state.pane
        entry = pane.selected_entry()
        if entry is None or not entry.is_dir:
            self._notify("Select a directory to calculate its size")
            return
        parent = pane.cwd

        def work(token: CancellationToken) -> None:
            updated = self.scanner.calculate_size(entry, token)
            if updated is not None:
                self.post_result(UpdateObjectInfo(parent_dir=parent, info=updated))

        self.registry.spawn(work, TaskKind.SIZE, f"size {entry.path}")
        self._notify(f"Calculating size of {entry.name}...")

    def on_update_object_info(self, action: UpdateObjectInfo):
        pane = self.state.pane
        if action.parent_dir != pane.cwd:
            return
        info = action.info.model_copy(update={"generation": pane.generation})
        self._insert_entry(info)

    # ── System ─────────────────────────────────────────────────────────────────

    def on_execute_command(self, action: ExecuteCommand):
        try:
            parts = shlex.split(action.line)
        except ValueError as e:
            self._notify(f"Invalid command: {e}", NotificationLevel.ERROR)
            return
        if not parts:
            return
        command, args = parts[0], parts[1:]
        arg = " ".join(args)

        if command == "cd":
            self.emit(GoToPath(path=arg or str(Path.home())))
        elif command in ("mkdir", "touch"):
            if not arg:
                self._notify(f"Usage: {command} <name>", NotificationLevel.WARNING)
            elif command == "mkdir":
                self.emit(CreateDirectory(name=arg))
            else:
                self.emit(CreateFile(name=arg))
        elif command == "reload":
            self.emit(ReloadDirectory())
        elif command == "pwd":
            self._notify(str(self.state.pane.cwd))
        elif command == "find":
            if not arg:
                self._notify("Usage: find <pattern>", NotificationLevel.WARNING)
            else:
                self.emit(FileNameSearch(query=arg))
        elif command == "hidden":
            self.emit(ToggleShowHidden())
        elif command in ("q", "quit"):
            self.emit(Quit())
        else:
            self._notify(f"Unknown command: {command}", NotificationLevel.ERROR)

    def on_task_finished(self, action: TaskFinished):
        pane = self.state.pane
        if pane.scan_handle is not None and pane.scan_handle.task_id == action.task_id:
            pane.scan_handle = None
            pane.loading = False
        if self.state.search_handle is not None and self.state.search_handle.task_id == action.task_id:
            self.state.search_handle = None
        if action.status != TaskStatus.FAILED:
            return
        if action.kind == TaskKind.FILE_OPERATION:
            # Normally the runner's FileOperationComplete already removed it.
            for operation_id, active in list(self.state.active_operations.items()):
                if active.handle.task_id == action.task_id:
                    del self.state.active_operations[operation_id]
                    op = active.operation
                    self._notify(
                        f"{op.kind.value.title().replace('_', ' ')} failed: {action.error}", NotificationLevel.ERROR
                    )
            return
        self._notify(f"{action.kind.value.lower()} task failed: {action.error}", NotificationLevel.ERROR)

    def on_show_notification(self, action: ShowNotification):
        try:
            level = NotificationLevel(action.level)
        except ValueError:
            level = NotificationLevel.INFO
        self._notify(action.message, level)

    def on_tick(self, action: Tick):
        if self.state.expire_notification() or self.state.active_operations or self.state.pane.loading:
            self.state.request_redraw()

    def on_resize(self, action: Resize):
        self.state.terminal_size = (action.width, action.height)

    def on_cancel(self, action: Cancel):
        """Escape: the first matching rule fires."""
        state = self.state
        if state.active_operations:
            count = len(state.active_operations)
            for active in state.active_operations.values():
                self.registry.cancel(active.handle)
            self.registry.cancel_all(kind=TaskKind.FILE_OPERATION)
            state.active_operations.clear()
            self.logger.info(f"Cancelled {count} file operation(s) on Escape")
            self._notify(f"Cancelled {count} operation(s)", NotificationLevel.WARNING)
        elif state.notification is not None:
            state.dismiss_notification()
        elif state.overlay != UIOverlay.NONE:
            self.on_close_overlay(CloseOverlay())
        elif state.mode == UIMode.COMMAND:
            self.on_exit_command_mode(ExitCommandMode())
        else:
            self.emit(Quit())

    def on_quit(self, action: Quit):
        self.quit_requested = True
