"""Pure translation of key presses into Actions.

`map_key` depends only on its arguments, so it can run on the dispatch thread
right before the action is dispatched and be tested without a terminal.
"""

from typing import Callable, Dict, Optional
from fsm.domain.actions import (
    Action,
    CalculateSize,
    Cancel,
    ClearClipboard,
    ClipboardCopy,
    ClipboardCut,
    ClipboardPaste,
    ClipboardRemoveSelected,
    CloseOverlay,
    DeleteEntry,
    EnterCommandMode,
    EnterSelected,
    GoToParent,
    InputBackspace,
    InputChar,
    MoveSelectionDown,
    MoveSelectionUp,
    PageDown,
    PageUp,
    Quit,
    ReloadDirectory,
    SelectFirst,
    SelectLast,
    ShowInputPrompt,
    SubmitInputPrompt,
    ToggleClipboardOverlay,
    ToggleContentSearch,
    ToggleFileNameSearch,
    ToggleHelp,
    ToggleShowHidden,
)
from fsm.domain.models import KeyPress, PromptPurpose
from fsm.ui.state import UIMode, UIOverlay

TEXT_INPUT_OVERLAYS = (UIOverlay.PROMPT, UIOverlay.FILENAME_SEARCH, UIOverlay.CONTENT_SEARCH)

NAVIGATION_KEYS: Dict[str, Callable[[], Action]] = {
    "up": MoveSelectionUp,
    "k": MoveSelectionUp,
    "down": MoveSelectionDown,
    "j": MoveSelectionDown,
    "pageup": PageUp,
    "pagedown": PageDown,
    "home": SelectFirst,
    "g": SelectFirst,
    "end": SelectLast,
    "G": SelectLast,
    "enter": EnterSelected,
    "right": EnterSelected,
    "l": EnterSelected,
    "backspace": GoToParent,
    "left": GoToParent,
    "h": GoToParent,
    ".": ToggleShowHidden,
    ":": EnterCommandMode,
    "?": ToggleHelp,
    "/": ToggleFileNameSearch,
    "s": ToggleContentSearch,
    "c": lambda: ShowInputPrompt(purpose=PromptPurpose.COPY),
    "m": lambda: ShowInputPrompt(purpose=PromptPurpose.MOVE),
    "r": lambda: ShowInputPrompt(purpose=PromptPurpose.RENAME),
    "n": lambda: ShowInputPrompt(purpose=PromptPurpose.CREATE_FILE),
    "N": lambda: ShowInputPrompt(purpose=PromptPurpose.CREATE_DIRECTORY),
    "p": lambda: ShowInputPrompt(purpose=PromptPurpose.GO_TO_PATH),
    "d": DeleteEntry,
    "delete": DeleteEntry,
    "R": ReloadDirectory,
    "z": CalculateSize,
    "y": ClipboardCopy,
    "X": ClipboardCut,
    "v": ClipboardPaste,
    "b": ToggleClipboardOverlay,
    "q": Quit,
}

RESULTS_KEYS: Dict[str, Callable[[], Action]] = {
    "up": MoveSelectionUp,
    "k": MoveSelectionUp,
    "down": MoveSelectionDown,
    "j": MoveSelectionDown,
    "pageup": PageUp,
    "pagedown": PageDown,
    "home": SelectFirst,
    "end": SelectLast,
    "enter": EnterSelected,
    "q": CloseOverlay,
}

CLIPBOARD_KEYS: Dict[str, Callable[[], Action]] = {
    "up": MoveSelectionUp,
    "k": MoveSelectionUp,
    "down": MoveSelectionDown,
    "j": MoveSelectionDown,
    "home": SelectFirst,
    "end": SelectLast,
    "d": ClipboardRemoveSelected,
    "delete": ClipboardRemoveSelected,
    "C": ClearClipboard,
    "v": ClipboardPaste,
    "b": ToggleClipboardOverlay,
    "q": CloseOverlay,
    "enter": CloseOverlay,
}

HELP_KEYS: Dict[str, Callable[[], Action]] = {
    "?": ToggleHelp,
    "q": CloseOverlay,
    "enter": CloseOverlay,
}


def map_key(mode: UIMode, overlay: UIOverlay, key: KeyPress) -> Optional[Action]:
    """Action for `key` in the given mode/overlay, or None if the key means nothing there."""
    if key.ctrl and key.key == "c":
        return Quit()
    if key.key == "esc":
        return Cancel()

    if overlay in TEXT_INPUT_OVERLAYS or mode == UIMode.COMMAND:
        if key.key == "enter":
            return SubmitInputPrompt()
        if key.key == "backspace":
            return InputBackspace()
        if key.char and not key.ctrl and key.char.isprintable():
            return InputChar(char=key.char)
        return None

    if key.ctrl:
        return None
    if overlay == UIOverlay.HELP:
        table = HELP_KEYS
    elif overlay == UIOverlay.SEARCH_RESULTS:
        table = RESULTS_KEYS
    elif overlay == UIOverlay.CLIPBOARD:
        table = CLIPBOARD_KEYS
    else:
        table = NAVIGATION_KEYS
    factory = table.get(key.key)
    return factory() if factory else None
