from datetime import datetime
from typing import List, Optional
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text
from fsm.domain.models import ObjectInfo, ObjectKind
from fsm.infrastructure.clipboard import ClipboardMode
from fsm.ui.dispatcher import PROMPT_TITLES
from fsm.ui.state import NotificationLevel, UIMode, UIOverlay, UISnapshot

NOTIFICATION_STYLES = {
    NotificationLevel.INFO: "cyan",
    NotificationLevel.SUCCESS: "green",
    NotificationLevel.WARNING: "yellow",
    NotificationLevel.ERROR: "bold red",
}

KIND_STYLES = {
    ObjectKind.DIRECTORY: "bold blue",
    ObjectKind.SYMLINK: "cyan",
    ObjectKind.OTHER: "magenta",
    ObjectKind.FILE: "",
}

HELP_ROWS = [
    ("j / k, arrows", "move selection"),
    ("enter / l", "open directory"),
    ("backspace / h", "parent directory"),
    ("g / G", "first / last entry"),
    ("c / m / r", "copy / move / rename"),
    ("n / N", "new file / new directory"),
    ("d", "delete"),
    ("z", "calculate directory size"),
    ("y / X / v", "clipboard copy / cut / paste"),
    ("b", "clipboard (d remove, C clear)"),
    ("/ / s", "find file / search content"),
    ("p", "go to path"),
    (":", "command (cd, mkdir, touch, reload, pwd, find, hidden, q)"),
    (".", "toggle hidden files"),
    ("R", "reload"),
    ("esc", "cancel operations / dismiss / close / quit"),
    ("q", "quit"),
]


def format_size(size: Optional[int]) -> str:
    """Format size: 123B, 1.2KB, 45.1MB, 3.2GB."""
    if size is None:
        return "-"
    if size == 0:
        return "0B"
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    idx = 0
    val = float(size)
    while val >= 1024.0 and idx < len(units) - 1:
        val /= 1024.0
        idx += 1
    if idx == 0:
        return f"{int(val)}B"
    return f"{val:.1f}{units[idx]}"


def format_entry_size(info: ObjectInfo) -> str:
    if info.is_dir:
        if info.size_calculated:
            return format_size(info.size)
        if info.items_count is None:
            return "-"
        return "1 item" if info.items_count == 1 else f"{info.items_count} items"
    return format_size(info.size)


def format_modified(modified: Optional[datetime]) -> str:
    return modified.strftime("%Y-%m-%d %H:%M") if modified else ""


class Dashboard:
    """Renders UI snapshots with rich Live. Never touches UIState."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._live: Optional[Live] = None

    # --- Panels ---

    def _visible_window(self, count: int, selected: int, height: int) -> range:
        height = max(1, height)
        start = max(0, min(selected - height // 2, count - height))
        return range(start, min(count, start + height))

    def _entries_table(self, snap: UISnapshot, height: int) -> Table:
        table = Table(expand=True, box=None, padding=(0, 1), show_edge=False)
        table.add_column("Name", ratio=1, no_wrap=True, overflow="ellipsis")
        table.add_column("Size", justify="right", width=10)
        table.add_column("Modified", width=16)
        for i in self._visible_window(len(snap.entries), snap.selected, height):
            info = snap.entries[i]
            name = Text(info.name + ("/" if info.is_dir else ""), style=KIND_STYLES[info.kind])
            style = "reverse" if i == snap.selected else None
            table.add_row(name, format_entry_size(info), format_modified(info.modified), style=style)
        return table

    def _header(self, snap: UISnapshot) -> Text:
        header = Text(str(snap.cwd), style="bold")
        header.append(f"  {len(snap.entries)} entries", style="dim")
        if snap.loading:
            header.append("  loading...", style="yellow")
        if snap.show_hidden:
            header.append("  [hidden]", style="dim")
        if snap.clipboard_items:
            header.append(f"  [clipboard: {len(snap.clipboard_items)}]", style="dim")
        return header

    def _operations(self, snap: UISnapshot) -> Optional[RenderableType]:
        if not snap.operations:
            return None
        rows: List[RenderableType] = []
        for op in snap.operations:
            label = Text(f"{op.operation.kind.value.lower()} {op.operation.source.name} ", style="cyan")
            label.append(f"{format_size(op.bytes_processed)}/{format_size(op.total_bytes)}", style="dim")
            rows.append(label)
            rows.append(ProgressBar(total=100, completed=op.progress * 100, width=40))
        return Panel(Group(*rows), title="OPERATIONS", border_style="cyan")

    def _status_line(self, snap: UISnapshot) -> Text:
        if snap.overlay in (UIOverlay.PROMPT, UIOverlay.FILENAME_SEARCH, UIOverlay.CONTENT_SEARCH) or snap.mode == UIMode.COMMAND:
            title = PROMPT_TITLES.get(snap.prompt_purpose, ">") if snap.prompt_purpose else ">"
            line = Text(f"{title} ", style="bold yellow")
            line.append(snap.input_buffer)
            line.append("_", style="blink")
            return line
        if snap.notification is not None:
            return Text(snap.notification.message, style=NOTIFICATION_STYLES[snap.notification.level])
        return Text("? help  q quit", style="dim")

    def _help(self) -> Panel:
        table = Table(show_header=False, box=None, padding=(0, 2))
        for key, desc in HELP_ROWS:
            table.add_row(Text(key, style="bold"), desc)
        return Panel(table, title="HELP", border_style="cyan")

    def _results(self, snap: UISnapshot, height: int) -> Panel:
        table = Table(show_header=False, box=None, expand=True, padding=(0, 1))
        table.add_column(ratio=1, no_wrap=True, overflow="ellipsis")
        if snap.filename_results:
            count = len(snap.filename_results)
            for i in self._visible_window(count, snap.search_selected, height):
                info = snap.filename_results[i]
                table.add_row(str(info.path), style="reverse" if i == snap.search_selected else None)
        else:
            count = len(snap.content_results)
            for i in self._visible_window(count, snap.search_selected, height):
                hit = snap.content_results[i]
                row = Text(f"{hit.path}:{hit.line_number}: ", style="cyan")
                row.append(hit.line.strip())
                table.add_row(row, style="reverse" if i == snap.search_selected else None)
        return Panel(table, title=f"RESULTS '{snap.search_query}' ({count})", border_style="cyan")

    def _clipboard(self, snap: UISnapshot, height: int) -> Panel:
        table = Table(show_header=False, box=None, expand=True, padding=(0, 1))
        table.add_column(width=4)
        table.add_column(ratio=1, no_wrap=True, overflow="ellipsis")
        items = snap.clipboard_items
        for i in self._visible_window(len(items), snap.clipboard_selected, height):
            item = items[i]
            mark = Text("cut" if item.mode == ClipboardMode.MOVE else "copy", style="yellow")
            table.add_row(mark, str(item.path), style="reverse" if i == snap.clipboard_selected else None)
        if not items:
            table.add_row("", Text("(empty)", style="dim"))
        return Panel(table, title=f"CLIPBOARD ({len(items)})", border_style="cyan")

    def create_display(self, snap: UISnapshot) -> RenderableType:
        _width, height = snap.terminal_size
        body_height = max(3, height - 6)
        parts: List[RenderableType] = [self._header(snap)]

        if snap.overlay == UIOverlay.HELP:
            parts.append(self._help())
        elif snap.overlay == UIOverlay.SEARCH_RESULTS:
            parts.append(self._results(snap, body_height - 2))
        elif snap.overlay == UIOverlay.CLIPBOARD:
            parts.append(self._clipboard(snap, body_height - 2))
        else:
            parts.append(self._entries_table(snap, body_height))

        operations = self._operations(snap)
        if operations is not None:
            parts.append(operations)
        parts.append(self._status_line(snap))
        return Group(*parts)

    # --- Lifecycle ---

    def render(self, snap: UISnapshot) -> None:
        if self._live is not None:
            self._live.update(self.create_display(snap), refresh=True)

    def start(self, snap: UISnapshot):
        self._live = Live(self.create_display(snap), console=self.console, auto_refresh=False, screen=True)
        self._live.start()
        return self

    def stop(self):
        if self._live:
            self._live.stop()
            self._live = None
