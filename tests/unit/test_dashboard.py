import pytest
from rich.console import Console
from conftest import FakeClock, make_info
from fsm.domain.models import ContentMatch, FileOperation, FileOperationKind, ObjectKind, PromptPurpose, TaskKind
from fsm.infrastructure.task_registry import CancellationToken, TaskHandle
from fsm.ui.dashboard import Dashboard, format_entry_size, format_size
from fsm.ui.state import ActiveOperation, NotificationLevel, UIOverlay, UIState


def render_text(snap) -> str:
    console = Console(record=True, width=100, height=30, color_system=None)
    console.print(Dashboard(console).create_display(snap))
    return console.export_text()


@pytest.fixture
def state(tmp_path):
    st = UIState(cwd=tmp_path, clock=FakeClock())
    st.pane.entries = [
        make_info(tmp_path / "docs", kind=ObjectKind.DIRECTORY, items_count=3),
        make_info(tmp_path / "notes.txt", size=2048),
    ]
    return st


def test_format_size():
    assert format_size(None) == "-"
    assert format_size(0) == "0B"
    assert format_size(123) == "123B"
    assert format_size(1536) == "1.5KB"
    assert format_size(5 * 1024 ** 3) == "5.0GB"


def test_format_entry_size_for_directories(tmp_path):
    assert format_entry_size(make_info(tmp_path, kind=ObjectKind.DIRECTORY)) == "-"
    assert format_entry_size(make_info(tmp_path, kind=ObjectKind.DIRECTORY, items_count=1)) == "1 item"
    assert format_entry_size(make_info(tmp_path, kind=ObjectKind.DIRECTORY, items_count=4)) == "4 items"
    sized = make_info(tmp_path, kind=ObjectKind.DIRECTORY, size=2048, size_calculated=True)
    assert format_entry_size(sized) == "2.0KB"


def test_entries_and_status_line(state):
    state.notify("Copied notes.txt", NotificationLevel.SUCCESS)

    text = render_text(state.snapshot())

    assert "docs/" in text
    assert "3 items" in text
    assert "notes.txt" in text
    assert "2.0KB" in text
    assert "Copied notes.txt" in text


def test_prompt_replaces_status_line(state):
    state.open_prompt(PromptPurpose.GO_TO_PATH)
    state.input_buffer = "/tmp"

    text = render_text(state.snapshot())

    assert "Go to /tmp" in text


def test_help_overlay(state):
    state.overlay = UIOverlay.HELP
    text = render_text(state.snapshot())
    assert "HELP" in text
    assert "toggle hidden files" in text


def test_search_results_overlay(state, tmp_path):
    state.overlay = UIOverlay.SEARCH_RESULTS
    state.search_query = "needle"
    state.content_results = [ContentMatch(path=tmp_path / "a.txt", line_number=2, line="a needle")]

    text = render_text(state.snapshot())

    assert "RESULTS 'needle' (1)" in text
    assert "a.txt:2: a needle" in text


def test_operations_panel(state, tmp_path):
    op = FileOperation(operation_id="op-1", kind=FileOperationKind.COPY, source=tmp_path / "notes.txt")
    handle = TaskHandle(task_id=1, kind=TaskKind.FILE_OPERATION, label="copy", token=CancellationToken())
    state.active_operations["op-1"] = ActiveOperation(
        operation=op, handle=handle, started_at=0.0, bytes_processed=1024, total_bytes=2048
    )

    text = render_text(state.snapshot())

    assert "OPERATIONS" in text
    assert "copy notes.txt 1.0KB/2.0KB" in text


def test_clipboard_overlay_and_header_badge(state, tmp_path):
    (tmp_path / "notes.txt").write_text("x")
    state.clipboard.add_move(tmp_path / "notes.txt")
    state.overlay = UIOverlay.CLIPBOARD

    text = render_text(state.snapshot())

    assert "[clipboard: 1]" in text
    assert "CLIPBOARD (1)" in text
    assert "cut" in text


def test_render_without_live_is_noop(state):
    Dashboard(Console(record=True)).render(state.snapshot())
