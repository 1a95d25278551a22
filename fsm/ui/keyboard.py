import os
import select
import shutil
import sys
import termios
import threading
import tty
from typing import Callable, Optional, Tuple, Union
from fsm.domain.models import KeyPress, TerminalResize

RawInput = Union[KeyPress, TerminalResize]

CSI_KEYS = {
    "A": "up",
    "B": "down",
    "C": "right",
    "D": "left",
    "H": "home",
    "F": "end",
    "1~": "home",
    "7~": "home",
    "4~": "end",
    "8~": "end",
    "3~": "delete",
    "5~": "pageup",
    "6~": "pagedown",
}

CONTROL_KEYS = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\x08": "backspace",
}


def decode_char(ch: str) -> Optional[KeyPress]:
    """KeyPress for one decoded character (not ESC)."""
    if ch in CONTROL_KEYS:
        return KeyPress(key=CONTROL_KEYS[ch])
    code = ord(ch)
    if 1 <= code <= 26:
        # Ctrl+A .. Ctrl+Z
        return KeyPress(key=chr(code + 96), ctrl=True)
    if ch.isprintable():
        return KeyPress(key=ch, char=ch)
    return None


def decode_csi(seq: str) -> Optional[KeyPress]:
    """KeyPress for the payload of an ESC[ sequence ("A", "5~", "1;2A"...)."""
    if seq in CSI_KEYS:
        return KeyPress(key=CSI_KEYS[seq])
    if ";" in seq:
        # Modified keys (Shift/Ctrl+arrow): drop the modifier
        base = seq.rsplit(";", 1)[1].lstrip("0123456789")
        if base in CSI_KEYS:
            return KeyPress(key=CSI_KEYS[base])
    return None


def _utf8_length(first_byte: int) -> int:
    if first_byte >= 0xF0:
        return 4
    if first_byte >= 0xE0:
        return 3
    if first_byte >= 0xC0:
        return 2
    return 1


class KeyboardListener:
    """Reads raw key presses in a background thread and pushes them into `sink`.

    Also polls the terminal size and pushes a TerminalResize when it changes.
    """

    def __init__(self, sink: Callable[[RawInput], None], poll_interval: float = 0.1):
        self.sink = sink
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_size: Optional[Tuple[int, int]] = None

    def _try_read(self, fd: int, timeout: float = 0.1) -> Optional[str]:
        """Non-blocking raw read directly from fd (bypasses Python's internal buffer).

        Using os.read(fd) avoids a known issue where Python's TextIOWrapper buffers
        multiple bytes from a single OS read (e.g. the full escape sequence \\x1b[A),
        making select.select think the fd is empty even though bytes are available.
        """
        if fd in select.select([fd], [], [], timeout)[0]:
            try:
                b = os.read(fd, 1)
                return b.decode('utf-8', errors='replace') if b else None
            except OSError:
                return None
        return None

    @staticmethod
    def _is_csi_final(ch: str) -> bool:
        """Return True for a CSI final byte (ASCII range 0x40-0x7E)."""
        return len(ch) == 1 and '@' <= ch <= '~'

    def _read_csi_sequence(self, fd: int, first: str) -> str:
        seq = first
        if self._is_csi_final(first):
            return seq
        # Bounded so malformed input cannot block the listener.
        for _ in range(16):
            nxt = self._try_read(fd, 0.02)
            if nxt is None:
                break
            seq += nxt
            if self._is_csi_final(nxt):
                break
        return seq

    def _handle_escape(self, fd: int) -> None:
        """Plain Esc, or the start of a CSI / SS3 sequence."""
        seq1 = self._try_read(fd, 0.05)
        if seq1 is None or seq1 not in ('[', 'O'):
            self.sink(KeyPress(key="esc"))
            return
        seq2 = self._try_read(fd, 0.05)
        if seq2 is None:
            return
        seq = self._read_csi_sequence(fd, seq2) if seq1 == '[' else seq2
        key = decode_csi(seq)
        if key is not None:
            self.sink(key)

    def _read_char(self, fd: int, first: bytes) -> str:
        data = first
        for _ in range(_utf8_length(first[0]) - 1):
            try:
                data += os.read(fd, 1)
            except OSError:
                break
        return data.decode('utf-8', errors='replace')

    def _poll_resize(self) -> None:
        size = shutil.get_terminal_size()
        current = (size.columns, size.lines)
        if current != self._last_size:
            if self._last_size is not None:
                self.sink(TerminalResize(width=current[0], height=current[1]))
            self._last_size = current

    def _run(self):
        """Main loop for the listener thread."""
        if not sys.stdin.isatty():
            return

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(fd)

            while not self._stop_event.is_set():
                self._poll_resize()
                if fd not in select.select([fd], [], [], self.poll_interval)[0]:
                    continue
                try:
                    raw = os.read(fd, 1)
                except OSError:
                    continue
                if not raw:
                    continue

                ch = self._read_char(fd, raw)
                if ch == '\x1b':
                    self._handle_escape(fd)
                    continue
                key = decode_char(ch)
                if key is not None:
                    self.sink(key)
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

    def start(self):
        """Starts the listener thread."""
        self._thread = threading.Thread(target=self._run, name="fsm-keyboard", daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
