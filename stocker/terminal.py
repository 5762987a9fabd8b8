"""Raw terminal input: mode switching, escape sequence decoding and the event threads.

On POSIX terminals raw mode is set with termios and mouse reports use the
SGR (1006) encoding. On Windows only keys are read, through msvcrt.
"""
import codecs
import logging
import os
import queue
import re
import select
import sys
import threading
import time
from typing import List, Optional, TextIO

from .event import TICK, InputEvent, KeyCode, KeyEvent, Modifier, MouseButton, MouseEvent, MouseKind, TickEvent

try:
    import termios
    import tty
except ImportError:
    termios = None
    tty = None

try:
    import msvcrt
except ImportError:
    msvcrt = None

logger = logging.getLogger(__name__)

ENABLE_MOUSE = "\x1b[?1000h\x1b[?1002h\x1b[?1006h"
DISABLE_MOUSE = "\x1b[?1006l\x1b[?1002l\x1b[?1000l"
BELL = "\x07"
MAX_SEQUENCE_LENGTH = 32


class TerminalSession:
    """Raw mode and mouse capture for the lifetime of a `with` block.

    The terminal is restored on every exit path, including exceptions, before
    the exception reaches whoever prints it.
    """

    def __init__(self, stream: Optional[TextIO] = None, stdin: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.stdin = stdin or sys.stdin
        self.fd: Optional[int] = None
        self._old_settings = None

    def __enter__(self) -> "TerminalSession":
        if termios is not None and self.stdin.isatty():
            self.fd = self.stdin.fileno()
            self._old_settings = termios.tcgetattr(self.fd)
            tty.setraw(self.fd)
            # keep LF -> CR LF translation, rich separates rows with a bare "\n"
            mode = termios.tcgetattr(self.fd)
            mode[1] |= termios.OPOST
            termios.tcsetattr(self.fd, termios.TCSANOW, mode)
        self.stream.write(ENABLE_MOUSE)
        self.stream.flush()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.restore()
        return False

    def restore(self):
        self.stream.write(DISABLE_MOUSE)
        self.stream.flush()
        if self._old_settings is not None:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._old_settings)
            self._old_settings = None

    def bell(self):
        self.stream.write(BELL)
        self.stream.flush()


_CSI_KEYS = {
    "A": KeyCode.UP,
    "B": KeyCode.DOWN,
    "C": KeyCode.RIGHT,
    "D": KeyCode.LEFT,
    "H": KeyCode.HOME,
    "F": KeyCode.END,
}

_TILDE_KEYS = {
    "1": KeyCode.HOME,
    "3": KeyCode.DELETE,
    "4": KeyCode.END,
    "7": KeyCode.HOME,
    "8": KeyCode.END,
}

_SGR_MOUSE = re.compile(r"\x1b\[<(\d+);(\d+);(\d+)([Mm])")
_CSI = re.compile(r"\x1b\[([0-9;]*)([A-Za-z~])")
_SS3 = re.compile(r"\x1bO([A-Za-z])")


def _modifiers(code: int) -> frozenset:
    modifiers = set()
    if code & 4:
        modifiers.add(Modifier.SHIFT)
    if code & 8:
        modifiers.add(Modifier.ALT)
    if code & 16:
        modifiers.add(Modifier.CTRL)
    return frozenset(modifiers)


def _mouse_event(code: int, column: int, row: int, final: str) -> MouseEvent:
    # SGR coordinates are one-based
    column, row = column - 1, row - 1
    modifiers = _modifiers(code)
    if code & 64:
        kind = MouseKind.SCROLL_DOWN if code & 1 else MouseKind.SCROLL_UP
        return MouseEvent(kind, column, row, modifiers=modifiers)
    button = (MouseButton.LEFT, MouseButton.MIDDLE, MouseButton.RIGHT, None)[code & 3]
    if code & 32:
        kind = MouseKind.DRAG if button is not None else MouseKind.MOVED
    elif final == "m":
        kind = MouseKind.UP
    else:
        kind = MouseKind.DOWN
    return MouseEvent(kind, column, row, button, modifiers)


class InputDecoder:
    """Incremental decoder from terminal input text to input events.

    Escape sequences split across reads are kept until the rest arrives. A lone
    ESC at the end of a read is reported as the Escape key.
    """

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed_bytes(self, data: bytes) -> List[InputEvent]:
        return self.feed(self._utf8.decode(data))

    def feed(self, text: str) -> List[InputEvent]:
        self._buffer += text
        events = []
        while self._buffer:
            consumed, ev = self._decode_one(self._buffer)
            if consumed == 0:
                break
            self._buffer = self._buffer[consumed:]
            if ev is not None:
                events.append(ev)
        return events

    def _decode_one(self, buf: str):
        ch = buf[0]
        if ch != "\x1b":
            return 1, self._decode_char(ch)
        if len(buf) == 1:
            return 1, KeyEvent(KeyCode.ESC)

        match = _SGR_MOUSE.match(buf)
        if match:
            code, column, row = (int(group) for group in match.group(1, 2, 3))
            return match.end(), _mouse_event(code, column, row, match.group(4))
        match = _CSI.match(buf)
        if match:
            return match.end(), self._decode_csi(match.group(1), match.group(2))
        match = _SS3.match(buf)
        if match:
            return match.end(), self._decode_csi("", match.group(1))
        if buf.startswith("\x1b[") or buf == "\x1bO":
            if len(buf) < MAX_SEQUENCE_LENGTH:
                # incomplete sequence, wait for more input
                return 0, None
            return 1, KeyEvent(KeyCode.ESC)
        # ESC followed by a key is Alt+key
        ev = self._decode_char(buf[1])
        if isinstance(ev, KeyEvent) and ev.code is KeyCode.CHAR:
            return 2, KeyEvent(KeyCode.CHAR, ev.char, ev.modifiers | {Modifier.ALT})
        return 1, KeyEvent(KeyCode.ESC)

    def _decode_csi(self, params: str, final: str) -> Optional[KeyEvent]:
        parts = params.split(";") if params else []
        modifiers = frozenset()
        if len(parts) > 1 and parts[1].isdigit():
            # xterm modifier parameter is 1 + bitmask(shift=1, alt=2, ctrl=4)
            mask = int(parts[1]) - 1
            modifiers = frozenset(m for bit, m in ((1, Modifier.SHIFT), (2, Modifier.ALT), (4, Modifier.CTRL)) if mask & bit)
        if final == "~":
            code = _TILDE_KEYS.get(parts[0] if parts else "")
        else:
            code = _CSI_KEYS.get(final)
        if code is None:
            logger.debug("ignoring unknown escape sequence %r", params + final)
            return None
        return KeyEvent(code, modifiers=modifiers)

    def _decode_char(self, ch: str) -> Optional[KeyEvent]:
        if ch in ("\r", "\n"):
            return KeyEvent(KeyCode.ENTER)
        if ch in ("\x7f", "\x08"):
            return KeyEvent(KeyCode.BACKSPACE)
        if ch == "\t":
            return KeyEvent(KeyCode.TAB)
        if ch < " ":
            return KeyEvent.of_char(chr(ord(ch) + 96), Modifier.CTRL)
        return KeyEvent.of_char(ch)


_WINDOWS_KEYS = {
    "H": KeyCode.UP,
    "P": KeyCode.DOWN,
    "K": KeyCode.LEFT,
    "M": KeyCode.RIGHT,
    "G": KeyCode.HOME,
    "O": KeyCode.END,
    "S": KeyCode.DELETE,
}


class EventSource:
    """Merges timer ticks and terminal input into one ordered queue.

    Ticks are not queued while another tick is still waiting, so a slow
    consumer skips frames instead of falling further behind.
    """

    def __init__(self, tick_rate: float = 0.1, stdin: Optional[TextIO] = None):
        self.tick_rate = tick_rate
        self.stdin = stdin or sys.stdin
        self.events: "queue.Queue[InputEvent]" = queue.Queue()
        self.stop_event = threading.Event()
        self._tick_pending = threading.Event()
        self._threads = [
            threading.Thread(target=self._tick_loop, daemon=True, name="stocker-ticks"),
            threading.Thread(target=self._input_loop, daemon=True, name="stocker-input"),
        ]

    def start(self) -> "EventSource":
        for thread in self._threads:
            thread.start()
        return self

    def stop(self):
        self.stop_event.set()

    def next(self, timeout: Optional[float] = None) -> InputEvent:
        ev = self.events.get(timeout=timeout)
        if isinstance(ev, TickEvent):
            self._tick_pending.clear()
        return ev

    def put(self, ev: InputEvent):
        if isinstance(ev, TickEvent):
            if self._tick_pending.is_set():
                return
            self._tick_pending.set()
        self.events.put(ev)

    def _tick_loop(self):
        next_tick = time.monotonic()
        while not self.stop_event.is_set():
            self.put(TICK)
            next_tick += self.tick_rate
            self.stop_event.wait(max(0.0, next_tick - time.monotonic()))

    def _input_loop(self):
        if msvcrt is not None:
            self._read_windows()
        else:
            self._read_posix()

    def _read_posix(self):
        decoder = InputDecoder()
        fd = self.stdin.fileno()
        while not self.stop_event.is_set():
            # Use select() with timeout to avoid blocking read()
            ready, _, _ = select.select([fd], [], [], 0.05)
            if not ready:
                continue
            data = os.read(fd, 1024)
            if not data:
                return
            for ev in decoder.feed_bytes(data):
                self.put(ev)

    def _read_windows(self):
        decoder = InputDecoder()
        while not self.stop_event.is_set():
            if not msvcrt.kbhit():
                time.sleep(0.02)
                continue
            ch = msvcrt.getwch()
            if ch in ("\x00", "\xe0"):
                code = _WINDOWS_KEYS.get(msvcrt.getwch())
                if code is not None:
                    self.put(KeyEvent(code))
                continue
            for ev in decoder.feed(ch):
                self.put(ev)
