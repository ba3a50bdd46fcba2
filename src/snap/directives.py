from __future__ import annotations

import codecs
import logging
import os
import select
import sys
import termios
import threading
import tty
from collections import deque
from typing import Protocol, TextIO

from snap import ui

logger = logging.getLogger(__name__)

MAX_PROMPTS = 100

_ENTER = {"\r", "\n"}
_BACKSPACE = {"\x7f", "\x08"}
_ESCAPE = "\x1b"
_POLL_SECONDS = 0.1


class DirectiveQueue:
    """Thread-safe FIFO of user directives drained between workflow steps."""

    def __init__(self, max_prompts: int = MAX_PROMPTS) -> None:
        self._lock = threading.Lock()
        self._items: deque[str] = deque()
        self.max_prompts = max_prompts

    def enqueue(self, prompt: str) -> bool:
        with self._lock:
            if len(self._items) >= self.max_prompts:
                return False
            self._items.append(prompt)
            return True

    def dequeue(self) -> str | None:
        with self._lock:
            return self._items.popleft() if self._items else None

    def drain_all(self) -> list[str]:
        with self._lock:
            drained = list(self._items)
            self._items.clear()
            return drained

    def all(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class StepInfo(Protocol):
    def get(self) -> tuple[int, int, str]: ...


class DirectiveReader:
    """Reads directives from a terminal while the workflow streams output.

    The first keystroke pauses ``writer`` and opens a ``> `` composition
    line; Enter queues the text, Escape discards it, and both resume output.
    An Enter on an empty line shows the pending queue.
    """

    def __init__(
        self,
        queue: DirectiveQueue,
        writer: ui.SwitchWriter,
        step_info: StepInfo,
        stream: TextIO | None = None,
    ) -> None:
        self.queue = queue
        self.writer = writer
        self.step_info = step_info
        self.stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._saved_attrs: list | None = None
        self._buffer: list[str] = []
        self._composing = False

    def start(self) -> None:
        fd = self.stream.fileno()
        try:
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        except (termios.error, OSError) as exc:
            logger.info("directive input unavailable: %s", exc)
            self._saved_attrs = None
            return
        self._thread = threading.Thread(target=self._loop, args=(fd,), daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._composing:
            self._composing = False
            self.writer.resume()
        if self._saved_attrs is not None:
            try:
                termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)
            except (termios.error, OSError) as exc:
                logger.warning("could not restore terminal settings: %s", exc)
            self._saved_attrs = None

    def _loop(self, fd: int) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while not self._stop.is_set():
            ready, _, _ = select.select([fd], [], [], _POLL_SECONDS)
            if not ready:
                continue
            data = os.read(fd, 1)
            if not data:
                return
            for char in decoder.decode(data):
                if char == _ESCAPE:
                    self._discard_escape_sequence(fd)
                self.handle_char(char)

    @staticmethod
    def _discard_escape_sequence(fd: int) -> None:
        # Arrow and function keys arrive as ESC followed by more bytes.
        while select.select([fd], [], [], 0)[0]:
            os.read(fd, 1)

    def handle_char(self, char: str) -> None:
        if not self._composing:
            if char in _ENTER:
                self.writer.direct(ui.queue_status(self.queue.all()))
                return
            if not char.isprintable():
                return
            self._composing = True
            self._buffer = []
            self.writer.pause()
            self.writer.direct("\n> ")

        if char in _ENTER:
            self._submit()
        elif char == _ESCAPE:
            self._composing = False
            self._buffer = []
            self.writer.direct("\r\x1b[K")
            self.writer.resume()
        elif char in _BACKSPACE:
            if self._buffer:
                self._buffer.pop()
                self.writer.direct("\b \b")
        elif char.isprintable():
            self._buffer.append(char)
            self.writer.direct(char)

    def _submit(self) -> None:
        text = "".join(self._buffer).strip()
        self._buffer = []
        self._composing = False
        self.writer.direct("\n")
        if text:
            if self.queue.enqueue(text):
                current, total, name = self.step_info.get()
                self.writer.direct(ui.queued_prompt(text, current, total, name, len(self.queue)))
            else:
                self.writer.direct(
                    ui.interrupted(f"Queue full ({self.queue.max_prompts} prompts), directive dropped")
                )
        self.writer.resume()
