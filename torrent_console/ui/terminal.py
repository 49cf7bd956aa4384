"""
Terminal I/O adapter

Raw-mode keyboard reads with a bounded wait, terminal size queries and frame
output. Raw mode is a scoped resource: it is acquired by a context manager and
restored on every exit path.
"""

import logging
import os
import select
import shutil
import sys
import termios
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from torrent_console.ui.formatting import CLEAR_SCREEN, cursor_home

logger = logging.getLogger(__name__)

# read_byte() result when stdin reached end of file
KEY_EOF = -1

DEFAULT_SIZE = (80, 50)


class Terminal:
    """
    Keyboard and screen access for the control loop

    Single-character input without echo is enabled only inside ``raw_mode()``;
    when stdin is not a TTY the adapter still works, it just cannot change
    terminal modes.

    Example:
        terminal = Terminal()
        with terminal.raw_mode():
            key = terminal.read_byte(timeout=0.5)
            terminal.write(frame)
    """

    def __init__(self, stdin=None, stdout=None):
        """
        Initialize terminal adapter

        Args:
            stdin: Input stream (default: sys.stdin)
            stdout: Output stream (default: sys.stdout)
        """
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self._saved_settings = None

    def is_tty(self) -> bool:
        try:
            return self.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    def _fileno(self) -> int:
        return self.stdin.fileno()

    @contextmanager
    def raw_mode(self) -> Iterator[None]:
        """
        Disable echo and canonical input for the duration of the block

        Settings are restored however the block exits (normal quit,
        signal, exception).
        """
        if not self.is_tty():
            logger.warning("stdin is not a TTY - keyboard controls limited")
            yield
            return

        fd = self._fileno()
        saved = termios.tcgetattr(fd)
        self._saved_settings = saved
        try:
            self._set_mode(fd, saved, echo=False, canonical=False)
            yield
        finally:
            termios.tcsetattr(fd, termios.TCSANOW, saved)
            self._saved_settings = None

    @contextmanager
    def cooked_mode(self) -> Iterator[None]:
        """Temporarily re-enable echo and line editing (for prompts)"""
        if not self.is_tty() or self._saved_settings is None:
            yield
            return

        fd = self._fileno()
        current = termios.tcgetattr(fd)
        try:
            self._set_mode(fd, current, echo=True, canonical=True)
            yield
        finally:
            termios.tcsetattr(fd, termios.TCSANOW, current)

    @staticmethod
    def _set_mode(fd: int, base: list, echo: bool, canonical: bool) -> None:
        settings = list(base)
        settings[6] = list(base[6])
        lflag = settings[3]
        lflag = lflag | termios.ECHO if echo else lflag & ~termios.ECHO
        lflag = lflag | termios.ICANON if canonical else lflag & ~termios.ICANON
        settings[3] = lflag
        # Read returns as soon as one byte is available
        settings[6][termios.VMIN] = 1
        settings[6][termios.VTIME] = 0
        termios.tcsetattr(fd, termios.TCSANOW, settings)

    def read_byte(self, timeout: float) -> Optional[int]:
        """
        Wait up to ``timeout`` seconds for one input byte

        Args:
            timeout: Seconds to wait; 0 polls without waiting

        Returns:
            The byte value, KEY_EOF at end of input, or None on timeout
        """
        fd = self._fileno()
        try:
            ready, _, _ = select.select([fd], [], [], max(0.0, timeout))
        except OSError as e:
            logger.error(f"select failed: {e}")
            return None

        if not ready:
            return None

        data = os.read(fd, 1)
        if not data:
            return KEY_EOF
        return data[0]

    def size(self) -> Tuple[int, int]:
        """Terminal (width, height), falling back to 80x50"""
        size = shutil.get_terminal_size(DEFAULT_SIZE)
        return size.columns, size.lines

    def write(self, text: str) -> None:
        self.stdout.write(text)
        self.stdout.flush()

    def clear_screen(self) -> None:
        self.write(CLEAR_SCREEN + cursor_home())

    def prompt(self, message: str) -> str:
        """
        Ask for a line of input with echo enabled

        Args:
            message: Prompt text

        Returns:
            The entered line without surrounding whitespace ('' at end of input)
        """
        self.write(message)
        with self.cooked_mode():
            line = self.stdin.readline()
        return line.strip()
