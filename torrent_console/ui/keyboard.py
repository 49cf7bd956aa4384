"""
Key decoding

Turns bytes read from the terminal into keys: printable commands are returned
as one-character strings, ``ESC [ <code>`` sequences as arrow keys.
"""

import enum
import logging
from typing import Optional, Union

from torrent_console.ui.terminal import KEY_EOF, Terminal

logger = logging.getLogger(__name__)

ESCAPE = 27
CSI_INTRODUCER = ord('[')

# The rest of an escape sequence is already buffered when the prefix arrives
ESCAPE_FOLLOW_TIMEOUT = 0.1


class SpecialKey(enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    EOF = "eof"


ARROW_CODES = {
    68: SpecialKey.LEFT,
    67: SpecialKey.RIGHT,
    65: SpecialKey.UP,
    66: SpecialKey.DOWN,
}

Key = Union[str, SpecialKey]


def read_key(terminal: Terminal, timeout: float) -> Optional[Key]:
    """
    Wait for one key

    Args:
        terminal: Source of input bytes
        timeout: Seconds to wait for the first byte

    Returns:
        A one-character command, a SpecialKey, or None when nothing usable
        arrived (timeout, lone escape, unknown escape sequence)
    """
    byte = terminal.read_byte(timeout)
    if byte is None:
        return None
    if byte == KEY_EOF:
        return SpecialKey.EOF
    if byte == ESCAPE:
        return _read_escape_sequence(terminal)
    return chr(byte)


def _read_escape_sequence(terminal: Terminal) -> Optional[Key]:
    second = terminal.read_byte(ESCAPE_FOLLOW_TIMEOUT)
    if second is None:
        return None
    if second == KEY_EOF:
        return SpecialKey.EOF
    if second != CSI_INTRODUCER:
        return None

    code = terminal.read_byte(ESCAPE_FOLLOW_TIMEOUT)
    if code is None:
        return None
    if code == KEY_EOF:
        return SpecialKey.EOF

    key = ARROW_CODES.get(code)
    if key is None:
        logger.debug(f"Ignoring escape sequence ESC [ {code}")
    return key
