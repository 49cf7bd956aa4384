"""
Terminal formatting helpers

The fixed escape-sequence vocabulary used by the frame renderer: SGR colour
through rich styles, cursor home, erase-to-end-of-line and erase-below, plus
the fixed-width numeric and bar formatters every section uses.
"""

from typing import List, Sequence, Tuple

from rich.cells import cell_len, get_character_cell_size, set_cell_size
from rich.color import ColorSystem
from rich.console import Console
from rich.control import Control
from rich.style import Style
from rich.text import Text

CLEAR_EOL = "\x1b[K"
CLEAR_BELOW = "\x1b[J"
CLEAR_SCREEN = "\x1b[2J"
RESET = "\x1b[0m"

# Only used to resolve styles when clipped rows are rendered back to ANSI
_clip_console = Console(color_system="standard", force_terminal=True, highlight=False)

# Colour names used by the sections, resolved through rich styles
COLOR_STYLES = {
    'black': Style(color="black"),
    'red': Style(color="red"),
    'green': Style(color="green"),
    'yellow': Style(color="yellow"),
    'blue': Style(color="blue"),
    'magenta': Style(color="magenta"),
    'cyan': Style(color="cyan"),
    'white': Style(color="white"),
    'bold': Style(bold=True),
    'reverse': Style(reverse=True),
}

SUFFIX_PREFIXES = ("kB", "MB", "GB", "TB", "PB")


def cursor_home() -> str:
    """Escape sequence moving the cursor to the top-left corner"""
    return str(Control.move_to(0, 0))


def styled(text: str, style) -> str:
    """
    Wrap text in the SGR sequence for a style

    Args:
        text: Text to colour
        style: Style name from COLOR_STYLES, a rich style string, or a Style

    Returns:
        Text wrapped in SGR start/reset sequences (plain text if style is empty)
    """
    if not style or not text:
        return text
    if isinstance(style, str):
        style = COLOR_STYLES.get(style) or Style.parse(style)
    return style.render(text, color_system=ColorSystem.STANDARD)


def strip_ansi(text: str) -> str:
    return Text.from_ansi(text).plain


def visible_len(text: str) -> int:
    """Terminal cells taken by a string containing escape sequences"""
    return Text.from_ansi(text).cell_len


def split_cells(text: str, cells: int) -> Tuple[str, str]:
    """Split plain text after at most ``cells`` terminal cells"""
    used = 0
    for pos, ch in enumerate(text):
        used += get_character_cell_size(ch)
        if used > cells:
            return text[:pos], text[pos:]
    return text, ""


def clip(text: str, width: int) -> str:
    """
    Clip a string to a number of terminal cells without breaking escape sequences

    Wide characters count as two cells. Once the width is exhausted the rest
    is dropped and attributes are reset.

    Args:
        text: Row text, possibly containing SGR sequences
        width: Maximum terminal cells

    Returns:
        Clipped text
    """
    if width <= 0:
        return ""
    row = Text.from_ansi(text, no_wrap=True, end="")
    if row.cell_len <= width:
        return text

    row.truncate(width)
    out = [
        segment.style.render(segment.text, color_system=ColorSystem.STANDARD)
        if segment.style else segment.text
        for segment in row.render(_clip_console)
    ]
    out.append(RESET)
    return "".join(out)


def add_suffix(value: float, suffix: str = "") -> str:
    """
    Format a byte count or rate with a 1000-based unit prefix

    Always the same width for a given suffix so table columns line up;
    zero renders as blanks.

    Args:
        value: Bytes (or bytes per second)
        suffix: Appended after the unit, e.g. '/s'

    Returns:
        e.g. ' 1.5kB', '  12MB/s', '       ' for zero

    Example:
        >>> add_suffix(1500)
        ' 1.5kB'
        >>> add_suffix(250000, '/s')
        ' 250kB/s'
    """
    if -0.001 < value < 0.001:
        return " " * (6 + len(suffix))

    i = 0
    for i in range(len(SUFFIX_PREFIXES)):
        value /= 1000.0
        if abs(value) < 1000.0 or i == len(SUFFIX_PREFIXES) - 1:
            break

    precision = 1 if value < 99 else 0
    return f"{value:4.{precision}f}{SUFFIX_PREFIXES[i]}{suffix}"


def progress_bar(permille: int, width: int, color: str = 'green',
                 fill: str = '#', background: str = '-', caption: str = "") -> str:
    """
    Render a progress bar

    Without a caption the bar is ``fill`` characters up to the progress
    point, then ``background``. With a caption the caption is laid over the
    bar and the completed part is shown in reverse video.

    Args:
        permille: Progress in thousandths (0-1000)
        width: Bar width in characters
        color: Colour for the completed part
        fill: Character for the completed part
        background: Character for the remaining part
        caption: Optional text drawn over the bar

    Returns:
        Bar string exactly ``width`` terminal cells wide
    """
    permille = max(0, min(1000, permille))
    done = permille * width // 1000

    if not caption:
        return styled(fill * done, color) + styled(background * (width - done), 'blue')

    done_text, rest = split_cells(set_cell_size(caption, width), done)
    return styled(done_text, f"reverse {color}") + rest


def piece_bar(pieces: Sequence[bool], width: int) -> str:
    """
    Render a piece bitfield compressed into one row

    Each cell covers len(pieces)/width pieces and is shaded by the fraction
    of them that are complete.

    Args:
        pieces: Piece bitfield (True = have)
        width: Row width

    Returns:
        Bar string of ``width`` printable characters
    """
    if width <= 0:
        return ""
    if not pieces:
        return styled(" " * width, 'blue')

    shades = " ░▒▓█"
    num = len(pieces)
    cells = []
    for cell in range(width):
        start = cell * num // width
        end = max(start + 1, (cell + 1) * num // width)
        have = sum(1 for p in pieces[start:end] if p)
        fraction = have / (end - start)
        cells.append(shades[int(round(fraction * (len(shades) - 1)))])
    return styled("".join(cells), 'green')


def piece_matrix(pieces: Sequence[bool], width: int) -> List[str]:
    """
    Render a piece bitfield as a block of rows, two pieces per character

    Each character cell shows two vertically stacked pieces using half-block
    glyphs, so a row of ``width`` characters covers ``2 * width`` pieces.

    Args:
        pieces: Piece bitfield (True = have)
        width: Row width

    Returns:
        Rows of the matrix, top first
    """
    if width <= 0 or not pieces:
        return []

    glyphs = {
        (False, False): " ",
        (True, False): "▀",
        (False, True): "▄",
        (True, True): "█",
    }
    rows = []
    num = len(pieces)
    for top_start in range(0, num, width * 2):
        cells = []
        for col in range(width):
            top = top_start + col
            bottom = top_start + width + col
            if top >= num:
                break
            have_top = pieces[top]
            have_bottom = bottom < num and pieces[bottom]
            cells.append(glyphs[(bool(have_top), bool(have_bottom))])
        rows.append(styled("".join(cells), 'cyan'))
    return rows


def flag_letters(letters: Sequence[Tuple[str, bool]]) -> str:
    """Render (letter, on) pairs, lit letters white and unlit ones blue"""
    return "".join(styled(ch, 'white' if on else 'blue') for ch, on in letters)


def truncate(text: str, max_length: int) -> str:
    """
    Truncate a display name

    Args:
        text: Name to shorten
        max_length: Maximum width in terminal cells

    Returns:
        Truncated name, at most ``max_length`` terminal cells wide
    """
    if cell_len(text) <= max_length:
        return text
    if max_length <= 3:
        return split_cells(text, max_length)[0]
    return split_cells(text, max_length - 3)[0] + "..."
