"""Help screen"""

from typing import Callable, Optional

from torrent_console.ui.keyboard import read_key
from torrent_console.ui.terminal import Terminal

HELP_TEXT = """\
HELP SCREEN (press any key to dismiss)

CLIENT OPTIONS

[q] quit client                                 [m] add magnet link

TORRENT ACTIONS
[p] pause/resume selected torrent               [W] remove all web seeds
[s] toggle sequential download                  [j] force recheck
[space] toggle session pause                    [c] clear error
[v] scrape                                      [D] delete torrent and data
[r] force reannounce                            [R] save resume data for all torrents
[o] set piece deadlines (sequential dl)         [k] toggle force-started

DISPLAY OPTIONS
left/right arrow keys: select torrent filter
up/down arrow keys: select torrent
[i] toggle show peers                           [d] toggle show downloading pieces
[u] show uTP stats                              [f] toggle show files
[g] show DHT                                    [x] toggle disk cache stats
[t] show trackers                               [l] toggle show log
[P] show pad files (in file list)               [y] toggle show piece matrix

COLUMN OPTIONS
[1] toggle IP column
[3] toggle timers column                        [4] toggle block progress column
[5] toggle peer rate column                     [6] toggle failures column
[7] toggle send buffers column
"""

HELP_POLL_INTERVAL = 0.5


def show_help(terminal: Terminal, should_stop: Optional[Callable[[], bool]] = None) -> None:
    """
    Draw the help screen and block until any key is pressed

    Args:
        terminal: Terminal to draw on and read from
        should_stop: Checked between polls; returning True dismisses the
            screen without a key (e.g. on SIGTERM)
    """
    terminal.clear_screen()
    terminal.write(HELP_TEXT)
    # Whole escape sequences are consumed so arrow keys leave nothing behind
    while read_key(terminal, HELP_POLL_INTERVAL) is None:
        if should_stop is not None and should_stop():
            break
