"""
Frame renderer

Pure transform from view state, display toggles, the log and the terminal
size to one terminal frame. Every section checks the remaining vertical
budget before emitting a row and stops mid-section once it is exhausted, so a
frame never scrolls the terminal.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from torrent_console.engine.types import (
    BlockInfo,
    BlockState,
    FileEntry,
    JobStatus,
    PartialPiece,
    PeerInfo,
    TrackerEntry,
)
from torrent_console.ui.formatting import (
    CLEAR_BELOW,
    CLEAR_EOL,
    add_suffix,
    clip,
    cursor_home,
    flag_letters,
    piece_bar,
    piece_matrix,
    progress_bar,
    styled,
)
from torrent_console.ui.views import DhtView, DisplayFlags, SessionStatsView, TorrentListView

PIECE_BAR_MAX_WIDTH = 126
PIECE_MATRIX_MAX_WIDTH = 160
FILE_PROGRESS_WIDTH = 65
# progress bar plus " %7s p: %d " trailer
FILE_CELL_WIDTH = FILE_PROGRESS_WIDTH + 13

BLOCK_PROGRESS_GLYPHS = "▁▂▃▄▅▆▇█"
DHT_BUCKET_MAX_NODES = 128
DHT_BUCKET_MAX_REPLACEMENTS = 8


@dataclass
class FrameInput:
    """
    Everything one frame is rendered from

    ``peers``, ``trackers``, ``download_queue`` and ``files`` are the
    transient details of the active job, pulled by the control loop only
    when the matching section is enabled; they are empty otherwise.
    """
    width: int
    height: int
    view: TorrentListView
    stats: SessionStatsView
    dht: DhtView
    flags: DisplayFlags
    log: Sequence[str] = ()
    active: Optional[JobStatus] = None
    peers: Sequence[PeerInfo] = ()
    trackers: Sequence[TrackerEntry] = ()
    download_queue: Sequence[PartialPiece] = ()
    files: Sequence[FileEntry] = ()


@dataclass(frozen=True)
class Frame:
    text: str
    rows: int


@dataclass
class _RowBudget:
    """Collects rows until the frame's row limit is reached"""
    limit: int
    width: int
    rows: List[str] = field(default_factory=list)

    def remaining(self) -> int:
        return self.limit - len(self.rows)

    def emit(self, row: str) -> bool:
        """Append a row; False (and nothing appended) when the budget is spent"""
        if self.remaining() <= 0:
            return False
        self.rows.append(clip(row, self.width))
        return True


def render_frame(frame_input: FrameInput) -> Frame:
    """
    Render one frame

    The frame starts with cursor-home, every row ends with erase-to-end-of-
    line and the frame ends with erase-below. At most ``height - 1`` rows are
    emitted so the trailing newline never scrolls the screen.

    Args:
        frame_input: View state and terminal geometry

    Returns:
        Frame text and the number of rows it occupies
    """
    fi = frame_input
    budget = _RowBudget(limit=max(0, fi.height - 1), width=max(1, fi.width))

    _render_job_list(budget, fi)
    for row in fi.stats.render(fi.flags):
        budget.emit(row)

    if fi.flags.dht_status:
        _render_dht(budget, fi.dht)

    if fi.active is not None:
        budget.emit(piece_bar(fi.active.pieces, min(PIECE_BAR_MAX_WIDTH, fi.width)))

        if fi.flags.peers and fi.peers:
            _render_peers(budget, fi.peers, fi.flags)
        if fi.flags.trackers:
            _render_trackers(budget, fi.trackers)
        if fi.flags.matrix:
            for row in piece_matrix(fi.active.pieces, min(fi.width, PIECE_MATRIX_MAX_WIDTH)):
                if not budget.emit(row):
                    break
        if fi.flags.downloads:
            _render_download_queue(budget, fi.download_queue, fi.width)
        if fi.flags.file_progress and fi.active.has_metadata:
            _render_files(budget, fi.files, fi.flags.pad_files, fi.width)

    if fi.flags.log:
        _render_log(budget, fi.log)

    text = cursor_home() + "".join(row + CLEAR_EOL + "\n" for row in budget.rows) + CLEAR_BELOW
    return Frame(text=text, rows=len(budget.rows))


def _render_job_list(budget: _RowBudget, fi: FrameInput) -> None:
    rows = fi.view.render()
    # The job list keeps its height so the sections below do not jump around
    rows += [""] * max(0, fi.view.height() - len(rows))
    for row in rows:
        if not budget.emit(row):
            return


def _render_dht(budget: _RowBudget, dht: DhtView) -> None:
    for index, bucket in enumerate(dht.routing_table):
        nodes = max(0, min(DHT_BUCKET_MAX_NODES, bucket.num_nodes))
        replacements = max(0, min(DHT_BUCKET_MAX_REPLACEMENTS, bucket.num_replacements))
        row = (f"{index:3d} [{bucket.num_nodes:3d}, {bucket.num_replacements}] "
               f"{'#' * nodes}{'-' * replacements}")
        if not budget.emit(row):
            return

    for lookup in dht.active_lookups:
        row = (
            f"  {lookup.type:>10s} target: {lookup.target} "
            f"[limit: {lookup.branch_factor:2d}] "
            f"in-flight: {lookup.outstanding_requests:<2d} "
            f"left: {lookup.nodes_left:<3d} "
            f"1st-timeout: {lookup.first_timeout:<2d} "
            f"timeouts: {lookup.timeouts:<2d} "
            f"responses: {lookup.responses:<2d} "
            f"last_sent: {lookup.last_sent:<2d} "
        )
        if not budget.emit(row):
            return


# -- peers ---------------------------------------------------------------

PEER_FLAG_LETTERS = (
    ("I", "interesting"),
    ("C", "choked"),
    ("i", "remote_interested"),
    ("c", "remote_choked"),
    ("x", "supports_extensions"),
    ("o", "local_connection"),
    ("p", "on_parole"),
    ("O", "optimistic_unchoke"),
    ("S", "snubbed"),
    ("U", "upload_only"),
    ("e", "endgame_mode"),
)

BANDWIDTH_STATE_LETTERS = (("d", "bw_disk"), ("l", "bw_limit"), ("n", "bw_network"))

PEER_SOURCE_LETTERS = (
    ("t", "tracker"),
    ("p", "pex"),
    ("d", "dht"),
    ("l", "lsd"),
    ("r", "resume_data"),
    ("i", "incoming"),
)


def format_endpoint(ip: str, port: int) -> str:
    if ":" in ip:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


def peer_table_header(flags: DisplayFlags) -> str:
    header = ""
    if flags.ip:
        header += "IP                             "
    header += ("progress        down     (total | peak   )  up      (total | peak   ) "
               "sent-req tmo bsy rcv flags         dn  up  source  ")
    if flags.fails:
        header += "fail hshf "
    if flags.send_bufs:
        header += "rq sndb (recvb |alloc | wmrk ) q-bytes "
    if flags.timers:
        header += "inactive wait timeout q-time "
    header += "  v disk ^    rtt  "
    if flags.block:
        header += "block-progress "
    if flags.peer_rate:
        header += "est.rec.rate "
    header += "client "
    return header


def _letters(names: frozenset, table) -> str:
    return flag_letters([(letter, name in names) for letter, name in table])


def _encryption_letter(peer: PeerInfo) -> str:
    if "rc4_encrypted" in peer.flags:
        return styled("E", 'white')
    if "plaintext_encrypted" in peer.flags:
        return styled("E", 'cyan')
    return styled("E", 'blue')


def format_peer_row(peer: PeerInfo, flags: DisplayFlags) -> str:
    """Render one peer table row with the enabled columns"""
    row = ""
    if flags.ip:
        endpoint = format_endpoint(peer.ip, peer.port)
        if "utp_socket" in peer.flags:
            endpoint += " [uTP]"
        if "i2p_socket" in peer.flags:
            endpoint += " [i2p]"
        row += f"{endpoint:<30s} "

    requests = f"{peer.download_queue_length}/{peer.target_dl_queue_length}"[:7]
    row += (
        f"{progress_bar(peer.progress_ppm // 1000, 15, 'green', '#', '-', f'{peer.progress_ppm / 10000:.1f}%')} "
        + styled(f"{add_suffix(peer.down_speed, '/s')} ({add_suffix(peer.total_download)}|"
                 f"{add_suffix(peer.download_rate_peak, '/s')})", 'green') + " "
        + styled(f"{add_suffix(peer.up_speed, '/s')} ({add_suffix(peer.total_upload)}|"
                 f"{add_suffix(peer.upload_rate_peak, '/s')})", 'red') + " "
        + f"{requests:>7s} {peer.timed_out_requests:4d}{peer.busy_requests:4d}{peer.upload_queue_length:4d} "
        + _letters(peer.flags, PEER_FLAG_LETTERS)
        + _encryption_letter(peer)
        + _letters(peer.flags, (("h", "holepunched"),)) + " "
        + _letters(peer.read_state, BANDWIDTH_STATE_LETTERS) + " "
        + _letters(peer.write_state, BANDWIDTH_STATE_LETTERS) + " "
        + _letters(peer.source, PEER_SOURCE_LETTERS) + " "
    )

    if flags.fails:
        row += f"{peer.failcount:4d} {peer.num_hashfails:4d} "
    if flags.send_bufs:
        row += (f"{peer.requests_in_buffer:2d} {peer.used_send_buffer:6d} "
                f"{peer.used_receive_buffer:6d}|{peer.receive_buffer_size:6d}|"
                f"{peer.receive_buffer_watermark:6d}{peer.queue_bytes // 1000:5d}kB ")
    if flags.timers:
        # The request timeout only means something with requests outstanding
        timeout = str(peer.request_timeout) if peer.download_queue_length > 0 else "-"
        row += (f"{int(peer.last_active):8d} {int(peer.last_request):4d} "
                f"{timeout:>7s} {int(peer.download_queue_time):6d} ")

    row += f"{add_suffix(peer.pending_disk_bytes)}|{add_suffix(peer.pending_disk_read_bytes)} {peer.rtt:5d} "

    if flags.block:
        if peer.downloading_piece_index >= 0 and peer.downloading_total > 0:
            caption = f"{peer.downloading_piece_index}:{peer.downloading_block_index}"
            row += progress_bar(peer.downloading_progress * 1000 // peer.downloading_total,
                                14, 'green', '-', '#', caption)
        else:
            row += progress_bar(0, 14)

    if flags.peer_rate:
        unchoked = "choked" not in peer.flags
        row += " " + (add_suffix(peer.estimated_reciprocation_rate, '/s') if unchoked else "      ")

    row += "  " + peer.client
    return row


def _render_peers(budget: _RowBudget, peers: Sequence[PeerInfo], flags: DisplayFlags) -> None:
    if not budget.emit(peer_table_header(flags)):
        return
    for peer in peers:
        # Half-open connections are not interesting yet
        if "handshake" in peer.flags or "connecting" in peer.flags:
            continue
        # Keep one row free for the sections below
        if budget.remaining() <= 1:
            return
        budget.emit(format_peer_row(peer, flags))


# -- trackers ------------------------------------------------------------

def format_tracker_row(entry: TrackerEntry) -> str:
    return '%2d %-55s fails: %-3d (%-3d) %s %8s %5d "%s" %s' % (
        entry.tier,
        entry.url,
        entry.fails,
        entry.fail_limit,
        "OK " if entry.verified else "-  ",
        entry.next_announce,
        max(0, entry.min_announce),
        entry.last_error,
        entry.message,
    )


def _render_trackers(budget: _RowBudget, trackers: Sequence[TrackerEntry]) -> None:
    for entry in trackers:
        if not budget.emit(format_tracker_row(entry)):
            return


# -- download queue ------------------------------------------------------

def _block_cell(block: BlockInfo) -> str:
    if block.bytes_progress > 0 and block.state == BlockState.REQUESTED:
        if block.num_peers > 1:
            style = 'bold'
        else:
            style = 'magenta' if block.snubbed else 'yellow'
        size = max(1, block.block_size)
        glyph = BLOCK_PROGRESS_GLYPHS[min(len(BLOCK_PROGRESS_GLYPHS) - 1,
                                          block.bytes_progress * len(BLOCK_PROGRESS_GLYPHS) // size)]
        return styled(glyph, style)
    if block.state == BlockState.FINISHED:
        return styled(" ", 'reverse green')
    if block.state == BlockState.WRITING:
        return styled(" ", 'reverse cyan')
    if block.state == BlockState.REQUESTED:
        return styled("=", 'magenta') if block.snubbed else "="
    return " "


def piece_cells(piece: PartialPiece) -> List[str]:
    """
    Render one in-flight piece as a list of one-character cells

    Returns:
        ``%5d:[`` prefix cells, one cell per block, then ``]``
    """
    cells = list(f"{piece.piece_index:5d}:[")
    cells.extend(_block_cell(block) for block in piece.blocks)
    cells.append("]")
    return cells


def download_legend() -> str:
    return (f"{styled(' ', 'reverse yellow')} downloading | "
            f"{styled(' ', 'reverse cyan')} writing | "
            f"{styled(' ', 'reverse green')} flushed | "
            f"{styled(' ', 'reverse magenta')} snubbed | = requested")


def _render_download_queue(budget: _RowBudget, queue: Sequence[PartialPiece], width: int) -> None:
    """
    Pack in-flight pieces side by side until the row would overflow

    A piece wider than the terminal switches to continuous mode: its cells
    run on across as many physical rows as needed.
    """
    line: List[str] = []
    for piece in queue:
        # Room for at least one row of this piece and the legend
        if budget.remaining() < 3:
            break

        cells = piece_cells(piece)
        if len(cells) > width:
            for cell in cells:
                line.append(cell)
                if len(line) >= width:
                    budget.emit("".join(line))
                    line = []
            continue

        if line and len(line) + len(cells) > width:
            budget.emit("".join(line))
            line = []
        line.extend(cells)

    if line:
        budget.emit("".join(line))
    budget.emit(download_legend())


# -- files ---------------------------------------------------------------

def format_file_cell(entry: FileEntry) -> str:
    if entry.size > 0:
        progress = entry.progress * 1000 // entry.size
    else:
        progress = 1000

    title = entry.name
    if not entry.complete:
        title += f" ({progress / 10:.1f}%)"
    if entry.open_mode:
        title += " [ " + " ".join(entry.open_mode) + " ]"

    bar = progress_bar(progress, FILE_PROGRESS_WIDTH,
                       'green' if entry.complete else 'yellow', '-', '#', title)
    return f"{bar} {add_suffix(entry.progress):>7s} p: {entry.priority} "


def _render_files(budget: _RowBudget, files: Sequence[FileEntry], show_pad_files: bool, width: int) -> None:
    line = ""
    used = 0
    for entry in files:
        if budget.remaining() <= 0:
            return

        if entry.pad_file:
            if show_pad_files:
                if line:
                    budget.emit(line)
                    line, used = "", 0
                budget.emit(styled(f"{entry.name:<70s} {add_suffix(entry.size)}", 'blue'))
            continue

        if used and used + FILE_CELL_WIDTH > width:
            budget.emit(line)
            line, used = "", 0
        line += format_file_cell(entry)
        used += FILE_CELL_WIDTH

    if line:
        budget.emit(line)


# -- log -----------------------------------------------------------------

def _render_log(budget: _RowBudget, log: Sequence[str]) -> None:
    entries = list(log)
    room = budget.remaining()
    if room <= 0:
        return
    # Oldest entries give way first
    for line in entries[-room:]:
        budget.emit(line)