"""
View state for the console

Small aggregates holding the last-known snapshots the renderer needs. They
are mutated only on the control thread: by the event pump (snapshots) and by
key dispatch (cursor, filter, display toggles).
"""

from dataclasses import dataclass, fields
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from rich.cells import set_cell_size

from torrent_console.engine.types import DhtBucket, DhtLookup, JobState, JobStatus
from torrent_console.ui.formatting import add_suffix, progress_bar, styled, truncate


def _is_seeding(st: JobStatus) -> bool:
    return st.state in (JobState.SEEDING, JobState.FINISHED)


# Job filter categories: (tab label, predicate), selected with left/right
JOB_FILTERS: Tuple[Tuple[str, Callable[[JobStatus], bool]], ...] = (
    ("all", lambda st: True),
    ("downloading", lambda st: not st.paused and not _is_seeding(st)
        and st.state != JobState.CHECKING_FILES),
    ("not-paused", lambda st: not st.paused),
    ("seeding", lambda st: not st.paused and _is_seeding(st)),
    ("queued", lambda st: st.paused and st.auto_managed),
    ("stopped", lambda st: st.paused and not st.auto_managed),
    ("checking", lambda st: st.state in (JobState.CHECKING_FILES, JobState.CHECKING_RESUME_DATA)),
)


@dataclass
class DisplayFlags:
    """
    Operator display toggles

    Section toggles choose which optional parts of the frame are drawn;
    column toggles choose peer table columns. Mutated only by key dispatch,
    read-only to the renderer.
    """
    trackers: bool = False
    peers: bool = False
    log: bool = False
    downloads: bool = False
    matrix: bool = False
    file_progress: bool = False
    pad_files: bool = False
    dht_status: bool = False
    utp_stats: bool = False
    disk_stats: bool = False
    # peer table columns
    ip: bool = True
    timers: bool = False
    block: bool = False
    peer_rate: bool = False
    fails: bool = False
    send_bufs: bool = True

    def toggle(self, name: str) -> bool:
        """
        Flip one toggle

        Args:
            name: Field name

        Returns:
            The new value
        """
        if name not in {f.name for f in fields(self)}:
            raise KeyError(name)
        value = not getattr(self, name)
        setattr(self, name, value)
        return value


class TorrentListView:
    """
    Job list with filter tabs and a selection cursor

    The job list is replaced wholesale on every snapshot: a job missing from
    the latest snapshot is gone, and applying the same snapshot twice leaves
    the view unchanged. The cursor follows the selected job id across
    snapshots when it can.

    Example:
        view = TorrentListView()
        view.update_jobs(snapshot.statuses)
        view.set_size(120, 16)
        view.arrow_down()
        job = view.active_job()
    """

    def __init__(self, filters: Sequence[Tuple[str, Callable[[JobStatus], bool]]] = JOB_FILTERS):
        self.filters = tuple(filters)
        self._jobs: Dict[str, JobStatus] = {}
        self._filter = 0
        self._cursor = 0
        self._scroll = 0
        self._selected_id: Optional[str] = None
        self.width = 80
        self._height = 16

    # -- snapshot --------------------------------------------------------

    def update_jobs(self, statuses: Sequence[JobStatus]) -> None:
        """Replace the job list with a fresh snapshot"""
        self._jobs = {st.job_id: st for st in statuses}
        self._restore_cursor()

    @property
    def jobs(self) -> List[JobStatus]:
        """Every known job in display order"""
        return sorted(
            self._jobs.values(),
            key=lambda st: (st.queue_position < 0, st.queue_position, st.name, st.job_id)
        )

    def visible_jobs(self) -> List[JobStatus]:
        """Jobs passing the active filter, in display order"""
        _, predicate = self.filters[self._filter]
        return [st for st in self.jobs if predicate(st)]

    # -- filter ----------------------------------------------------------

    @property
    def max_filter(self) -> int:
        return len(self.filters)

    def filter(self) -> int:
        return self._filter

    def set_filter(self, index: int) -> None:
        if not 0 <= index < self.max_filter:
            raise IndexError(f"filter index {index} out of range")
        if index == self._filter:
            return
        self._filter = index
        self._cursor = 0
        self._scroll = 0
        self._selected_id = None
        self._restore_cursor()

    def filter_prev(self) -> bool:
        """Select the previous filter tab; False if already at the first"""
        if self._filter > 0:
            self.set_filter(self._filter - 1)
            return True
        return False

    def filter_next(self) -> bool:
        """Select the next filter tab; False if already at the last"""
        if self._filter < self.max_filter - 1:
            self.set_filter(self._filter + 1)
            return True
        return False

    # -- cursor ----------------------------------------------------------

    def arrow_up(self) -> None:
        if self._cursor > 0:
            self._cursor -= 1
        self._sync_selection()

    def arrow_down(self) -> None:
        if self._cursor < len(self.visible_jobs()) - 1:
            self._cursor += 1
        self._sync_selection()

    def cursor(self) -> int:
        return self._cursor

    def active_job(self) -> Optional[JobStatus]:
        """Status of the selected job, None if the filtered list is empty"""
        visible = self.visible_jobs()
        if not visible:
            return None
        return visible[min(self._cursor, len(visible) - 1)]

    def _restore_cursor(self) -> None:
        visible = self.visible_jobs()
        if self._selected_id is not None:
            for i, st in enumerate(visible):
                if st.job_id == self._selected_id:
                    self._cursor = i
                    break
        if self._cursor >= len(visible):
            self._cursor = max(0, len(visible) - 1)
        self._sync_selection()

    def _sync_selection(self) -> None:
        visible = self.visible_jobs()
        self._selected_id = visible[self._cursor].job_id if visible else None
        rows = self._job_rows()
        if self._cursor < self._scroll:
            self._scroll = self._cursor
        elif rows > 0 and self._cursor >= self._scroll + rows:
            self._scroll = self._cursor - rows + 1

    # -- geometry --------------------------------------------------------

    def set_size(self, width: int, height: int) -> None:
        """Resize the visible window (height includes the tab row)"""
        self.width = max(1, width)
        self._height = max(2, height)
        self._sync_selection()

    def height(self) -> int:
        return self._height

    def _job_rows(self) -> int:
        return self._height - 1

    # -- rendering -------------------------------------------------------

    def render(self) -> List[str]:
        """
        Render the tab row and the visible window of jobs

        Returns:
            At most ``height()`` rows
        """
        rows = [self._render_tabs()]
        visible = self.visible_jobs()
        window = visible[self._scroll:self._scroll + self._job_rows()]
        for offset, st in enumerate(window):
            rows.append(self._render_job(st, self._scroll + offset == self._cursor))
        return rows

    def _render_tabs(self) -> str:
        tabs = []
        for i, (label, _) in enumerate(self.filters):
            if i == self._filter:
                tabs.append(styled(f"[{label}]", 'reverse'))
            else:
                tabs.append(f"[{label}]")
        return " ".join(tabs)

    def _render_job(self, st: JobStatus, selected: bool) -> str:
        name_width = max(10, self.width - 90)
        state = "paused" if st.paused and not st.auto_managed else (
            "queued" if st.paused else st.state.value)
        if st.error:
            state = "error"
        color = 'red' if st.error else ('green' if _is_seeding(st) else 'yellow')
        flags = ("s" if st.sequential else "-") + ("a" if st.auto_managed else "-")

        name = set_cell_size(truncate(st.name or st.job_id, name_width), name_width)
        if selected:
            name = styled(name, 'reverse')

        row = (
            f"{name} {styled(state.ljust(15), color)} "
            f"{progress_bar(st.progress_ppm // 1000, 20, color)} "
            f"{(st.progress_ppm / 10000):5.1f}% "
            f"{styled(add_suffix(st.download_rate, '/s'), 'green')} "
            f"{styled(add_suffix(st.upload_rate, '/s'), 'red')} "
            f"peers: {st.num_peers:3d} seeds: {st.num_seeds:3d} {flags}"
        )
        if st.error:
            row += " " + styled(st.error, 'red')
        return row


# Session counter names read by SessionStatsView
COUNTER_RECV = "net.recv_bytes"
COUNTER_SENT = "net.sent_bytes"
COUNTER_RECV_PAYLOAD = "net.recv_payload_bytes"
COUNTER_SENT_PAYLOAD = "net.sent_payload_bytes"
COUNTER_PEERS = "peer.num_peers_connected"
COUNTER_DHT_NODES = "dht.dht_nodes"
COUNTER_UTP_CONNECTED = "utp.num_utp_connected"
COUNTER_UTP_IDLE = "utp.num_utp_idle"
COUNTER_UTP_PACKET_LOSS = "utp.utp_packet_loss"
COUNTER_UTP_TIMEOUT = "utp.utp_timeout"
COUNTER_DISK_QUEUED = "disk.queued_disk_jobs"
COUNTER_DISK_READ = "disk.num_blocks_read"
COUNTER_DISK_WRITTEN = "disk.num_blocks_written"
COUNTER_DISK_JOBS = "disk.num_running_disk_jobs"


class SessionStatsView:
    """
    Session-wide counters and the rates derived from consecutive samples

    Example:
        stats = SessionStatsView()
        stats.update_counters(event.counters, event.timestamp)
        rows = stats.render(display_flags)
    """

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._prev_counters: Dict[str, int] = {}
        self._timestamp: Optional[float] = None
        self._prev_timestamp: Optional[float] = None
        self.updates = 0

    def update_counters(self, counters: Mapping[str, int], timestamp: float) -> None:
        """Record a new stats sample"""
        self._prev_counters = self._counters
        self._prev_timestamp = self._timestamp
        self._counters = dict(counters)
        self._timestamp = timestamp
        self.updates += 1

    def value(self, name: str) -> int:
        return self._counters.get(name, 0)

    def rate(self, name: str) -> float:
        """Per-second rate of a counter between the last two samples"""
        if self._prev_timestamp is None or self._timestamp is None:
            return 0.0
        elapsed = self._timestamp - self._prev_timestamp
        if elapsed <= 0:
            return 0.0
        delta = self._counters.get(name, 0) - self._prev_counters.get(name, 0)
        return max(0.0, delta / elapsed)

    def render(self, flags: DisplayFlags) -> List[str]:
        """Render the session summary rows"""
        rows = [
            f"{styled('down:', 'green')} {add_suffix(self.rate(COUNTER_RECV), '/s')} "
            f"({add_suffix(self.value(COUNTER_RECV))}) "
            f"payload: {add_suffix(self.rate(COUNTER_RECV_PAYLOAD), '/s')} "
            f"{styled('up:', 'red')} {add_suffix(self.rate(COUNTER_SENT), '/s')} "
            f"({add_suffix(self.value(COUNTER_SENT))}) "
            f"payload: {add_suffix(self.rate(COUNTER_SENT_PAYLOAD), '/s')} "
            f"peers: {self.value(COUNTER_PEERS)} "
            f"dht nodes: {self.value(COUNTER_DHT_NODES)}"
        ]
        if flags.utp_stats:
            rows.append(
                f"uTP idle: {self.value(COUNTER_UTP_IDLE)} "
                f"connected: {self.value(COUNTER_UTP_CONNECTED)} "
                f"packet-loss: {self.value(COUNTER_UTP_PACKET_LOSS)} "
                f"timeouts: {self.value(COUNTER_UTP_TIMEOUT)}"
            )
        if flags.disk_stats:
            rows.append(
                f"disk queued jobs: {self.value(COUNTER_DISK_QUEUED)} "
                f"running: {self.value(COUNTER_DISK_JOBS)} "
                f"blocks read: {self.value(COUNTER_DISK_READ)} "
                f"written: {self.value(COUNTER_DISK_WRITTEN)}"
            )
        return rows


class DhtView:
    """Last distributed-lookup diagnostics snapshot"""

    def __init__(self):
        self.routing_table: Tuple[DhtBucket, ...] = ()
        self.active_lookups: Tuple[DhtLookup, ...] = ()

    def update(self, routing_table: Sequence[DhtBucket], active_lookups: Sequence[DhtLookup]) -> None:
        self.routing_table = tuple(routing_table)
        self.active_lookups = tuple(active_lookups)
