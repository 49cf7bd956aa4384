"""
Interactive control loop

The top-level scheduler. Each tick it asks the engine for fresh snapshots,
waits a bounded time for a key, dispatches keys, pumps events, renders a
frame and runs the directory monitor when it is due. Quit is decided only
here: signal handlers just set a flag checked at the top of each tick.
"""

import enum
import logging
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from torrent_console.engine.protocol import Engine, EngineError, JobCommand
from torrent_console.engine.types import JobFlag, JobState, JobStatus, SaveFlag
from torrent_console.ui.help import show_help
from torrent_console.ui.keyboard import Key, SpecialKey, read_key
from torrent_console.ui.log_ring import LogRing
from torrent_console.ui.renderer import Frame, FrameInput, render_frame
from torrent_console.ui.terminal import Terminal
from torrent_console.ui.views import DhtView, DisplayFlags, SessionStatsView, TorrentListView
from torrent_console.workflow.dir_monitor import DirectoryMonitor
from torrent_console.workflow.event_pump import EventPump
from torrent_console.workflow.job_adder import JobAdder
from torrent_console.workflow.recovery_tracker import RecoveryTracker
from torrent_console.workflow.resume_store import ResumeLoader, ResumeStore, save_session_state

logger = logging.getLogger(__name__)

# Keys flipping a DisplayFlags field
TOGGLE_KEYS: Dict[str, str] = {
    't': 'trackers',
    'i': 'peers',
    'l': 'log',
    'd': 'downloads',
    'y': 'matrix',
    'f': 'file_progress',
    'P': 'pad_files',
    'g': 'dht_status',
    'u': 'utp_stats',
    'x': 'disk_stats',
    '1': 'ip',
    '3': 'timers',
    '4': 'block',
    '5': 'peer_rate',
    '6': 'fails',
    '7': 'send_bufs',
}

# Keys issuing one argument-less command on the selected job
JOB_COMMAND_KEYS: Dict[str, JobCommand] = {
    'j': JobCommand.RECHECK,
    'r': JobCommand.REANNOUNCE,
    'v': JobCommand.SCRAPE,
    'c': JobCommand.CLEAR_ERROR,
    'W': JobCommand.REMOVE_WEB_SEEDS,
}

DEADLINE_PIECES = 300
# Saves requested between progress updates during shutdown
SHUTDOWN_PROGRESS_EVERY = 32


class LoopState(enum.Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    DISPATCHING = "dispatching"
    RENDERING = "rendering"


@dataclass
class ControlContext:
    """
    State owned by the control thread

    Passed explicitly to the event pump and the renderer. Only
    ``quit_requested`` is touched from elsewhere (signal handlers).
    """
    view: TorrentListView = field(default_factory=TorrentListView)
    stats: SessionStatsView = field(default_factory=SessionStatsView)
    dht: DhtView = field(default_factory=DhtView)
    flags: DisplayFlags = field(default_factory=DisplayFlags)
    log: LogRing = field(default_factory=LogRing)
    tracker: RecoveryTracker = field(default_factory=RecoveryTracker)
    quit_requested: threading.Event = field(default_factory=threading.Event)


@dataclass
class LoopOptions:
    """
    Attributes:
        refresh_delay: Seconds to wait for a key each tick
        shutdown_timeout: Overall limit on the shutdown save drain (0 = wait forever)
        drain_wait: Seconds per wait for the next event while draining
        session_state_file: Where the engine's session state is written on exit
    """
    refresh_delay: float = 0.5
    shutdown_timeout: float = 120.0
    drain_wait: float = 10.0
    session_state_file: str = ".ses_state"


class ControlLoop:
    """
    Drives the console until quit, then drains outstanding saves

    Example:
        loop = ControlLoop(engine, Terminal(), ctx, pump, adder, store, monitor=monitor)
        exit_code = loop.run()
    """

    def __init__(
        self,
        engine: Engine,
        terminal: Terminal,
        ctx: ControlContext,
        pump: EventPump,
        adder: JobAdder,
        store: ResumeStore,
        monitor: Optional[DirectoryMonitor] = None,
        loader: Optional[ResumeLoader] = None,
        options: Optional[LoopOptions] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.engine = engine
        self.terminal = terminal
        self.ctx = ctx
        self.pump = pump
        self.adder = adder
        self.store = store
        self.monitor = monitor
        self.loader = loader
        self.options = options or LoopOptions()
        self.clock = clock
        self.state = LoopState.IDLE
        self.ticks = 0

    # -- main loop -------------------------------------------------------

    def run(self) -> int:
        """
        Run ticks until quit, then shut down

        Returns:
            Process exit code (always 0 on a normal quit)
        """
        self.run_interactive()
        return self.shutdown()

    def run_interactive(self) -> None:
        """Run ticks in raw mode until quit; the terminal is restored on return"""
        with self._signal_handlers(), self.terminal.raw_mode():
            self.terminal.clear_screen()
            while not self.ctx.quit_requested.is_set():
                self.tick()

    def tick(self) -> bool:
        """
        Run one iteration of the loop

        Returns:
            False once quit has been requested
        """
        ctx = self.ctx
        if ctx.quit_requested.is_set():
            return False
        self.ticks += 1

        # Snapshot requests go out before the pump drains this tick's events
        self.engine.post_job_updates()
        self.engine.post_session_stats()
        self.engine.post_dht_stats()

        width, height = self.terminal.size()
        ctx.view.set_size(width, height // 3)

        self.state = LoopState.AWAITING_INPUT
        key = read_key(self.terminal, self.options.refresh_delay)
        if key is not None:
            self.state = LoopState.DISPATCHING
            self.dispatch_pending(key)
            if ctx.quit_requested.is_set():
                self.state = LoopState.IDLE
                return False

        ctx.log.flush_pending()
        self.pump.drain()

        self.state = LoopState.RENDERING
        frame = self.render(width, height)
        self.terminal.write(frame.text)

        if self.monitor is not None:
            self.monitor.poll(self.clock())

        self.state = LoopState.IDLE
        return not ctx.quit_requested.is_set()

    def dispatch_pending(self, key: Optional[Key]) -> None:
        """Dispatch ``key`` and then every key already buffered, until quit"""
        while key is not None:
            self.dispatch(key)
            if self.ctx.quit_requested.is_set():
                return
            key = read_key(self.terminal, 0)

    # -- key dispatch ----------------------------------------------------

    def dispatch(self, key: Key) -> None:
        """Apply one decoded key"""
        ctx = self.ctx
        view = ctx.view

        if key is SpecialKey.EOF:
            logger.info("End of input, quitting")
            ctx.quit_requested.set()
        elif key is SpecialKey.LEFT:
            view.filter_prev()
        elif key is SpecialKey.RIGHT:
            view.filter_next()
        elif key is SpecialKey.UP:
            view.arrow_up()
        elif key is SpecialKey.DOWN:
            view.arrow_down()
        elif key == 'q':
            ctx.quit_requested.set()
        elif key in TOGGLE_KEYS:
            ctx.flags.toggle(TOGGLE_KEYS[key])
        elif key in JOB_COMMAND_KEYS:
            self._job_command(JOB_COMMAND_KEYS[key])
        elif key == ' ':
            self.toggle_session_pause()
        elif key == 'm':
            self.add_magnet_prompt()
        elif key == 'D':
            self.delete_active_job()
        elif key == 's':
            self.toggle_sequential()
        elif key == 'R':
            self.save_all()
        elif key == 'o':
            self.set_piece_deadlines()
        elif key == 'p':
            self.toggle_pause()
        elif key == 'k':
            self.toggle_auto_managed()
        elif key == 'h':
            show_help(self.terminal, ctx.quit_requested.is_set)
        else:
            logger.debug(f"Unbound key: {key!r}")

    def toggle_session_pause(self) -> None:
        if self.engine.is_session_paused():
            self.engine.resume_session()
        else:
            self.engine.pause_session()

    def add_magnet_prompt(self) -> None:
        uri = self.terminal.prompt("Enter magnet link:\n")
        if not uri:
            logger.warning("failed to read magnet link")
            return
        self.adder.add_magnet(uri)

    def delete_active_job(self) -> None:
        """Confirm, then remove the selected job with its data and recovery file"""
        job = self.ctx.view.active_job()
        if job is None:
            return
        answer = self.terminal.prompt(
            f"\n\nARE YOU SURE YOU WANT TO DELETE THE FILES FOR '{job.name}'. "
            "THIS OPERATION CANNOT BE UNDONE. (y/N)"
        )
        if answer[:1] != 'y':
            return
        self.store.remove(job.job_id)
        self._job_command(JobCommand.REMOVE, delete_data=True)

    def toggle_sequential(self) -> None:
        job = self.ctx.view.active_job()
        if job is None:
            return
        new_flags = JobFlag.NONE if job.sequential else JobFlag.SEQUENTIAL_DOWNLOAD
        self._job_command(JobCommand.SET_FLAGS, flags=new_flags, mask=JobFlag.SEQUENTIAL_DOWNLOAD)

    def save_all(self) -> int:
        """
        Request recovery state for every job that needs saving

        Returns:
            Number of save requests issued
        """
        try:
            dirty = self.engine.job_statuses(lambda st: st.need_save_resume)
        except EngineError as e:
            logger.warning(f"Could not list torrents to save: {e}")
            return 0
        for st in dirty:
            self.pump.request_save(st.job_id, SaveFlag.SAVE_INFO_DICT)
        return len(dirty)

    def set_piece_deadlines(self) -> None:
        """Ask for the first pieces in order, one second apart"""
        job = self.ctx.view.active_job()
        if job is None:
            return
        for piece in range(min(job.num_pieces, DEADLINE_PIECES)):
            if not self._job_command(JobCommand.SET_PIECE_DEADLINE,
                                     piece=piece, deadline_ms=(piece + 5) * 1000):
                break

    def toggle_pause(self) -> None:
        """
        Pause or resume the selected job

        A job paused outside auto-management resumes by re-entering it;
        anything else leaves auto-management and pauses gracefully.
        """
        job = self.ctx.view.active_job()
        if job is None:
            return
        if job.flags & (JobFlag.AUTO_MANAGED | JobFlag.PAUSED) == JobFlag.PAUSED:
            self._job_command(JobCommand.SET_FLAGS,
                              flags=JobFlag.AUTO_MANAGED, mask=JobFlag.AUTO_MANAGED)
        else:
            self._job_command(JobCommand.UNSET_FLAGS, flags=JobFlag.AUTO_MANAGED)
            self._job_command(JobCommand.PAUSE, graceful=True)

    def toggle_auto_managed(self) -> None:
        """Toggle force-start; a queued job is resumed right away"""
        job = self.ctx.view.active_job()
        if job is None:
            return
        new_flags = JobFlag.NONE if job.auto_managed else JobFlag.AUTO_MANAGED
        self._job_command(JobCommand.SET_FLAGS, flags=new_flags, mask=JobFlag.AUTO_MANAGED)
        if job.auto_managed and job.paused:
            self._job_command(JobCommand.RESUME)

    def _job_command(self, command: JobCommand, **args) -> bool:
        job = self.ctx.view.active_job()
        if job is None:
            return False
        try:
            self.engine.job_command(job.job_id, command, **args)
            return True
        except EngineError as e:
            logger.warning(f"{command.value} failed for {job.name or job.job_id}: {e}")
            return False

    # -- rendering -------------------------------------------------------

    def render(self, width: int, height: int) -> Frame:
        """Pull the active job's details for the enabled sections and render"""
        ctx = self.ctx
        flags = ctx.flags
        active = ctx.view.active_job()

        frame_input = FrameInput(
            width=width,
            height=height,
            view=ctx.view,
            stats=ctx.stats,
            dht=ctx.dht,
            flags=flags,
            log=ctx.log.entries(),
            active=active,
        )
        if active is not None:
            job_id = active.job_id
            if flags.peers:
                frame_input.peers = self._fetch(self.engine.peer_info, job_id)
            if flags.trackers:
                frame_input.trackers = self._fetch(self.engine.trackers, job_id)
            if flags.downloads and active.state != JobState.SEEDING:
                frame_input.download_queue = self._fetch(self.engine.download_queue, job_id)
            if flags.file_progress and active.has_metadata:
                frame_input.files = self._fetch(self.engine.file_entries, job_id)

        return render_frame(frame_input)

    @staticmethod
    def _fetch(accessor: Callable[[str], List], job_id: str) -> List:
        # The job can vanish between the snapshot and this call
        try:
            return list(accessor(job_id))
        except EngineError as e:
            logger.debug(f"{accessor.__name__} failed for {job_id}: {e}")
            return []

    # -- signals ---------------------------------------------------------

    def _on_signal(self, signum, frame) -> None:
        self.ctx.quit_requested.set()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        """Route SIGINT/SIGTERM to the quit flag while the loop runs"""
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        previous = {
            sig: signal.signal(sig, self._on_signal)
            for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    # -- shutdown --------------------------------------------------------

    def shutdown(self) -> int:
        """
        Save every dirty job's recovery state and wait for the answers

        Returns:
            Process exit code
        """
        if self.loader is not None:
            self.loader.join()

        self.engine.pause_session()
        self.terminal.write("saving resume data\n")

        def needs_save(st: JobStatus) -> bool:
            return st.has_metadata and st.need_save_resume

        try:
            dirty = self.engine.job_statuses(needs_save)
        except EngineError as e:
            logger.error(f"Could not list torrents to save: {e}")
            dirty = []

        tracker = self.ctx.tracker
        for idx, st in enumerate(dirty, start=1):
            self.pump.request_save(st.job_id, SaveFlag.SAVE_INFO_DICT)
            if idx % SHUTDOWN_PROGRESS_EVERY == 0:
                self.terminal.write(f"\r{tracker.outstanding}  ")
                self.pump.drain()

        self.terminal.write(f"\nwaiting for resume data [{tracker.outstanding}]\n")
        self.wait_for_saves()

        self.terminal.write("\nsaving session state\n")
        try:
            save_session_state(self.options.session_state_file, self.engine.save_session_state())
        except EngineError as e:
            logger.error(f"Failed to save session state: {e}")

        self.terminal.write("closing session\n")
        return 0

    def wait_for_saves(self) -> bool:
        """
        Pump events until every outstanding save has been answered

        Returns:
            False if the shutdown timeout expired first
        """
        tracker = self.ctx.tracker
        timeout = self.options.shutdown_timeout
        deadline = self.clock() + timeout if timeout > 0 else None

        while not tracker.is_drained():
            wait = self.options.drain_wait
            if deadline is not None:
                left = deadline - self.clock()
                if left <= 0:
                    logger.warning(
                        f"Giving up on {tracker.outstanding} outstanding resume data saves "
                        f"after {timeout:g}s"
                    )
                    return False
                wait = min(wait, left)

            if self.engine.wait_for_event(wait) is None:
                continue
            self.pump.drain()

        return True
