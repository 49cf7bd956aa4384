"""
Engine collaborator protocol

The transfer engine is a black box reachable only through thread-safe
message passing: asynchronous commands whose results come back as events,
a notification queue, and a handful of synchronous read-only accessors that
may be one polling interval stale.
"""

import enum
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from torrent_console.engine.events import EngineEvent
from torrent_console.engine.types import (
    AddJobParams,
    FileEntry,
    JobStatus,
    PartialPiece,
    PeerInfo,
    TrackerEntry,
)


class EngineError(Exception):
    """A command or accessor could not be applied (e.g. the job is gone)."""
    pass


class DescriptorError(Exception):
    """A job descriptor or magnet link could not be parsed."""
    pass


class JobCommand(enum.Enum):
    """Commands that can be issued against a single job"""
    PAUSE = "pause"
    RESUME = "resume"
    RECHECK = "recheck"
    REANNOUNCE = "reannounce"
    SCRAPE = "scrape"
    SET_FLAGS = "set_flags"
    UNSET_FLAGS = "unset_flags"
    SAVE_RECOVERY_STATE = "save_recovery_state"
    REMOVE = "remove"
    CONNECT_PEER = "connect_peer"
    SET_PIECE_DEADLINE = "set_piece_deadline"
    SET_MAX_CONNECTIONS = "set_max_connections"
    CLEAR_ERROR = "clear_error"
    REMOVE_WEB_SEEDS = "remove_web_seeds"


class Engine(Protocol):
    """
    Everything the console needs from the transfer engine

    Command arguments for ``job_command``:
        PAUSE: graceful (bool)
        SET_FLAGS: flags (JobFlag), mask (JobFlag)
        UNSET_FLAGS: flags (JobFlag)
        SAVE_RECOVERY_STATE: flags (SaveFlag)
        REMOVE: delete_data (bool)
        CONNECT_PEER: ip (str), port (int)
        SET_PIECE_DEADLINE: piece (int), deadline_ms (int)
        SET_MAX_CONNECTIONS: limit (int)
    """

    def add_job(self, params: AddJobParams) -> None: ...

    def post_job_updates(self) -> None: ...

    def post_session_stats(self) -> None: ...

    def post_dht_stats(self) -> None: ...

    def pop_events(self) -> List[EngineEvent]: ...

    def wait_for_event(self, timeout: float) -> Optional[EngineEvent]: ...

    def job_command(self, job_id: str, command: JobCommand, **args) -> None: ...

    def pause_session(self) -> None: ...

    def resume_session(self) -> None: ...

    def is_session_paused(self) -> bool: ...

    def job_statuses(self, predicate: Callable[[JobStatus], bool]) -> List[JobStatus]: ...

    def peer_info(self, job_id: str) -> List[PeerInfo]: ...

    def trackers(self, job_id: str) -> List[TrackerEntry]: ...

    def download_queue(self, job_id: str) -> List[PartialPiece]: ...

    def file_entries(self, job_id: str) -> List[FileEntry]: ...

    def load_descriptor(self, path: str) -> AddJobParams: ...

    def parse_magnet(self, uri: str) -> AddJobParams: ...

    def save_session_state(self) -> bytes: ...


SettingSpec = Tuple[str, str]


def format_settings(settings: Sequence[SettingSpec]) -> List[str]:
    """
    Format engine settings for ``--list-settings``

    Args:
        settings: (name, type) pairs, type being 'string', 'bool' or 'int'

    Returns:
        Lines of the form ``name=<type>``, strings first, then bools, then ints
    """
    order = {'string': 0, 'bool': 1, 'int': 2}
    ordered = sorted(
        (s for s in settings if s[0]),
        key=lambda s: order.get(s[1], 3)
    )
    return [f"{name}=<{kind}>" for name, kind in ordered]
