"""
Engine-side value types

Snapshots copied out of the transfer engine. Every object here is a plain
value: the engine owns the live job/peer state, the console only ever holds
copies that are superseded by the next snapshot.
"""

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple


class JobState(enum.Enum):
    """Completion state of a job, mirroring the engine's state machine"""
    CHECKING_FILES = "checking"
    DOWNLOADING_METADATA = "dl metadata"
    DOWNLOADING = "downloading"
    FINISHED = "finished"
    SEEDING = "seeding"
    CHECKING_RESUME_DATA = "checking resume"


class JobFlag(enum.Flag):
    """Per-job flags that can be set or cleared through a job command"""
    NONE = 0
    PAUSED = enum.auto()
    AUTO_MANAGED = enum.auto()
    SEQUENTIAL_DOWNLOAD = enum.auto()
    SEED_MODE = enum.auto()
    SHARE_MODE = enum.auto()
    NEED_SAVE_RESUME = enum.auto()
    DUPLICATE_IS_ERROR = enum.auto()


class SaveFlag(enum.Flag):
    """Options for a save-recovery-state request"""
    NONE = 0
    SAVE_INFO_DICT = enum.auto()
    ONLY_IF_MODIFIED = enum.auto()


class StorageMode(enum.Enum):
    SPARSE = "sparse"
    ALLOCATE = "allocate"


@dataclass(frozen=True)
class JobStatus:
    """
    Point-in-time status of one job

    Attributes:
        job_id: Hex content identifier; also names the recovery file
        name: Display name
        state: Completion state
        flags: Current job flags
        progress_ppm: Completion in parts per million
        total_done: Bytes of wanted data on disk
        total_wanted: Bytes the job wants in total
        download_rate: Payload download rate (bytes/s)
        upload_rate: Payload upload rate (bytes/s)
        total_download: Payload bytes downloaded this session
        total_upload: Payload bytes uploaded this session
        num_peers: Connected peers
        num_seeds: Connected seeds
        has_metadata: Whether the engine knows the job's file layout
        error: Error text, empty when healthy
        pieces: Piece bitfield (True = have)
        queue_position: Position in the engine's queue, -1 when not queued
    """
    job_id: str
    name: str
    state: JobState = JobState.DOWNLOADING
    flags: JobFlag = JobFlag.NONE
    progress_ppm: int = 0
    total_done: int = 0
    total_wanted: int = 0
    download_rate: int = 0
    upload_rate: int = 0
    total_download: int = 0
    total_upload: int = 0
    num_peers: int = 0
    num_seeds: int = 0
    has_metadata: bool = True
    error: str = ""
    pieces: Tuple[bool, ...] = ()
    queue_position: int = -1

    @property
    def paused(self) -> bool:
        return bool(self.flags & JobFlag.PAUSED)

    @property
    def auto_managed(self) -> bool:
        return bool(self.flags & JobFlag.AUTO_MANAGED)

    @property
    def sequential(self) -> bool:
        return bool(self.flags & JobFlag.SEQUENTIAL_DOWNLOAD)

    @property
    def need_save_resume(self) -> bool:
        return bool(self.flags & JobFlag.NEED_SAVE_RESUME)

    @property
    def num_pieces(self) -> int:
        return len(self.pieces)


@dataclass(frozen=True)
class PeerInfo:
    """
    One connected peer, as reported by the engine's peer list accessor

    Only the fields shown by the peer table are carried. ``flags``,
    ``read_state``, ``write_state`` and ``source`` are sets of short names
    (e.g. ``{"interesting", "choked"}``, ``{"tracker", "dht"}``).
    """
    ip: str
    port: int
    client: str = ""
    progress_ppm: int = 0
    down_speed: int = 0
    up_speed: int = 0
    total_download: int = 0
    total_upload: int = 0
    download_rate_peak: int = 0
    upload_rate_peak: int = 0
    download_queue_length: int = 0
    target_dl_queue_length: int = 0
    timed_out_requests: int = 0
    busy_requests: int = 0
    upload_queue_length: int = 0
    flags: frozenset = frozenset()
    read_state: frozenset = frozenset()
    write_state: frozenset = frozenset()
    source: frozenset = frozenset()
    failcount: int = 0
    num_hashfails: int = 0
    requests_in_buffer: int = 0
    used_send_buffer: int = 0
    used_receive_buffer: int = 0
    receive_buffer_size: int = 0
    receive_buffer_watermark: int = 0
    queue_bytes: int = 0
    last_active: float = 0.0
    last_request: float = 0.0
    request_timeout: int = 0
    download_queue_time: float = 0.0
    pending_disk_bytes: int = 0
    pending_disk_read_bytes: int = 0
    rtt: int = 0
    downloading_piece_index: int = -1
    downloading_block_index: int = -1
    downloading_progress: int = 0
    downloading_total: int = 0
    estimated_reciprocation_rate: int = 0

    @property
    def is_ipv6(self) -> bool:
        return ":" in self.ip


class BlockState(enum.Enum):
    NONE = 0
    REQUESTED = 1
    WRITING = 2
    FINISHED = 3


@dataclass(frozen=True)
class BlockInfo:
    state: BlockState = BlockState.NONE
    bytes_progress: int = 0
    block_size: int = 16384
    num_peers: int = 0
    snubbed: bool = False


@dataclass(frozen=True)
class PartialPiece:
    """A piece currently in flight, with per-block state"""
    piece_index: int
    blocks: Tuple[BlockInfo, ...] = ()

    @property
    def blocks_in_piece(self) -> int:
        return len(self.blocks)


@dataclass(frozen=True)
class TrackerEntry:
    """
    One tracker of a job, reduced to its best endpoint

    Times are seconds relative to now; negative values mean "in the past".
    """
    tier: int
    url: str
    fails: int = 0
    fail_limit: int = 0
    verified: bool = False
    next_announce: int = 0
    min_announce: int = 0
    last_error: str = ""
    message: str = ""


@dataclass(frozen=True)
class FileEntry:
    """
    One file of a job for the file progress section

    Attributes:
        name: File name within the job
        size: File size in bytes
        progress: Bytes of the file on disk
        priority: Download priority
        pad_file: Alignment padding inserted by the job layout
        open_mode: Names describing how the engine has the file open
            (e.g. ``("read/write", "sparse")``), empty when closed
    """
    name: str
    size: int
    progress: int = 0
    priority: int = 4
    pad_file: bool = False
    open_mode: Tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return self.progress >= self.size


@dataclass(frozen=True)
class DhtBucket:
    num_nodes: int
    num_replacements: int


@dataclass(frozen=True)
class DhtLookup:
    type: str
    target: str
    branch_factor: int = 0
    outstanding_requests: int = 0
    nodes_left: int = 0
    first_timeout: int = 0
    timeouts: int = 0
    responses: int = 0
    last_sent: int = 0


@dataclass
class AddJobParams:
    """
    Everything needed to submit one add-job command

    ``descriptor`` and ``recovery_blob`` are opaque to the console: the
    first is whatever the engine returned from parsing a descriptor file or
    magnet link, the second is a recovery blob the engine produced earlier.

    Attributes:
        job_id: Hex content identifier (empty when only a recovery blob is known)
        name: Display name for messages
        descriptor: Engine-parsed job description
        recovery_blob: Previously saved recovery state
        source: Where the job came from (file path or magnet link)
    """
    job_id: str = ""
    name: str = ""
    descriptor: Any = None
    recovery_blob: Optional[bytes] = None
    source: str = ""
    save_path: str = "."
    max_connections: int = 50
    max_uploads: int = -1
    upload_limit: int = 0
    download_limit: int = 0
    storage_mode: StorageMode = StorageMode.SPARSE
    flags: JobFlag = field(default=JobFlag.NONE)

    def with_options(self, **changes) -> "AddJobParams":
        return replace(self, **changes)
