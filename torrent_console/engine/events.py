"""Event types emitted by the transfer engine.

This module defines every notification the console consumes. Events are
immutable dataclasses produced exclusively by the engine adapter and consumed
exactly once by the event pump. ``EngineEvent`` is the closed union of all of
them; the pump matches on it in a fixed precedence order.
"""

from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Tuple, Union

from torrent_console.engine.types import DhtBucket, DhtLookup, JobStatus

EventCategory = Literal['error', 'peer', 'storage', 'status']

# Disconnect operation / error names the pump treats as noise
OP_CONNECT = "connect"
ERROR_TIMED_OUT_NO_HANDSHAKE = "timed_out_no_handshake"

# Save failure reason meaning "there was nothing to save"
ERROR_RESUME_DATA_NOT_MODIFIED = "resume_data_not_modified"


@dataclass(frozen=True)
class SessionStatsEvent:
    """Emitted in answer to a session stats request.

    Attributes:
        counters: Engine counter name -> value
        timestamp: Monotonic sample time in seconds
    """
    counters: Mapping[str, int]
    timestamp: float
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return f"session stats ({len(self.counters)} values)"


@dataclass(frozen=True)
class DhtStatsEvent:
    """Emitted in answer to a distributed-lookup diagnostics request.

    Attributes:
        active_lookups: Lookups currently in flight
        routing_table: One entry per routing table bucket
    """
    active_lookups: Tuple[DhtLookup, ...]
    routing_table: Tuple[DhtBucket, ...]
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return (f"DHT stats: {len(self.routing_table)} buckets, "
                f"{len(self.active_lookups)} lookups")


@dataclass(frozen=True)
class PeerConnectEvent:
    """Emitted when the engine starts connecting to a peer."""
    job_id: str
    endpoint: str
    category: EventCategory = field(default='peer', init=False)

    @property
    def message(self) -> str:
        return f"{self.endpoint}: connecting to peer"


@dataclass(frozen=True)
class PeerDisconnectEvent:
    """Emitted when a peer connection closes.

    Attributes:
        job_id: Job the peer belonged to
        endpoint: "ip:port" of the peer
        operation: Operation that failed (e.g. 'connect', 'sock_read')
        error: Short error name (e.g. 'timed_out_no_handshake')
        error_message: Human readable error text
    """
    job_id: str
    endpoint: str
    operation: str
    error: str
    error_message: str = ""
    category: EventCategory = field(default='peer', init=False)

    @property
    def message(self) -> str:
        return (f"{self.endpoint}: disconnecting ({self.operation}) "
                f"[{self.error_message or self.error}]")


@dataclass(frozen=True)
class MetadataReceivedEvent:
    """Emitted when a magnet-added job has downloaded its metadata."""
    job_id: str
    name: str = ""
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return f"{self.name or self.job_id}: metadata successfully received"


@dataclass(frozen=True)
class JobAddedEvent:
    """Emitted in answer to an add-job command.

    Attributes:
        job_id: Identifier of the added job (empty if it could not be added)
        name: Display name or source of the job
        error: Error text when the add failed, None on success
    """
    job_id: str
    name: str
    error: Optional[str] = None
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        if self.error:
            return f"failed to add torrent: {self.name} {self.error}"
        return f"{self.name}: added torrent"


@dataclass(frozen=True)
class JobFinishedEvent:
    """Emitted when a job has downloaded every wanted piece."""
    job_id: str
    name: str = ""
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return f"{self.name or self.job_id}: torrent finished downloading"


@dataclass(frozen=True)
class JobPausedEvent:
    """Emitted when a job transitions to paused."""
    job_id: str
    name: str = ""
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return f"{self.name or self.job_id}: paused"


@dataclass(frozen=True)
class RecoverySavedEvent:
    """Emitted when a save-recovery-state request completes.

    Attributes:
        job_id: Job whose state was saved
        blob: Opaque recovery state to write to the job's recovery file
    """
    job_id: str
    blob: bytes
    name: str = ""
    category: EventCategory = field(default='storage', init=False)

    @property
    def message(self) -> str:
        return f"{self.name or self.job_id}: resume data generated"


@dataclass(frozen=True)
class RecoverySaveFailedEvent:
    """Emitted when a save-recovery-state request fails.

    Attributes:
        job_id: Job whose save failed
        error: Short reason name; 'resume_data_not_modified' means nothing to save
        error_message: Human readable reason
    """
    job_id: str
    error: str
    error_message: str = ""
    name: str = ""
    category: EventCategory = field(default='error', init=False)

    @property
    def nothing_to_save(self) -> bool:
        return self.error == ERROR_RESUME_DATA_NOT_MODIFIED

    @property
    def message(self) -> str:
        return (f"{self.name or self.job_id}: resume data generation failed: "
                f"{self.error_message or self.error}")


@dataclass(frozen=True)
class JobListSnapshotEvent:
    """Emitted in answer to a job-list snapshot request.

    Attributes:
        statuses: Status of every job the engine currently manages
    """
    statuses: Tuple[JobStatus, ...]
    category: EventCategory = field(default='status', init=False)

    @property
    def message(self) -> str:
        return f"state updates for {len(self.statuses)} torrents"


@dataclass(frozen=True)
class GenericEvent:
    """Any other engine notification, kept only for the log.

    Attributes:
        text: Engine supplied message
        kind: Engine notification name (e.g. 'tracker_error')
        category: Severity used to colour the log line
    """
    text: str
    kind: str = "alert"
    category: EventCategory = 'status'

    @property
    def message(self) -> str:
        return self.text


EngineEvent = Union[
    SessionStatsEvent,
    DhtStatsEvent,
    PeerConnectEvent,
    PeerDisconnectEvent,
    MetadataReceivedEvent,
    JobAddedEvent,
    JobFinishedEvent,
    JobPausedEvent,
    RecoverySavedEvent,
    RecoverySaveFailedEvent,
    JobListSnapshotEvent,
    GenericEvent,
]
