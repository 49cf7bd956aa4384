"""
Event pump

Drains the engine's notification queue once per tick, classifies every event
in a fixed precedence order, updates view state and the recovery-state
tracker, and appends whatever is not otherwise handled to the on-screen log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from torrent_console.engine.events import (
    ERROR_TIMED_OUT_NO_HANDSHAKE,
    OP_CONNECT,
    DhtStatsEvent,
    EngineEvent,
    GenericEvent,
    JobAddedEvent,
    JobFinishedEvent,
    JobListSnapshotEvent,
    JobPausedEvent,
    MetadataReceivedEvent,
    PeerConnectEvent,
    PeerDisconnectEvent,
    RecoverySavedEvent,
    RecoverySaveFailedEvent,
    SessionStatsEvent,
)
from torrent_console.engine.protocol import Engine, EngineError, JobCommand
from torrent_console.engine.types import SaveFlag
from torrent_console.ui.formatting import styled
from torrent_console.workflow.resume_store import ResumeStore

logger = logging.getLogger(__name__)

# Unhandled events are also written here (routed to the -f log file)
event_logger = logging.getLogger("torrent_console.events")

TIMESTAMP_FORMAT = "%b %d %H:%M:%S"


@dataclass
class PumpOptions:
    """
    Operator options the pump applies to engine commands

    Attributes:
        max_connections: Per-job connection cap; finished jobs get half
        connect_peer: Optional "ip:port" every added job connects to
    """
    max_connections: int = 50
    connect_peer: str = ""


def parse_endpoint(endpoint: str) -> Optional[tuple]:
    """
    Split "ip:port" (or "[v6]:port") into (ip, port)

    Returns:
        (ip, port) or None if the port is missing or not positive
    """
    host, sep, port = endpoint.rpartition(':')
    if not sep or not host:
        return None
    try:
        port_num = int(port)
    except ValueError:
        return None
    if port_num <= 0:
        return None
    return host.strip('[]'), port_num


def format_event(event: EngineEvent, now: datetime) -> str:
    """
    Render an event for the log

    Error events are red, peer and storage events yellow.

    Args:
        event: Event to render
        now: Timestamp to prefix

    Returns:
        ``[<timestamp>] <message>`` with colour
    """
    line = f"[{now.strftime(TIMESTAMP_FORMAT)}] {event.message}"
    if event.category == 'error':
        return styled(line, 'red')
    if event.category in ('peer', 'storage'):
        return styled(line, 'yellow')
    return line


class EventPump:
    """
    Classifies engine events and applies their side effects

    Side effects are strictly event driven and never block. Everything here
    runs on the control thread, so the context it mutates needs no locking.

    Example:
        pump = EventPump(ctx, engine, store, PumpOptions(max_connections=50))
        pump.pump(engine.pop_events())
    """

    def __init__(
        self,
        ctx,
        engine: Engine,
        store: ResumeStore,
        options: Optional[PumpOptions] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize event pump

        Args:
            ctx: ControlContext holding view state, log ring and tracker
            engine: Engine receiving follow-up commands
            store: Recovery file store for saved blobs
            options: Per-job command options
            clock: Timestamp source for log lines
        """
        self.ctx = ctx
        self.engine = engine
        self.store = store
        self.options = options or PumpOptions()
        self.clock = clock
        self.events_seen = 0
        self.events_logged = 0

    def pump(self, events: Iterable[EngineEvent]) -> int:
        """
        Handle a batch of events

        Args:
            events: Events in engine order

        Returns:
            Number of events appended to the log
        """
        logged = 0
        for event in events:
            self.events_seen += 1
            if self.handle(event):
                continue

            # Not handled: print it to the log
            line = format_event(event, self.clock())
            self.ctx.log.append(line)
            event_logger.info(f"{event.message}")
            logged += 1

        self.events_logged += logged
        return logged

    def drain(self) -> int:
        """Pump everything currently queued in the engine"""
        return self.pump(self.engine.pop_events())

    def handle(self, event: EngineEvent) -> bool:
        """
        Apply one event

        Returns:
            True if handled (not logged), False if it belongs in the log
        """
        ctx = self.ctx

        if isinstance(event, SessionStatsEvent):
            ctx.stats.update_counters(event.counters, event.timestamp)
            return True

        if isinstance(event, DhtStatsEvent):
            ctx.dht.update(event.routing_table, event.active_lookups)
            return True

        # Don't log every peer we try to connect to
        if isinstance(event, PeerConnectEvent):
            return True

        if isinstance(event, PeerDisconnectEvent):
            # Failed connects and peers that never handshook are noise; peers
            # we did talk to and then lost are interesting
            return (event.operation == OP_CONNECT
                    or event.error == ERROR_TIMED_OUT_NO_HANDSHAKE)

        if isinstance(event, MetadataReceivedEvent):
            self.request_save(event.job_id, SaveFlag.SAVE_INFO_DICT)
            return False

        if isinstance(event, JobAddedEvent):
            if event.error:
                logger.debug(f"Add failed for {event.name}: {event.error}")
                return False
            self.request_save(event.job_id, SaveFlag.SAVE_INFO_DICT | SaveFlag.ONLY_IF_MODIFIED)
            self._connect_configured_peer(event.job_id)
            return False

        if isinstance(event, JobFinishedEvent):
            self._command(event.job_id, JobCommand.SET_MAX_CONNECTIONS,
                          limit=self.options.max_connections // 2)
            self.request_save(event.job_id, SaveFlag.SAVE_INFO_DICT)
            return False

        if isinstance(event, RecoverySavedEvent):
            ctx.tracker.on_result(success=True)
            self.store.write(event.job_id, event.blob)
            return True

        if isinstance(event, RecoverySaveFailedEvent):
            ctx.tracker.on_result(success=False)
            # Not needing to save is not an error
            return event.nothing_to_save

        if isinstance(event, JobPausedEvent):
            self.request_save(event.job_id, SaveFlag.SAVE_INFO_DICT)
            return False

        if isinstance(event, JobListSnapshotEvent):
            ctx.view.update_jobs(event.statuses)
            return True

        if not isinstance(event, GenericEvent):
            logger.debug(f"Unclassified engine event: {type(event).__name__}")
        return False

    def request_save(self, job_id: str, flags: SaveFlag) -> None:
        """Ask the engine for a job's recovery state and count the request"""
        # Count before submitting: the answer can only arrive on a later pump
        self.ctx.tracker.request_save()
        if not self._command(job_id, JobCommand.SAVE_RECOVERY_STATE, flags=flags):
            self.ctx.tracker.on_result(success=False)

    def _connect_configured_peer(self, job_id: str) -> None:
        if not self.options.connect_peer:
            return
        endpoint = parse_endpoint(self.options.connect_peer)
        if endpoint is None:
            logger.warning(f"Ignoring invalid peer address: {self.options.connect_peer}")
            return
        ip, port = endpoint
        self._command(job_id, JobCommand.CONNECT_PEER, ip=ip, port=port)

    def _command(self, job_id: str, command: JobCommand, **args) -> bool:
        try:
            self.engine.job_command(job_id, command, **args)
            return True
        except EngineError as e:
            logger.warning(f"{command.value} failed for {job_id}: {e}")
            return False
