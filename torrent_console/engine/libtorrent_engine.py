"""
libtorrent engine adapter

Implements the Engine protocol on top of the libtorrent Python bindings.
Alerts are translated into EngineEvents, torrent handles are tracked by hex
info hash, and the engine's own settings pack is exposed for the
``--name=value`` passthrough and ``--list-settings``.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import libtorrent as lt

from torrent_console.engine.events import (
    ERROR_RESUME_DATA_NOT_MODIFIED,
    ERROR_TIMED_OUT_NO_HANDSHAKE,
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
from torrent_console.engine.protocol import DescriptorError, EngineError, JobCommand, SettingSpec
from torrent_console.engine.types import (
    AddJobParams,
    BlockInfo,
    BlockState,
    DhtBucket,
    DhtLookup,
    FileEntry,
    JobFlag,
    JobState,
    JobStatus,
    PartialPiece,
    PeerInfo,
    SaveFlag,
    StorageMode,
    TrackerEntry,
)

logger = logging.getLogger(__name__)

USER_AGENT = "torrent-console/libtorrent-" + lt.__version__

# JobFlag -> libtorrent torrent_flags attribute
JOB_FLAG_NAMES = {
    JobFlag.PAUSED: "paused",
    JobFlag.AUTO_MANAGED: "auto_managed",
    JobFlag.SEQUENTIAL_DOWNLOAD: "sequential_download",
    JobFlag.SEED_MODE: "seed_mode",
    JobFlag.SHARE_MODE: "share_mode",
    JobFlag.NEED_SAVE_RESUME: "need_save_resume",
    JobFlag.DUPLICATE_IS_ERROR: "duplicate_is_error",
}

STATE_NAMES = {
    "checking_files": JobState.CHECKING_FILES,
    "downloading_metadata": JobState.DOWNLOADING_METADATA,
    "downloading": JobState.DOWNLOADING,
    "finished": JobState.FINISHED,
    "seeding": JobState.SEEDING,
    "checking_resume_data": JobState.CHECKING_RESUME_DATA,
}

PEER_FLAG_NAMES = (
    "interesting", "choked", "remote_interested", "remote_choked",
    "supports_extensions", "local_connection", "handshake", "connecting",
    "on_parole", "seed", "optimistic_unchoke", "snubbed", "upload_only",
    "endgame_mode", "holepunched", "i2p_socket", "utp_socket",
    "ssl_socket", "rc4_encrypted", "plaintext_encrypted",
)
BANDWIDTH_STATE_NAMES = ("bw_limit", "bw_network", "bw_disk")
PEER_SOURCE_NAMES = ("tracker", "dht", "pex", "lsd", "resume_data", "incoming")

BLOCK_STATES = {
    0: BlockState.NONE,
    1: BlockState.REQUESTED,
    2: BlockState.WRITING,
    3: BlockState.FINISHED,
}

# Alerts the console does not want: progress and verbose log categories
ALERT_MASK = lt.alert.category_t.all_categories & ~(
    lt.alert.category_t.dht_notification
    | lt.alert.category_t.progress_notification
    | lt.alert.category_t.stats_notification
    | lt.alert.category_t.session_log_notification
    | lt.alert.category_t.torrent_log_notification
    | lt.alert.category_t.peer_log_notification
    | lt.alert.category_t.dht_log_notification
    | lt.alert.category_t.picker_log_notification
)


# -- settings ------------------------------------------------------------

def _setting_type(value: Any) -> str:
    if isinstance(value, bool):
        return 'bool'
    if isinstance(value, int):
        return 'int'
    return 'string'


def list_settings() -> List[SettingSpec]:
    """Every libtorrent setting as (name, type)"""
    return [(name, _setting_type(value)) for name, value in sorted(lt.default_settings().items())]


def parse_setting(name: str, value: Any) -> Any:
    """
    Convert a ``--name=value`` command line setting (or a config file value)
    to its typed value

    Raises:
        EngineError: Unknown setting, a bool that is not 0/1, or a bad int
    """
    defaults = lt.default_settings()
    if name not in defaults:
        raise EngineError(f"unknown setting: \"{name}\"")

    # Config file values arrive typed; treat them like their command line spelling
    if isinstance(value, bool):
        value = "1" if value else "0"
    elif not isinstance(value, str):
        value = str(value)

    kind = _setting_type(defaults[name])
    if kind == 'bool':
        if value not in ("0", "1"):
            raise EngineError(f"invalid value for \"{name}\". expected 0 or 1")
        return value == "1"
    if kind == 'int':
        try:
            return int(value)
        except ValueError:
            raise EngineError(f"invalid value for \"{name}\". expected an integer")
    return value


def build_settings(high_performance: bool = False,
                   overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Session settings: the base pack, the console's own defaults, then overrides

    Args:
        high_performance: Start from libtorrent's high performance seed preset
        overrides: Setting name -> typed value (config file and command line)
    """
    settings = dict(lt.high_performance_seed() if high_performance else lt.default_settings())
    settings['choking_algorithm'] = int(lt.choking_algorithm_t.rate_based_choker)
    settings['user_agent'] = USER_AGENT
    settings['alert_mask'] = int(ALERT_MASK)
    settings.update(overrides or {})
    return settings


def load_ip_filter(path: str) -> "lt.ip_filter":
    """
    Load an eMule style IP filter file (``a.b.c.d - e.f.g.h flags``)

    Lines that do not parse end the file, like a truncated download would.
    Access levels up to 127 block the range.
    """
    ip_filter = lt.ip_filter()
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        for line in f:
            parts = line.replace('-', ' ').split()
            if len(parts) < 3:
                break
            first, last, level = parts[0], parts[1], parts[2]
            try:
                flags = 1 if int(level) <= 127 else 0
            except ValueError:
                break
            ip_filter.add_rule(first, last, flags)
    return ip_filter


# -- conversions ---------------------------------------------------------

def _hex_id(obj: Any) -> str:
    """Hex info hash of a torrent_status, add_torrent_params or torrent_info"""
    hashes = getattr(obj, 'info_hashes', None)
    if hashes is not None:
        if callable(hashes):
            hashes = hashes()
        return str(hashes.get_best())
    info_hash = obj.info_hash
    if callable(info_hash):
        info_hash = info_hash()
    return str(info_hash)


def _flags_to_lt(flags: JobFlag) -> int:
    value = 0
    for flag, name in JOB_FLAG_NAMES.items():
        if flags & flag:
            value |= int(getattr(lt.torrent_flags, name))
    return value


def _flags_from_lt(value: int) -> JobFlag:
    flags = JobFlag.NONE
    for flag, name in JOB_FLAG_NAMES.items():
        if int(value) & int(getattr(lt.torrent_flags, name)):
            flags |= flag
    return flags


def _save_flags_to_lt(flags: SaveFlag) -> int:
    value = 0
    if flags & SaveFlag.SAVE_INFO_DICT:
        value |= int(lt.torrent_handle.save_info_dict)
    if flags & SaveFlag.ONLY_IF_MODIFIED:
        value |= int(lt.torrent_handle.only_if_modified)
    return value


def _bit_names(value: int, owner: Any, names: Iterable[str]) -> frozenset:
    return frozenset(name for name in names if int(value) & int(getattr(owner, name, 0)))


def _seconds(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, datetime):
        return (value - datetime.now()).total_seconds()
    return float(value)


def _error_text(ec: Any) -> str:
    if ec is None:
        return ""
    if isinstance(ec, str):
        return ec
    if ec.value() == 0:
        return ""
    return ec.message()


def _endpoint(ep: Any) -> str:
    ip, port = ep[0], ep[1]
    if ":" in ip:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


def convert_status(st: Any) -> JobStatus:
    state_name = getattr(st.state, 'name', str(st.state))
    error = _error_text(getattr(st, 'errc', None)) or getattr(st, 'error', "")
    return JobStatus(
        job_id=_hex_id(st),
        name=st.name,
        state=STATE_NAMES.get(state_name, JobState.DOWNLOADING),
        flags=_flags_from_lt(st.flags),
        progress_ppm=st.progress_ppm,
        total_done=st.total_done,
        total_wanted=st.total_wanted,
        download_rate=st.download_payload_rate,
        upload_rate=st.upload_payload_rate,
        total_download=st.total_payload_download,
        total_upload=st.total_payload_upload,
        num_peers=st.num_peers,
        num_seeds=st.num_seeds,
        has_metadata=st.has_metadata,
        error=error,
        pieces=tuple(bool(p) for p in st.pieces),
        queue_position=int(st.queue_position),
    )


def convert_peer(p: Any) -> PeerInfo:
    ip, port = p.ip[0], p.ip[1]
    return PeerInfo(
        ip=ip,
        port=port,
        client=p.client.decode('utf-8', 'replace') if isinstance(p.client, bytes) else p.client,
        progress_ppm=p.progress_ppm,
        down_speed=p.down_speed,
        up_speed=p.up_speed,
        total_download=p.total_download,
        total_upload=p.total_upload,
        download_rate_peak=p.download_rate_peak,
        upload_rate_peak=p.upload_rate_peak,
        download_queue_length=p.download_queue_length,
        target_dl_queue_length=p.target_dl_queue_length,
        timed_out_requests=p.timed_out_requests,
        busy_requests=p.busy_requests,
        upload_queue_length=p.upload_queue_length,
        flags=_bit_names(p.flags, lt.peer_info, PEER_FLAG_NAMES),
        read_state=_bit_names(p.read_state, lt.peer_info, BANDWIDTH_STATE_NAMES),
        write_state=_bit_names(p.write_state, lt.peer_info, BANDWIDTH_STATE_NAMES),
        source=_bit_names(p.source, lt.peer_info, PEER_SOURCE_NAMES),
        failcount=p.failcount,
        num_hashfails=p.num_hashfails,
        requests_in_buffer=p.requests_in_buffer,
        used_send_buffer=p.used_send_buffer,
        used_receive_buffer=p.used_receive_buffer,
        receive_buffer_size=p.receive_buffer_size,
        receive_buffer_watermark=p.receive_buffer_watermark,
        queue_bytes=p.queue_bytes,
        last_active=_seconds(p.last_active),
        last_request=_seconds(p.last_request),
        request_timeout=p.request_timeout,
        download_queue_time=_seconds(p.download_queue_time),
        pending_disk_bytes=p.pending_disk_bytes,
        pending_disk_read_bytes=p.pending_disk_read_bytes,
        rtt=p.rtt,
        downloading_piece_index=int(p.downloading_piece_index),
        downloading_block_index=p.downloading_block_index,
        downloading_progress=p.downloading_progress,
        downloading_total=p.downloading_total,
        estimated_reciprocation_rate=p.estimated_reciprocation_rate,
    )


def convert_tracker(entry: Mapping[str, Any]) -> TrackerEntry:
    """Reduce a tracker entry to its endpoint with the fewest failures"""
    candidates: List[Mapping[str, Any]] = []
    for endpoint in entry.get('endpoints', []):
        # libtorrent 2 nests per-protocol announce state under info_hashes
        candidates.extend(endpoint.get('info_hashes', []) or [endpoint])
    best = min(candidates, key=lambda c: c.get('fails', 0), default={})

    last_error = best.get('last_error')
    if isinstance(last_error, Mapping):
        last_error = last_error.get('message', "") if last_error.get('value') else ""

    return TrackerEntry(
        tier=entry.get('tier', 0),
        url=entry.get('url', ""),
        fails=best.get('fails', 0),
        fail_limit=entry.get('fail_limit', 0),
        verified=bool(entry.get('verified', False)),
        next_announce=int(_seconds(best.get('next_announce'))),
        min_announce=int(_seconds(best.get('min_announce'))),
        last_error=last_error or "",
        message=best.get('message', ""),
    )


def convert_dht_lookup(lookup: Mapping[str, Any]) -> DhtLookup:
    return DhtLookup(
        type=lookup.get('type', ""),
        target=str(lookup.get('target', "")),
        branch_factor=lookup.get('branch_factor', 0),
        outstanding_requests=lookup.get('outstanding_requests', 0),
        nodes_left=lookup.get('nodes_left', 0),
        first_timeout=lookup.get('first_timeout', 0),
        timeouts=lookup.get('timeouts', 0),
        responses=lookup.get('responses', 0),
        last_sent=lookup.get('last_sent', 0),
    )


# -- engine --------------------------------------------------------------

class LibtorrentEngine:
    """
    Engine backed by a libtorrent session

    Handles are looked up by job id; the map is refreshed from add and
    state-update alerts, which only the control thread pops. The lock only
    guards the map against the resume loader thread calling add_job.

    Example:
        engine = LibtorrentEngine(build_settings(), session_state=blob)
        engine.add_job(engine.load_descriptor('ubuntu.torrent'))
    """

    def __init__(self, settings: Mapping[str, Any], session_state: Optional[bytes] = None,
                 ip_filter: Optional["lt.ip_filter"] = None, disable_disk_io: bool = False,
                 rate_limit_local_peers: bool = False):
        """
        Initialize libtorrent session

        Args:
            settings: Full settings pack (see build_settings)
            session_state: DHT state saved by a previous run
            ip_filter: Peer IP filter to install
            disable_disk_io: Use the disabled disk I/O backend (benchmarking)
            rate_limit_local_peers: Put every peer, local ones included, in the global class
        """
        params = lt.session_params()
        if session_state:
            try:
                params = lt.read_session_params(session_state)
            except RuntimeError as e:
                logger.warning(f"Ignoring unreadable session state: {e}")
        params.settings = dict(settings)
        if disable_disk_io:
            params.disk_io_constructor = lt.disabled_disk_io_constructor

        self.session = lt.session(params)
        if ip_filter is not None:
            self.session.set_ip_filter(ip_filter)
        if rate_limit_local_peers:
            class_filter = lt.ip_filter()
            class_filter.add_rule("0.0.0.0", "255.255.255.255",
                                  1 << int(lt.session.global_peer_class_id))
            class_filter.add_rule("::", "ffff:ffff:ffff:ffff:ffff:ffff:ffff:ffff", 1)
            self.session.set_peer_class_filter(class_filter)

        self._handles: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._metric_names = {m.value_index: m.name for m in lt.session_stats_metrics()}

    # -- commands --------------------------------------------------------

    def add_job(self, params: AddJobParams) -> None:
        atp = params.descriptor
        if params.recovery_blob:
            try:
                resumed = lt.read_resume_data(params.recovery_blob)
            except RuntimeError as e:
                logger.warning(f"Failed to parse resume data for {params.name or params.job_id}: {e}")
            else:
                if atp is not None and getattr(atp, 'ti', None) is not None:
                    resumed.ti = atp.ti
                atp = resumed
        if atp is None:
            logger.error(f"Nothing to add for {params.source or params.job_id}")
            return

        atp.save_path = params.save_path
        atp.max_connections = params.max_connections
        atp.max_uploads = params.max_uploads
        atp.upload_limit = params.upload_limit
        atp.download_limit = params.download_limit
        atp.storage_mode = (lt.storage_mode_t.storage_mode_allocate
                            if params.storage_mode == StorageMode.ALLOCATE
                            else lt.storage_mode_t.storage_mode_sparse)
        flags = int(atp.flags) | _flags_to_lt(params.flags)
        if not params.flags & JobFlag.DUPLICATE_IS_ERROR:
            flags &= ~int(lt.torrent_flags.duplicate_is_error)
        # Loaded from recovery state; no need to save again right away
        if params.recovery_blob and not params.flags & JobFlag.NEED_SAVE_RESUME:
            flags &= ~int(lt.torrent_flags.need_save_resume)
        atp.flags = flags
        self.session.async_add_torrent(atp)

    def post_job_updates(self) -> None:
        self.session.post_torrent_updates()

    def post_session_stats(self) -> None:
        self.session.post_session_stats()

    def post_dht_stats(self) -> None:
        self.session.post_dht_stats()

    def pop_events(self) -> List[EngineEvent]:
        return [self.translate(a) for a in self.session.pop_alerts()]

    def wait_for_event(self, timeout: float) -> Optional[EngineEvent]:
        # Peek only: the alert stays queued for the next pop_events()
        alert = self.session.wait_for_alert(int(timeout * 1000))
        if alert is None:
            return None
        return GenericEvent(text=alert.message(), kind=alert.what())

    def job_command(self, job_id: str, command: JobCommand, **args) -> None:
        h = self._handle(job_id)
        try:
            self._apply_command(h, command, args)
        except RuntimeError as e:
            raise EngineError(str(e))

    def _apply_command(self, h: Any, command: JobCommand, args: Dict[str, Any]) -> None:
        if command == JobCommand.PAUSE:
            h.pause(lt.torrent_handle.graceful_pause if args.get('graceful') else 0)
        elif command == JobCommand.RESUME:
            h.resume()
        elif command == JobCommand.RECHECK:
            h.force_recheck()
        elif command == JobCommand.REANNOUNCE:
            h.force_reannounce()
        elif command == JobCommand.SCRAPE:
            h.scrape_tracker()
        elif command == JobCommand.SET_FLAGS:
            flags = args['flags']
            h.set_flags(_flags_to_lt(flags), _flags_to_lt(args.get('mask', flags)))
        elif command == JobCommand.UNSET_FLAGS:
            h.unset_flags(_flags_to_lt(args['flags']))
        elif command == JobCommand.SAVE_RECOVERY_STATE:
            h.save_resume_data(_save_flags_to_lt(args.get('flags', SaveFlag.NONE)))
        elif command == JobCommand.REMOVE:
            options = lt.session.delete_files if args.get('delete_data') else 0
            self.session.remove_torrent(h, options)
        elif command == JobCommand.CONNECT_PEER:
            h.connect_peer((args['ip'], args['port']))
        elif command == JobCommand.SET_PIECE_DEADLINE:
            h.set_piece_deadline(args['piece'], args['deadline_ms'],
                                 lt.torrent_handle.alert_when_available)
        elif command == JobCommand.SET_MAX_CONNECTIONS:
            h.set_max_connections(args['limit'])
        elif command == JobCommand.CLEAR_ERROR:
            h.clear_error()
        elif command == JobCommand.REMOVE_WEB_SEEDS:
            for url in h.url_seeds():
                h.remove_url_seed(url)
            for url in h.http_seeds():
                h.remove_http_seed(url)
        else:
            raise EngineError(f"unsupported command: {command.value}")

    def pause_session(self) -> None:
        self.session.pause()

    def resume_session(self) -> None:
        self.session.resume()

    def is_session_paused(self) -> bool:
        return self.session.is_paused()

    # -- accessors -------------------------------------------------------

    def job_statuses(self, predicate: Callable[[JobStatus], bool]) -> List[JobStatus]:
        statuses = []
        for h in self.session.get_torrents():
            if not h.is_valid():
                continue
            status = convert_status(h.status())
            if predicate(status):
                statuses.append(status)
        return statuses

    def peer_info(self, job_id: str) -> List[PeerInfo]:
        h = self._handle(job_id)
        return [convert_peer(p) for p in self._call(h.get_peer_info)]

    def trackers(self, job_id: str) -> List[TrackerEntry]:
        h = self._handle(job_id)
        return [convert_tracker(ae) for ae in self._call(h.trackers)]

    def download_queue(self, job_id: str) -> List[PartialPiece]:
        h = self._handle(job_id)
        snubbed = {tuple(p.ip) for p in self._call(h.get_peer_info)
                   if int(p.flags) & int(lt.peer_info.snubbed)}
        queue = []
        for piece in self._call(h.get_download_queue):
            blocks = tuple(
                BlockInfo(
                    state=BLOCK_STATES.get(int(b['state']), BlockState.NONE),
                    bytes_progress=b.get('bytes_progress', 0),
                    block_size=b.get('block_size', 16384),
                    num_peers=b.get('num_peers', 0),
                    snubbed=tuple(b.get('peer', ())) in snubbed,
                )
                for b in piece['blocks']
            )
            queue.append(PartialPiece(piece_index=int(piece['piece_index']), blocks=blocks))
        return queue

    def file_entries(self, job_id: str) -> List[FileEntry]:
        h = self._handle(job_id)
        ti = self._call(h.torrent_file)
        if ti is None:
            return []
        files = ti.files()
        progress = self._call(h.file_progress)
        priorities = self._call(h.file_priorities)
        open_files = {int(f['file_index']): f['open_mode'] for f in self._call(h.file_status)}
        pad_flag = int(lt.file_storage.flag_pad_file)

        entries = []
        for i in range(files.num_files()):
            entries.append(FileEntry(
                name=files.file_name(i),
                size=files.file_size(i),
                progress=progress[i] if i < len(progress) else 0,
                priority=int(priorities[i]) if i < len(priorities) else 4,
                pad_file=bool(files.file_flags(i) & pad_flag),
                open_mode=self._open_mode_names(open_files.get(i)),
            ))
        return entries

    @staticmethod
    def _open_mode_names(mode: Optional[int]) -> tuple:
        if mode is None:
            return ()
        modes = lt.file_open_mode
        names = []
        rw = int(mode) & int(modes.rw_mask)
        if rw == int(modes.read_write):
            names.append("read/write")
        elif rw == int(modes.read_only):
            names.append("read")
        elif rw == int(modes.write_only):
            names.append("write")
        for name in ("random_access", "locked", "sparse"):
            if int(mode) & int(getattr(modes, name, 0)):
                names.append(name)
        return tuple(names)

    # -- descriptors -----------------------------------------------------

    def load_descriptor(self, path: str) -> AddJobParams:
        try:
            ti = lt.torrent_info(str(path))
        except RuntimeError as e:
            raise DescriptorError(str(e))
        atp = lt.add_torrent_params()
        atp.ti = ti
        return AddJobParams(job_id=_hex_id(ti), name=ti.name(), descriptor=atp, source=str(path))

    def parse_magnet(self, uri: str) -> AddJobParams:
        try:
            atp = lt.parse_magnet_uri(uri)
        except RuntimeError as e:
            raise DescriptorError(str(e))
        return AddJobParams(job_id=_hex_id(atp), name=atp.name or uri, descriptor=atp, source=uri)

    def save_session_state(self) -> bytes:
        try:
            state = self.session.session_state(lt.save_state_flags_t.save_dht_state)
            return lt.write_session_params_buf(state, lt.save_state_flags_t.save_dht_state)
        except RuntimeError as e:
            raise EngineError(f"could not save session state: {e}")

    # -- alerts ----------------------------------------------------------

    def translate(self, a: Any) -> EngineEvent:
        """Turn one libtorrent alert into an EngineEvent"""
        if isinstance(a, lt.session_stats_alert):
            return SessionStatsEvent(counters=self._counters(a.values), timestamp=time.monotonic())

        if isinstance(a, lt.dht_stats_alert):
            return DhtStatsEvent(
                active_lookups=tuple(convert_dht_lookup(x) for x in a.active_requests),
                routing_table=tuple(
                    DhtBucket(num_nodes=b.get('num_nodes', 0),
                              num_replacements=b.get('num_replacements', 0))
                    for b in a.routing_table
                ),
            )

        if isinstance(a, lt.peer_connect_alert):
            return PeerConnectEvent(job_id=self._alert_job_id(a), endpoint=_endpoint(a.endpoint))

        if isinstance(a, lt.peer_disconnected_alert):
            op = getattr(a, 'op', None)
            return PeerDisconnectEvent(
                job_id=self._alert_job_id(a),
                endpoint=_endpoint(a.endpoint),
                operation=getattr(op, 'name', str(op)),
                error=self._error_name(a.error),
                error_message=a.error.message(),
            )

        if isinstance(a, lt.metadata_received_alert):
            return MetadataReceivedEvent(job_id=self._alert_job_id(a), name=a.torrent_name)

        if isinstance(a, lt.add_torrent_alert):
            error = _error_text(a.error)
            if error:
                return JobAddedEvent(job_id="", name=a.params.name or a.torrent_name, error=error)
            job_id = self._remember(a.handle)
            return JobAddedEvent(job_id=job_id, name=a.torrent_name)

        if isinstance(a, lt.torrent_finished_alert):
            return JobFinishedEvent(job_id=self._alert_job_id(a), name=a.torrent_name)

        if isinstance(a, lt.save_resume_data_alert):
            return RecoverySavedEvent(job_id=self._alert_job_id(a),
                                      blob=bytes(lt.write_resume_data_buf(a.params)),
                                      name=a.torrent_name)

        if isinstance(a, lt.save_resume_data_failed_alert):
            return RecoverySaveFailedEvent(job_id=self._alert_job_id(a),
                                           error=self._error_name(a.error),
                                           error_message=a.error.message(),
                                           name=a.torrent_name)

        if isinstance(a, lt.torrent_paused_alert):
            return JobPausedEvent(job_id=self._alert_job_id(a), name=a.torrent_name)

        if isinstance(a, lt.state_update_alert):
            statuses = []
            for st in a.status:
                statuses.append(convert_status(st))
                self._remember(st.handle)
            return JobListSnapshotEvent(statuses=tuple(statuses))

        if isinstance(a, lt.torrent_removed_alert):
            self._forget(_hex_id(a))

        return GenericEvent(text=a.message(), kind=a.what(), category=self._category(a))

    def _counters(self, values: Any) -> Dict[str, int]:
        if isinstance(values, Mapping):
            return dict(values)
        return {self._metric_names.get(i, str(i)): v for i, v in enumerate(values)}

    @staticmethod
    def _error_name(ec: Any) -> str:
        value = ec.value()
        if value == int(lt.errors.timed_out_no_handshake):
            return ERROR_TIMED_OUT_NO_HANDSHAKE
        if value == int(lt.errors.resume_data_not_modified):
            return ERROR_RESUME_DATA_NOT_MODIFIED
        return ec.message()

    @staticmethod
    def _category(a: Any) -> str:
        category = int(a.category())
        if category & int(lt.alert.category_t.error_notification):
            return 'error'
        if category & int(lt.alert.category_t.peer_notification):
            return 'peer'
        if category & int(lt.alert.category_t.storage_notification):
            return 'storage'
        return 'status'

    # -- handles ---------------------------------------------------------

    def _remember(self, h: Any) -> str:
        job_id = _hex_id(h)
        with self._lock:
            self._handles[job_id] = h
        return job_id

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._handles.pop(job_id, None)

    def _alert_job_id(self, a: Any) -> str:
        return _hex_id(a.handle)

    def _handle(self, job_id: str) -> Any:
        with self._lock:
            h = self._handles.get(job_id)
        if h is None:
            h = self.session.find_torrent(lt.sha1_hash(bytes.fromhex(job_id)))
        if h is None or not h.is_valid():
            raise EngineError(f"no such torrent: {job_id}")
        return h

    @staticmethod
    def _call(accessor: Callable[[], Any]) -> Any:
        try:
            return accessor()
        except RuntimeError as e:
            raise EngineError(str(e))

