from datetime import datetime

import pytest

from torrent_console.engine.events import (
    DhtStatsEvent,
    GenericEvent,
    JobAddedEvent,
    JobFinishedEvent,
    JobListSnapshotEvent,
    JobPausedEvent,
    MetadataReceivedEvent,
    PeerConnectEvent,
    PeerDisconnectEvent,
    RecoverySaveFailedEvent,
    RecoverySavedEvent,
    SessionStatsEvent,
)
from torrent_console.engine.protocol import JobCommand
from torrent_console.engine.types import DhtBucket, SaveFlag
from torrent_console.ui.formatting import strip_ansi
from torrent_console.workflow.event_pump import EventPump, PumpOptions, format_event, parse_endpoint


def _fixed_clock():
    return datetime(2024, 3, 7, 9, 5, 1)


@pytest.fixture
def pump(ctx, engine, store):
    return EventPump(ctx, engine, store, PumpOptions(max_connections=50), clock=_fixed_clock)


@pytest.mark.unit
def test_three_saves_two_succeed_one_fails(ctx, engine, pump, store):
    for job_id in ("aa", "bb", "cc"):
        pump.request_save(job_id, SaveFlag.SAVE_INFO_DICT)
    assert ctx.tracker.outstanding == 3

    logged = pump.pump([
        RecoverySavedEvent(job_id="aa", blob=b"A"),
        RecoverySavedEvent(job_id="bb", blob=b"B"),
        RecoverySaveFailedEvent(job_id="cc", error="file_too_short", error_message="disk full"),
    ])

    assert ctx.tracker.outstanding == 0
    assert logged == 1
    assert len(ctx.log) == 1
    assert "disk full" in ctx.log.entries()[0]
    assert store.read("aa") == b"A"
    assert store.read("bb") == b"B"
    assert store.read("cc") is None


@pytest.mark.unit
def test_not_modified_failure_is_silent(ctx, pump):
    pump.request_save("aa", SaveFlag.SAVE_INFO_DICT)
    logged = pump.pump([RecoverySaveFailedEvent(job_id="aa", error="resume_data_not_modified")])

    assert logged == 0
    assert ctx.tracker.is_drained()


@pytest.mark.unit
def test_snapshot_replaces_job_list(ctx, pump, make_status):
    pump.pump([JobListSnapshotEvent(statuses=(make_status("a"), make_status("b")))])
    assert {st.job_id for st in ctx.view.jobs} == {"a", "b"}

    pump.pump([JobListSnapshotEvent(statuses=(make_status("a"),))])
    assert [st.job_id for st in ctx.view.jobs] == ["a"]
    assert len(ctx.log) == 0


@pytest.mark.unit
def test_stats_events_update_views_without_logging(ctx, pump):
    logged = pump.pump([
        SessionStatsEvent(counters={"net.recv_bytes": 1000}, timestamp=1.0),
        DhtStatsEvent(active_lookups=(), routing_table=(DhtBucket(8, 2),)),
        PeerConnectEvent(job_id="aa", endpoint="10.0.0.1:6881"),
    ])

    assert logged == 0
    assert ctx.stats.value("net.recv_bytes") == 1000
    assert ctx.dht.routing_table == (DhtBucket(8, 2),)


@pytest.mark.unit
@pytest.mark.parametrize("operation,error,expect_logged", [
    ("connect", "connection_refused", 0),
    ("sock_read", "timed_out_no_handshake", 0),
    ("sock_read", "eof", 1),
])
def test_peer_disconnect_noise_filter(pump, operation, error, expect_logged):
    event = PeerDisconnectEvent("aa", "10.0.0.1:6881", operation, error)
    assert pump.pump([event]) == expect_logged


@pytest.mark.unit
def test_job_added_requests_save_and_connects_peer(ctx, engine, store):
    pump = EventPump(ctx, engine, store, PumpOptions(connect_peer="10.1.1.1:6881"), clock=_fixed_clock)

    logged = pump.pump([JobAddedEvent(job_id="aa", name="ubuntu.iso")])

    assert logged == 1
    assert ctx.tracker.outstanding == 1
    save = engine.commands_for(JobCommand.SAVE_RECOVERY_STATE)
    assert save == [("aa", JobCommand.SAVE_RECOVERY_STATE,
                     {"flags": SaveFlag.SAVE_INFO_DICT | SaveFlag.ONLY_IF_MODIFIED})]
    assert engine.commands_for(JobCommand.CONNECT_PEER) == [
        ("aa", JobCommand.CONNECT_PEER, {"ip": "10.1.1.1", "port": 6881})
    ]


@pytest.mark.unit
def test_failed_add_is_only_logged(ctx, engine, pump):
    logged = pump.pump([JobAddedEvent(job_id="", name="bad.torrent", error="invalid bencoding")])

    assert logged == 1
    assert engine.commands == []
    assert ctx.tracker.outstanding == 0


@pytest.mark.unit
def test_finished_halves_connections_and_saves(ctx, engine, pump):
    pump.pump([JobFinishedEvent(job_id="aa", name="ubuntu.iso")])

    assert engine.commands_for(JobCommand.SET_MAX_CONNECTIONS) == [
        ("aa", JobCommand.SET_MAX_CONNECTIONS, {"limit": 25})
    ]
    assert ctx.tracker.outstanding == 1


@pytest.mark.unit
def test_metadata_and_pause_request_saves(ctx, engine, pump):
    logged = pump.pump([
        MetadataReceivedEvent(job_id="aa", name="x"),
        JobPausedEvent(job_id="bb", name="y"),
    ])

    assert logged == 2
    assert [c[0] for c in engine.commands_for(JobCommand.SAVE_RECOVERY_STATE)] == ["aa", "bb"]
    assert ctx.tracker.outstanding == 2


@pytest.mark.unit
def test_rejected_save_request_is_not_counted(ctx, engine, pump):
    engine.failing_commands.add(JobCommand.SAVE_RECOVERY_STATE)

    pump.request_save("gone", SaveFlag.SAVE_INFO_DICT)

    assert ctx.tracker.outstanding == 0


@pytest.mark.unit
def test_generic_events_are_logged_with_timestamp(ctx, pump):
    pump.pump([GenericEvent("tracker: timed out", kind="tracker_error", category='error')])

    line = ctx.log.entries()[0]
    assert strip_ansi(line) == "[Mar 07 09:05:01] tracker: timed out"
    assert line != strip_ansi(line)  # coloured


@pytest.mark.unit
def test_format_event_plain_status_is_uncoloured():
    line = format_event(GenericEvent("listening on 0.0.0.0:6881"), _fixed_clock())
    assert line == "[Mar 07 09:05:01] listening on 0.0.0.0:6881"


@pytest.mark.unit
def test_drain_pops_engine_queue(ctx, engine, pump):
    engine.queue(GenericEvent("one"), GenericEvent("two"))

    assert pump.drain() == 2
    assert len(engine.events) == 0
    assert pump.events_seen == 2


@pytest.mark.unit
def test_parse_endpoint():
    assert parse_endpoint("10.0.0.1:6881") == ("10.0.0.1", 6881)
    assert parse_endpoint("[::1]:6881") == ("::1", 6881)
    assert parse_endpoint("10.0.0.1") is None
    assert parse_endpoint("10.0.0.1:0") is None
    assert parse_endpoint("10.0.0.1:http") is None
