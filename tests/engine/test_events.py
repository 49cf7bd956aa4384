import pytest

from torrent_console.engine.events import (
    GenericEvent,
    JobAddedEvent,
    PeerDisconnectEvent,
    RecoverySaveFailedEvent,
    RecoverySavedEvent,
)
from torrent_console.engine.protocol import format_settings


@pytest.mark.unit
def test_event_categories_are_fixed():
    assert RecoverySavedEvent(job_id="aa", blob=b"x").category == 'storage'
    assert RecoverySaveFailedEvent(job_id="aa", error="x").category == 'error'
    assert PeerDisconnectEvent("aa", "1.2.3.4:6881", "sock_read", "eof").category == 'peer'
    assert GenericEvent("tracker error", kind="tracker_error", category='error').category == 'error'


@pytest.mark.unit
def test_not_modified_failure_means_nothing_to_save():
    assert RecoverySaveFailedEvent(job_id="aa", error="resume_data_not_modified").nothing_to_save
    assert not RecoverySaveFailedEvent(job_id="aa", error="no_metadata").nothing_to_save


@pytest.mark.unit
def test_job_added_message_reports_failure():
    ok = JobAddedEvent(job_id="aa", name="ubuntu.iso")
    failed = JobAddedEvent(job_id="", name="broken.torrent", error="duplicate torrent")

    assert ok.message == "ubuntu.iso: added torrent"
    assert failed.message == "failed to add torrent: broken.torrent duplicate torrent"


@pytest.mark.unit
def test_events_are_immutable():
    event = RecoverySavedEvent(job_id="aa", blob=b"x")
    with pytest.raises(AttributeError):
        event.job_id = "bb"


@pytest.mark.unit
def test_format_settings_orders_by_type():
    lines = format_settings([
        ("connections_limit", "int"),
        ("user_agent", "string"),
        ("enable_dht", "bool"),
        ("", "int"),
    ])

    assert lines == [
        "user_agent=<string>",
        "enable_dht=<bool>",
        "connections_limit=<int>",
    ]
