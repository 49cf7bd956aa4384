import logging

import pytest

from torrent_console.workflow.recovery_tracker import RecoveryTracker


@pytest.mark.unit
def test_request_and_result_balance():
    tracker = RecoveryTracker()

    assert tracker.request_save() == 1
    assert tracker.request_save() == 2
    assert tracker.is_drained() is False

    assert tracker.on_result(success=True) == 1
    assert tracker.on_result(success=False) == 0
    assert tracker.is_drained() is True
    assert tracker.requests == 2
    assert tracker.results == 2
    assert tracker.failures == 1


@pytest.mark.unit
def test_unmatched_result_never_goes_negative(caplog):
    tracker = RecoveryTracker()

    with caplog.at_level(logging.WARNING):
        assert tracker.on_result(success=True) == 0

    assert tracker.outstanding == 0
    assert tracker.unmatched_results == 1
    assert "no request outstanding" in caplog.text


@pytest.mark.unit
def test_failed_answer_is_terminal():
    tracker = RecoveryTracker()
    tracker.request_save()
    tracker.on_result(success=False)

    # Not retried: nothing outstanding afterwards
    assert tracker.is_drained()
    assert tracker.requests == 1
