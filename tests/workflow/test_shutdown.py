import logging

import pytest

from torrent_console.engine.events import RecoverySavedEvent
from torrent_console.engine.protocol import JobCommand
from torrent_console.workflow.control_loop import SHUTDOWN_PROGRESS_EVERY, ControlLoop, LoopOptions


class StepClock:
    """Monotonic clock advancing a fixed step per reading"""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def make_loop(engine, terminal, ctx, pump, adder, store, tmp_path):
    def _builder(clock=None, loader=None, **options):
        options.setdefault("session_state_file", str(tmp_path / ".ses_state"))
        kwargs = {"clock": clock} if clock is not None else {}
        return ControlLoop(engine, terminal, ctx, pump, adder, store,
                           loader=loader, options=LoopOptions(**options), **kwargs)
    return _builder


@pytest.mark.unit
def test_shutdown_saves_dirty_jobs_with_metadata(make_loop, engine, terminal, store, ctx, make_status):
    engine.answer_saves = True
    engine.statuses = [
        make_status("aa", need_save=True),
        make_status("bb"),
        make_status("cc", need_save=True, has_metadata=False),
        make_status("dd", need_save=True),
    ]

    assert make_loop().shutdown() == 0

    saved = [c[0] for c in engine.commands_for(JobCommand.SAVE_RECOVERY_STATE)]
    assert saved == ["aa", "dd"]
    assert store.read("aa") == b"blob-aa"
    assert store.read("dd") == b"blob-dd"
    assert ctx.tracker.is_drained()
    assert engine.session_paused is True
    assert terminal.text.index("saving resume data") < terminal.text.index("closing session")
    assert "waiting for resume data [2]" in terminal.text


@pytest.mark.unit
def test_shutdown_joins_loader_before_pausing(make_loop, engine):
    events = []

    class Loader:
        def join(self, timeout=None):
            events.append(("join", engine.session_paused))

    make_loop(loader=Loader()).shutdown()

    assert events == [("join", False)]


@pytest.mark.unit
def test_shutdown_reports_progress_in_batches(make_loop, engine, terminal, make_status):
    engine.answer_saves = True
    engine.statuses = [make_status(f"{i:03d}", need_save=True)
                       for i in range(SHUTDOWN_PROGRESS_EVERY + 8)]

    make_loop().shutdown()

    progress = [chunk for chunk in terminal.output if chunk.startswith("\r")]
    # the first batch is answered by the drain right after the progress line
    assert progress == [f"\r{SHUTDOWN_PROGRESS_EVERY}  "]
    assert "waiting for resume data [8]" in terminal.text


@pytest.mark.unit
def test_wait_gives_up_at_deadline(make_loop, engine, ctx, caplog):
    loop = make_loop(clock=StepClock(5.0), shutdown_timeout=30, drain_wait=10)
    ctx.tracker.request_save()

    with caplog.at_level(logging.WARNING):
        assert loop.wait_for_saves() is False

    assert engine.waits == [10, 10, 10, 10, 5]
    assert "Giving up on 1 outstanding resume data saves after 30s" in caplog.text


@pytest.mark.unit
def test_wait_without_deadline_runs_until_answered(make_loop, engine, ctx):
    loop = make_loop(clock=StepClock(1000.0), shutdown_timeout=0, drain_wait=10)
    ctx.tracker.request_save()
    calls = []

    def wait_for_event(timeout):
        calls.append(timeout)
        if len(calls) == 3:
            engine.queue(RecoverySavedEvent(job_id="aa", blob=b"x"))
        return engine.events[0] if engine.events else None

    engine.wait_for_event = wait_for_event

    assert loop.wait_for_saves() is True
    assert calls == [10, 10, 10]
    assert ctx.tracker.is_drained()


@pytest.mark.unit
def test_shutdown_writes_session_state(make_loop, engine, tmp_path):
    engine.session_state = b"d3:dhtd5:nodesleee"

    make_loop().shutdown()

    assert (tmp_path / ".ses_state").read_bytes() == b"d3:dhtd5:nodesleee"
