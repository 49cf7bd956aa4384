"""
Shared pytest fixtures and utilities for the torrent-console test suite.
"""

from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

from torrent_console.engine.events import RecoverySavedEvent
from torrent_console.engine.protocol import DescriptorError, EngineError, JobCommand
from torrent_console.engine.types import AddJobParams, JobFlag, JobState, JobStatus
from torrent_console.ui.terminal import KEY_EOF
from torrent_console.workflow.control_loop import ControlContext
from torrent_console.workflow.event_pump import EventPump, PumpOptions
from torrent_console.workflow.job_adder import JobAdder, JobOptions
from torrent_console.workflow.resume_store import ResumeStore


class FakeEngine:
    """
    Scriptable in-memory engine.

    Records every add and job command; events are queued by the test (or,
    with ``answer_saves``, generated in reply to save requests) and handed
    out by ``pop_events``.
    """

    def __init__(self):
        self.added: List[AddJobParams] = []
        self.commands: List[tuple] = []
        self.events: deque = deque()
        self.statuses: List[JobStatus] = []
        self.descriptors: Dict[str, AddJobParams] = {}
        self.details: Dict[str, Dict[str, list]] = {}
        self.failing_commands: set = set()
        self.answer_saves = False
        self.session_paused = False
        self.posted: List[str] = []
        self.waits: List[float] = []
        self.session_state = b"d3:dht0:e"

    # -- scripting helpers -------------------------------------------------

    def queue(self, *events) -> None:
        self.events.extend(events)

    def commands_for(self, command: JobCommand) -> List[tuple]:
        return [c for c in self.commands if c[1] == command]

    # -- Engine protocol -------------------------------------------------

    def add_job(self, params: AddJobParams) -> None:
        self.added.append(params)

    def post_job_updates(self) -> None:
        self.posted.append("jobs")

    def post_session_stats(self) -> None:
        self.posted.append("stats")

    def post_dht_stats(self) -> None:
        self.posted.append("dht")

    def pop_events(self) -> list:
        events = list(self.events)
        self.events.clear()
        return events

    def wait_for_event(self, timeout: float):
        self.waits.append(timeout)
        return self.events[0] if self.events else None

    def job_command(self, job_id: str, command: JobCommand, **args) -> None:
        if command in self.failing_commands:
            raise EngineError(f"{command.value}: invalid torrent handle")
        self.commands.append((job_id, command, args))
        if command == JobCommand.SAVE_RECOVERY_STATE and self.answer_saves:
            self.events.append(RecoverySavedEvent(job_id=job_id, blob=b"blob-" + job_id.encode()))

    def pause_session(self) -> None:
        self.session_paused = True

    def resume_session(self) -> None:
        self.session_paused = False

    def is_session_paused(self) -> bool:
        return self.session_paused

    def job_statuses(self, predicate: Callable[[JobStatus], bool]) -> List[JobStatus]:
        return [st for st in self.statuses if predicate(st)]

    def _detail(self, kind: str, job_id: str) -> list:
        if job_id not in self.details:
            raise EngineError(f"no such torrent: {job_id}")
        return list(self.details[job_id].get(kind, []))

    def peer_info(self, job_id: str) -> list:
        return self._detail("peers", job_id)

    def trackers(self, job_id: str) -> list:
        return self._detail("trackers", job_id)

    def download_queue(self, job_id: str) -> list:
        return self._detail("download_queue", job_id)

    def file_entries(self, job_id: str) -> list:
        return self._detail("files", job_id)

    def load_descriptor(self, path: str) -> AddJobParams:
        if path not in self.descriptors:
            raise DescriptorError(f"{path}: not a valid torrent file")
        return self.descriptors[path].with_options()

    def parse_magnet(self, uri: str) -> AddJobParams:
        prefix = "magnet:?xt=urn:btih:"
        if not uri.startswith(prefix):
            raise DescriptorError("unsupported URL protocol")
        job_id = uri[len(prefix):].split("&")[0]
        return AddJobParams(job_id=job_id, name=job_id)

    def save_session_state(self) -> bytes:
        return self.session_state


class FakeTerminal:
    """
    Terminal double: scripted input bytes, fixed size, captured output.
    """

    def __init__(self, keys: str = "", size=(120, 40)):
        self.input: deque = deque(self.encode(keys))
        self.width, self.height = size
        self.output: List[str] = []
        self.prompts: List[str] = []
        self.answers: deque = deque()
        self.read_timeouts: List[float] = []
        self.raw_entered = 0
        self.raw_exited = 0
        self.clears = 0

    @staticmethod
    def encode(keys) -> List[Optional[int]]:
        if isinstance(keys, str):
            return [ord(ch) for ch in keys]
        return list(keys)

    def feed(self, keys) -> None:
        self.input.extend(self.encode(keys))

    def feed_eof(self) -> None:
        self.input.append(KEY_EOF)

    @contextmanager
    def raw_mode(self):
        self.raw_entered += 1
        try:
            yield
        finally:
            self.raw_exited += 1

    def read_byte(self, timeout: float) -> Optional[int]:
        self.read_timeouts.append(timeout)
        if not self.input:
            return None
        return self.input.popleft()

    def size(self):
        return self.width, self.height

    def write(self, text: str) -> None:
        self.output.append(text)

    def clear_screen(self) -> None:
        self.clears += 1

    def prompt(self, message: str) -> str:
        self.prompts.append(message)
        return self.answers.popleft() if self.answers else ""

    @property
    def text(self) -> str:
        return "".join(self.output)


@pytest.fixture
def make_status() -> Callable[..., JobStatus]:
    """
    Build JobStatus values with sensible defaults.

    Usage:
        st = make_status("aa", state=JobState.SEEDING, paused=True)
    """

    def _builder(job_id: str, name: Optional[str] = None, paused: bool = False,
                 auto_managed: bool = True, need_save: bool = False, **kwargs: Any) -> JobStatus:
        flags = kwargs.pop("flags", JobFlag.NONE)
        if paused:
            flags |= JobFlag.PAUSED
        if auto_managed:
            flags |= JobFlag.AUTO_MANAGED
        if need_save:
            flags |= JobFlag.NEED_SAVE_RESUME
        kwargs.setdefault("state", JobState.DOWNLOADING)
        return JobStatus(job_id=job_id, name=name or f"job-{job_id}", flags=flags, **kwargs)

    return _builder


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def terminal() -> FakeTerminal:
    return FakeTerminal()


@pytest.fixture
def store(tmp_path: Path) -> ResumeStore:
    resume_store = ResumeStore(str(tmp_path / "downloads"))
    resume_store.ensure_dir()
    return resume_store


@pytest.fixture
def ctx() -> ControlContext:
    return ControlContext()


@pytest.fixture
def pump(ctx, engine, store) -> EventPump:
    return EventPump(ctx, engine, store, PumpOptions(max_connections=50))


@pytest.fixture
def adder(engine, store) -> JobAdder:
    return JobAdder(engine, store, JobOptions(save_path=str(store.save_path)))


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[[Dict[str, Any]], Path]:
    """
    Write a torrent_console.yaml into the temp directory.

    Usage:
        path = make_config({"client": {"save_path": "/srv/dl"}})
    """

    def _builder(content: Dict[str, Any]) -> Path:
        cfg_path = tmp_path / "torrent_console.yaml"
        cfg_path.write_text(yaml.safe_dump(content))
        return cfg_path

    return _builder
