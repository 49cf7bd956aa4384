"""Control loop, event pump and recovery-state lifecycle."""

from .recovery_tracker import RecoveryTracker
from .resume_store import ResumeStore, ResumeLoader, load_session_state, save_session_state
from .job_adder import JobAdder, JobOptions
from .dir_monitor import DirectoryMonitor
from .event_pump import EventPump, PumpOptions
from .control_loop import ControlLoop, ControlContext, LoopOptions

__all__ = [
    "RecoveryTracker",
    "ResumeStore",
    "ResumeLoader",
    "load_session_state",
    "save_session_state",
    "JobAdder",
    "JobOptions",
    "DirectoryMonitor",
    "EventPump",
    "PumpOptions",
    "ControlLoop",
    "ControlContext",
    "LoopOptions",
]
