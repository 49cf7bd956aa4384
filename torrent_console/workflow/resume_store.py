"""
Recovery-state persistence

One opaque blob per job under ``<save_path>/.resume/<job_id>.resume``,
written atomically, plus the startup loader thread that re-submits every
saved job to the engine.
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional

from torrent_console.engine.protocol import Engine
from torrent_console.engine.types import AddJobParams, JobFlag

logger = logging.getLogger(__name__)

RESUME_DIR_NAME = ".resume"
RESUME_SUFFIX = ".resume"


class ResumeStore:
    """
    Manages per-job recovery files

    The console never interprets the blobs; it only writes what the engine
    produced and hands it back at startup.

    Example:
        store = ResumeStore('/downloads')
        store.ensure_dir()
        store.write(job_id, blob)
        blob = store.read(job_id)
    """

    def __init__(self, save_path: str):
        """
        Initialize resume store

        Args:
            save_path: Download save path; recovery files live in its .resume directory
        """
        self.save_path = Path(save_path)
        self.resume_dir = self.save_path / RESUME_DIR_NAME

    def ensure_dir(self) -> bool:
        """
        Create the recovery directory if needed

        Returns:
            True if the directory exists afterwards
        """
        try:
            self.resume_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Failed to create resume file directory {self.resume_dir}: {e}")
            return False

    def path_for(self, job_id: str) -> Path:
        """Recovery file path for a job content identifier"""
        return self.resume_dir / f"{job_id}{RESUME_SUFFIX}"

    def write(self, job_id: str, blob: bytes) -> bool:
        """
        Write a recovery blob atomically

        Args:
            job_id: Job content identifier
            blob: Opaque recovery state

        Returns:
            True on success; failures are logged, never raised
        """
        target = self.path_for(job_id)
        temp_file = target.with_suffix('.tmp')

        try:
            self.resume_dir.mkdir(parents=True, exist_ok=True)
            temp_file.write_bytes(blob)
            # Atomic rename
            temp_file.replace(target)
            logger.debug(f"Resume data saved: {target} ({len(blob)} bytes)")
            return True
        except OSError as e:
            logger.error(f"Failed to save resume data for {job_id}: {e}")
            if temp_file.exists():
                temp_file.unlink()
            return False

    def read(self, job_id: str) -> Optional[bytes]:
        """
        Read a job's recovery blob

        Returns:
            The blob, or None if there is no (readable) recovery file
        """
        path = self.path_for(job_id)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to load resume file {path}: {e}")
            return None

    def remove(self, job_id: str) -> bool:
        """Delete a job's recovery file; returns False if it could not be removed"""
        path = self.path_for(job_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Failed to delete resume file {path}: {e}")
            return False

    def list_files(self) -> List[Path]:
        """
        List recovery files

        Raises:
            OSError: If the recovery directory cannot be listed
        """
        return sorted(
            p for p in self.resume_dir.iterdir()
            if p.is_file() and p.name.endswith(RESUME_SUFFIX)
        )


def load_session_state(path: str) -> Optional[bytes]:
    """Read the engine's saved session state (DHT) if present"""
    state_file = Path(path)
    if not state_file.exists():
        return None
    try:
        return state_file.read_bytes()
    except OSError as e:
        logger.warning(f"Failed to load session state {state_file}: {e}")
        return None


def save_session_state(path: str, blob: bytes) -> bool:
    """Write the engine's session state atomically"""
    state_file = Path(path)
    temp_file = state_file.with_name(state_file.name + '.tmp')
    try:
        temp_file.write_bytes(blob)
        temp_file.replace(state_file)
        return True
    except OSError as e:
        logger.error(f"Failed to save session state {state_file}: {e}")
        return False


class ResumeLoader:
    """
    Background bulk load of recovery files at startup

    Runs on its own thread and talks to the engine only by submitting
    add-job commands; it never touches console state. Joined before final
    shutdown.
    """

    def __init__(self, store: ResumeStore, engine: Engine, base_params: Optional[AddJobParams] = None):
        """
        Initialize resume loader

        Args:
            store: Recovery file store to read from
            engine: Engine to submit add-job commands to
            base_params: Per-job options applied to every re-submitted job
        """
        self.store = store
        self.engine = engine
        self.base_params = base_params or AddJobParams()
        self.submitted = 0
        self.failed = 0
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start loading on a background thread"""
        self._thread = threading.Thread(
            target=self.run, name="resume-loader", daemon=True
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Submit every recovery file as an add-job command"""
        try:
            files = self.store.list_files()
        except OSError as e:
            logger.error(f"Failed to list resume directory \"{self.store.resume_dir}\": {e}")
            return

        for path in files:
            try:
                blob = path.read_bytes()
            except OSError as e:
                logger.warning(f"Failed to load resume file \"{path}\": {e}")
                self.failed += 1
                continue

            params = self.base_params.with_options(
                job_id=path.name[:-len(RESUME_SUFFIX)],
                name=path.name,
                recovery_blob=blob,
                source=str(path),
                # Loaded from recovery state; no need to re-save immediately
                flags=self.base_params.flags & ~JobFlag.NEED_SAVE_RESUME,
            )
            self.engine.add_job(params)
            self.submitted += 1

        logger.info(f"Resume loader submitted {self.submitted} torrents ({self.failed} unreadable)")
