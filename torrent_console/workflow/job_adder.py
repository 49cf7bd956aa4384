"""
Add-job submission

Turns a job descriptor file or a magnet link into an add-job command with the
operator's per-job options applied and any saved recovery state attached.
"""

import logging
from dataclasses import dataclass

from torrent_console.engine.protocol import DescriptorError, Engine
from torrent_console.engine.types import AddJobParams, JobFlag, StorageMode
from torrent_console.workflow.resume_store import ResumeStore

logger = logging.getLogger(__name__)


@dataclass
class JobOptions:
    """Per-job options taken from the command line / config file"""
    save_path: str = "."
    max_connections: int = 50
    upload_limit: int = 0
    download_limit: int = 0
    storage_mode: StorageMode = StorageMode.SPARSE
    seed_mode: bool = False
    share_mode: bool = False


class JobAdder:
    """
    Submits add-job commands

    Adding is asynchronous: a True return means the descriptor was parsed and
    the command submitted; the engine reports the outcome later with a
    JobAddedEvent.

    Example:
        adder = JobAdder(engine, store, JobOptions(save_path='/downloads'))
        adder.add_descriptor_file('/tmp/ubuntu.torrent')
        adder.add_magnet('magnet:?xt=urn:btih:...')
    """

    def __init__(self, engine: Engine, store: ResumeStore, options: JobOptions):
        self.engine = engine
        self.store = store
        self.options = options
        self._counter = 0

    def add_descriptor_file(self, path: str) -> bool:
        """
        Parse and submit a job descriptor file

        Args:
            path: Path to the descriptor file

        Returns:
            False if the descriptor could not be loaded
        """
        logger.info(f"[{self._counter}] {path}")
        self._counter += 1

        try:
            params = self.engine.load_descriptor(path)
        except DescriptorError as e:
            logger.error(f"Failed to load torrent \"{path}\": {e}")
            return False

        params = self._apply_options(params, source=path)
        params.flags &= ~JobFlag.DUPLICATE_IS_ERROR
        self.engine.add_job(params)
        return True

    def add_magnet(self, uri: str) -> bool:
        """
        Parse and submit a magnet link

        Args:
            uri: magnet: URI

        Returns:
            False if the link is invalid
        """
        try:
            params = self.engine.parse_magnet(uri)
        except DescriptorError as e:
            logger.error(f"Invalid magnet link \"{uri}\": {e}")
            return False

        params = self._apply_options(params, source=uri)
        logger.info(f"Adding magnet: {uri}")
        self.engine.add_job(params)
        return True

    def add(self, target: str) -> bool:
        """Add a command-line target, which is either a magnet link or a file"""
        if target.startswith("magnet:"):
            return self.add_magnet(target)
        return self.add_descriptor_file(target)

    def _apply_options(self, params: AddJobParams, source: str) -> AddJobParams:
        opts = self.options
        flags = params.flags
        if opts.seed_mode:
            flags |= JobFlag.SEED_MODE
        if opts.share_mode:
            flags |= JobFlag.SHARE_MODE

        recovery_blob = params.recovery_blob
        if params.job_id and recovery_blob is None:
            recovery_blob = self.store.read(params.job_id)

        return params.with_options(
            source=source,
            recovery_blob=recovery_blob,
            save_path=opts.save_path,
            max_connections=opts.max_connections,
            max_uploads=-1,
            upload_limit=opts.upload_limit,
            download_limit=opts.download_limit,
            storage_mode=opts.storage_mode,
            flags=flags,
        )
