"""
Monitor directory scanning

Job descriptor files dropped into the monitor directory are added to the
engine and removed from the directory.
"""

import logging
from pathlib import Path
from typing import List, Optional

from torrent_console.workflow.job_adder import JobAdder

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIX = ".torrent"


class DirectoryMonitor:
    """
    Periodic scan of a directory for new descriptor files

    A file whose add succeeds is deleted; a file that fails to load is left
    in place and logged. Listing failures are reported once until the
    directory can be read again, and never stop the control loop.

    Example:
        monitor = DirectoryMonitor('/srv/incoming', adder, poll_interval=5)
        monitor.poll(time.monotonic())
    """

    def __init__(self, path: str, adder: JobAdder, poll_interval: float = 5.0):
        """
        Initialize directory monitor

        Args:
            path: Directory to watch
            adder: Submits add-job commands for discovered files
            poll_interval: Seconds between scans
        """
        self.path = Path(path)
        self.adder = adder
        self.poll_interval = poll_interval
        self.next_scan: Optional[float] = None
        self._list_error_reported = False

    def due(self, now: float) -> bool:
        """Check whether the poll interval has elapsed"""
        return self.next_scan is None or now >= self.next_scan

    def poll(self, now: float) -> List[Path]:
        """
        Scan if the poll interval elapsed and reset the interval timer

        Args:
            now: Monotonic time in seconds

        Returns:
            Files added during this poll (empty if no scan was due)
        """
        if not self.due(now):
            return []
        added = self.scan()
        self.next_scan = now + self.poll_interval
        return added

    def list_descriptors(self) -> List[Path]:
        """
        List descriptor files in the monitor directory

        Raises:
            OSError: If the directory cannot be listed
        """
        return sorted(
            p for p in self.path.iterdir()
            if p.name.endswith(DESCRIPTOR_SUFFIX)
            and len(p.name) > len(DESCRIPTOR_SUFFIX)
            and p.is_file()
        )

    def scan(self) -> List[Path]:
        """
        Submit every descriptor file currently in the directory

        Returns:
            Files whose add-job command was submitted
        """
        try:
            candidates = self.list_descriptors()
        except OSError as e:
            if not self._list_error_reported:
                logger.error(f"Failed to list directory {self.path}: {e}")
                self._list_error_reported = True
            return []
        self._list_error_reported = False

        added = []
        for path in candidates:
            # There's a new file in the monitor directory, load it up
            if not self.adder.add_descriptor_file(str(path)):
                continue
            added.append(path)
            try:
                path.unlink()
            except OSError as e:
                logger.error(f"Failed to remove torrent file \"{path}\": {e}")

        return added
