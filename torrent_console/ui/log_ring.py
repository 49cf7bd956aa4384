"""Bounded on-screen event log.

The LogRing keeps the last 20 rendered event lines. It is owned by the
control thread; other threads (the startup loader, logging from anywhere)
post lines through a thread-safe queue that the control loop flushes once
per tick.
"""

import logging
import queue
from collections import deque
from typing import Iterator, List

LOG_RING_CAPACITY = 20


class LogRing:
    """FIFO of rendered event strings with oldest-first eviction.

    Example:
        >>> ring = LogRing()
        >>> ring.append("[Oct 19 10:00:00] tracker error")
        >>> len(ring)
        1
    """

    def __init__(self, capacity: int = LOG_RING_CAPACITY):
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)
        self._pending: queue.SimpleQueue = queue.SimpleQueue()
        self.total_appended = 0

    def append(self, line: str) -> None:
        """Append a line (control thread only), evicting the oldest if full."""
        self._entries.append(line)
        self.total_appended += 1

    def post(self, line: str) -> None:
        """Queue a line from any thread; it appears after the next flush."""
        self._pending.put(line)

    def flush_pending(self) -> int:
        """Move posted lines into the ring (control thread only).

        Returns:
            Number of lines moved
        """
        moved = 0
        while True:
            try:
                line = self._pending.get_nowait()
            except queue.Empty:
                break
            self.append(line)
            moved += 1
        return moved

    def entries(self) -> List[str]:
        """Snapshot of the ring, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


class LogRingHandler(logging.Handler):
    """Log handler that posts formatted records to a LogRing.

    Used while the interactive console owns the terminal, so warnings and
    errors show up in the log section instead of scribbling over the frame.

    Example:
        >>> ring = LogRing()
        >>> handler = LogRingHandler(ring, level=logging.WARNING)
        >>> logging.root.addHandler(handler)
    """

    def __init__(self, log_ring: LogRing, level: int = logging.WARNING):
        super().__init__(level)
        self.log_ring = log_ring

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log_ring.post(self.format(record))
        except Exception:
            # Don't let logging errors crash the application
            self.handleError(record)
