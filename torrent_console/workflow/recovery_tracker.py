"""
Recovery-state tracker

Counts save-recovery-state requests that have been issued to the engine but
not yet answered, so shutdown can wait until every job's state is on disk.
"""

import logging

logger = logging.getLogger(__name__)


class RecoveryTracker:
    """
    Outstanding save-recovery-state request counter

    Incremented exactly once per request issued, decremented exactly once per
    saved-or-failed answer. A failed save is terminal for that attempt; it is
    never retried here.

    Example:
        tracker = RecoveryTracker()
        tracker.request_save()          # -> 1
        tracker.on_result(success=True) # -> 0
        assert tracker.is_drained()
    """

    def __init__(self):
        self._outstanding = 0
        self.requests = 0
        self.results = 0
        self.failures = 0
        self.unmatched_results = 0

    @property
    def outstanding(self) -> int:
        """Requests issued and not yet answered"""
        return self._outstanding

    def request_save(self) -> int:
        """
        Record one save request

        Returns:
            New outstanding total (used for operator-visible progress)
        """
        self._outstanding += 1
        self.requests += 1
        return self._outstanding

    def on_result(self, success: bool) -> int:
        """
        Record one save answer

        An answer with nothing outstanding belongs to a request this console
        never issued; it is logged and ignored so the count cannot go negative.

        Args:
            success: True for a saved answer, False for a failed one

        Returns:
            New outstanding total
        """
        if not success:
            self.failures += 1

        if self._outstanding == 0:
            self.unmatched_results += 1
            logger.warning("Recovery-state answer received with no request outstanding")
            return 0

        self._outstanding -= 1
        self.results += 1
        return self._outstanding

    def is_drained(self) -> bool:
        """Check whether every issued request has been answered"""
        return self._outstanding == 0
