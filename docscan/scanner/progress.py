"""
Progress Channel.

Rate-limited, coalescing delivery of ScanProgress snapshots to
subscribers. Between two emissions at most one snapshot is kept, the
latest; flush() delivers it immediately. Lifecycle boundaries (start,
stop, completion) publish with ``force=True``.

Author: ML Engineering Team
"""

import threading
import time
from typing import Callable, List, Optional

from config import get_config
from ..utils.logger import get_logger
from .models import ScanProgress

# Initialize module logger
logger = get_logger(__name__)

ProgressCallback = Callable[[ScanProgress], None]


class ProgressChannel:
    """
    Example:
        >>> channel = ProgressChannel(interval=0.15)
        >>> unsubscribe = channel.subscribe(print)
        >>> channel.publish(progress)               # delivered
        >>> channel.publish(progress)               # held back, coalesced
        >>> channel.flush()                         # delivered now
    """

    def __init__(self, interval: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval if interval is not None else get_config("scan.progress_interval", 0.15)
        self._clock = clock
        self._subscribers: List[ProgressCallback] = []
        self._pending: Optional[ScanProgress] = None
        self._last_emit: Optional[float] = None
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, progress: ScanProgress, force: bool = False) -> bool:
        """
        Offer a snapshot.

        Args:
            progress: Current progress; a copy is kept.
            force: Deliver immediately regardless of the rate limit.

        Returns:
            True if the snapshot was delivered now.
        """
        with self._lock:
            self._pending = progress.snapshot()
            now = self._clock()
            due = self._last_emit is None or now - self._last_emit >= self.interval
            if not (force or due):
                return False
        self.flush()
        return True

    def flush(self) -> None:
        """Deliver the pending snapshot, if any."""
        with self._lock:
            pending = self._pending
            self._pending = None
            if pending is None:
                return
            self._last_emit = self._clock()
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(pending)
            except Exception:
                logger.exception("Progress subscriber raised; continuing")

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None
