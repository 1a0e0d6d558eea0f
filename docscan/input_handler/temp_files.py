"""
Temporary File Lifecycle.

A TempFileTracker owns the temporary files created while processing one
asset and removes them all on cleanup. The TempFileRegistry holds the
trackers of a scan so that whatever is still open when the scan ends can
be released in one call.

Author: ML Engineering Team
"""

import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Set, Union

from config import get_config
from ..utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)


class TempFileTracker:
    """
    Temporary files scoped to one unit of work.

    Example:
        >>> with TempFileTracker() as tracker:
        ...     path = tracker.create(".png")
        ...     image.save(path)
        >>> path.exists()
        False
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None, prefix: str = "docscan_") -> None:
        self.directory = str(directory) if directory else get_config("paths.temp")
        self.prefix = prefix
        self._paths: List[Path] = []

    def create(self, suffix: str = "") -> Path:
        """Create an empty temporary file and track it."""
        fd, name = tempfile.mkstemp(suffix=suffix, prefix=self.prefix, dir=self.directory)
        os.close(fd)
        path = Path(name)
        self._paths.append(path)
        return path

    def track(self, path: Union[str, Path]) -> Path:
        """Take ownership of an externally created file."""
        path = Path(path)
        self._paths.append(path)
        return path

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def cleanup(self) -> int:
        """
        Delete every tracked file.

        Returns:
            Number of files removed.
        """
        removed = 0
        while self._paths:
            path = self._paths.pop()
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temp file {path}: {e}")
        return removed

    def __enter__(self) -> 'TempFileTracker':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()


class TempFileRegistry:
    """Live trackers of a scan."""

    def __init__(self, directory: Optional[Union[str, Path]] = None) -> None:
        self.directory = directory
        self._trackers: Set[TempFileTracker] = set()
        self._lock = threading.Lock()

    @contextmanager
    def scope(self) -> Iterator[TempFileTracker]:
        """Yield a tracker that is cleaned up and unregistered on exit."""
        tracker = TempFileTracker(self.directory)
        with self._lock:
            self._trackers.add(tracker)
        try:
            yield tracker
        finally:
            tracker.cleanup()
            with self._lock:
                self._trackers.discard(tracker)

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._trackers)

    def release_all(self) -> int:
        """Clean up every live tracker. Returns the number of files removed."""
        with self._lock:
            trackers = list(self._trackers)
            self._trackers.clear()
        removed = sum(t.cleanup() for t in trackers)
        if removed:
            logger.info(f"Released {removed} leftover temp files")
        return removed
