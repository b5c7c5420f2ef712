"""Event processing with per-path debouncing and coalescing."""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import WatchConfig
from .models import EventType, RawFSEvent

logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    """A change waiting for its path's debounce window to close."""
    event_type: EventType
    path: Path
    timestamp: float = field(default_factory=time.time)


class ChangeDebouncer:
    """
    Debounces rapid file change events.

    Each path has its own window: every new event on a path pushes that
    path's settle time forward, so a burst of writes coalesces into one
    change once the path has been quiet for ``debounce_ms``.
    """

    def __init__(self, debounce_ms: int = 500):
        """
        Initialize the debouncer.

        Args:
            debounce_ms: Debounce window in milliseconds
        """
        self.debounce_ms = debounce_ms
        self._pending: Dict[Path, PendingChange] = {}
        self._lock = threading.Lock()

    def add(self, change: PendingChange) -> None:
        """
        Add a change to the debouncer.

        Coalescing rules:
        - ADD then MODIFY → single ADD
        - Multiple MODIFYs → single MODIFY
        - ADD then DELETE → cancel out (no change)
        - DELETE then ADD/MODIFY → MODIFY (file replaced)
        - anything then DELETE → DELETE

        Args:
            change: The pending change to add
        """
        with self._lock:
            path = change.path
            existing = self._pending.get(path)

            if existing is None:
                self._pending[path] = change
                return

            if change.event_type == EventType.DELETE:
                if existing.event_type == EventType.ADD:
                    del self._pending[path]
                else:
                    self._pending[path] = change
                return

            if existing.event_type == EventType.DELETE:
                existing.event_type = EventType.MODIFY

            existing.timestamp = change.timestamp

    def flush(self, current_time: float) -> List[PendingChange]:
        """
        Flush changes whose path has been quiet for the debounce window.

        Args:
            current_time: Current timestamp

        Returns:
            List of settled changes
        """
        window_sec = self.debounce_ms / 1000.0
        ready = []

        with self._lock:
            for path, change in list(self._pending.items()):
                if (current_time - change.timestamp) >= window_sec:
                    ready.append(change)
                    del self._pending[path]

        return ready

    def flush_all(self) -> List[PendingChange]:
        """
        Flush all pending changes regardless of time.

        Returns:
            List of all pending changes
        """
        with self._lock:
            changes = list(self._pending.values())
            self._pending.clear()
            return changes

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self) -> None:
        """Clear all pending changes."""
        with self._lock:
            self._pending.clear()


class EventProcessor:
    """
    Turns raw watchdog events into debounced per-path changes.

    A move is treated as a DELETE of the source plus an ADD of the
    destination, so editors that save through a rename are recorded.
    """

    def __init__(self, root: Path, config: Optional[WatchConfig] = None):
        """
        Initialize the event processor.

        Args:
            root: Project root; events outside it are dropped
            config: Watch configuration
        """
        self.root = Path(root).resolve()
        self.config = config or WatchConfig()
        self._debouncer = ChangeDebouncer(self.config.debounce_ms)
        self._lock = threading.Lock()

    def _within_root(self, path: Path) -> bool:
        return path == self.root or self.root in path.parents

    def process(self, raw_event: RawFSEvent) -> None:
        """
        Process a raw filesystem event.

        Args:
            raw_event: The raw event from the filesystem watcher
        """
        logger.debug("EventProcessor.process: %s - %s", raw_event.event_type, raw_event.src_path)

        with self._lock:
            if raw_event.event_type == "moved":
                self._add(EventType.DELETE, raw_event.src_path, raw_event.timestamp)
                if raw_event.dest_path is not None:
                    self._add(EventType.ADD, raw_event.dest_path, raw_event.timestamp)
            elif raw_event.event_type == "deleted":
                self._add(EventType.DELETE, raw_event.src_path, raw_event.timestamp)
            elif raw_event.event_type == "created":
                self._add(EventType.ADD, raw_event.src_path, raw_event.timestamp)
            elif raw_event.event_type == "modified":
                self._add(EventType.MODIFY, raw_event.src_path, raw_event.timestamp)

    def _add(self, event_type: EventType, path: Path, timestamp: float) -> None:
        path = Path(path).absolute()
        if not self._within_root(path):
            return
        if self.config.should_ignore(path, self.root):
            return
        self._debouncer.add(PendingChange(event_type, path, timestamp))

    def flush(self, current_time: Optional[float] = None) -> List[PendingChange]:
        """
        Collect changes whose debounce window has closed.

        Returns:
            Settled changes, ready to be recorded
        """
        if current_time is None:
            current_time = time.time()
        with self._lock:
            return self._debouncer.flush(current_time)

    def flush_all(self) -> List[PendingChange]:
        """
        Force flush all pending changes immediately.

        Returns:
            All pending changes
        """
        with self._lock:
            return self._debouncer.flush_all()

    def pending_count(self) -> int:
        return self._debouncer.pending_count()

    def relative_path(self, path: Path) -> str:
        """POSIX path of a change relative to the project root."""
        return Path(path).absolute().relative_to(self.root).as_posix()

    def clear(self) -> None:
        """Clear all pending state."""
        with self._lock:
            self._debouncer.clear()
