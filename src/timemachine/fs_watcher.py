"""File system watcher using watchdog library."""

import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from .models import RawFSEvent
from .config import WatchConfig


class FSEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog file events to RawFSEvent."""

    def __init__(
        self,
        callback: Callable[[RawFSEvent], None],
        config: WatchConfig,
        root: Path,
    ):
        super().__init__()
        self.callback = callback
        self.config = config
        self.root = root

    def _should_ignore(self, path: str) -> bool:
        """Check if the path should be ignored."""
        return self.config.should_ignore(Path(path), self.root)

    def _emit(self, event_type: str, src_path: Path, dest_path: Optional[Path] = None):
        """Emit a RawFSEvent to the callback."""
        if self._should_ignore(str(src_path)):
            # A rename out of an ignored location (editor temp file) still
            # lands a real file at the destination.
            if dest_path is None or self._should_ignore(str(dest_path)):
                return
            event_type, src_path, dest_path = "created", dest_path, None
        elif dest_path and self._should_ignore(str(dest_path)):
            event_type, dest_path = "deleted", None

        raw_event = RawFSEvent(
            event_type=event_type,
            src_path=src_path,
            dest_path=dest_path,
            timestamp=time.time(),
        )
        self.callback(raw_event)

    def on_created(self, event):
        if not event.is_directory:
            self._emit("created", Path(event.src_path))

    def on_deleted(self, event):
        if not event.is_directory:
            self._emit("deleted", Path(event.src_path))

    def on_modified(self, event):
        if not event.is_directory:
            self._emit("modified", Path(event.src_path))

    def on_moved(self, event):
        if not event.is_directory:
            self._emit("moved", Path(event.src_path), Path(event.dest_path))


class FSWatcher:
    """
    Watches a single project root with a watchdog observer.

    Provides start/stop around the observer thread.
    """

    def __init__(
        self,
        root: Path,
        event_callback: Callable[[RawFSEvent], None],
        config: Optional[WatchConfig] = None,
    ):
        """
        Initialize the watcher.

        Args:
            root: Project root to watch recursively
            event_callback: Callback function for raw filesystem events
            config: Watch configuration
        """
        self.root = Path(root).resolve()
        self.event_callback = event_callback
        self.config = config or WatchConfig()
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    def start(self) -> bool:
        """
        Start watching the root directory.

        Returns:
            True if watching started, False if already watching
        """
        with self._lock:
            if self._observer is not None:
                return False

            observer = Observer()
            handler = FSEventHandler(self.event_callback, self.config, self.root)
            observer.schedule(handler, str(self.root), recursive=True)
            observer.start()

            self._observer = observer
            return True

    def stop(self) -> bool:
        """
        Stop watching.

        Returns:
            True if watching stopped, False if not watching
        """
        with self._lock:
            if self._observer is None:
                return False

            observer = self._observer
            self._observer = None

            observer.stop()
            observer.join(timeout=5.0)
            return True

    @property
    def is_watching(self) -> bool:
        with self._lock:
            return self._observer is not None
