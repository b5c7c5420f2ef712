"""Main time machine daemon orchestrator."""

import logging
import threading
from pathlib import Path
from typing import List, Optional

from .api_client import RemoteClient
from .blob_store import BlobStore
from .command_channel import CommandPoller
from .config import Connected, Connectivity, DaemonConfig, Disconnected
from .event_processor import EventProcessor
from .exceptions import ProcessAlreadyRunningError, ProcessNotRunningError
from .fs_watcher import FSWatcher
from .journal import Journal
from .models import JournalEvent, SyncResult
from .recorder import ChangeRecorder
from .syncer import Syncer

logger = logging.getLogger(__name__)


class TimeMachineProcess:
    """
    Main orchestrator for the time machine daemon.

    Coordinates filesystem watching, debouncing, the blob store and
    journal, cloud sync, and remote command polling.
    """

    def __init__(
        self,
        project_root: Path,
        config: Optional[DaemonConfig] = None,
        connectivity: Optional[Connectivity] = None,
        client: Optional[RemoteClient] = None,
    ):
        """
        Initialize the daemon.

        Args:
            project_root: Directory to watch
            config: Daemon configuration
            connectivity: Remote credentials; defaults to local-only mode
            client: Remote client shared by the syncer and poller
        """
        self.project_root = Path(project_root).resolve()
        self.config = config or DaemonConfig()
        self.connectivity = connectivity if connectivity is not None else Disconnected()

        self._owns_client = False
        self._client = client
        if self._client is None and isinstance(self.connectivity, Connected):
            self._client = RemoteClient(self.connectivity, timeout=self.config.request_timeout)
            self._owns_client = True

        self.blob_store = BlobStore(self.config.blobs_dir(self.project_root))

        self._journal: Optional[Journal] = None
        self._session_id: Optional[str] = None
        self._recorder: Optional[ChangeRecorder] = None

        self._event_processor = EventProcessor(self.project_root, self.config.watch)
        self._fs_watcher = FSWatcher(
            self.project_root,
            self._event_processor.process,
            self.config.watch,
        )
        self.syncer = Syncer(
            self.connectivity,
            self.blob_store,
            client=self._client,
            config=self.config.sync,
        )
        self.poller = CommandPoller(
            self.project_root,
            self.blob_store,
            self.connectivity,
            client=self._client,
            config=self.config.poll,
        )

        self._running = False
        self._stopped = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def journal(self) -> Journal:
        if self._journal is None:
            raise ProcessNotRunningError("Daemon is not initialized")
        return self._journal

    def initialize(self) -> None:
        """Create the metadata directory, open the journal and start a session."""
        with self._lock:
            if self._journal is not None:
                return

            self.config.metadata_dir(self.project_root).mkdir(parents=True, exist_ok=True)
            self.blob_store.initialize()
            self._journal = Journal(self.config.journal_path(self.project_root))
            self._session_id = self._journal.create_session()
            self._recorder = ChangeRecorder(
                self.project_root,
                self._session_id,
                self.blob_store,
                self._journal,
                on_recorded=self.syncer.enqueue,
            )

        logger.info("Session %s started for %s", self._session_id, self.project_root)

    def start(self) -> None:
        """
        Start watching, recording and polling in the background.

        Returns immediately; see ``serve_forever`` for a blocking run.

        Raises:
            ProcessNotRunningError: If ``initialize`` was not called
            ProcessAlreadyRunningError: If already running
        """
        if self._recorder is None:
            raise ProcessNotRunningError("Call initialize() before start()")

        with self._lock:
            if self._running:
                raise ProcessAlreadyRunningError("Daemon is already running")
            if self._stopped:
                raise ProcessNotRunningError("Daemon was stopped; create a new one")

            self._running = True
            self._stop_event.clear()

        self._threads = [
            threading.Thread(target=self._flush_loop, name="FlushLoop"),
        ]
        for thread in self._threads:
            thread.daemon = True
            thread.start()

        self._fs_watcher.start()
        self.poller.start()

        logger.info("Watching: %s", self.project_root)
        logger.info("Session ID: %s", self._session_id)

    def serve_forever(self) -> None:
        """Block until ``stop()`` is called (or Ctrl+C), then shut down."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> SyncResult:
        """
        Stop the daemon gracefully.

        Stops accepting filesystem events, records changes still inside
        their debounce window, stops polling, then gives unsynced events
        one last upload attempt before closing the journal.

        Returns:
            Result of the final sync flush
        """
        with self._lock:
            if self._stopped:
                return SyncResult(success=True)
            self._stopped = True
            was_running = self._running
            self._running = False

        self._stop_event.set()
        self._fs_watcher.stop()

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=2.0)
        self._threads.clear()

        if self._recorder is not None:
            self._recorder.record(self._event_processor.flush_all())

        self.poller.stop()

        result = SyncResult(success=True)
        if self.syncer.is_configured():
            logger.info("Flushing pending cloud syncs...")
            result = self.syncer.flush()
            if result.success and result.synced > 0:
                logger.info("Synced %d events to cloud", result.synced)
        self.syncer.close()
        self.poller.close()

        if self._journal is not None:
            self._journal.close()
        if self._owns_client and self._client is not None:
            self._client.close()

        if was_running:
            logger.info("Watch stopped")
        return result

    def _flush_loop(self) -> None:
        """Worker loop that periodically records settled changes."""
        flush_interval = self.config.watch.flush_interval_ms / 1000.0
        logger.debug("Flush loop started, interval=%ss", flush_interval)

        while not self._stop_event.is_set():
            try:
                self.process_settled()
            except Exception as e:
                logger.error("Flush loop error: %s", e, exc_info=True)

            self._stop_event.wait(timeout=flush_interval)

    def process_settled(self) -> List[JournalEvent]:
        """Record every change whose debounce window has closed."""
        if self._recorder is None:
            raise ProcessNotRunningError("Daemon is not initialized")
        return self._recorder.record(self._event_processor.flush())

    def get_session_id(self) -> Optional[str]:
        """Get the current session ID."""
        return self._session_id

    def is_sync_configured(self) -> bool:
        return self.syncer.is_configured()

    def is_polling_configured(self) -> bool:
        return self.poller.is_configured()

    @property
    def is_running(self) -> bool:
        """Check if the daemon is running."""
        return self._running

    def pending_change_count(self) -> int:
        return self._event_processor.pending_count()

    def close(self) -> None:
        """Stop the daemon and release all resources."""
        self.stop()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
