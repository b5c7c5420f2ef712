"""Records settled file changes: blob store, journal, sync queue."""

import logging
from pathlib import Path
from typing import Callable, List, Optional

from .blob_store import BlobStore
from .event_processor import PendingChange
from .exceptions import JournalError
from .journal import Journal
from .models import EventType, JournalEvent, SyncEntry

logger = logging.getLogger(__name__)


class ChangeRecorder:
    """
    Persists settled changes for one watch session.

    For every ADD/MODIFY the file is read as it is *now* (the content at
    settle time), stored in the blob store, appended to the journal and
    handed to the sync callback. Deletions are not recorded.
    """

    def __init__(
        self,
        root: Path,
        session_id: str,
        blob_store: BlobStore,
        journal: Journal,
        on_recorded: Optional[Callable[[SyncEntry], None]] = None,
    ):
        self.root = Path(root).resolve()
        self.session_id = session_id
        self.blob_store = blob_store
        self.journal = journal
        self.on_recorded = on_recorded

    def record(self, changes: List[PendingChange]) -> List[JournalEvent]:
        """
        Record a list of settled changes.

        Unreadable files are skipped. A journal failure is logged and the
        change is not queued for sync; the remaining changes still proceed.

        Returns:
            Journal events written, in order
        """
        recorded = []
        for change in changes:
            event = self.record_one(change)
            if event is not None:
                recorded.append(event)
        return recorded

    def record_one(self, change: PendingChange) -> Optional[JournalEvent]:
        if change.event_type == EventType.DELETE:
            return None

        path = Path(change.path)
        try:
            file_path = path.absolute().relative_to(self.root).as_posix()
        except ValueError:
            return None

        try:
            content = path.read_bytes()
        except OSError as e:
            logger.debug("Skipping unreadable file %s: %s", file_path, e)
            return None

        try:
            blob_hash = self.blob_store.store(content)
        except OSError as e:
            logger.error("Failed to store blob for %s: %s", file_path, e)
            return None

        try:
            event = self.journal.record_event(self.session_id, file_path, blob_hash)
        except JournalError as e:
            logger.error("Failed to journal change to %s: %s", file_path, e)
            return None

        logger.info("Recorded: %s (%s...)", file_path, blob_hash[:8])

        if self.on_recorded is not None:
            self.on_recorded(SyncEntry.from_event(event))

        return event
