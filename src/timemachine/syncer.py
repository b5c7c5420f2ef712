"""
Cloud sync of journal events.

Events are pushed fire-and-forget: a failed batch is logged and dropped,
never retried. The journal remains the local record of every change.
"""

import base64
import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple

from .api_client import RemoteClient
from .blob_store import BlobStore
from .config import Connected, Connectivity, SyncConfig
from .exceptions import BlobStoreError, RemoteAuthError
from .models import SyncEntry, SyncResult

logger = logging.getLogger(__name__)


class SyncQueue:
    """
    Bounded in-memory FIFO of entries waiting for upload.

    When full, the oldest entry is dropped to make room.
    """

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._items: Deque[SyncEntry] = deque()
        self._lock = threading.Lock()
        self.dropped = 0

    def put(self, entry: SyncEntry) -> bool:
        """
        Append an entry.

        Returns:
            False if an older entry had to be dropped to make room
        """
        with self._lock:
            overflow = len(self._items) >= self.max_size
            if overflow:
                self._items.popleft()
                self.dropped += 1
            self._items.append(entry)
            return not overflow

    def take(self, count: int) -> List[SyncEntry]:
        """Remove and return up to ``count`` entries from the front."""
        with self._lock:
            batch = []
            while self._items and len(batch) < count:
                batch.append(self._items.popleft())
            return batch

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class Syncer:
    """
    Batches sync entries and uploads them with their blobs.

    Without credentials (``Disconnected``) every entry is dropped on
    enqueue: local-only mode.
    """

    def __init__(
        self,
        connectivity: Connectivity,
        blob_store: BlobStore,
        client: Optional[RemoteClient] = None,
        config: Optional[SyncConfig] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the syncer.

        Args:
            connectivity: ``Connected`` credentials or ``Disconnected``
            blob_store: Store the uploaded blobs are read from
            client: Remote client (created from connectivity when omitted)
            config: Batch size, debounce and queue bound
            timeout: Request timeout for an owned client
        """
        self.connectivity = connectivity
        self.blob_store = blob_store
        self.config = config or SyncConfig()
        self._queue = SyncQueue(self.config.max_pending)
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._closed = False

        self._owns_client = False
        self._client = client
        if self._client is None and isinstance(connectivity, Connected):
            self._client = RemoteClient(connectivity, timeout=timeout)
            self._owns_client = True

    def is_configured(self) -> bool:
        """Check if syncer has remote credentials."""
        return isinstance(self.connectivity, Connected) and self._client is not None

    def pending_count(self) -> int:
        return len(self._queue)

    def enqueue(self, entry: SyncEntry) -> None:
        """
        Queue an entry for sync (non-blocking).

        Restarts the debounce timer so a burst of entries goes out together.
        """
        if not self.is_configured():
            logger.debug("Local-only mode, not syncing %s", entry.file_path)
            return

        if not self._queue.put(entry):
            logger.warning(
                "Sync queue full (%d), dropped oldest entry; it stays in the local journal",
                self.config.max_pending,
            )

        self._schedule()

    def _schedule(self) -> None:
        with self._timer_lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.config.debounce_ms / 1000.0, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _on_timer(self) -> None:
        try:
            _, completed = self._upload_batch()
        except Exception as e:
            logger.error("Sync error (non-fatal): %s", e, exc_info=True)
            return

        # A server-side rejection still drains the backlog; a failed request does not.
        if completed and len(self._queue) > 0:
            self._schedule()

    def _collect_blobs(self, batch: List[SyncEntry]) -> dict:
        """Base64 compressed content for each unique hash; unreadable blobs are left out."""
        blobs = {}
        for blob_hash in dict.fromkeys(entry.hash for entry in batch):
            try:
                compressed = self.blob_store.read_compressed(blob_hash)
            except (BlobStoreError, OSError, ValueError) as e:
                logger.debug("Blob %s not readable for sync: %s", blob_hash[:12], e)
                continue
            blobs[blob_hash] = base64.b64encode(compressed).decode("ascii")
        return blobs

    def flush_batch(self) -> SyncResult:
        """
        Upload one batch from the front of the queue.

        The batch leaves the queue before the upload; on failure it is
        dropped, not requeued.

        Returns:
            Result of this batch
        """
        result, _ = self._upload_batch()
        return result

    def _upload_batch(self) -> Tuple[SyncResult, bool]:
        """Upload one batch; the flag is True when the server answered the request."""
        with self._flush_lock:
            batch = self._queue.take(self.config.batch_size)
            if not batch:
                return SyncResult(success=True), True

            if not self.is_configured():
                logger.warning("%d event(s) not synced: no API key configured", len(batch))
                return SyncResult(success=False, skipped=len(batch), error="No API key configured"), False

            events = [entry.to_dict() for entry in batch]
            blobs = self._collect_blobs(batch)

            try:
                result = self._client.sync_history(events, blobs, self.connectivity.project_id)
            except Exception as e:
                logger.error("Failed to sync %d event(s) to cloud: %s", len(batch), e)
                if isinstance(e, RemoteAuthError):
                    logger.error("Check the API key (%s)", e.status_code)
                return SyncResult(success=False, skipped=len(batch), error=str(e)), False

        if result.success:
            if result.synced > 0:
                logger.info("Synced %d event(s) to cloud (%d skipped)", result.synced, result.skipped)
            elif result.skipped > 0:
                logger.info("All %d event(s) already synced", result.skipped)
        else:
            logger.error("Sync failed: %s", result.error or "Unknown error")

        return result, True

    def flush(self) -> SyncResult:
        """
        Force sync all pending entries (used at shutdown).

        Every iteration removes a batch from the queue, so this terminates
        even when every upload fails.

        Returns:
            Aggregated result over all batches
        """
        self._cancel_timer()

        results = []
        while len(self._queue) > 0:
            results.append(self.flush_batch())

        if not results:
            return SyncResult(success=True)
        return SyncResult.aggregate(results)

    def close(self) -> None:
        """Cancel pending timers and release the HTTP client."""
        with self._timer_lock:
            self._closed = True
        self._cancel_timer()
        if self._owns_client and self._client is not None:
            self._client.close()
