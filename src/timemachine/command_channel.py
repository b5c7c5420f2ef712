"""
Remote command channel.

Polls the remote service for pending commands (file reverts), executes
them locally and reports COMPLETED or FAILED back. A command is executed
at most once per id; if its status report fails, the stored status is
sent again the next time the command is polled.
"""

import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .api_client import RemoteClient
from .blob_store import BlobStore
from .config import Connected, Connectivity, PollConfig
from .exceptions import RemoteAPIError, RemoteAuthError, UnknownCommandError
from .models import (
    CommandStatus,
    CommandType,
    FileRevertPayload,
    RemoteCommand,
    compute_file_hash,
)
from .restorer import resolve_within_root, restore_file

logger = logging.getLogger(__name__)


class CommandPoller:
    """
    Polls for remote commands and executes them against the project.

    Polling stops by itself after ``max_auth_failures`` consecutive
    credential rejections. Without credentials it never starts.
    """

    def __init__(
        self,
        project_root: Path,
        blob_store: BlobStore,
        connectivity: Connectivity,
        client: Optional[RemoteClient] = None,
        config: Optional[PollConfig] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the poller.

        Args:
            project_root: Root directory commands are executed against
            blob_store: Store used to restore (and cache fetched) blobs
            connectivity: ``Connected`` credentials or ``Disconnected``
            client: Remote client (created from connectivity when omitted)
            config: Poll interval and auth failure threshold
            timeout: Request timeout for an owned client
        """
        self.project_root = Path(project_root).resolve()
        self.blob_store = blob_store
        self.connectivity = connectivity
        self.config = config or PollConfig()

        self._owns_client = False
        self._client = client
        if self._client is None and isinstance(connectivity, Connected):
            self._client = RemoteClient(connectivity, timeout=timeout)
            self._owns_client = True

        self._handlers: Dict[CommandType, Callable[[RemoteCommand], None]] = {
            CommandType.FILE_REVERT: self._execute_file_revert,
        }

        # command id -> (terminal status, error message, reported)
        self._outcomes: "OrderedDict[str, Tuple[CommandStatus, Optional[str], bool]]" = OrderedDict()
        self._auth_failures = 0
        self._disabled = False
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        """Check if poller has remote credentials."""
        return isinstance(self.connectivity, Connected) and self._client is not None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    def start(self) -> bool:
        """
        Start polling in a background thread.

        Returns:
            True if polling started
        """
        if not self.is_configured():
            logger.info("Command polling: DISABLED (no API key configured)")
            return False

        with self._lock:
            if self._running:
                logger.warning("CommandPoller is already running")
                return False
            if self._disabled:
                logger.warning("Command polling was disabled after repeated auth failures")
                return False

            self._running = True
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._poll_loop, name="CommandPoller")
            self._thread.daemon = True
            self._thread.start()

        logger.info("Command polling: ENABLED (checking every %.0fs)", self.config.interval_seconds)
        return True

    def stop(self) -> None:
        """Stop polling and wait for the loop to exit."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._thread = None
        if self._running:
            logger.info("Command polling stopped")
        self._running = False

    def close(self) -> None:
        self.stop()
        if self._owns_client and self._client is not None:
            self._client.close()

    def _poll_loop(self) -> None:
        """Worker loop: poll now, then every interval until stopped or disabled."""
        logger.debug("Command poll loop started")
        try:
            while not self._stop_event.is_set():
                try:
                    self.poll_once()
                except Exception as e:
                    logger.error("Command poll loop error: %s", e, exc_info=True)

                if self._disabled:
                    break
                self._stop_event.wait(timeout=self.config.interval_seconds)
        finally:
            self._running = False

    def poll_once(self) -> Optional[RemoteCommand]:
        """
        Poll for one pending command and execute it.

        Returns:
            The command that was received, or None
        """
        if not self.is_configured() or self._disabled:
            return None

        try:
            command = self._client.poll_command()
        except RemoteAuthError as e:
            self._auth_failures += 1
            logger.warning(
                "Command poll rejected (%s), %d/%d",
                e.status_code, self._auth_failures, self.config.max_auth_failures,
            )
            if self._auth_failures >= self.config.max_auth_failures:
                logger.warning("Command polling: API key invalid, stopping")
                self._disabled = True
                self._stop_event.set()
            return None
        except RemoteAPIError as e:
            logger.warning("Command poll failed: %s", e)
            return None

        self._auth_failures = 0

        if command is None:
            logger.debug("Polling for commands... (no pending commands)")
            return None

        logger.info("Found pending command: %s (%s...)", command.type, command.short_id)
        self.execute_command(command)
        return command

    def execute_command(self, command: RemoteCommand) -> Optional[CommandStatus]:
        """
        Execute a command and report its terminal status.

        Commands already reported are ignored. A command that was executed
        but whose report failed is not executed again; its stored status
        is re-sent instead.

        Returns:
            The terminal status, or None if the command was ignored
        """
        outcome = self._outcomes.get(command.id)
        if outcome is not None:
            status, error_message, reported = outcome
            if reported:
                logger.debug("Command %s already reported, ignoring", command.short_id)
                return None
            logger.info("Re-sending %s status for command %s", status.value, command.short_id)
            self._report(command.id, status, error_message)
            return status

        status = CommandStatus.RECEIVED
        error_message = None
        try:
            kind = command.kind
            handler = self._handlers.get(kind) if kind is not None else None
            if handler is None:
                raise UnknownCommandError(f"Unknown command type: {command.type}")

            status = CommandStatus.EXECUTING
            logger.debug("Executing command %s (%s)", command.short_id, command.type)
            handler(command)
            status = CommandStatus.COMPLETED
        except Exception as e:
            logger.error("Command execution failed: %s", e)
            status = CommandStatus.FAILED
            error_message = str(e)

        self._remember(command.id, status, error_message, reported=False)
        self._report(command.id, status, error_message)
        return status

    def _remember(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str],
        reported: bool,
    ) -> None:
        self._outcomes[command_id] = (status, error_message, reported)
        self._outcomes.move_to_end(command_id)
        while len(self._outcomes) > self.config.max_tracked_commands:
            self._outcomes.popitem(last=False)

    def _report(
        self,
        command_id: str,
        status: CommandStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Send a terminal status; the command is settled only once this succeeds."""
        try:
            self._client.update_command_status(command_id, status, error_message)
        except RemoteAPIError as e:
            logger.warning("Failed to update command status, will retry on next poll: %s", e)
            return False

        self._remember(command_id, status, error_message, reported=True)
        return True

    def current_file_hash(self, file_path: str) -> Optional[str]:
        """Hash of the file's current content, or None if it does not exist."""
        resolved = resolve_within_root(self.project_root, file_path)
        return compute_file_hash(resolved)

    def _execute_file_revert(self, command: RemoteCommand) -> None:
        """Execute a FILE_REVERT command."""
        payload = FileRevertPayload.from_dict(command.payload)
        resolve_within_root(self.project_root, payload.file_path)
        self.blob_store.path_for(payload.blob_hash)

        if not self.blob_store.exists(payload.blob_hash):
            logger.info("Blob not found locally, fetching from cloud: %s...", payload.blob_hash[:12])
            self._fetch_blob(payload.blob_hash)

        current_hash = self.current_file_hash(payload.file_path)
        if current_hash == payload.blob_hash:
            logger.info(
                "Skipped revert: %s is already at the requested version (%s...)",
                payload.file_path, payload.blob_hash[:8],
            )
            return

        restore_file(self.blob_store, payload.blob_hash, payload.file_path, self.project_root)

        if current_hash:
            logger.info(
                "File reverted: %s (%s... -> %s...)",
                payload.file_path, current_hash[:8], payload.blob_hash[:8],
            )
        else:
            logger.info("File reverted: %s (%s...)", payload.file_path, payload.blob_hash[:8])

    def _fetch_blob(self, blob_hash: str) -> None:
        """Fetch blob content from the remote store and persist it locally."""
        try:
            compressed = self._client.fetch_blob(blob_hash)
        except RemoteAPIError as e:
            raise RemoteAPIError(
                f"Failed to fetch blob from cloud: {e}", status_code=e.status_code
            ) from e

        self.blob_store.put_compressed(blob_hash, compressed)
        logger.info("Blob fetched and stored locally: %s...", blob_hash[:12])
