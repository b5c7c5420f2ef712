"""
Time Machine Package

A local-first file history daemon that watches a project directory,
records every settled file change, and optionally mirrors the history
to a remote service.

Features:
- Per-path debouncing with ADD/MODIFY/DELETE coalescing
- Content-addressed, gzip-compressed blob store
- Append-only SQLite journal of sessions and events
- Atomic, traversal-safe file restore
- Fire-and-forget batched cloud sync
- Remote command polling (file reverts)
"""

from .models import (
    EventType,
    CommandType,
    CommandStatus,
    RawFSEvent,
    Session,
    JournalEvent,
    SyncEntry,
    SyncResult,
    RemoteCommand,
    FileRevertPayload,
    compute_content_hash,
    compute_file_hash,
    now_ms,
)

from .config import (
    WatchConfig,
    SyncConfig,
    PollConfig,
    DaemonConfig,
    Connected,
    Disconnected,
    Connectivity,
    load_connectivity,
)

from .exceptions import (
    TimeMachineError,
    BlobStoreError,
    BlobNotFoundError,
    CorruptBlobError,
    PathTraversalError,
    JournalError,
    RemoteAPIError,
    RemoteAuthError,
    RemoteNotFoundError,
    CommandError,
    UnknownCommandError,
    ProcessAlreadyRunningError,
    ProcessNotRunningError,
)

from .blob_store import BlobStore
from .journal import Journal
from .restorer import restore_file, resolve_within_root
from .fs_watcher import FSWatcher, FSEventHandler
from .event_processor import EventProcessor, ChangeDebouncer, PendingChange
from .recorder import ChangeRecorder
from .api_client import RemoteClient
from .syncer import Syncer, SyncQueue
from .command_channel import CommandPoller
from .runtime_cache import RuntimeCache, resolve_tier
from .process import TimeMachineProcess


__all__ = [
    # Models
    "EventType",
    "CommandType",
    "CommandStatus",
    "RawFSEvent",
    "Session",
    "JournalEvent",
    "SyncEntry",
    "SyncResult",
    "RemoteCommand",
    "FileRevertPayload",
    "compute_content_hash",
    "compute_file_hash",
    "now_ms",
    # Config
    "WatchConfig",
    "SyncConfig",
    "PollConfig",
    "DaemonConfig",
    "Connected",
    "Disconnected",
    "Connectivity",
    "load_connectivity",
    # Exceptions
    "TimeMachineError",
    "BlobStoreError",
    "BlobNotFoundError",
    "CorruptBlobError",
    "PathTraversalError",
    "JournalError",
    "RemoteAPIError",
    "RemoteAuthError",
    "RemoteNotFoundError",
    "CommandError",
    "UnknownCommandError",
    "ProcessAlreadyRunningError",
    "ProcessNotRunningError",
    # Components
    "BlobStore",
    "Journal",
    "restore_file",
    "resolve_within_root",
    "FSWatcher",
    "FSEventHandler",
    "EventProcessor",
    "ChangeDebouncer",
    "PendingChange",
    "ChangeRecorder",
    "RemoteClient",
    "Syncer",
    "SyncQueue",
    "CommandPoller",
    "RuntimeCache",
    "resolve_tier",
    # Main Process
    "TimeMachineProcess",
]

__version__ = "0.1.0"
