"""Data models for the time machine package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import hashlib
import time


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class EventType(Enum):
    """Kinds of settled file changes."""
    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class CommandType(Enum):
    """Remote command kinds this daemon knows how to execute."""
    FILE_REVERT = "FILE_REVERT"


class CommandStatus(Enum):
    """Local lifecycle of a remote command."""
    RECEIVED = "RECEIVED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (CommandStatus.COMPLETED, CommandStatus.FAILED)


@dataclass
class RawFSEvent:
    """
    Raw event from the filesystem watcher before processing.

    Attributes:
        event_type: Raw event type string (created, deleted, modified, moved)
        src_path: Source path of the event
        dest_path: Destination path (for move events)
        timestamp: Unix timestamp when the event occurred
    """
    event_type: str
    src_path: Path
    dest_path: Optional[Path] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Session:
    """A single watch session, created once per daemon start."""
    id: str
    start_time: int

    def to_dict(self) -> dict:
        return {"id": self.id, "startTime": self.start_time}


@dataclass(frozen=True)
class JournalEvent:
    """
    A recorded file change.

    Attributes:
        id: Locally unique, strictly increasing event id
        session_id: Session the change was recorded in
        file_path: POSIX path relative to the project root
        hash: SHA-256 of the file content at settle time
        timestamp: Epoch milliseconds when the change was recorded
    """
    id: int
    session_id: str
    file_path: str
    hash: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "filePath": self.file_path,
            "hash": self.hash,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SyncEntry:
    """An event waiting in the in-memory sync queue."""
    session_id: str
    file_path: str
    hash: str
    timestamp: int

    @classmethod
    def from_event(cls, event: JournalEvent) -> "SyncEntry":
        return cls(
            session_id=event.session_id,
            file_path=event.file_path,
            hash=event.hash,
            timestamp=event.timestamp,
        )

    def to_dict(self) -> dict:
        """Wire form used by the history sync endpoint."""
        return {
            "sessionId": self.session_id,
            "filePath": self.file_path,
            "hash": self.hash,
            "timestamp": self.timestamp,
        }


@dataclass
class SyncResult:
    """Outcome of one or more sync uploads."""
    success: bool
    synced: int = 0
    skipped: int = 0
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SyncResult":
        return cls(
            success=bool(data.get("success", False)),
            synced=int(data.get("synced", 0) or 0),
            skipped=int(data.get("skipped", 0) or 0),
            error=data.get("error"),
        )

    @classmethod
    def aggregate(cls, results: List["SyncResult"]) -> "SyncResult":
        """Combine per-batch results into a single summary."""
        return cls(
            success=all(r.success for r in results),
            synced=sum(r.synced for r in results),
            skipped=sum(r.skipped for r in results),
            error="; ".join(r.error for r in results if r.error) or None,
        )


@dataclass
class RemoteCommand:
    """
    A command issued by the remote service.

    The type is kept as the raw wire string; ``kind`` maps it onto the
    closed ``CommandType`` enum, or None when this daemon has no handler.
    """
    id: str
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: str = "PENDING"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Optional[CommandType]:
        try:
            return CommandType(self.type)
        except ValueError:
            return None

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteCommand":
        """Create from the poll endpoint's JSON object."""
        known = {"id", "type", "payload", "status"}
        return cls(
            id=str(data["id"]),
            type=str(data.get("type", "")),
            payload=dict(data.get("payload") or {}),
            status=str(data.get("status", "PENDING")),
            metadata={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class FileRevertPayload:
    """Payload of a FILE_REVERT command."""
    file_path: str
    blob_hash: str

    @classmethod
    def from_dict(cls, payload: dict) -> "FileRevertPayload":
        file_path = payload.get("filePath")
        blob_hash = payload.get("blobHash")
        if not file_path or not blob_hash:
            raise ValueError("Missing filePath or blobHash in command payload")
        return cls(file_path=str(file_path), blob_hash=str(blob_hash))


def compute_content_hash(content: Union[bytes, str]) -> str:
    """
    SHA-256 hex digest of content.

    Text is encoded as UTF-8 first so the same characters always map to
    the same hash.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def compute_file_hash(path: Path) -> Optional[str]:
    """
    Compute hash of file contents.

    Args:
        path: Path to the file

    Returns:
        Hex digest of the hash, or None if file cannot be read
    """
    if not path.exists() or path.is_dir():
        return None

    try:
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                hasher.update(chunk)
        return hasher.hexdigest()
    except (IOError, OSError, PermissionError):
        return None
