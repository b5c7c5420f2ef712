"""Tests for models module."""

import hashlib

import pytest

from src.timemachine.models import (
    CommandStatus,
    CommandType,
    EventType,
    FileRevertPayload,
    JournalEvent,
    RemoteCommand,
    SyncEntry,
    SyncResult,
    compute_content_hash,
    compute_file_hash,
)


class TestEventType:
    """Tests for EventType enum."""

    def test_event_type_values(self):
        assert EventType.ADD.value == "add"
        assert EventType.MODIFY.value == "modify"
        assert EventType.DELETE.value == "delete"


class TestCommandStatus:
    """Tests for CommandStatus enum."""

    def test_terminal(self):
        assert CommandStatus.COMPLETED.is_terminal
        assert CommandStatus.FAILED.is_terminal
        assert not CommandStatus.RECEIVED.is_terminal
        assert not CommandStatus.EXECUTING.is_terminal


class TestSyncEntry:
    """Tests for SyncEntry dataclass."""

    def test_from_event_and_wire_form(self):
        event = JournalEvent(id=7, session_id="s1", file_path="src/a.txt", hash="h", timestamp=123)

        entry = SyncEntry.from_event(event)

        assert entry.to_dict() == {
            "sessionId": "s1",
            "filePath": "src/a.txt",
            "hash": "h",
            "timestamp": 123,
        }


class TestSyncResult:
    """Tests for SyncResult dataclass."""

    def test_from_dict(self):
        result = SyncResult.from_dict({"success": True, "synced": 3, "skipped": 1})
        assert result == SyncResult(success=True, synced=3, skipped=1)

    def test_from_dict_defaults(self):
        result = SyncResult.from_dict({})
        assert result.success is False
        assert result.synced == 0

    def test_aggregate(self):
        result = SyncResult.aggregate([
            SyncResult(success=True, synced=2),
            SyncResult(success=False, skipped=3, error="boom"),
            SyncResult(success=True, synced=1, skipped=1),
        ])

        assert result.success is False
        assert result.synced == 3
        assert result.skipped == 4
        assert result.error == "boom"


class TestRemoteCommand:
    """Tests for RemoteCommand dataclass."""

    def test_from_dict(self):
        command = RemoteCommand.from_dict({
            "id": "cmd-12345678-abcd",
            "type": "FILE_REVERT",
            "payload": {"filePath": "a.txt", "blobHash": "h"},
            "status": "PENDING",
            "userId": "u1",
            "createdAt": "2024-01-01T00:00:00Z",
        })

        assert command.kind == CommandType.FILE_REVERT
        assert command.short_id == "cmd-1234"
        assert command.metadata == {"userId": "u1", "createdAt": "2024-01-01T00:00:00Z"}

    def test_unknown_type(self):
        command = RemoteCommand(id="c1", type="FORMAT_DISK")
        assert command.kind is None

    def test_missing_id(self):
        with pytest.raises(KeyError):
            RemoteCommand.from_dict({"type": "FILE_REVERT"})


class TestFileRevertPayload:
    """Tests for FileRevertPayload dataclass."""

    def test_from_dict(self):
        payload = FileRevertPayload.from_dict({"filePath": "a.txt", "blobHash": "abc"})
        assert payload.file_path == "a.txt"
        assert payload.blob_hash == "abc"

    def test_missing_fields(self):
        with pytest.raises(ValueError, match="Missing filePath or blobHash"):
            FileRevertPayload.from_dict({"filePath": "a.txt"})


class TestHashing:
    """Tests for content hashing helpers."""

    def test_content_hash_bytes(self):
        assert compute_content_hash(b"hello") == hashlib.sha256(b"hello").hexdigest()

    def test_content_hash_text_is_utf8(self):
        assert compute_content_hash("日本") == hashlib.sha256("日本".encode("utf-8")).hexdigest()

    def test_compute_file_hash(self, tmp_path):
        test_file = tmp_path / "test.txt"
        test_file.write_bytes(b"hello world")

        assert compute_file_hash(test_file) == hashlib.sha256(b"hello world").hexdigest()

    def test_compute_file_hash_missing(self, tmp_path):
        assert compute_file_hash(tmp_path / "missing.txt") is None

    def test_compute_file_hash_directory(self, tmp_path):
        assert compute_file_hash(tmp_path) is None
