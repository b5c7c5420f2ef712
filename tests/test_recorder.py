"""Tests for change recorder module."""

import time

import pytest

from src.timemachine.blob_store import BlobStore
from src.timemachine.event_processor import PendingChange
from src.timemachine.exceptions import JournalError
from src.timemachine.journal import Journal
from src.timemachine.models import EventType, compute_content_hash
from src.timemachine.recorder import ChangeRecorder


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def components(project):
    store = BlobStore(project / ".timemachine" / "blobs")
    journal = Journal(project / ".timemachine" / "history.db")
    session_id = journal.create_session()
    queued = []
    recorder = ChangeRecorder(project, session_id, store, journal, on_recorded=queued.append)
    yield recorder, store, journal, queued
    journal.close()


class TestChangeRecorder:
    """Tests for ChangeRecorder class."""

    def test_records_modify(self, project, components):
        recorder, store, journal, queued = components
        (project / "a.txt").write_text("hello")

        events = recorder.record([PendingChange(EventType.MODIFY, project / "a.txt", time.time())])

        assert len(events) == 1
        assert events[0].file_path == "a.txt"
        assert events[0].hash == compute_content_hash("hello")
        assert store.read(events[0].hash) == b"hello"
        assert journal.event_count() == 1
        assert [e.file_path for e in queued] == ["a.txt"]

    def test_reads_content_at_settle_time(self, project, components):
        recorder, store, journal, queued = components
        path = project / "a.txt"
        path.write_text("first draft")
        change = PendingChange(EventType.ADD, path, time.time())
        path.write_text("final")

        events = recorder.record([change])

        assert events[0].hash == compute_content_hash("final")

    def test_nested_path_is_posix_relative(self, project, components):
        recorder, _, _, _ = components
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        (nested / "mod.py").write_text("x = 1")

        events = recorder.record([PendingChange(EventType.ADD, nested / "mod.py")])

        assert events[0].file_path == "src/pkg/mod.py"

    def test_delete_not_recorded(self, project, components):
        recorder, _, journal, queued = components

        events = recorder.record([PendingChange(EventType.DELETE, project / "gone.txt")])

        assert events == []
        assert journal.event_count() == 0
        assert queued == []

    def test_unreadable_file_skipped(self, project, components):
        recorder, _, journal, _ = components
        (project / "b.txt").write_text("ok")

        events = recorder.record([
            PendingChange(EventType.MODIFY, project / "vanished.txt"),
            PendingChange(EventType.MODIFY, project / "b.txt"),
        ])

        assert [e.file_path for e in events] == ["b.txt"]
        assert journal.event_count() == 1

    def test_identical_content_shares_blob(self, project, components):
        recorder, store, _, _ = components
        (project / "a.txt").write_text("same")
        (project / "b.txt").write_text("same")

        events = recorder.record([
            PendingChange(EventType.ADD, project / "a.txt"),
            PendingChange(EventType.ADD, project / "b.txt"),
        ])

        assert events[0].hash == events[1].hash
        assert len([p for p in store.blobs_dir.iterdir()]) == 1

    def test_journal_failure_not_queued(self, project, components, monkeypatch):
        recorder, _, journal, queued = components
        (project / "a.txt").write_text("hello")

        def fail(*args, **kwargs):
            raise JournalError("disk full")

        monkeypatch.setattr(journal, "record_event", fail)

        events = recorder.record([PendingChange(EventType.MODIFY, project / "a.txt")])

        assert events == []
        assert queued == []

    def test_path_outside_root_skipped(self, project, components, tmp_path):
        recorder, _, _, _ = components
        outside = tmp_path / "outside.txt"
        outside.write_text("nope")

        assert recorder.record([PendingChange(EventType.MODIFY, outside)]) == []
