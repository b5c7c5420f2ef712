"""Tests for time machine daemon process module."""

import gzip
import threading
import time
from unittest.mock import Mock

import pytest

from src.timemachine.config import Connected, DaemonConfig, Disconnected
from src.timemachine.exceptions import ProcessAlreadyRunningError, ProcessNotRunningError
from src.timemachine.journal import Journal
from src.timemachine.models import CommandStatus, RemoteCommand, SyncResult, compute_content_hash
from src.timemachine.process import TimeMachineProcess


CONNECTED = Connected(api_url="http://tm.test", api_key="key", project_id="proj-1")


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def fast_config():
    return DaemonConfig(
        watch={"debounce_ms": 50, "flush_interval_ms": 20},
        sync={"debounce_ms": 60000},
        poll={"interval_seconds": 60.0},
    )


@pytest.fixture
def client():
    mock = Mock()
    mock.poll_command.return_value = None
    mock.sync_history.return_value = SyncResult(success=True, synced=1)
    return mock


class TestTimeMachineProcess:
    """Tests for TimeMachineProcess lifecycle."""

    def test_initialize_creates_layout(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()

        assert (project / ".timemachine" / "blobs").is_dir()
        assert (project / ".timemachine" / "history.db").exists()
        assert daemon.get_session_id() is not None
        assert daemon.journal.get_session(daemon.get_session_id()) is not None

        daemon.stop()

    def test_initialize_is_idempotent(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()
        session_id = daemon.get_session_id()

        daemon.initialize()

        assert daemon.get_session_id() == session_id
        daemon.stop()

    def test_start_requires_initialize(self, project):
        daemon = TimeMachineProcess(project)

        with pytest.raises(ProcessNotRunningError):
            daemon.start()

    def test_start_already_running(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()
        daemon.start()

        with pytest.raises(ProcessAlreadyRunningError):
            daemon.start()

        daemon.stop()

    def test_stop_idempotent(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()
        daemon.start()

        daemon.stop()
        daemon.stop()  # Should not raise

        assert daemon.is_running is False

    def test_restart_after_stop_rejected(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()
        daemon.stop()

        with pytest.raises(ProcessNotRunningError):
            daemon.start()

    def test_context_manager(self, project):
        with TimeMachineProcess(project) as daemon:
            daemon.initialize()
            daemon.start()
            assert daemon.is_running

        assert not daemon.is_running

    def test_serve_forever_returns_after_stop(self, project):
        daemon = TimeMachineProcess(project)
        daemon.initialize()
        daemon.start()

        stopper = threading.Timer(0.3, daemon.stop)
        stopper.start()
        daemon.serve_forever()
        stopper.join()

        assert daemon.is_running is False

    def test_local_only_mode(self, project):
        daemon = TimeMachineProcess(project, connectivity=Disconnected())

        assert daemon.is_sync_configured() is False
        assert daemon.is_polling_configured() is False
        daemon.stop()

    def test_connected_mode(self, project, client):
        daemon = TimeMachineProcess(project, connectivity=CONNECTED, client=client)

        assert daemon.is_sync_configured() is True
        assert daemon.is_polling_configured() is True
        daemon.stop()

    def test_new_session_per_start(self, project):
        first = TimeMachineProcess(project)
        first.initialize()
        first.stop()

        second = TimeMachineProcess(project)
        second.initialize()
        second.stop()

        assert first.get_session_id() != second.get_session_id()


class TestRecording:
    """Tests for change recording through the watcher."""

    def test_records_file_changes(self, project, fast_config):
        with TimeMachineProcess(project, config=fast_config) as daemon:
            daemon.initialize()
            daemon.start()

            # Wait for watcher to start
            time.sleep(0.3)

            (project / "subdir").mkdir()
            (project / "subdir" / "nested.txt").write_text("content")

            time.sleep(0.5)

            events = daemon.journal.get_events_for_session(daemon.get_session_id())

        assert [e.file_path for e in events] == ["subdir/nested.txt"]
        assert events[0].hash == compute_content_hash("content")

    def test_rapid_writes_coalesce(self, project, fast_config):
        with TimeMachineProcess(project, config=fast_config) as daemon:
            daemon.initialize()
            daemon.start()
            time.sleep(0.3)

            target = project / "a.txt"
            for i in range(10):
                target.write_text(f"draft {i}")

            time.sleep(0.6)

            events = daemon.journal.get_events_for_path("a.txt")

        assert len(events) == 1
        assert events[0].hash == compute_content_hash("draft 9")

    def test_pending_changes_recorded_on_stop(self, project):
        config = DaemonConfig(watch={"debounce_ms": 60000})
        daemon = TimeMachineProcess(project, config=config)
        daemon.initialize()
        daemon.start()
        time.sleep(0.3)

        (project / "late.txt").write_text("written just before shutdown")
        time.sleep(0.3)

        assert daemon.pending_change_count() >= 1
        daemon.stop()

        with Journal(project / ".timemachine" / "history.db") as journal:
            events = journal.get_events_for_path("late.txt")

        assert len(events) == 1

    def test_metadata_dir_not_recorded(self, project, fast_config):
        with TimeMachineProcess(project, config=fast_config) as daemon:
            daemon.initialize()
            daemon.start()
            time.sleep(0.3)

            (project / "a.txt").write_text("x")
            time.sleep(0.5)

            paths = {e.file_path for e in daemon.journal.get_events_for_session(daemon.get_session_id())}

        assert paths == {"a.txt"}


class TestEndToEnd:
    """Record, sync and revert through a running daemon."""

    def test_record_sync_and_revert(self, project, client):
        config = DaemonConfig(
            watch={"debounce_ms": 300, "flush_interval_ms": 20},
            sync={"debounce_ms": 60000},
            poll={"interval_seconds": 60.0},
        )
        hello = compute_content_hash("hello")
        world = compute_content_hash("world")
        target = project / "a.txt"
        client.fetch_blob.return_value = gzip.compress(b"hello")

        daemon = TimeMachineProcess(project, config=config, connectivity=CONNECTED, client=client)
        daemon.initialize()
        daemon.start()
        time.sleep(0.3)

        # Both writes land inside one debounce window
        target.write_text("hello")
        target.write_text("world")
        time.sleep(0.9)

        history = [e.hash for e in daemon.journal.get_events_for_path("a.txt")]
        assert history == [world]
        assert not daemon.blob_store.exists(hello)
        assert daemon.syncer.pending_count() == 1

        revert = RemoteCommand(id="c1", type="FILE_REVERT", payload={"filePath": "a.txt", "blobHash": hello})
        assert daemon.poller.execute_command(revert) == CommandStatus.COMPLETED
        assert target.read_text() == "hello"
        client.fetch_blob.assert_called_once_with(hello)
        assert daemon.blob_store.exists(hello)

        time.sleep(0.6)
        mtime = target.stat().st_mtime_ns

        again = RemoteCommand(id="c2", type="FILE_REVERT", payload={"filePath": "a.txt", "blobHash": hello})
        assert daemon.poller.execute_command(again) == CommandStatus.COMPLETED
        assert target.stat().st_mtime_ns == mtime
        assert target.read_text() == "hello"
        assert client.fetch_blob.call_count == 1

        result = daemon.stop()

        assert result.success is True
        synced = [
            (event["filePath"], event["hash"])
            for call in client.sync_history.call_args_list
            for event in call[0][0]
        ]
        assert synced[0] == ("a.txt", world)
        statuses = [call[0][:2] for call in client.update_command_status.call_args_list]
        assert statuses == [("c1", CommandStatus.COMPLETED), ("c2", CommandStatus.COMPLETED)]
