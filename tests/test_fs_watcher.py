"""Tests for filesystem watcher module."""

import threading
import time
from types import SimpleNamespace

import pytest

from src.timemachine.config import WatchConfig
from src.timemachine.fs_watcher import FSEventHandler, FSWatcher


def _collector():
    events = []
    lock = threading.Lock()

    def callback(event):
        with lock:
            events.append(event)

    return events, lock, callback


class TestFSWatcher:
    """Tests for FSWatcher class."""

    def test_start_and_stop(self, tmp_path):
        watcher = FSWatcher(tmp_path, lambda e: None)

        assert watcher.start() is True
        assert watcher.is_watching

        assert watcher.stop() is True
        assert not watcher.is_watching

    def test_start_twice(self, tmp_path):
        watcher = FSWatcher(tmp_path, lambda e: None)
        watcher.start()

        assert watcher.start() is False

        watcher.stop()

    def test_stop_not_watching(self, tmp_path):
        watcher = FSWatcher(tmp_path, lambda e: None)

        assert watcher.stop() is False

    def test_detects_file_creation(self, tmp_path):
        events, lock, callback = _collector()
        watcher = FSWatcher(tmp_path, callback)
        watcher.start()

        # Give watcher time to start
        time.sleep(0.2)

        (tmp_path / "test.txt").write_text("hello")

        time.sleep(0.5)
        watcher.stop()

        with lock:
            matching = [e for e in events if "test.txt" in str(e.src_path)]
        assert len(matching) >= 1

    def test_watches_subdirectories(self, tmp_path):
        subdir = tmp_path / "subdir"
        subdir.mkdir()

        events, lock, callback = _collector()
        watcher = FSWatcher(tmp_path, callback)
        watcher.start()

        time.sleep(0.2)

        (subdir / "nested.txt").write_text("nested")

        time.sleep(0.5)
        watcher.stop()

        with lock:
            nested = [e for e in events if "nested.txt" in str(e.src_path)]
        assert len(nested) >= 1

    def test_ignores_metadata_dir(self, tmp_path):
        meta = tmp_path / ".timemachine"
        meta.mkdir()

        events, lock, callback = _collector()
        watcher = FSWatcher(tmp_path, callback)
        watcher.start()

        time.sleep(0.2)

        (meta / "internal").write_text("ignored")
        (tmp_path / "real.txt").write_text("not ignored")

        time.sleep(0.5)
        watcher.stop()

        with lock:
            meta_events = [e for e in events if ".timemachine" in str(e.src_path)]
            real_events = [e for e in events if "real.txt" in str(e.src_path)]
        assert meta_events == []
        assert len(real_events) >= 1


class TestFSEventHandler:
    """Tests for FSEventHandler event conversion."""

    @pytest.fixture
    def events(self):
        return []

    @pytest.fixture
    def handler(self, events, tmp_path):
        return FSEventHandler(events.append, WatchConfig(), tmp_path)

    def _event(self, src, dest=None, is_directory=False):
        return SimpleNamespace(src_path=str(src), dest_path=str(dest) if dest else None, is_directory=is_directory)

    def test_directory_events_ignored(self, handler, events, tmp_path):
        handler.on_created(self._event(tmp_path / "dir", is_directory=True))

        assert events == []

    def test_created(self, handler, events, tmp_path):
        handler.on_created(self._event(tmp_path / "a.txt"))

        assert events[0].event_type == "created"
        assert events[0].src_path == tmp_path / "a.txt"

    def test_move_from_ignored_becomes_created(self, handler, events, tmp_path):
        handler.on_moved(self._event(tmp_path / ".a.txt.swp", tmp_path / "a.txt"))

        assert len(events) == 1
        assert events[0].event_type == "created"
        assert events[0].src_path == tmp_path / "a.txt"

    def test_move_to_ignored_becomes_deleted(self, handler, events, tmp_path):
        handler.on_moved(self._event(tmp_path / "a.txt", tmp_path / "a.txt~"))

        assert len(events) == 1
        assert events[0].event_type == "deleted"
        assert events[0].dest_path is None

    def test_move_between_ignored_dropped(self, handler, events, tmp_path):
        handler.on_moved(self._event(tmp_path / "a.swp", tmp_path / "b.swp"))

        assert events == []

    def test_plain_move(self, handler, events, tmp_path):
        handler.on_moved(self._event(tmp_path / "old.txt", tmp_path / "new.txt"))

        assert events[0].event_type == "moved"
        assert events[0].dest_path == tmp_path / "new.txt"
