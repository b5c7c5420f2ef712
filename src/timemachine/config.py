"""Configuration for the time machine package."""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union


DEFAULT_API_URL = "http://localhost:8000"
API_KEY_ENV = "TIMEMACHINE_API_KEY"
API_URL_ENV = "TIMEMACHINE_API_URL"
PROJECT_ID_ENV = "TIMEMACHINE_PROJECT_ID"


@dataclass
class WatchConfig:
    """
    Configuration options for the filesystem watcher.

    Attributes:
        metadata_dir_name: Project-local directory holding blobs, journal and cache
        debounce_ms: Quiet period per path before a change is recorded
        flush_interval_ms: Interval of the loop that collects settled changes
        ignore_dirs: Directory names ignored anywhere under the project root
        ignore_patterns: Glob patterns for file names to ignore
    """
    metadata_dir_name: str = ".timemachine"
    debounce_ms: int = 500
    flush_interval_ms: int = 100
    ignore_dirs: List[str] = field(default_factory=lambda: [
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        ".venv",
        "__pycache__",
        ".next",
        "dist",
        "build",
    ])
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.swp",
        "*.swo",
        "*~",
        ".*.restore",
        ".DS_Store",
        "Thumbs.db",
    ])

    def should_ignore(self, path: Path, root: Optional[Path] = None) -> bool:
        """
        Check if a path should be ignored.

        Every component of the path (relative to ``root`` when given) is
        checked against the ignored directory names; the final name is
        also matched against the glob patterns.

        Args:
            path: Path to check
            root: Project root the path lives under

        Returns:
            True if the path should be ignored
        """
        if root is not None:
            try:
                path = path.relative_to(root)
            except ValueError:
                pass

        ignored_dirs = set(self.ignore_dirs)
        ignored_dirs.add(self.metadata_dir_name)

        for part in path.parts:
            if part in ignored_dirs:
                return True

        name = path.name
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(name, pattern):
                return True

        return False


@dataclass
class SyncConfig:
    """Batching and scheduling of remote history uploads."""
    batch_size: int = 10
    debounce_ms: int = 2000
    max_pending: int = 10000


@dataclass
class PollConfig:
    """
    Remote command polling.

    Attributes:
        interval_seconds: Delay between polls
        max_auth_failures: Consecutive credential rejections before polling stops
        max_tracked_commands: Command outcomes remembered to avoid re-execution
    """
    interval_seconds: float = 3.0
    max_auth_failures: int = 2
    max_tracked_commands: int = 1000


@dataclass
class DaemonConfig:
    """Main configuration for the time machine daemon."""
    watch: WatchConfig = field(default_factory=WatchConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    request_timeout: float = 30.0

    def __post_init__(self):
        if isinstance(self.watch, dict):
            self.watch = WatchConfig(**self.watch)
        if isinstance(self.sync, dict):
            self.sync = SyncConfig(**self.sync)
        if isinstance(self.poll, dict):
            self.poll = PollConfig(**self.poll)

    def metadata_dir(self, project_root: Path) -> Path:
        return project_root / self.watch.metadata_dir_name

    def blobs_dir(self, project_root: Path) -> Path:
        return self.metadata_dir(project_root) / "blobs"

    def journal_path(self, project_root: Path) -> Path:
        return self.metadata_dir(project_root) / "history.db"

    def runtime_cache_path(self, project_root: Path) -> Path:
        return self.metadata_dir(project_root) / "config.json"


@dataclass(frozen=True)
class Disconnected:
    """Local-only mode: nothing is synced and no commands are polled."""

    @property
    def is_connected(self) -> bool:
        return False


@dataclass(frozen=True)
class Connected:
    """Remote service credentials."""
    api_url: str
    api_key: str
    project_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return True

    @property
    def base_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/api/v1"

    def __repr__(self) -> str:
        return f"Connected(api_url={self.api_url!r}, api_key='[SET]', project_id={self.project_id!r})"


Connectivity = Union[Connected, Disconnected]


def load_connectivity(
    project_id: Optional[str] = None,
    api_key: Optional[str] = None,
    api_url: Optional[str] = None,
) -> Connectivity:
    """
    Build connectivity from explicit values, falling back to environment.

    Without an API key the daemon runs in local-only mode.
    """
    api_key = api_key or os.environ.get(API_KEY_ENV)
    if not api_key:
        return Disconnected()

    return Connected(
        api_url=api_url or os.environ.get(API_URL_ENV) or DEFAULT_API_URL,
        api_key=api_key,
        project_id=project_id or os.environ.get(PROJECT_ID_ENV),
    )
