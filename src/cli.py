#!/usr/bin/env python3
"""
CLI for the time machine daemon.

Usage:
    python -m src.cli watch --root /path/to/project
    python -m src.cli history src/app.py --root /path/to/project
    python -m src.cli restore src/app.py 3f2a9c... --root /path/to/project
"""

import argparse
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from src.timemachine import (
    BlobStore,
    Connected,
    DaemonConfig,
    Journal,
    JournalEvent,
    RemoteClient,
    RuntimeCache,
    TimeMachineError,
    TimeMachineProcess,
    load_connectivity,
    resolve_tier,
    restore_file,
)


logger = logging.getLogger("cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def _load_env(root: Path) -> None:
    """Load .env from the project root, falling back to the working directory."""
    env_file = root / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    else:
        load_dotenv()


def _format_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _relative_file_path(root: Path, file_path: str) -> str:
    """Journal key for a path given on the command line."""
    path = Path(file_path)
    if path.is_absolute():
        path = path.resolve().relative_to(root)
    return path.as_posix()


def _open_journal(root: Path, config: DaemonConfig) -> Optional[Journal]:
    journal_path = config.journal_path(root)
    if not journal_path.exists():
        print(f"No history found in {root} (run 'watch' first)")
        return None
    return Journal(journal_path)


def _print_events(events: List[JournalEvent]) -> None:
    for event in events:
        print(
            f"  #{event.id:<6} {_format_ms(event.timestamp)}  "
            f"{event.hash[:12]}  {event.file_path}"
        )


def cmd_watch(args) -> int:
    """Run the daemon until interrupted."""
    root = Path(args.root).resolve()
    if not root.is_dir():
        logger.error(f"Project root is not a directory: {root}")
        return 1

    config = DaemonConfig(watch={"debounce_ms": args.debounce})
    cache = RuntimeCache(config.runtime_cache_path(root))

    project_id = args.project_id or cache.project_id
    connectivity = load_connectivity(project_id=project_id, api_url=args.api_url)
    if args.project_id:
        cache.update(projectId=args.project_id)

    shutdown = GracefulShutdown()

    with TimeMachineProcess(root, config=config, connectivity=connectivity) as daemon:
        daemon.initialize()
        daemon.start()

        if daemon.is_sync_configured():
            logger.info("Cloud sync: ENABLED (%s)", connectivity.api_url)
        else:
            logger.info("Cloud sync: DISABLED (set TIMEMACHINE_API_KEY to enable)")
        logger.info("Press Ctrl+C to stop")

        while not shutdown.should_exit:
            time.sleep(0.5)

    return 0


def cmd_history(args) -> int:
    """List recorded versions of a file."""
    root = Path(args.root).resolve()
    config = DaemonConfig()
    journal = _open_journal(root, config)
    if journal is None:
        return 1

    with journal:
        file_path = _relative_file_path(root, args.path)
        events = journal.get_events_for_path(file_path)[: args.limit]

    if not events:
        print(f"No history for {file_path}")
        return 0

    print(f"History for {file_path} ({len(events)} version(s), newest first):")
    _print_events(events)
    return 0


def cmd_session(args) -> int:
    """List events of a session (latest by default)."""
    root = Path(args.root).resolve()
    config = DaemonConfig()
    journal = _open_journal(root, config)
    if journal is None:
        return 1

    with journal:
        if args.id:
            session = journal.get_session(args.id)
        else:
            sessions = journal.list_sessions()
            session = sessions[0] if sessions else None

        if session is None:
            print("No session found")
            return 1

        events = journal.get_events_for_session(session.id)

    print(f"Session {session.id} (started {_format_ms(session.start_time)}), {len(events)} event(s):")
    _print_events(events)
    return 0


def _resolve_hash(journal: Journal, file_path: str, prefix: str) -> Optional[str]:
    """Expand an abbreviated hash using the file's history."""
    if len(prefix) == 64:
        return prefix
    matches = {e.hash for e in journal.get_events_for_path(file_path) if e.hash.startswith(prefix)}
    if len(matches) == 1:
        return matches.pop()
    if matches:
        logger.error(f"Hash prefix {prefix} is ambiguous for {file_path}")
    else:
        logger.error(f"No version of {file_path} matches {prefix}")
    return None


def cmd_restore(args) -> int:
    """Restore a file to a recorded version from the local blob store."""
    root = Path(args.root).resolve()
    config = DaemonConfig()
    file_path = _relative_file_path(root, args.path)

    blob_hash = args.hash.lower()
    if len(blob_hash) < 64:
        journal = _open_journal(root, config)
        if journal is None:
            return 1
        with journal:
            blob_hash = _resolve_hash(journal, file_path, blob_hash)
        if blob_hash is None:
            return 1

    try:
        restore_file(BlobStore(config.blobs_dir(root)), blob_hash, file_path, root)
    except (TimeMachineError, ValueError, OSError) as e:
        logger.error(f"Restore failed: {e}")
        return 1

    print(f"Restored {file_path} to {blob_hash[:12]}")
    return 0


def cmd_status(args) -> int:
    """Show connectivity, tier and local history statistics."""
    root = Path(args.root).resolve()
    config = DaemonConfig()
    cache = RuntimeCache(config.runtime_cache_path(root))
    connectivity = load_connectivity(project_id=cache.project_id)

    print(f"Project root: {root}")
    if isinstance(connectivity, Connected):
        print(f"Remote:       {connectivity.api_url} (project {connectivity.project_id or '-'})")
        with RemoteClient(connectivity, timeout=config.request_timeout) as client:
            tier = resolve_tier(cache, client)
    else:
        print("Remote:       local-only (no API key)")
        tier = resolve_tier(cache)
    print(f"Tier:         {tier}")

    if not config.journal_path(root).exists():
        print("History:      none")
        return 0

    with Journal(config.journal_path(root)) as journal:
        sessions = journal.list_sessions()
        print(f"Sessions:     {len(sessions)}")
        print(f"Events:       {journal.event_count()}")
        if sessions:
            print(f"Last session: {sessions[0].id} ({_format_ms(sessions[0].start_time)})")

    blobs_dir = config.blobs_dir(root)
    blob_count = sum(1 for p in blobs_dir.iterdir() if not p.name.startswith(".")) if blobs_dir.is_dir() else 0
    print(f"Blobs:        {blob_count}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Local-first file history daemon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch the current directory
  python -m src.cli watch

  # Watch a project and sync to the cloud
  TIMEMACHINE_API_KEY=... python -m src.cli watch --root ./myproject --project-id abc123

  # Show the versions of a file
  python -m src.cli history src/app.py

  # Restore a file to a version (full hash or unique prefix)
  python -m src.cli restore src/app.py 3f2a9c1b
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch a project and record file history")
    watch_parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    watch_parser.add_argument("--debounce", type=int, default=500, help="Debounce time in ms")
    watch_parser.add_argument("--project-id", default=None, help="Remote project ID (or TIMEMACHINE_PROJECT_ID env)")
    watch_parser.add_argument("--api-url", default=None, help="Remote API URL (or TIMEMACHINE_API_URL env)")
    watch_parser.set_defaults(func=cmd_watch)

    # History command
    history_parser = subparsers.add_parser("history", help="List recorded versions of a file")
    history_parser.add_argument("path", help="File path (relative to the project root)")
    history_parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    history_parser.add_argument("--limit", type=int, default=20, help="Maximum versions to show")
    history_parser.set_defaults(func=cmd_history)

    # Session command
    session_parser = subparsers.add_parser("session", help="List events of a watch session")
    session_parser.add_argument("--id", default=None, help="Session ID (default: latest)")
    session_parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    session_parser.set_defaults(func=cmd_session)

    # Restore command
    restore_parser = subparsers.add_parser("restore", help="Restore a file to a recorded version")
    restore_parser.add_argument("path", help="File path (relative to the project root)")
    restore_parser.add_argument("hash", help="Content hash (full or unique prefix)")
    restore_parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    restore_parser.set_defaults(func=cmd_restore)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show daemon configuration and history stats")
    status_parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    _load_env(Path(args.root).resolve())

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
