"""Restore files from the blob store into the project tree."""

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Union

from .blob_store import BlobStore
from .exceptions import PathTraversalError

logger = logging.getLogger(__name__)


def resolve_within_root(project_root: Union[str, Path], target_path: Union[str, Path]) -> Path:
    """
    Resolve a target path against the project root.

    Symlinks and ``..`` segments are resolved before the check, so a path
    that escapes the root by any route is rejected.

    Raises:
        PathTraversalError: If the resolved path lies outside the project root
    """
    root = Path(project_root).resolve()
    resolved = (root / Path(target_path)).resolve()

    if resolved != root and root not in resolved.parents:
        raise PathTraversalError(
            f"Invalid file path: {target_path} - Path traversal detected"
        )
    if resolved == root:
        raise PathTraversalError(f"Invalid file path: {target_path} - resolves to the project root")
    return resolved


def restore_file(
    blob_store: BlobStore,
    blob_hash: str,
    target_path: Union[str, Path],
    project_root: Union[str, Path],
) -> Path:
    """
    Restore a file from a blob hash.

    The decompressed content is written to a temporary file next to the
    target and renamed over it, so the target holds either the old or the
    new content at every point.

    Args:
        blob_store: Store holding the compressed object
        blob_hash: SHA-256 hash of the content to restore
        target_path: Path relative to the project root
        project_root: Root directory of the project

    Returns:
        The absolute path that was written

    Raises:
        PathTraversalError: If the target escapes the project root
        BlobNotFoundError: If the blob does not exist
        CorruptBlobError: If the blob cannot be decompressed
    """
    resolved = resolve_within_root(project_root, target_path)
    content = blob_store.read(blob_hash)

    resolved.parent.mkdir(parents=True, exist_ok=True)

    mode = None
    try:
        mode = stat.S_IMODE(resolved.stat().st_mode)
    except FileNotFoundError:
        pass

    fd, temp_path = tempfile.mkstemp(
        dir=resolved.parent,
        prefix=f".{resolved.name}.",
        suffix=".restore",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, resolved)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise

    logger.info("Restored %s to %s", target_path, blob_hash[:8])
    return resolved
