"""Content-addressed, gzip-compressed blob storage."""

import gzip
import logging
import os
import re
import tempfile
import zlib
from pathlib import Path
from typing import Union

from .exceptions import BlobNotFoundError, CorruptBlobError
from .models import compute_content_hash

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def _check_hash(blob_hash: str) -> str:
    if not isinstance(blob_hash, str) or not _HASH_RE.match(blob_hash):
        raise ValueError(f"Invalid blob hash: {blob_hash!r}")
    return blob_hash


def decompress(data: bytes) -> bytes:
    """Decompress a gzip payload, raising CorruptBlobError on failure."""
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise CorruptBlobError(f"Failed to decompress blob: {e}") from e


class BlobStore:
    """
    Content-addressable storage for file content.

    Objects live at ``<blobs_dir>/<sha256>`` and hold the gzip-compressed
    bytes. An object is never overwritten once created: writes go to a
    temporary file that is renamed into place, so two writers racing on
    the same hash both end with the same complete object.
    """

    def __init__(self, blobs_dir: Path):
        """
        Initialize the blob store.

        Args:
            blobs_dir: Directory holding the compressed objects
        """
        self.blobs_dir = Path(blobs_dir)

    def initialize(self) -> None:
        """Create the store directory if it does not exist."""
        self.blobs_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, blob_hash: str) -> Path:
        """Location of the object for a hash."""
        return self.blobs_dir / _check_hash(blob_hash)

    def exists(self, blob_hash: str) -> bool:
        """Check whether an object is stored for a hash."""
        try:
            return self.path_for(blob_hash).is_file()
        except ValueError:
            return False

    def store(self, content: Union[bytes, str]) -> str:
        """
        Store content and return its hash.

        Storing content that is already present is a no-op.

        Args:
            content: Raw file bytes, or text (encoded as UTF-8)

        Returns:
            The SHA-256 hex digest of the content
        """
        if isinstance(content, str):
            content = content.encode("utf-8")

        blob_hash = compute_content_hash(content)
        if self.exists(blob_hash):
            return blob_hash

        self._create(blob_hash, gzip.compress(content))
        logger.debug("Stored blob %s (%d bytes)", blob_hash[:12], len(content))
        return blob_hash

    def put_compressed(self, blob_hash: str, compressed: bytes) -> Path:
        """
        Store an already-compressed object under a known hash.

        Used for objects fetched from the remote store. The payload must
        decompress to content that hashes to ``blob_hash``.

        Raises:
            CorruptBlobError: If the payload is not valid gzip or the hash does not match
        """
        path = self.path_for(blob_hash)
        if path.is_file():
            return path

        content = decompress(compressed)
        actual = compute_content_hash(content)
        if actual != blob_hash:
            raise CorruptBlobError(
                f"Blob content hash mismatch: expected {blob_hash[:12]}, got {actual[:12]}"
            )

        self._create(blob_hash, compressed)
        return path

    def read_compressed(self, blob_hash: str) -> bytes:
        """
        Read the stored (compressed) bytes of an object.

        Raises:
            BlobNotFoundError: If no object exists for the hash
        """
        path = self.path_for(blob_hash)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {blob_hash}") from e

    def read(self, blob_hash: str) -> bytes:
        """
        Read and decompress an object.

        Raises:
            BlobNotFoundError: If no object exists for the hash
            CorruptBlobError: If the object cannot be decompressed
        """
        return decompress(self.read_compressed(blob_hash))

    def _create(self, blob_hash: str, compressed: bytes) -> None:
        """Atomically create the object file for a hash."""
        self.initialize()
        target = self.path_for(blob_hash)

        fd, temp_path = tempfile.mkstemp(
            dir=self.blobs_dir,
            prefix=f".{blob_hash[:12]}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(compressed)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except BaseException:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
