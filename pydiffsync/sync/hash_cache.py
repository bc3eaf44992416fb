"""Memoized content hashes of source files."""

import hashlib
import logging
import threading
from pathlib import Path

from ..utils import HASH_CHUNK_SIZE

logger = logging.getLogger(__name__)


def sha1_of_file(file_path: Path) -> str:
    """Calculate the SHA-1 hex digest of a file's contents."""
    digest = hashlib.sha1()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HashCache:
    """Thread-safe cache of SHA-1 hashes keyed by relative path.

    A hash is computed the first time a path is requested and reused for
    the rest of the run; the source tree is assumed not to change while a
    run is in progress, so entries are never invalidated.

    Only access to the map is serialized. Hashing happens outside the lock
    so workers hashing different files do not wait on each other. Two
    workers missing on the same path may both hash it; the first stored
    value is kept.
    """

    def __init__(self, source_dir: Path):
        """Initialize the cache.

        Args:
            source_dir: Root directory that relative paths are resolved against
        """
        self.source_dir = Path(source_dir)
        self._hashes: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_hash(self, path: str, debug: bool = False) -> str:
        """Return the SHA-1 of the file at ``path``.

        Args:
            path: Path relative to the source directory (forward slashes)
            debug: Log cache hits and misses

        Returns:
            Hex digest of the file contents
        """
        with self._lock:
            cached = self._hashes.get(path)

        if cached is not None:
            if debug:
                logger.debug("Hash cache hit: %s", path)
            return cached

        if debug:
            logger.debug("Hash cache miss, hashing: %s", path)
        computed = sha1_of_file(self.source_dir / path)

        with self._lock:
            return self._hashes.setdefault(path, computed)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._hashes

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)
