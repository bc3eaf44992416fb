"""Difference calculation between the source tree and the recorded state."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from ..exceptions import FilesystemError
from .hash_cache import HashCache
from .rule_filter import RuleFilter
from .scanner import DirectoryScanner, LocalEntry
from .state import DirectoryRecord, FileRecord, State

logger = logging.getLogger(__name__)


class ComparisonStrategy(Protocol):
    """Decides whether a local file still matches its recorded state."""

    def is_unchanged(self, record: FileRecord, entry: LocalEntry) -> bool:
        """Return True if ``entry`` is the file described by ``record``."""
        ...


class ContentComparison:
    """Compares files by SHA-1 only."""

    def __init__(self, hash_cache: HashCache, debug: bool = False):
        self.hash_cache = hash_cache
        self.debug = debug

    def is_unchanged(self, record: FileRecord, entry: LocalEntry) -> bool:
        try:
            local_hash = self.hash_cache.get_hash(entry.relative_path, self.debug)
        except OSError as e:
            raise FilesystemError(f"Cannot read {entry.path}: {e}") from e
        return record.sha1 == local_hash


class FastComparison(ContentComparison):
    """Trusts equal modification times, falls back to SHA-1 otherwise.

    Skips hashing on unchanged trees at the cost of missing a change that
    kept the exact same modification time.
    """

    def is_unchanged(self, record: FileRecord, entry: LocalEntry) -> bool:
        if record.modified == entry.modified():
            return True
        return super().is_unchanged(record, entry)


def build_strategy(
    fast_comparison: bool, hash_cache: HashCache, debug: bool = False
) -> ComparisonStrategy:
    """Select the comparison strategy for a run."""
    if fast_comparison:
        return FastComparison(hash_cache, debug)
    return ContentComparison(hash_cache, debug)


def _ordered_set() -> dict[str, None]:
    return {}


@dataclass
class FileDifferences:
    """Result of a comparison.

    ``old_*`` entries are recorded in the state but no longer valid locally,
    ``new_*`` entries exist locally but are not validly recorded. A changed
    file is listed in both ``old_files`` and ``new_files``. Every set keeps
    the traversal order in which entries were found.
    """

    old_files: dict[str, None] = field(default_factory=_ordered_set)
    old_folders: dict[str, None] = field(default_factory=_ordered_set)
    new_files: dict[str, None] = field(default_factory=_ordered_set)
    new_folders: dict[str, None] = field(default_factory=_ordered_set)

    def has_differences(self) -> bool:
        return bool(
            self.old_files or self.old_folders or self.new_files or self.new_folders
        )

    def summary(self) -> str:
        return (
            f"Old files: {len(self.old_files)}, "
            f"old folders: {len(self.old_folders)}, "
            f"new files: {len(self.new_files)}, "
            f"new folders: {len(self.new_folders)}"
        )

    def to_dict(self) -> dict:
        return {
            "old_files": list(self.old_files),
            "old_folders": list(self.old_folders),
            "new_files": list(self.new_files),
            "new_folders": list(self.new_folders),
        }


class DiffEngine:
    """Walks the source tree and compares it against a State."""

    def __init__(
        self,
        source_dir: Path,
        strategy: ComparisonStrategy,
        rule_filter: Optional[RuleFilter] = None,
        debug: bool = False,
    ):
        """Initialize the diff engine.

        Args:
            source_dir: Root of the tree to compare
            strategy: How recorded files are compared with local files
            rule_filter: Rules hiding entries from the comparison
            debug: Log every decision
        """
        self.source_dir = Path(source_dir)
        self.strategy = strategy
        self.scanner = DirectoryScanner(rule_filter, debug=debug)
        self.debug = debug

    def compare(self, state: State) -> FileDifferences:
        """Compute the differences between the source tree and ``state``.

        Args:
            state: Recorded state of the previous run

        Returns:
            FileDifferences in traversal order

        Raises:
            FilesystemError: If an entry of the source tree cannot be read
        """
        differences = FileDifferences()
        visited: set[str] = set()

        for entry in self.scanner.walk(self.source_dir):
            path = entry.relative_path
            visited.add(path)
            record = state.get(path)

            if entry.is_dir:
                if not isinstance(record, DirectoryRecord):
                    if isinstance(record, FileRecord):
                        # A file turned into a directory
                        differences.old_files[path] = None
                    differences.new_folders[path] = None
                continue

            if record is None:
                differences.new_files[path] = None
            elif isinstance(record, DirectoryRecord):
                # A directory turned into a file
                differences.old_folders[path] = None
                differences.new_files[path] = None
            elif not self.strategy.is_unchanged(record, entry):
                if self.debug:
                    logger.debug("Changed: %s", path)
                differences.old_files[path] = None
                differences.new_files[path] = None

        for record in state.records():
            if record.path in visited:
                continue
            if isinstance(record, FileRecord):
                differences.old_files[record.path] = None
            else:
                differences.old_folders[record.path] = None

        return differences
