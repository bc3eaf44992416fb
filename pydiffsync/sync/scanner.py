"""Directory scanning for the diff traversal."""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import FilesystemError
from ..utils import mtime_millis, relative_posix_path
from .rule_filter import RuleFilter

logger = logging.getLogger(__name__)


@dataclass
class LocalEntry:
    """A file or directory found in the source tree."""

    path: Path
    """Absolute path to the entry"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    is_dir: bool
    """Whether the entry is a directory"""

    def modified(self) -> int:
        """Modification time in milliseconds.

        Raises:
            FilesystemError: If the entry cannot be stat'ed
        """
        try:
            return mtime_millis(self.path)
        except OSError as e:
            raise FilesystemError(f"Cannot stat {self.path}: {e}") from e


class DirectoryScanner:
    """Walks a source tree depth-first, skipping filtered entries.

    Directories are yielded before their children and siblings are visited
    in name order, so the traversal order is deterministic. When a rule
    matches a directory its whole subtree is skipped.

    Examples:
        >>> scanner = DirectoryScanner(RuleFilter([r"\\.tmp$"]))
        >>> for entry in scanner.walk(Path("/srv/site")):
        ...     print(entry.relative_path)
    """

    def __init__(self, rule_filter: Optional[RuleFilter] = None, debug: bool = False):
        """Initialize directory scanner.

        Args:
            rule_filter: Rules excluding entries (None to include everything)
            debug: Log every excluded entry
        """
        self.rule_filter = rule_filter or RuleFilter([])
        self.debug = debug

    def walk(self, directory: Path) -> Iterator[LocalEntry]:
        """Recursively yield the entries below ``directory``.

        Args:
            directory: Root of the source tree

        Raises:
            FilesystemError: If a directory cannot be listed
        """
        yield from self._walk(Path(directory), Path(directory))

    def _walk(self, directory: Path, base_path: Path) -> Iterator[LocalEntry]:
        try:
            items = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise FilesystemError(f"Cannot list directory {directory}: {e}") from e

        for item in items:
            relative_path = relative_posix_path(item, base_path)
            if self.rule_filter.test_all(relative_path, verbose=self.debug):
                logger.debug("Ignoring (from rules): %s", relative_path)
                continue

            if item.is_dir():
                yield LocalEntry(path=item, relative_path=relative_path, is_dir=True)
                yield from self._walk(item, base_path)
            elif item.is_file():
                yield LocalEntry(path=item, relative_path=relative_path, is_dir=False)
            else:
                logger.debug("Skipping special file: %s", relative_path)
