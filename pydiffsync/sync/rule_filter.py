"""Regular-expression rules excluding paths from synchronization."""

import logging
import re
from collections.abc import Iterator
from pathlib import Path

from ..exceptions import ConfigurationError, FilesystemError
from ..utils import relative_posix_path

logger = logging.getLogger(__name__)


class RuleFilter:
    """Ordered set of compiled path rules.

    Each rule is a regular expression searched in the relative path of an
    entry (forward slashes, no leading slash). An entry is excluded when
    any rule matches; for directories the whole subtree is excluded.

    Examples:
        >>> rules = RuleFilter([r"\\.git$", r"(^|/)node_modules$"])
        >>> rules.test_all(".git")
        True
        >>> rules.test_all("src/index.js")
        False
    """

    def __init__(self, patterns: list[str]):
        """Compile the rules.

        Args:
            patterns: Regular expression sources

        Raises:
            ConfigurationError: If a pattern is not a valid regular expression
        """
        self.patterns = list(patterns)
        self.rules: list[re.Pattern[str]] = []
        for pattern in self.patterns:
            try:
                self.rules.append(re.compile(pattern))
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid file filter pattern {pattern!r}: {e}"
                ) from e

    def test_all(self, path: str, verbose: bool = False) -> bool:
        """Check whether any rule matches ``path``.

        Args:
            path: Relative path using forward slashes
            verbose: Log the matching rule

        Returns:
            True if the path is excluded
        """
        for rule in self.rules:
            if rule.search(path):
                if verbose:
                    logger.debug("Rule %r matched: %s", rule.pattern, path)
                return True
        return False

    def walk_matches(self, source_dir: Path) -> Iterator[str]:
        """Yield every relative path under ``source_dir`` matched by a rule.

        Used by the filter diagnostic. Unlike the diff traversal it keeps
        descending into matched directories so everything a rule hides is
        reported.

        Raises:
            FilesystemError: If a directory cannot be listed
        """
        yield from self._walk(Path(source_dir), Path(source_dir))

    def _walk(self, directory: Path, base_path: Path) -> Iterator[str]:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise FilesystemError(f"Cannot list directory {directory}: {e}") from e

        for entry in entries:
            relative_path = relative_posix_path(entry, base_path)
            if self.test_all(relative_path, verbose=True):
                yield relative_path
            if entry.is_dir():
                yield from self._walk(entry, base_path)

    def __len__(self) -> int:
        return len(self.rules)
