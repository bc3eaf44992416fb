"""Utility functions for pydiffsync."""

from pathlib import Path
from typing import Union

# =============================================================================
# Constants
# =============================================================================

# Default location of the state file (relative to the command working directory)
DEFAULT_STATE_FILE: str = ".state.json"

# Read size used when hashing files (1 MB)
HASH_CHUNK_SIZE: int = 1024 * 1024

# Prefix for continuation lines of captured process output
OUTPUT_LINE_PREFIX: str = "|"


# =============================================================================
# Path utilities
# =============================================================================


def relative_posix_path(path: Path, base_path: Path) -> str:
    """Compute the relative path of ``path`` under ``base_path``.

    Args:
        path: Path inside ``base_path``
        base_path: Root directory

    Returns:
        Relative path using forward slashes on all platforms

    Examples:
        >>> relative_posix_path(Path("/src/a/b.txt"), Path("/src"))
        'a/b.txt'
    """
    # Use as_posix() to ensure forward slashes on all platforms
    return path.relative_to(base_path).as_posix()


def to_forward_slashes(value: Union[str, Path]) -> str:
    """Replace backslashes with forward slashes.

    Examples:
        >>> to_forward_slashes("C:\\\\data\\\\site")
        'C:/data/site'
    """
    return str(value).replace("\\", "/")


def to_backslashes(value: str) -> str:
    """Replace forward slashes with backslashes.

    Examples:
        >>> to_backslashes("a/b/c.txt")
        'a\\\\b\\\\c.txt'
    """
    return value.replace("/", "\\")


def mtime_millis(path: Path) -> int:
    """Return the modification time of ``path`` in integer milliseconds."""
    return path.stat().st_mtime_ns // 1_000_000


# =============================================================================
# Process output utilities
# =============================================================================


def decode_output(data: bytes) -> str:
    """Decode captured process output.

    The bytes are decoded as UTF-8, line endings are normalized to ``\\n``
    and surrounding whitespace is trimmed. The result is the text handed
    to the next pipeline step, so no log decoration is added here.

    Examples:
        >>> decode_output(b"line1\\r\\nline2\\r\\n")
        'line1\\nline2'
        >>> decode_output(b"")
        ''
    """
    text = data.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def prefix_lines(text: str) -> str:
    """Prefix every line of ``text`` with ``|`` for log rendering.

    Examples:
        >>> prefix_lines("a\\nb")
        '|a\\n|b'
    """
    return "\n".join(OUTPUT_LINE_PREFIX + line for line in text.split("\n"))


def format_output_blocks(stdout: str, stderr: str) -> str:
    """Render captured stdout/stderr as framed blocks.

    Returns an empty string when both streams are empty.
    """
    lines = []
    if stdout:
        lines.append(f"=====stdout=====\n{prefix_lines(stdout)}")
    if stderr:
        lines.append(f"=====stderr=====\n{prefix_lines(stderr)}")
    if lines:
        lines.append("================")
    return "\n".join(lines)
