"""State snapshot of previously synchronized files and directories.

The state is the diff baseline of a run: it remembers which files and
directories were present on the target after the last run, together with
the modification time and SHA-1 of every file. It is persisted as a JSON
array where file records carry ``path``, ``modified`` and ``sha1`` and
directory records carry only ``path``.
"""

import json
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from ..exceptions import StateFileError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileRecord:
    """A file as last recorded in the state."""

    path: str
    """Relative path (forward slashes)"""

    modified: int
    """Modification time in milliseconds"""

    sha1: str
    """SHA-1 hex digest of the contents"""

    def to_dict(self) -> dict:
        return {"path": self.path, "modified": self.modified, "sha1": self.sha1}


@dataclass(frozen=True)
class DirectoryRecord:
    """A tracked directory, kept so empty directories survive a run."""

    path: str
    """Relative path (forward slashes)"""

    def to_dict(self) -> dict:
        return {"path": self.path}


StateRecord = Union[FileRecord, DirectoryRecord]


def record_from_dict(data: dict) -> StateRecord:
    """Create a record from one element of the state JSON array.

    Elements without ``sha1`` and ``modified`` are directory records.

    Raises:
        StateFileError: If the element is not an object with a string path
    """
    if not isinstance(data, dict) or not isinstance(data.get("path"), str):
        raise StateFileError(f"Invalid state record: {data!r}")

    if "sha1" not in data and "modified" not in data:
        return DirectoryRecord(path=data["path"])

    try:
        modified = int(data.get("modified", 0))
    except (TypeError, ValueError) as e:
        raise StateFileError(f"Invalid modified time in record: {data!r}") from e
    return FileRecord(
        path=data["path"], modified=modified, sha1=str(data.get("sha1", ""))
    )


class State:
    """Collection of file and directory records addressable by path.

    Paths are unique. Directory records are independent of the files
    below them: removing a file never removes its parent directory.
    """

    def __init__(self, records: Optional[list[StateRecord]] = None):
        self._records: dict[str, StateRecord] = {}
        for record in records or []:
            self._records[record.path] = record

    @classmethod
    def from_json_array(cls, data: Any) -> "State":
        """Create a state from a parsed JSON array.

        Raises:
            StateFileError: If ``data`` is not a list of records
        """
        if not isinstance(data, list):
            raise StateFileError("State file must contain a JSON array")
        return cls([record_from_dict(item) for item in data])

    def to_json_array(self) -> list[dict]:
        """Serialize the state to a JSON compatible list, sorted by path."""
        return [self._records[path].to_dict() for path in sorted(self._records)]

    def get(self, path: str) -> Optional[StateRecord]:
        return self._records.get(path)

    def add_file(self, path: str, modified: int, sha1: str) -> None:
        """Record a file, replacing any previous record for the path."""
        self._records[path] = FileRecord(path=path, modified=modified, sha1=sha1)

    def make_dir(self, path: str) -> None:
        """Record a directory."""
        self._records[path] = DirectoryRecord(path=path)

    def remove_file_or_dir(self, path: str) -> bool:
        """Remove the record for ``path``.

        Returns:
            True if a record was removed
        """
        return self._records.pop(path, None) is not None

    def files(self) -> Iterator[FileRecord]:
        for record in self._records.values():
            if isinstance(record, FileRecord):
                yield record

    def folders(self) -> Iterator[DirectoryRecord]:
        for record in self._records.values():
            if isinstance(record, DirectoryRecord):
                yield record

    def paths(self) -> list[str]:
        return list(self._records)

    def records(self) -> list[StateRecord]:
        return list(self._records.values())

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"State({len(self._records)} records)"


class StateHandle:
    """Synchronized owner of the run's State.

    Pipeline jobs report success from worker threads; every mutation goes
    through this handle so they are serialized behind one lock.
    """

    def __init__(self, state: State):
        self._state = state
        self._lock = threading.Lock()

    def add_file(self, path: str, modified: int, sha1: str) -> None:
        with self._lock:
            self._state.add_file(path, modified, sha1)

    def make_dir(self, path: str) -> None:
        with self._lock:
            self._state.make_dir(path)

    def remove_file_or_dir(self, path: str) -> bool:
        with self._lock:
            return self._state.remove_file_or_dir(path)

    def to_json_array(self) -> list[dict]:
        with self._lock:
            return self._state.to_json_array()


def read_state_file(state_file: Path) -> State:
    """Load a state from ``state_file``.

    A missing file yields an empty state.

    Raises:
        StateFileError: If the file cannot be read or parsed
    """
    if not state_file.exists():
        logger.info("No state file found at %s, using an empty state", state_file)
        return State()

    try:
        with open(state_file, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StateFileError(f"Cannot parse state file {state_file}: {e}") from e

    state = State.from_json_array(data)
    logger.debug("Loaded %d state records from %s", len(state), state_file)
    return state


def write_state_file(state_file: Path, records: list[dict], indent: int = 0) -> None:
    """Write serialized state records to ``state_file``.

    Any existing file is removed first and missing parent directories are
    created.

    Args:
        state_file: Destination path
        records: Output of ``State.to_json_array()``
        indent: 0 for compact JSON, otherwise the indent width
    """
    if state_file.exists():
        state_file.unlink()

    if indent > 0:
        contents = json.dumps(records, indent=indent, ensure_ascii=False)
    else:
        contents = json.dumps(records, separators=(",", ":"), ensure_ascii=False)

    state_file.parent.mkdir(parents=True, exist_ok=True)
    with open(state_file, "w", encoding="utf-8") as f:
        f.write(contents)
    logger.debug("Saved %d state records to %s", len(records), state_file)
