"""Exceptions raised by pydiffsync."""

from typing import Optional, Sequence

from .utils import format_output_blocks


class DiffSyncError(Exception):
    """Base exception for all pydiffsync errors."""

    pass


class ConfigurationError(DiffSyncError):
    """Invalid configuration: missing directories, bad patterns, bad config file.

    Raised before any side effect takes place.
    """

    pass


class FilesystemError(DiffSyncError):
    """An entry of the source tree could not be read during traversal."""

    pass


class StateFileError(DiffSyncError):
    """The persisted state file exists but cannot be parsed."""

    pass


class PipelineError(DiffSyncError):
    """A command pipeline step failed."""

    def __init__(
        self,
        message: str,
        argv: Optional[Sequence[str]] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.argv = list(argv) if argv is not None else []
        self.stdout = stdout
        self.stderr = stderr


class SignalTerminatedError(PipelineError):
    """The spawned process was killed by a signal and has no exit code."""

    def __init__(
        self,
        argv: Sequence[str],
        signal_number: int,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(
            f"process was terminated by signal {signal_number}: {list(argv)}",
            argv=argv,
            stdout=stdout,
            stderr=stderr,
        )
        self.signal_number = signal_number


class NonZeroExitError(PipelineError):
    """The spawned process exited with a non-zero exit code."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ):
        message = f"process exited with code {returncode}: {list(argv)}"
        blocks = format_output_blocks(stdout, stderr)
        if blocks:
            message += "\n" + blocks
        super().__init__(message, argv=argv, stdout=stdout, stderr=stderr)
        self.returncode = returncode


class PoolError(DiffSyncError):
    """First failure observed among the jobs of one execution pool."""

    def __init__(self, error: BaseException, failed: int = 1):
        super().__init__(f"{failed} job(s) failed, first error: {error}")
        self.error = error
        self.failed = failed
        self.__cause__ = error
