"""PyDiffSync - deploy what changed in a directory tree with external commands."""

from .config import AppConfig, load_config
from .exceptions import (
    ConfigurationError,
    DiffSyncError,
    FilesystemError,
    NonZeroExitError,
    PipelineError,
    PoolError,
    SignalTerminatedError,
    StateFileError,
)
from .sync import SyncEngine, SyncReport

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AppConfig",
    "load_config",
    "SyncEngine",
    "SyncReport",
    "DiffSyncError",
    "ConfigurationError",
    "FilesystemError",
    "StateFileError",
    "PipelineError",
    "SignalTerminatedError",
    "NonZeroExitError",
    "PoolError",
]
