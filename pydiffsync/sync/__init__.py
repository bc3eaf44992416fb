"""Sync engine for pydiffsync - diff a source tree and reconcile it with commands."""

from .comparator import (
    ComparisonStrategy,
    ContentComparison,
    DiffEngine,
    FastComparison,
    FileDifferences,
    build_strategy,
)
from .engine import SyncEngine, SyncReport
from .hash_cache import HashCache
from .pipeline import (
    NO_PRIOR_STEP,
    RAW_MARKER,
    CommandPipeline,
    CommandStep,
    StepResult,
)
from .pool import BoundedPool
from .rule_filter import RuleFilter
from .scanner import DirectoryScanner, LocalEntry
from .state import (
    DirectoryRecord,
    FileRecord,
    State,
    StateHandle,
    read_state_file,
    write_state_file,
)
from .variables import VariableSet

__all__ = [
    "SyncEngine",
    "SyncReport",
    "DiffEngine",
    "FileDifferences",
    "ComparisonStrategy",
    "ContentComparison",
    "FastComparison",
    "build_strategy",
    "HashCache",
    "CommandPipeline",
    "CommandStep",
    "StepResult",
    "NO_PRIOR_STEP",
    "RAW_MARKER",
    "BoundedPool",
    "RuleFilter",
    "DirectoryScanner",
    "LocalEntry",
    "State",
    "StateHandle",
    "FileRecord",
    "DirectoryRecord",
    "read_state_file",
    "write_state_file",
    "VariableSet",
]
