"""Core sync engine sequencing a complete run."""

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..config import AppConfig
from ..exceptions import (
    ConfigurationError,
    DiffSyncError,
    FilesystemError,
    PoolError,
)
from ..output import OutputFormatter
from ..utils import mtime_millis
from .comparator import DiffEngine, FileDifferences, build_strategy
from .hash_cache import HashCache
from .pipeline import CommandPipeline
from .pool import BoundedPool
from .rule_filter import RuleFilter
from .state import State, StateHandle, read_state_file, write_state_file
from .variables import VariableSet

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of a run."""

    differences: FileDifferences
    deleted_files: int = 0
    deleted_folders: int = 0
    created_folders: int = 0
    uploaded_files: int = 0
    state_saved: bool = False
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "differences": self.differences.to_dict(),
            "deleted_files": self.deleted_files,
            "deleted_folders": self.deleted_folders,
            "created_folders": self.created_folders,
            "uploaded_files": self.uploaded_files,
            "state_saved": self.state_saved,
            "dry_run": self.dry_run,
        }


def _depth(path: str) -> int:
    return path.count("/")


def group_by_depth(
    paths: Iterable[str], deepest_first: bool = False
) -> list[list[str]]:
    """Group directory paths into levels of equal depth.

    Levels are ordered shallowest first (or deepest first for deletions);
    paths inside a level keep their original order.

    Examples:
        >>> group_by_depth(["a", "a/b", "c", "a/b/c"])
        [['a', 'c'], ['a/b'], ['a/b/c']]
        >>> group_by_depth(["a", "a/b"], deepest_first=True)
        [['a/b'], ['a']]
    """
    levels: dict[int, list[str]] = {}
    for path in paths:
        levels.setdefault(_depth(path), []).append(path)
    return [levels[depth] for depth in sorted(levels, reverse=deepest_first)]


class SyncEngine:
    """Diffs a source tree against its recorded state and reconciles it.

    A run loads the state, computes the differences, runs the ``start_up``
    hook, executes the four phases (delete files, delete directories,
    create directories, upload files), runs the ``clean_up`` hook and
    saves the state. Every phase finishes completely before the next one
    starts, so directories exist before files are uploaded into them and
    files are gone before their directory is deleted.

    The state is saved even when a phase fails, so the progress made so
    far is kept; the failure is raised afterwards.

    Examples:
        >>> config = load_config("deploy.yaml")
        >>> engine = SyncEngine(config, debug=True)
        >>> report = engine.run()
        >>> print(report.uploaded_files)
    """

    def __init__(
        self,
        config: AppConfig,
        output: Optional[OutputFormatter] = None,
        debug: bool = False,
        dry_run: bool = False,
        show_output: bool = False,
    ):
        """Initialize the engine.

        Args:
            config: Parsed configuration
            output: Output formatter for progress messages
            debug: Echo every command line and log comparison details
            dry_run: Build and log every command without spawning it
            show_output: Echo the output of successful commands

        Raises:
            ConfigurationError: If the source or working directory is not a
                directory, or a file filter does not compile
        """
        self.config = config
        self.output = output or OutputFormatter()
        self.debug = debug
        self.dry_run = dry_run
        self.show_output = show_output

        self.source_dir = Path(config.source_dir)
        if not self.source_dir.is_dir():
            raise ConfigurationError(
                f"The source directory is not a directory: {config.source_dir}"
            )

        if config.command_workdir:
            self.workdir = Path(config.command_workdir)
        else:
            self.workdir = Path.cwd()
        if not self.workdir.is_dir():
            raise ConfigurationError(f"The workdir is not a directory: {self.workdir}")

        self.hash_cache = HashCache(self.source_dir)
        self.rule_filter = RuleFilter(config.file_filters)
        self.variables = VariableSet.base(
            config.variables, self.source_dir, self.workdir
        )

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def _pipeline(self, templates: list[list[str]]) -> CommandPipeline:
        return CommandPipeline(
            templates,
            self.workdir,
            debug=self.debug,
            show_output=self.show_output,
            dry_run=self.dry_run,
        )

    def _run_hook(self, name: str, templates: list[list[str]]) -> None:
        """Run a lifecycle pipeline once, on the calling thread."""
        pipeline = self._pipeline(templates)
        if not pipeline:
            return
        logger.debug("Running %s hook", name)
        pipeline.run(self.variables)

    def state_file_path(self) -> Path:
        """Location of the state file, relative paths resolved in the workdir."""
        path = Path(self.variables.apply(self.config.state_file))
        if not path.is_absolute():
            path = self.workdir / path
        return path

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def load_state(self) -> State:
        """Load the state of the previous run.

        Local state takes precedence; with remote state only, the
        ``download_state`` pipeline runs first and is expected to produce
        the local state file.

        Raises:
            PipelineError: If ``download_state`` fails
            StateFileError: If the state file cannot be parsed
        """
        if not self.config.persists_state:
            self.output.info("No state file in use, starting from an empty state")
            return State()

        if self.config.use_local_state:
            self.output.info("Loading local state file")
        else:
            self.output.info("Downloading remote state file")
            self._run_hook("download_state", self.config.download_state)

        state_file = self.state_file_path()
        if not state_file.exists():
            self.output.info("No state file found, starting from an empty state")
        return read_state_file(state_file)

    def save_state(self, differences: FileDifferences, handle: StateHandle) -> bool:
        """Persist the state if anything changed.

        Returns:
            True if the state file was written

        Raises:
            FilesystemError: If the state file cannot be written
            PipelineError: If ``upload_state`` fails
        """
        if not differences.has_differences() or not self.config.persists_state:
            return False
        if self.dry_run:
            self.output.info("Dry run: state file not updated")
            return False

        state_file = self.state_file_path()
        if self.config.use_local_state:
            self.output.info("Updating local state file...")

        try:
            write_state_file(
                state_file, handle.to_json_array(), indent=self.config.state_indent
            )
        except OSError as e:
            raise FilesystemError(f"Cannot write state file {state_file}: {e}") from e

        if self.config.use_remote_state:
            self.output.info("Updating remote state file...")
            self._run_hook("upload_state", self.config.upload_state)

        if not self.config.use_local_state:
            try:
                state_file.unlink(missing_ok=True)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot remove local state file {state_file}: {e}"
                ) from e

        return True

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare(self, state: State) -> FileDifferences:
        """Compute the differences between the source tree and ``state``."""
        self.output.info("Calculating differences...")
        start = time.time()
        strategy = build_strategy(
            self.config.fast_comparison, self.hash_cache, self.debug
        )
        engine = DiffEngine(self.source_dir, strategy, self.rule_filter, self.debug)
        differences = engine.compare(state)
        logger.debug("Comparison took %.2fs", time.time() - start)
        return differences

    def test_filter(self) -> list[str]:
        """List every path of the source tree matched by a file filter."""
        matched = []
        for path in self.rule_filter.walk_matches(self.source_dir):
            self.output.info(f"matched: {path}")
            matched.append(path)
        return matched

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_phase(
        self,
        label: str,
        templates: list[list[str]],
        levels: list[list[str]],
        on_done: Callable[[str], None],
    ) -> int:
        """Run one phase over its targets.

        Each level gets its own pool and is fully drained before the next
        level starts. Without configured commands the phase only updates
        the state.

        Returns:
            Number of targets completed

        Raises:
            PoolError: If a target failed; the remaining levels are skipped
        """
        total = sum(len(level) for level in levels)
        if total == 0:
            return 0

        index = 0
        pipeline = self._pipeline(templates)
        if not pipeline:
            for level in levels:
                for path in level:
                    index += 1
                    self.output.info(f"{label} ({index}/{total}): {path}")
                    on_done(path)
            return total

        completed = 0
        name = label.lower().replace(" ", "-")
        for level in levels:
            pool = BoundedPool(self.config.threads, name=name)
            for path in level:
                index += 1
                self.output.info(f"{label} ({index}/{total}): {path}")
                pool.submit(
                    lambda v=self.variables.for_path(path): pipeline.run(v),
                    on_success=lambda _result, p=path: on_done(p),
                )
            error = pool.drain()
            completed += pool.completed
            if error is not None:
                raise error
        return completed

    def _add_file(self, handle: StateHandle, path: str) -> None:
        try:
            modified = mtime_millis(self.source_dir / path)
            sha1 = self.hash_cache.get_hash(path, self.debug)
        except OSError as e:
            raise FilesystemError(f"Cannot read {path}: {e}") from e
        handle.add_file(path, modified, sha1)

    def execute_operations(
        self,
        differences: FileDifferences,
        handle: StateHandle,
        report: SyncReport,
    ) -> None:
        """Run the four phases in order, recording progress in ``report``.

        Raises:
            PoolError: If a phase failed; later phases are not started
        """
        overlay = self.config.overlay_mode
        old_files = [
            p
            for p in differences.old_files
            if not (overlay and p in differences.new_files)
        ]
        overlaid = [p for p in differences.old_files if p not in old_files]

        report.deleted_files = self._run_phase(
            "Deleting file",
            self.config.delete_file,
            [old_files],
            handle.remove_file_or_dir,
        )
        # Overlaid files are replaced by the upload phase without a delete
        for path in overlaid:
            handle.remove_file_or_dir(path)

        report.deleted_folders = self._run_phase(
            "Deleting folder",
            self.config.delete_dir,
            group_by_depth(differences.old_folders, deepest_first=True),
            handle.remove_file_or_dir,
        )

        report.created_folders = self._run_phase(
            "Creating folder",
            self.config.upload_dir,
            group_by_depth(differences.new_folders),
            handle.make_dir,
        )

        report.uploaded_files = self._run_phase(
            "Uploading file",
            self.config.upload_file,
            [list(differences.new_files)],
            lambda path: self._add_file(handle, path),
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> SyncReport:
        """Execute a complete run.

        Returns:
            SyncReport describing what was done

        Raises:
            PipelineError: The first failure of a hook or phase, raised
                after the state has been saved
            FilesystemError: If the source tree cannot be read, or a file
                vanished during a phase (raised after the state was saved)
            StateFileError: If the previous state cannot be parsed
        """
        if self.dry_run:
            self.output.info("Dry run: no commands will be executed")

        state = self.load_state()
        differences = self.compare(state)
        handle = StateHandle(state)
        report = SyncReport(differences=differences, dry_run=self.dry_run)
        self.output.info(differences.summary())

        error: Optional[BaseException] = None
        if differences.has_differences():
            try:
                self._run_hook("start_up", self.config.start_up)
                self.execute_operations(differences, handle, report)
            except PoolError as e:
                error = e.error
            except DiffSyncError as e:
                error = e

            if error is not None:
                self.output.warning("An error occurred, saving the state file")

            try:
                self._run_hook("clean_up", self.config.clean_up)
            except DiffSyncError as e:
                if error is None:
                    error = e
                else:
                    self.output.error(f"clean_up failed: {e}")

        try:
            report.state_saved = self.save_state(differences, handle)
        except DiffSyncError as e:
            if error is None:
                raise
            self.output.error(f"Failed to save state file: {e}")

        if error is not None:
            raise error

        self.output.info(differences.summary())
        return report
