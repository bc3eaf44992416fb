"""Tests for the sync engine."""

import json
import random
import sys
import threading
import time
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from pydiffsync.config import AppConfig
from pydiffsync.exceptions import (
    ConfigurationError,
    FilesystemError,
    NonZeroExitError,
)
from pydiffsync.output import OutputFormatter
from pydiffsync.sync import SyncEngine
from pydiffsync.sync.engine import group_by_depth
from pydiffsync.sync.hash_cache import sha1_of_file
from pydiffsync.sync.pipeline import NO_PRIOR_STEP
from pydiffsync.sync.state import read_state_file, write_state_file

PHASES = ["delete_file", "delete_dir", "upload_dir", "upload_file"]


def py(code: str, *args: str) -> list[str]:
    """Template running a Python snippet with the current interpreter."""
    return [sys.executable, "-c", code, *args]


COPY_FILE = py(
    "import shutil, sys; shutil.copy2(sys.argv[1], sys.argv[2])",
    "$source/$path",
    "$target/$path",
)
MAKE_DIR = py("import os, sys; os.makedirs(sys.argv[1])", "$target/$path")
REMOVE_FILE = py("import os, sys; os.remove(sys.argv[1])", "$target/$path")
REMOVE_DIR = py("import os, sys; os.rmdir(sys.argv[1])", "$target/$path")


def touch_command(marker: Path) -> list[str]:
    return py("import sys; open(sys.argv[1], 'a').write('x')", str(marker))


def make_config(source: Path, workdir: Path, **kwargs) -> AppConfig:
    kwargs.setdefault("state_file", "state.json")
    return AppConfig(source_dir=str(source), command_workdir=str(workdir), **kwargs)


def tree_snapshot(root: Path) -> dict[str, str]:
    """Map of relative path to content ("<dir>" for directories)."""
    snapshot = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root).as_posix()
        snapshot[relative] = "<dir>" if path.is_dir() else path.read_text()
    return snapshot


class Recorder:
    """Collects start and end events of fake pipeline runs."""

    def __init__(self):
        self.events: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.lock = threading.Lock()

    def log(self, kind: str, name: str, path: str) -> None:
        with self.lock:
            self.events.append((kind, name, path))

    def pipeline(self, templates, workdir, **kwargs) -> "RecordingPipeline":
        return RecordingPipeline(self, templates)

    def names(self, kind: str = "end") -> list[tuple[str, str]]:
        return [(name, path) for k, name, path in self.events if k == kind]


class RecordingPipeline:
    """Stand-in for CommandPipeline named after its first template token."""

    def __init__(self, recorder: Recorder, templates):
        self.recorder = recorder
        self.templates = templates
        self.name = templates[0][0] if templates else ""

    def __bool__(self) -> bool:
        return bool(self.templates)

    def run(self, variables):
        path = variables.get("path") or ""
        self.recorder.log("start", self.name, path)
        time.sleep(random.random() / 2000)
        self.recorder.log("end", self.name, path)
        error = self.recorder.failures.get((self.name, path))
        if error is not None:
            raise error
        return NO_PRIOR_STEP


@pytest.fixture
def mock_output():
    """Create a mock output formatter."""
    output = Mock(spec=OutputFormatter)
    output.quiet = True
    return output


@pytest.fixture
def recorder():
    """Patch the engine's pipelines with recording stand-ins."""
    rec = Recorder()
    with patch("pydiffsync.sync.engine.CommandPipeline", side_effect=rec.pipeline):
        yield rec


@pytest.fixture
def dirs(tmp_path):
    """Source, target and working directories."""
    source = tmp_path / "source"
    target = tmp_path / "target"
    workdir = tmp_path / "work"
    for d in (source, target, workdir):
        d.mkdir()
    return source, target, workdir


def recording_config(source: Path, workdir: Path, **kwargs) -> AppConfig:
    commands = {name: [[name]] for name in PHASES + ["start_up", "clean_up"]}
    commands.update(kwargs)
    return make_config(source, workdir, **commands)


class TestGroupByDepth:
    def test_shallowest_first(self):
        assert group_by_depth(["a/b", "a", "c/d/e", "c"]) == [
            ["a", "c"],
            ["a/b"],
            ["c/d/e"],
        ]

    def test_deepest_first(self):
        assert group_by_depth(["a", "a/b", "a/b/c"], deepest_first=True) == [
            ["a/b/c"],
            ["a/b"],
            ["a"],
        ]

    def test_empty(self):
        assert group_by_depth([]) == []


class TestSyncEngineSetup:
    """Tests for engine construction."""

    def test_source_must_be_directory(self, tmp_path, mock_output):
        config = make_config(tmp_path / "missing", tmp_path)
        with pytest.raises(ConfigurationError, match="source directory"):
            SyncEngine(config, mock_output)

    def test_workdir_must_be_directory(self, tmp_path, mock_output):
        config = make_config(tmp_path, tmp_path / "missing")
        with pytest.raises(ConfigurationError, match="workdir"):
            SyncEngine(config, mock_output)

    def test_invalid_filter(self, tmp_path, mock_output):
        config = make_config(tmp_path, tmp_path, file_filters=["(bad"])
        with pytest.raises(ConfigurationError):
            SyncEngine(config, mock_output)

    def test_state_file_relative_to_workdir(self, dirs, mock_output):
        source, _target, workdir = dirs
        engine = SyncEngine(make_config(source, workdir), mock_output)
        assert engine.state_file_path() == workdir / "state.json"

    def test_state_file_with_variables(self, dirs, mock_output):
        source, target, workdir = dirs
        config = make_config(
            source,
            workdir,
            state_file="$target/state.json",
            variables={"target": str(target)},
        )
        engine = SyncEngine(config, mock_output)
        assert engine.state_file_path() == target / "state.json"

    def test_test_filter(self, dirs, mock_output):
        source, _target, workdir = dirs
        (source / "keep.txt").write_text("x")
        (source / "skip.tmp").write_text("x")
        config = make_config(source, workdir, file_filters=[r"\.tmp$"])

        matched = SyncEngine(config, mock_output).test_filter()

        assert matched == ["skip.tmp"]
        mock_output.info.assert_any_call("matched: skip.tmp")


class TestPhaseOrdering:
    """Tests for the ordering guarantees between and within phases."""

    def _prepare(self, source: Path, workdir: Path) -> list[dict]:
        for name in ("new", "new/sub", "new/sub/deep", "other"):
            (source / name).mkdir()
        for i in range(6):
            (source / f"top{i}.txt").write_text(f"top {i}")
            (source / "new" / "sub" / "deep" / f"f{i}.txt").write_text(f"deep {i}")
        (source / "other" / "o.txt").write_text("o")
        return [
            {"path": "old"},
            {"path": "old/a"},
            {"path": "old/a/b"},
            {"path": "old/a/b/f.txt", "modified": 1, "sha1": "h"},
            {"path": "old/x.txt", "modified": 1, "sha1": "h"},
            {"path": "gone.txt", "modified": 1, "sha1": "h"},
        ]

    def test_phase_barriers_hold_under_concurrency(
        self, dirs, mock_output, recorder
    ):
        """Every interleaving keeps phases and directory levels in order."""
        source, _target, workdir = dirs
        records = self._prepare(source, workdir)
        config = recording_config(source, workdir, threads=8)

        for _ in range(100):
            recorder.events.clear()
            write_state_file(workdir / "state.json", records)

            SyncEngine(config, mock_output).run()

            events = recorder.events
            assert events[0] == ("start", "start_up", "")
            assert events[-1] == ("end", "clean_up", "")

            position = {}
            for index, (kind, name, path) in enumerate(events):
                position[(kind, name, path)] = index

            phase_events = [e for e in events if e[1] in PHASES]
            for later_index, later in enumerate(PHASES[1:], start=1):
                earlier_ends = [
                    position[e]
                    for e in phase_events
                    if e[0] == "end" and PHASES.index(e[1]) < later_index
                ]
                later_starts = [
                    position[e]
                    for e in phase_events
                    if e[0] == "start" and e[1] == later
                ]
                if earlier_ends and later_starts:
                    assert max(earlier_ends) < min(later_starts)

            # Children are deleted before their parents
            assert (
                position[("end", "delete_dir", "old/a/b")]
                < position[("start", "delete_dir", "old/a")]
                < position[("end", "delete_dir", "old/a")]
                < position[("start", "delete_dir", "old")]
            )
            # Parents are created before their children
            assert (
                position[("end", "upload_dir", "new")]
                < position[("start", "upload_dir", "new/sub")]
            )
            assert (
                position[("end", "upload_dir", "new/sub")]
                < position[("start", "upload_dir", "new/sub/deep")]
            )

    def test_each_target_runs_exactly_once(self, dirs, mock_output, recorder):
        source, _target, workdir = dirs
        records = self._prepare(source, workdir)
        write_state_file(workdir / "state.json", records)

        config = recording_config(source, workdir, threads=4)
        report = SyncEngine(config, mock_output).run()

        ends = recorder.names()
        assert len(ends) == len(set(ends))
        assert sorted(p for n, p in ends if n == "delete_file") == [
            "gone.txt",
            "old/a/b/f.txt",
            "old/x.txt",
        ]
        assert report.deleted_files == 3
        assert report.deleted_folders == 3
        assert report.created_folders == 4
        assert report.uploaded_files == 13

    def test_state_after_run_matches_source(self, dirs, mock_output, recorder):
        source, _target, workdir = dirs
        records = self._prepare(source, workdir)
        write_state_file(workdir / "state.json", records)

        SyncEngine(recording_config(source, workdir, threads=8), mock_output).run()

        state = read_state_file(workdir / "state.json")
        assert sorted(r.path for r in state.folders()) == [
            "new",
            "new/sub",
            "new/sub/deep",
            "other",
        ]
        top = state.get("top0.txt")
        assert top.sha1 == sha1_of_file(source / "top0.txt")
        assert "gone.txt" not in state


class TestSyncRun:
    """Tests for complete runs with real commands."""

    def _config(self, source, target, workdir, **kwargs):
        return make_config(
            source,
            workdir,
            variables={"target": str(target)},
            upload_file=[COPY_FILE],
            upload_dir=[MAKE_DIR],
            delete_file=[REMOVE_FILE],
            delete_dir=[REMOVE_DIR],
            **kwargs,
        )

    def test_mirror_and_idempotence(self, dirs, mock_output):
        """Target follows the source across runs and a third run is a no-op."""
        source, target, workdir = dirs
        (source / "a.txt").write_text("A1")
        (source / "docs").mkdir()
        (source / "docs" / "b.txt").write_text("B1")
        (source / "docs" / "old").mkdir()
        config = self._config(source, target, workdir, threads=4)

        report = SyncEngine(config, mock_output).run()
        assert report.state_saved is True
        assert tree_snapshot(target) == tree_snapshot(source)

        (source / "a.txt").write_text("A2 changed")
        (source / "docs" / "b.txt").unlink()
        (source / "docs" / "old").rmdir()
        (source / "docs" / "new").mkdir()
        (source / "docs" / "new" / "c.txt").write_text("C1")

        SyncEngine(config, mock_output).run()
        assert tree_snapshot(target) == tree_snapshot(source)

        before = (workdir / "state.json").read_text()
        with patch("pydiffsync.sync.pipeline.subprocess.run") as mock_run:
            report = SyncEngine(config, mock_output).run()

        mock_run.assert_not_called()
        assert report.differences.has_differences() is False
        assert report.state_saved is False
        assert (workdir / "state.json").read_text() == before

    def test_non_zero_exit_keeps_state_and_runs_clean_up(self, dirs, mock_output):
        source, target, workdir = dirs
        (source / "b.txt").write_text("new")
        write_state_file(
            workdir / "state.json", [{"path": "a.txt", "modified": 1, "sha1": "h"}]
        )
        marker = workdir / "cleaned"
        config = self._config(
            source, target, workdir, clean_up=[touch_command(marker)]
        )
        config.delete_file = [py("import sys; sys.exit(2)")]

        with pytest.raises(NonZeroExitError) as exc_info:
            SyncEngine(config, mock_output).run()

        assert exc_info.value.returncode == 2
        assert marker.exists()
        state = read_state_file(workdir / "state.json")
        assert "a.txt" in state
        assert "b.txt" not in state
        assert not (target / "b.txt").exists()

    def test_vanished_file_still_runs_clean_up_and_saves(self, dirs, mock_output):
        """A file removed after the comparison does not lose earlier progress."""
        source, _target, workdir = dirs
        (source / "a.txt").write_text("x")
        (source / "docs").mkdir()
        marker = workdir / "cleaned"
        config = make_config(
            source,
            workdir,
            start_up=[py("import os, sys; os.remove(sys.argv[1])", "$source/a.txt")],
            clean_up=[touch_command(marker)],
        )

        with pytest.raises(FilesystemError, match="a.txt"):
            SyncEngine(config, mock_output).run()

        assert marker.exists()
        state = read_state_file(workdir / "state.json")
        assert "docs" in state
        assert "a.txt" not in state

    def test_start_up_failure_skips_phases(self, dirs, mock_output):
        source, target, workdir = dirs
        (source / "a.txt").write_text("x")
        marker = workdir / "cleaned"
        config = self._config(
            source,
            target,
            workdir,
            start_up=[py("import sys; sys.exit(5)")],
            clean_up=[touch_command(marker)],
        )

        with pytest.raises(NonZeroExitError):
            SyncEngine(config, mock_output).run()

        assert not (target / "a.txt").exists()
        assert marker.exists()

    def test_hooks_not_run_without_differences(self, dirs, mock_output):
        source, target, workdir = dirs
        marker = workdir / "started"
        config = self._config(
            source, target, workdir, start_up=[touch_command(marker)]
        )

        report = SyncEngine(config, mock_output).run()

        assert report.differences.has_differences() is False
        assert not marker.exists()

    def test_dry_run_executes_nothing(self, dirs, mock_output):
        source, target, workdir = dirs
        (source / "a.txt").write_text("x")
        config = self._config(source, target, workdir)

        with patch("pydiffsync.sync.pipeline.subprocess.run") as mock_run:
            report = SyncEngine(config, mock_output, dry_run=True).run()

        mock_run.assert_not_called()
        assert report.dry_run is True
        assert report.uploaded_files == 1
        assert report.state_saved is False
        assert not (workdir / "state.json").exists()

    def test_state_indent(self, dirs, mock_output):
        source, target, workdir = dirs
        (source / "a.txt").write_text("x")
        config = self._config(source, target, workdir, state_indent=2)

        SyncEngine(config, mock_output).run()

        text = (workdir / "state.json").read_text()
        assert text.startswith("[\n  {")
        assert json.loads(text)[0]["path"] == "a.txt"

    def test_without_state_everything_is_new(self, dirs, mock_output):
        source, target, workdir = dirs
        (source / "a.txt").write_text("x")
        config = self._config(source, target, workdir, use_local_state=False)

        first = SyncEngine(config, mock_output).run()
        second = SyncEngine(config, mock_output).run()

        assert first.uploaded_files == 1
        assert second.uploaded_files == 1
        assert not (workdir / "state.json").exists()

    def test_phases_without_commands_only_update_state(self, dirs, mock_output):
        source, _target, workdir = dirs
        (source / "docs").mkdir()
        (source / "docs" / "a.txt").write_text("x")

        report = SyncEngine(make_config(source, workdir), mock_output).run()

        assert report.created_folders == 1
        assert report.uploaded_files == 1
        state = read_state_file(workdir / "state.json")
        assert sorted(state.paths()) == ["docs", "docs/a.txt"]

    def test_remote_only_local_copy_removal_error(self, dirs, mock_output):
        source, _target, workdir = dirs
        (source / "a.txt").write_text("x")
        config = make_config(
            source, workdir, use_local_state=False, use_remote_state=True
        )

        with patch.object(Path, "unlink", side_effect=PermissionError("denied")):
            with pytest.raises(FilesystemError, match="Cannot remove local state"):
                SyncEngine(config, mock_output).run()

    def test_remote_state(self, dirs, mock_output):
        """Remote state is downloaded before and uploaded after the run."""
        source, target, workdir = dirs
        remote = target / "remote-state.json"
        write_state_file(remote, [{"path": "gone.txt", "modified": 1, "sha1": "h"}])
        (source / "a.txt").write_text("x")
        copy = "import shutil, sys; shutil.copy(sys.argv[1], sys.argv[2])"
        config = make_config(
            source,
            workdir,
            use_local_state=False,
            use_remote_state=True,
            download_state=[py(copy, str(remote), "$workdir/state.json")],
            upload_state=[py(copy, "$workdir/state.json", str(remote))],
        )

        report = SyncEngine(config, mock_output).run()

        assert report.deleted_files == 1
        assert report.state_saved is True
        assert not (workdir / "state.json").exists()
        assert [r["path"] for r in json.loads(remote.read_text())] == ["a.txt"]


class TestOverlayMode:
    """Tests for overlay mode."""

    def _changed_file_setup(self, dirs):
        source, _target, workdir = dirs
        (source / "a.txt").write_text("new content")
        write_state_file(
            workdir / "state.json", [{"path": "a.txt", "modified": 1, "sha1": "h"}]
        )
        return source, workdir

    def test_changed_file_is_deleted_then_uploaded(self, dirs, mock_output, recorder):
        source, workdir = self._changed_file_setup(dirs)

        SyncEngine(recording_config(source, workdir), mock_output).run()

        assert recorder.names() == [
            ("start_up", ""),
            ("delete_file", "a.txt"),
            ("upload_file", "a.txt"),
            ("clean_up", ""),
        ]

    def test_overlay_skips_delete(self, dirs, mock_output, recorder):
        source, workdir = self._changed_file_setup(dirs)
        config = recording_config(source, workdir, overlay_mode=True)

        report = SyncEngine(config, mock_output).run()

        assert ("delete_file", "a.txt") not in recorder.names()
        assert ("upload_file", "a.txt") in recorder.names()
        assert report.deleted_files == 0
        state = read_state_file(workdir / "state.json")
        assert state.get("a.txt").sha1 == sha1_of_file(source / "a.txt")

    def test_overlay_still_deletes_removed_files(self, dirs, mock_output, recorder):
        source, workdir = self._changed_file_setup(dirs)
        write_state_file(
            workdir / "state.json",
            [
                {"path": "a.txt", "modified": 1, "sha1": "h"},
                {"path": "gone.txt", "modified": 1, "sha1": "h"},
            ],
        )
        config = recording_config(source, workdir, overlay_mode=True)

        SyncEngine(config, mock_output).run()

        deleted = [p for n, p in recorder.names() if n == "delete_file"]
        assert deleted == ["gone.txt"]

    def test_failure_in_upload_keeps_earlier_progress(
        self, dirs, mock_output, recorder
    ):
        source, workdir = self._changed_file_setup(dirs)
        (source / "docs").mkdir()
        recorder.failures[("upload_file", "a.txt")] = NonZeroExitError(
            ["upload"], 1
        )

        with pytest.raises(NonZeroExitError):
            SyncEngine(recording_config(source, workdir), mock_output).run()

        state = read_state_file(workdir / "state.json")
        assert "docs" in state
        assert "a.txt" not in state
