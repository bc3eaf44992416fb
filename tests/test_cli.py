"""Unit tests for the pydiffsync CLI commands."""

import json
import sys
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from pydiffsync.cli import main


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def project(tmp_path):
    """Source tree, working directory and a config file writer."""
    source = tmp_path / "public"
    source.mkdir()
    (source / "a.txt").write_text("hello")
    (source / "docs").mkdir()
    workdir = tmp_path / "work"
    workdir.mkdir()

    def write_config(**values) -> Path:
        data = {
            "source_dir": str(source),
            "command_workdir": str(workdir),
            "state_file": "state.json",
        }
        data.update(values)
        config_file = tmp_path / "deploy.yaml"
        config_file.write_text(yaml.safe_dump(data))
        return config_file

    return source, workdir, write_config


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "PyDiffSync" in result.output
        assert "sync" in result.output
        assert "diff" in result.output
        assert "test-filter" in result.output

    def test_sync_help(self, runner):
        result = runner.invoke(main, ["sync", "--help"])
        assert result.exit_code == 0
        assert "--dry-run" in result.output
        assert "--show-output" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_missing_config(self, runner, tmp_path):
        """Test sync with a config file that does not exist."""
        result = runner.invoke(main, ["sync", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_invalid_source_dir(self, runner, project, tmp_path):
        _source, _workdir, write_config = project
        config_file = write_config(source_dir=str(tmp_path / "nope"))

        result = runner.invoke(main, ["sync", str(config_file)])

        assert result.exit_code == 1
        assert "Sync failed" in result.output

    def test_sync_then_in_sync(self, runner, project):
        """Test a first run records the state and a second run has no work."""
        _source, workdir, write_config = project
        config_file = write_config()

        result = runner.invoke(main, ["sync", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "Sync Complete" in result.output
        assert (workdir / "state.json").exists()

        result = runner.invoke(main, ["sync", str(config_file)])
        assert result.exit_code == 0
        assert "No changes needed" in result.output

    def test_failing_command(self, runner, project):
        _source, workdir, write_config = project
        config_file = write_config(
            upload_file=[[sys.executable, "-c", "import sys; sys.exit(3)"]]
        )

        result = runner.invoke(main, ["sync", str(config_file)])

        assert result.exit_code == 1
        assert "Sync failed" in result.output
        state = json.loads((workdir / "state.json").read_text())
        assert state == [{"path": "docs"}]

    def test_dry_run(self, runner, project):
        _source, workdir, write_config = project
        config_file = write_config(upload_file=["false"])

        result = runner.invoke(main, ["sync", str(config_file), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry Run Complete" in result.output
        assert not (workdir / "state.json").exists()

    def test_json_output(self, runner, project):
        _source, _workdir, write_config = project
        config_file = write_config()

        result = runner.invoke(main, ["--json", "--quiet", "sync", str(config_file)])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["uploaded_files"] == 1
        assert data["created_folders"] == 1
        assert data["differences"]["new_files"] == ["a.txt"]


class TestDiffCommand:
    """Tests for the diff command."""

    def test_lists_differences(self, runner, project):
        _source, workdir, write_config = project
        (workdir / "state.json").write_text(
            json.dumps([{"path": "old.txt", "modified": 1, "sha1": "h"}])
        )
        config_file = write_config()

        result = runner.invoke(main, ["diff", str(config_file)])

        assert result.exit_code == 0
        assert "- file: old.txt" in result.output
        assert "+ folder: docs" in result.output
        assert "+ file: a.txt" in result.output

    def test_quiet_suppresses_listing(self, runner, project):
        _source, _workdir, write_config = project
        config_file = write_config()

        result = runner.invoke(main, ["--quiet", "diff", str(config_file)])

        assert result.exit_code == 0
        assert "+ file: a.txt" not in result.output

    def test_diff_runs_no_commands(self, runner, project, tmp_path):
        _source, _workdir, write_config = project
        marker = tmp_path / "marker"
        config_file = write_config(
            start_up=[[sys.executable, "-c", f"open({str(marker)!r}, 'w')"]]
        )

        result = runner.invoke(main, ["diff", str(config_file)])

        assert result.exit_code == 0
        assert not marker.exists()

    def test_json(self, runner, project):
        _source, _workdir, write_config = project
        config_file = write_config()

        result = runner.invoke(main, ["--json", "--quiet", "diff", str(config_file)])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["new_folders"] == ["docs"]
        assert data["old_files"] == []


class TestTestFilterCommand:
    """Tests for the test-filter command."""

    def test_lists_matches(self, runner, project):
        source, _workdir, write_config = project
        (source / "cache.tmp").write_text("x")
        config_file = write_config(file_filters=[r"\.tmp$"])

        result = runner.invoke(main, ["test-filter", str(config_file)])

        assert result.exit_code == 0
        assert "matched: cache.tmp" in result.output
        assert "a.txt" not in result.output

    def test_invalid_pattern(self, runner, project):
        _source, _workdir, write_config = project
        config_file = write_config(file_filters=["(unclosed"])

        result = runner.invoke(main, ["test-filter", str(config_file)])

        assert result.exit_code == 1
        assert "Invalid file filter" in result.output
