"""CLI interface for pydiffsync."""

import logging
from typing import Any

import click

from .config import AppConfig, load_config
from .exceptions import DiffSyncError
from .output import OutputFormatter
from .sync import SyncEngine

logger = logging.getLogger(__name__)


def _configure_command_logging(debug: bool, dry_run: bool, show_output: bool) -> None:
    """Make command lines and command output visible.

    Pipelines report executed command lines and captured output at INFO
    level; they are shown whenever one of the related flags is set.
    """
    if debug or dry_run or show_output:
        package_logger = logging.getLogger("pydiffsync")
        if package_logger.getEffectiveLevel() > logging.INFO:
            package_logger.setLevel(logging.INFO)


def _load(ctx: Any, config_file: str) -> AppConfig:
    out: OutputFormatter = ctx.obj["out"]
    try:
        return load_config(config_file)
    except DiffSyncError as e:
        out.error(f"Error: {e}")
        ctx.exit(1)
        raise  # Unreachable, but helps type checker


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pydiffsync")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """PyDiffSync - Deploy what changed in a directory with your own commands."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pydiffsync").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING, format="%(message)s")


@main.command()
@click.argument("config_file", type=click.Path())
@click.option(
    "--debug", "-d", is_flag=True, help="Print every command line before it runs"
)
@click.option(
    "--dry-run", is_flag=True, help="Show the commands without executing them"
)
@click.option(
    "--show-output", is_flag=True, help="Print the output of successful commands"
)
@click.pass_context
def sync(
    ctx: Any, config_file: str, debug: bool, dry_run: bool, show_output: bool
) -> None:
    """Synchronize the source directory described by CONFIG_FILE.

    Compares the source directory with the recorded state, runs the
    configured commands for every deleted and new file or directory and
    updates the state file.

    Examples:
        pydiffsync sync deploy.yaml
        pydiffsync sync deploy.yaml --dry-run     # Preview the commands
        pydiffsync sync deploy.yaml -d            # Echo every command line
    """
    out: OutputFormatter = ctx.obj["out"]
    config = _load(ctx, config_file)
    _configure_command_logging(debug, dry_run, show_output)

    try:
        engine = SyncEngine(
            config,
            output=out,
            debug=debug,
            dry_run=dry_run,
            show_output=show_output,
        )
        report = engine.run()
    except DiffSyncError as e:
        out.error(f"Sync failed: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(report.to_dict())
        return

    if not report.differences.has_differences():
        out.success("No changes needed - everything is in sync!")
        return

    out.print_summary(
        "Dry Run Complete" if dry_run else "Sync Complete",
        [
            ("Deleted files", report.deleted_files),
            ("Deleted folders", report.deleted_folders),
            ("Created folders", report.created_folders),
            ("Uploaded files", report.uploaded_files),
            ("State saved", "yes" if report.state_saved else "no"),
        ],
    )


@main.command()
@click.argument("config_file", type=click.Path())
@click.pass_context
def diff(ctx: Any, config_file: str) -> None:
    """Show the differences without running any command.

    The state is loaded the same way a sync run loads it, so a remote
    state is downloaded with the configured download_state commands.
    """
    out: OutputFormatter = ctx.obj["out"]
    config = _load(ctx, config_file)

    try:
        engine = SyncEngine(config, output=out)
        differences = engine.compare(engine.load_state())
    except DiffSyncError as e:
        out.error(f"Error: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(differences.to_dict())
        return

    for label, paths in (
        ("- file", differences.old_files),
        ("- folder", differences.old_folders),
        ("+ folder", differences.new_folders),
        ("+ file", differences.new_files),
    ):
        for path in paths:
            out.print(f"{label}: {path}")
    out.print()
    out.info(differences.summary())


@main.command("test-filter")
@click.argument("config_file", type=click.Path())
@click.pass_context
def test_filter(ctx: Any, config_file: str) -> None:
    """List every path of the source directory matched by a file filter."""
    out: OutputFormatter = ctx.obj["out"]
    config = _load(ctx, config_file)

    try:
        engine = SyncEngine(config, output=out)
        matched = engine.test_filter()
    except DiffSyncError as e:
        out.error(f"Error: {e}")
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(matched)


if __name__ == "__main__":
    main()
