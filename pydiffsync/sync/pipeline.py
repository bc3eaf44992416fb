"""Execution of external command pipelines.

A pipeline is the ordered list of command-line templates configured for
one lifecycle point (``upload_file``, ``delete_dir``, ``start_up``...).
Every template is expanded with the target's variables and run as a
separate process; the pipeline stops at the first failing step.
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from ..exceptions import NonZeroExitError, PipelineError, SignalTerminatedError
from ..utils import decode_output, format_output_blocks
from .variables import VariableSet

logger = logging.getLogger(__name__)

# A first token starting with this marker disables re-tokenization
RAW_MARKER = "+"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed pipeline step."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    executed: bool = True
    """False for the no-prior-step marker and for dry-run steps"""

    def as_variables(self) -> dict[str, str]:
        """Variables exposing this result to the next step's templates."""
        if not self.executed:
            return {"last_code": "", "last_stdout": "", "last_stderr": ""}
        return {
            "last_code": str(self.returncode),
            "last_stdout": self.stdout,
            "last_stderr": self.stderr,
        }


NO_PRIOR_STEP = StepResult(argv=(), returncode=0, executed=False)


def tokenize(template: list[str], variables: VariableSet) -> list[str]:
    """Expand a command-line template into an argument vector.

    Every token is substituted. If the first token starts with
    ``RAW_MARKER`` the marker is stripped and the tokens are used as they
    are. Otherwise a template that is a single token is split with shell
    quoting rules; longer templates are used as they are.

    Examples:
        >>> tokenize(["scp '$path' host:"], VariableSet({"path": "a b"}))
        ['scp', 'a b', 'host:']
        >>> tokenize(["+echo a   b"], VariableSet())
        ['echo a   b']
    """
    tokens = [variables.apply(token) for token in template]
    if not tokens:
        return []

    if tokens[0].startswith(RAW_MARKER):
        tokens[0] = tokens[0][len(RAW_MARKER) :]
        return tokens

    if len(tokens) == 1:
        return shlex.split(tokens[0])
    return tokens


def build_environment(workdir: Path) -> dict[str, str]:
    """Copy of the process environment with ``workdir`` prepended to PATH."""
    env = dict(os.environ)
    current = env.get("PATH", "")
    env["PATH"] = str(workdir) + (os.pathsep + current if current else "")
    return env


@dataclass
class CommandStep:
    """One built, ready-to-run pipeline step."""

    argv: list[str]
    workdir: Path
    env: dict[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        template: list[str],
        variables: VariableSet,
        workdir: Path,
        previous: StepResult = NO_PRIOR_STEP,
    ) -> "CommandStep":
        """Build a step from a template.

        Args:
            template: Command-line template tokens
            variables: Variables of the target
            workdir: Working directory of the process
            previous: Result of the previous step, ``NO_PRIOR_STEP`` for
                the first step

        Raises:
            PipelineError: If the template expands to an empty command
        """
        scope = variables.clone()
        for name, value in previous.as_variables().items():
            scope.add(name, value)

        try:
            argv = tokenize(template, scope)
        except ValueError as e:
            raise PipelineError(f"Cannot parse command line {template}: {e}") from e
        if not argv or not argv[0]:
            raise PipelineError(f"Empty command line: {template}")

        return cls(argv=argv, workdir=workdir, env=build_environment(workdir))

    def execute(self, show_output: bool = False, dry_run: bool = False) -> StepResult:
        """Run the step.

        Args:
            show_output: Log captured output of successful steps
            dry_run: Do not spawn anything, report success

        Returns:
            StepResult of the process

        Raises:
            SignalTerminatedError: If the process was killed by a signal
            NonZeroExitError: If the process exited with a non-zero code
            PipelineError: If the process could not be started
        """
        if dry_run:
            return StepResult(argv=tuple(self.argv), returncode=0, executed=False)

        try:
            completed = subprocess.run(
                self.argv,
                cwd=self.workdir,
                env=self.env,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise PipelineError(
                f"Failed to execute command line {self.argv}: {e}", argv=self.argv
            ) from e

        stdout = decode_output(completed.stdout or b"")
        stderr = decode_output(completed.stderr or b"")
        code = completed.returncode

        if code < 0:
            logger.error("Command terminated by signal %d: %s", -code, self.argv)
            raise SignalTerminatedError(self.argv, -code, stdout, stderr)

        if code != 0:
            blocks = format_output_blocks(stdout, stderr)
            logger.error(
                "Command failed with exit code %d\ncommand-line : %s%s",
                code,
                self.argv,
                "\n" + blocks if blocks else "",
            )
            raise NonZeroExitError(self.argv, code, stdout, stderr)

        if show_output:
            blocks = format_output_blocks(stdout, stderr)
            if blocks:
                logger.info("%s", blocks)

        return StepResult(
            argv=tuple(self.argv), returncode=code, stdout=stdout, stderr=stderr
        )


class CommandPipeline:
    """Sequential list of command-line templates run for one target."""

    def __init__(
        self,
        templates: list[list[str]],
        workdir: Path,
        debug: bool = False,
        show_output: bool = False,
        dry_run: bool = False,
    ):
        """Initialize the pipeline.

        Args:
            templates: Command-line templates, one per step
            workdir: Working directory of every spawned process
            debug: Log every command line before it runs
            show_output: Log captured output of successful steps
            dry_run: Build and log the steps without spawning anything
        """
        self.templates = templates
        self.workdir = Path(workdir)
        self.debug = debug
        self.show_output = show_output
        self.dry_run = dry_run

    def __bool__(self) -> bool:
        return bool(self.templates)

    def run(self, variables: VariableSet) -> StepResult:
        """Run every step for one target.

        Args:
            variables: Variables of the target

        Returns:
            Result of the last step (``NO_PRIOR_STEP`` for an empty pipeline)

        Raises:
            PipelineError: On the first failing step; later steps are not run
        """
        result = NO_PRIOR_STEP
        for template in self.templates:
            step = CommandStep.build(template, variables, self.workdir, result)
            if self.dry_run:
                logger.info("[dry-run] > %s", step.argv)
            elif self.debug:
                logger.info("> %s", step.argv)
            result = step.execute(show_output=self.show_output, dry_run=self.dry_run)
        return result
