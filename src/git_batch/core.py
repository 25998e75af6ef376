"""
git-batch: Run common Git commands across many repositories at once.

Repositories are selected with glob patterns (``**`` included). Every match
that git itself reports as part of a working tree gets the chosen command,
one repository after another, with output shown per repository.
"""

from __future__ import annotations

import glob
import logging
import os
import stat
import subprocess
import sys
import time
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from enum import StrEnum
from pathlib import Path
from typing import IO

import typer
from rich.console import Console

from ._version import __version__
from .formatters import OutputFormatter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
GIT_EXECUTABLE = "git"
TIMEOUT_ENV = "GIT_BATCH_TIMEOUT"
EXECUTABLE_ENV = "GIT_BATCH_GIT"

# git prints one of these when a commit has nothing staged.
NOTHING_TO_COMMIT_MARKERS = ("nothing to commit", "nothing added to commit")


# =============================================================================
# Errors
# =============================================================================


class GitBatchError(Exception):
    """Base error for git-batch."""

    exit_code = 1


class UsageError(GitBatchError):
    """Raised when required arguments are missing or malformed."""

    exit_code = 2


class InvalidPatternError(GitBatchError):
    """Raised when neither glob engine accepts a pattern."""

    def __init__(self, pattern: str, cause: Exception):
        super().__init__(f"invalid pattern {pattern!r}: {cause}")
        self.pattern = pattern
        self.cause = cause


class NoRepositoriesFoundError(GitBatchError):
    """Raised when the patterns resolve to zero repositories."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)
        tried = ", ".join(repr(p) for p in self.patterns)
        super().__init__(f"no git repositories found for pattern(s): {tried}")


class ToolNotFoundError(GitBatchError):
    """Raised when the git executable is not on PATH."""

    def __init__(self, executable: str):
        super().__init__(f"{executable!r} not found on PATH")
        self.executable = executable


class WorkingDirectoryError(GitBatchError):
    """Raised when git cannot be started inside a directory."""

    def __init__(self, directory: Path, cause: OSError):
        super().__init__(f"cannot enter {directory}: {cause.strerror or cause}")
        self.directory = directory
        self.cause = cause


class ToolExecutionError(GitBatchError):
    """Raised when the git executable exists but cannot be started."""

    def __init__(self, executable: str, cause: OSError):
        super().__init__(f"cannot run {executable!r}: {cause.strerror or cause}")
        self.executable = executable
        self.cause = cause


class CommandTimeoutError(GitBatchError):
    """Raised when the deadline runs out before or during a git invocation."""

    def __init__(self, command: list[str], budget: float):
        super().__init__(f"{' '.join(command)} timed out (deadline of {budget:g}s exceeded)")
        self.command = command
        self.budget = budget


class GitCommandError(GitBatchError):
    """Raised when a git invocation exits non-zero."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        super().__init__(f"{' '.join(command)} exited with status {returncode}")
        self.command = command
        self.returncode = returncode
        self.output = output


# =============================================================================
# Domain Models
# =============================================================================


class Operation(StrEnum):
    """Git subcommands git-batch can run."""

    STATUS = "status"
    DIFF = "diff"
    PULL = "pull"
    ADD = "add"
    COMMIT = "commit"
    PUSH = "push"


class DeadlineScope(StrEnum):
    """How the timeout budget is shared across a batch."""

    BATCH = "batch"  # default: one deadline for the whole run
    REPOSITORY = "repository"  # fresh deadline for each repository


class OutcomeStatus(StrEnum):
    """Per-repository outcome of an operation."""

    OK = "ok"
    FAILED = "failed"
    NO_OP = "no_op"
    SKIPPED = "skipped"


@dataclass
class OperationResult:
    """Result of running an operation in one repository."""

    path: Path
    name: str
    operation: str
    status: OutcomeStatus
    output: str = ""
    error: str = ""

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.OK, OutcomeStatus.NO_OP)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "operation": self.operation,
            "status": self.status.value,
            "success": self.success,
            "output": self.output,
            "error": self.error,
        }


@dataclass
class BatchSummary:
    """Counts of outcomes for one batch."""

    total: int = 0
    ok: int = 0
    failed: int = 0
    no_op: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_results(cls, results: list[OperationResult]) -> BatchSummary:
        return cls(
            total=len(results),
            ok=sum(1 for r in results if r.status == OutcomeStatus.OK),
            failed=sum(1 for r in results if r.status == OutcomeStatus.FAILED),
            no_op=sum(1 for r in results if r.status == OutcomeStatus.NO_OP),
            skipped=sum(1 for r in results if r.status == OutcomeStatus.SKIPPED),
        )


@dataclass(frozen=True)
class GitInvocation:
    """Arguments for one git call and whether its output must be captured."""

    args: tuple[str, ...]
    capture: bool = False


def build_invocation(
    operation: Operation,
    *,
    pathspec: str | None = None,
    message: str | None = None,
    force: bool = False,
) -> GitInvocation:
    """Build the git argument vector for an operation.

    Raises:
        UsageError: commit without a non-blank message.
    """
    if operation == Operation.STATUS:
        return GitInvocation(("status",))
    if operation == Operation.DIFF:
        return GitInvocation(("--no-pager", "diff"))
    if operation == Operation.PULL:
        return GitInvocation(("pull",))
    if operation == Operation.ADD:
        # "--" keeps a pathspec like "-A" from being read as an option
        return GitInvocation(("add", "--", pathspec or "."))
    if operation == Operation.COMMIT:
        if message is None or not message.strip():
            raise UsageError('commit message required: use -m "message"')
        return GitInvocation(("commit", "-m", message), capture=True)
    if operation == Operation.PUSH:
        return GitInvocation(("push", "--force") if force else ("push",))
    raise UsageError(f"unsupported operation: {operation}")


def is_nothing_to_commit(output: str) -> bool:
    return any(marker in output for marker in NOTHING_TO_COMMIT_MARKERS)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class BatchConfig:
    """Settings threaded from the command line into a batch run."""

    timeout: float = DEFAULT_TIMEOUT
    deadline_scope: DeadlineScope = DeadlineScope.BATCH
    git_executable: str = GIT_EXECUTABLE

    @classmethod
    def from_env(
        cls,
        timeout: float | None = None,
        per_repo: bool = False,
        git_executable: str | None = None,
    ) -> BatchConfig:
        """Build a config; explicit values win over environment variables.

        Environment:
            GIT_BATCH_TIMEOUT: timeout in seconds
            GIT_BATCH_GIT: git executable to run
        """
        if timeout is None:
            raw = os.environ.get(TIMEOUT_ENV)
            if raw:
                try:
                    timeout = float(raw)
                except ValueError:
                    raise UsageError(f"{TIMEOUT_ENV} must be a number of seconds, got {raw!r}")
        if timeout is None:
            timeout = DEFAULT_TIMEOUT
        if timeout <= 0:
            raise UsageError(f"timeout must be positive, got {timeout:g}")

        return cls(
            timeout=timeout,
            deadline_scope=DeadlineScope.REPOSITORY if per_repo else DeadlineScope.BATCH,
            git_executable=git_executable or os.environ.get(EXECUTABLE_ENV) or GIT_EXECUTABLE,
        )


@dataclass
class Deadline:
    """Point in monotonic time after which no git call may run."""

    budget: float
    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        return cls(budget=seconds, expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level git invocations inside a single directory."""

    def __init__(self, repo_path: Path, executable: str = GIT_EXECUTABLE):
        self.repo_path = repo_path
        self.executable = executable

    def _run(
        self,
        args: Iterable[str],
        deadline: Deadline,
        *,
        capture: bool,
        merge_stderr: bool = True,
    ) -> tuple[list[str], subprocess.CompletedProcess]:
        """Run git under the deadline; the child is killed when it runs out."""
        command = [self.executable, *args]
        remaining = deadline.remaining()
        if remaining <= 0:
            raise CommandTimeoutError(command, deadline.budget)

        kwargs: dict = {}
        if capture:
            kwargs = {
                "stdin": subprocess.DEVNULL,
                "stdout": subprocess.PIPE,
                "stderr": subprocess.STDOUT if merge_stderr else subprocess.DEVNULL,
                "text": True,
                "errors": "replace",
            }

        logger.debug("running %s in %s (%.1fs left)", " ".join(command), self.repo_path, remaining)
        try:
            proc = subprocess.run(
                command,
                cwd=self.repo_path,
                timeout=remaining,
                check=False,
                **kwargs,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(command, deadline.budget) from e
        except OSError as e:
            if e.filename is not None and Path(e.filename) == Path(self.repo_path):
                raise WorkingDirectoryError(self.repo_path, e) from e
            if isinstance(e, FileNotFoundError):
                raise ToolNotFoundError(self.executable) from e
            raise ToolExecutionError(self.executable, e) from e
        return command, proc

    def stream(self, args: Iterable[str], deadline: Deadline) -> None:
        """Run git attached to this process's stdin, stdout and stderr."""
        command, proc = self._run(args, deadline, capture=False)
        if proc.returncode != 0:
            raise GitCommandError(command, proc.returncode)

    def capture(self, args: Iterable[str], deadline: Deadline) -> str:
        """Run git and return its combined stdout and stderr."""
        command, proc = self._run(args, deadline, capture=True)
        output = proc.stdout or ""
        if proc.returncode != 0:
            raise GitCommandError(command, proc.returncode, output)
        return output

    def is_inside_work_tree(self, deadline: Deadline) -> bool:
        """Ask git whether this directory belongs to a working tree.

        A directory git cannot be started in (unreadable, removed) is not one.
        """
        try:
            _, proc = self._run(
                ["rev-parse", "--is-inside-work-tree"],
                deadline,
                capture=True,
                merge_stderr=False,
            )
        except WorkingDirectoryError as e:
            logger.debug("skipping %s: %s", self.repo_path, e)
            return False
        return proc.returncode == 0 and proc.stdout.strip() == "true"


# =============================================================================
# Repository
# =============================================================================


class GitRepository:
    """High-level interface for a single repository directory."""

    def __init__(self, path: Path, executable: str = GIT_EXECUTABLE):
        self.path = path
        self.name = path.name
        self.ops = GitOperations(path, executable)

    def __repr__(self) -> str:
        return f"GitRepository({str(self.path)!r})"

    def execute(
        self,
        operation: Operation,
        invocation: GitInvocation,
        deadline: Deadline,
    ) -> OperationResult:
        """Run an invocation here; git failures become a failed result."""
        result = OperationResult(
            path=self.path,
            name=self.name,
            operation=operation.value,
            status=OutcomeStatus.OK,
        )
        try:
            if invocation.capture:
                result.output = self.ops.capture(invocation.args, deadline)
            else:
                self.ops.stream(invocation.args, deadline)
        except GitCommandError as e:
            result.output = e.output
            if operation == Operation.COMMIT and is_nothing_to_commit(e.output):
                logger.debug("nothing to commit in %s", self.path)
                result.status = OutcomeStatus.NO_OP
            else:
                result.status = OutcomeStatus.FAILED
                result.error = str(e)
        except GitBatchError as e:
            result.status = OutcomeStatus.FAILED
            result.error = str(e)
        return result


# =============================================================================
# Repository Discovery
# =============================================================================


def expand_pattern(pattern: str) -> list[str]:
    """Expand a glob pattern relative to the current directory.

    ``**`` matches zero or more directory levels. Patterns the recursive
    engine refuses, such as absolute paths left over from a shell that already
    expanded the glob, go through the plain :mod:`glob` engine instead.

    Raises:
        InvalidPatternError: both engines rejected the pattern.
    """
    try:
        matches = [str(p) for p in Path().glob(pattern)]
    except (ValueError, NotImplementedError) as primary:
        logger.debug("recursive glob rejected %r (%s), falling back", pattern, primary)
        try:
            matches = glob.glob(pattern)
        except (ValueError, OSError) as e:
            raise InvalidPatternError(pattern, primary) from e
    return sorted(matches, key=lambda m: Path(m).parts)


def resolve_candidate(candidate: str) -> Path | None:
    """Turn a glob match into an absolute directory, or None if unreadable.

    A file resolves to the directory containing it.
    """
    try:
        path = Path(candidate).resolve()
        mode = path.stat().st_mode
    except (OSError, RuntimeError) as e:
        logger.debug("skipping %s: %s", candidate, e)
        return None
    return path if stat.S_ISDIR(mode) else path.parent


class RepositoryResolver:
    """Resolve user patterns into an ordered, de-duplicated repository list."""

    def __init__(self, config: BatchConfig | None = None):
        self.config = config or BatchConfig()
        self._probed: dict[Path, bool] = {}

    def is_repository(self, directory: Path, deadline: Deadline) -> bool:
        """Probe a directory once per resolver."""
        if directory not in self._probed:
            ops = GitOperations(directory, self.config.git_executable)
            self._probed[directory] = ops.is_inside_work_tree(deadline)
            logger.debug("probe %s -> %s", directory, self._probed[directory])
        return self._probed[directory]

    def collect(self, patterns: list[str]) -> list[GitRepository]:
        """Collect repositories matched by patterns.

        Order is first pattern first, then match order within the pattern.

        Raises:
            InvalidPatternError: a pattern could not be parsed.
            NoRepositoriesFoundError: nothing matched resolved to a repository.
            ToolNotFoundError: git is not installed.
            ToolExecutionError: git exists but cannot be started.
        """
        deadline = Deadline.after(self.config.timeout)
        seen: set[Path] = set()
        repos: list[GitRepository] = []

        for pattern in patterns:
            for match in expand_pattern(pattern):
                directory = resolve_candidate(match)
                if directory is None or directory in seen:
                    continue
                if self.is_repository(directory, deadline):
                    seen.add(directory)
                    repos.append(GitRepository(directory, self.config.git_executable))

        if not repos:
            raise NoRepositoriesFoundError(patterns)
        return repos


# =============================================================================
# Batch Runner
# =============================================================================


class BatchRunner:
    """Run one operation across repositories, strictly in order."""

    def __init__(
        self,
        repositories: list[GitRepository],
        config: BatchConfig,
        formatter: OutputFormatter,
    ):
        self.repositories = repositories
        self.config = config
        self.formatter = formatter

    def _skip(self, remaining: list[GitRepository], operation: Operation) -> list[OperationResult]:
        self.formatter.print_skipped(len(remaining), self.config.timeout)
        return [
            OperationResult(
                path=repo.path,
                name=repo.name,
                operation=operation.value,
                status=OutcomeStatus.SKIPPED,
            )
            for repo in remaining
        ]

    def run(self, operation: Operation, invocation: GitInvocation) -> list[OperationResult]:
        """Execute the invocation in each repository.

        A failing repository never stops the batch. Once the batch deadline
        has passed, the repositories not yet started are marked skipped.
        """
        results: list[OperationResult] = []
        batch_deadline = Deadline.after(self.config.timeout)

        for index, repo in enumerate(self.repositories):
            if self.config.deadline_scope == DeadlineScope.REPOSITORY:
                deadline = Deadline.after(self.config.timeout)
            else:
                deadline = batch_deadline
            if deadline.expired:
                results.extend(self._skip(self.repositories[index:], operation))
                break

            self.formatter.print_separator(repo.path)
            result = repo.execute(operation, invocation, deadline)
            self.formatter.print_result(result)
            results.append(result)

        return results


def confirm(stream: IO[str] | None = None) -> bool:
    """Read one line and accept only "y" or "yes", case-insensitively."""
    line = (stream or sys.stdin).readline()
    return line.strip().lower() in ("y", "yes")


# =============================================================================
# CLI Application
# =============================================================================


PATTERNS_HELP = "Glob patterns selecting repository directories (supports **)"

app = typer.Typer(
    name="git-batch",
    help="Run common Git commands across many repositories (supports globs).",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-batch {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def get_console_and_formatter(json_output: bool = False) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(soft_wrap=True, highlight=False)
    err_console = Console(stderr=True, soft_wrap=True, highlight=False)
    return console, OutputFormatter(console, err_console, use_json=json_output)


def fail(formatter: OutputFormatter, error: GitBatchError):
    """Report an invocation-level error and exit non-zero."""
    formatter.print_fatal(error)
    raise typer.Exit(error.exit_code)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        "-t",
        help=f"Seconds allowed for the whole batch (default {DEFAULT_TIMEOUT:g}, env {TIMEOUT_ENV})",
    ),
    per_repo_timeout: bool = typer.Option(
        False,
        "--per-repo-timeout",
        help="Give each repository its own timeout instead of sharing one",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
):
    """git-batch: Run common Git commands across many repositories."""
    configure_logging(verbose)
    try:
        ctx.obj = BatchConfig.from_env(timeout=timeout, per_repo=per_repo_timeout)
    except GitBatchError as e:
        fail(get_console_and_formatter()[1], e)


def _config(ctx: typer.Context) -> BatchConfig:
    return ctx.obj if isinstance(ctx.obj, BatchConfig) else BatchConfig.from_env()


def _collect(
    patterns: list[str], config: BatchConfig, formatter: OutputFormatter
) -> list[GitRepository]:
    try:
        return RepositoryResolver(config).collect(patterns)
    except GitBatchError as e:
        fail(formatter, e)


def _run_batch(
    ctx: typer.Context,
    operation: Operation,
    patterns: list[str],
    *,
    confirm_push: bool = False,
    **params,
) -> None:
    console, formatter = get_console_and_formatter()
    config = _config(ctx)
    try:
        invocation = build_invocation(operation, **params)
    except GitBatchError as e:
        fail(formatter, e)

    repos = _collect(patterns, config, formatter)

    if confirm_push:
        formatter.confirm_push(len(repos))
        if not confirm():
            formatter.print_aborted()
            return

    results = BatchRunner(repos, config, formatter).run(operation, invocation)
    formatter.print_summary(operation.value, BatchSummary.from_results(results))


@app.command()
def status(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
):
    """Run git status in matching repositories."""
    _run_batch(ctx, Operation.STATUS, patterns)


@app.command()
def diff(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
):
    """Run git --no-pager diff in matching repositories."""
    _run_batch(ctx, Operation.DIFF, patterns)


@app.command()
def pull(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
):
    """Run git pull in matching repositories."""
    _run_batch(ctx, Operation.PULL, patterns)


@app.command()
def add(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
    pathspec: str = typer.Option(
        ".",
        "--pathspec",
        "-p",
        help="Pathspec to stage (defaults to '.')",
    ),
):
    """Run git add -- <pathspec> in matching repositories."""
    _run_batch(ctx, Operation.ADD, patterns, pathspec=pathspec)


@app.command()
def commit(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
    message: str = typer.Option(
        ...,
        "--message",
        "-m",
        help="Commit message (required)",
    ),
):
    """Run git commit with the given message; repos with nothing to commit are skipped."""
    _run_batch(ctx, Operation.COMMIT, patterns, message=message)


@app.command()
def push(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force push (use with caution)",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt",
    ),
):
    """Run git push in matching repositories (asks for confirmation)."""
    _run_batch(ctx, Operation.PUSH, patterns, confirm_push=not yes, force=force)


@app.command("list")
def list_repos(
    ctx: typer.Context,
    patterns: list[str] = typer.Argument(..., help=PATTERNS_HELP),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """List the repositories the patterns resolve to, without running git commands."""
    _, formatter = get_console_and_formatter(json_output)
    repos = _collect(patterns, _config(ctx), formatter)
    formatter.print_repo_list(repos)
