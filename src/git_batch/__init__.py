"""git-batch: Run common Git commands across many repositories at once."""

from ._version import __version__
from .core import (
    DEFAULT_TIMEOUT,
    BatchConfig,
    BatchRunner,
    BatchSummary,
    CommandTimeoutError,
    Deadline,
    DeadlineScope,
    GitBatchError,
    GitCommandError,
    GitInvocation,
    GitOperations,
    GitRepository,
    InvalidPatternError,
    NoRepositoriesFoundError,
    Operation,
    OperationResult,
    OutcomeStatus,
    RepositoryResolver,
    ToolExecutionError,
    ToolNotFoundError,
    UsageError,
    WorkingDirectoryError,
    app,
    build_invocation,
    confirm,
    expand_pattern,
    resolve_candidate,
)
from .formatters import OutputFormatter

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Configuration
    "DEFAULT_TIMEOUT",
    "BatchConfig",
    "Deadline",
    "DeadlineScope",
    # Models
    "BatchSummary",
    "GitInvocation",
    "Operation",
    "OperationResult",
    "OutcomeStatus",
    # Errors
    "CommandTimeoutError",
    "GitBatchError",
    "GitCommandError",
    "InvalidPatternError",
    "NoRepositoriesFoundError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "UsageError",
    "WorkingDirectoryError",
    # Operations
    "BatchRunner",
    "GitOperations",
    "GitRepository",
    "RepositoryResolver",
    # Functions
    "build_invocation",
    "confirm",
    "expand_pattern",
    "resolve_candidate",
    # Formatters
    "OutputFormatter",
]
