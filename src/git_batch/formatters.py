"""Console output for batch runs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from .core import BatchSummary, GitRepository, OperationResult


def unique_display_names(paths: list[Path]) -> dict[Path, str]:
    """Map each path to its shortest trailing component run that no other path shares.

    Repositories with distinct folder names keep just that name; two `app`
    checkouts become `a/app` and `b/app`.
    """
    names: dict[Path, str] = {}
    for path in paths:
        depth = 1
        while depth < len(path.parts):
            suffix = path.parts[-depth:]
            if sum(1 for other in paths if other.parts[-depth:] == suffix) == 1:
                break
            depth += 1
        names[path] = "/".join(path.parts[-depth:])
    return names


class OutputFormatter:
    """Format batch output: stdout for results, stderr for diagnostics."""

    def __init__(
        self,
        console: Console,
        err_console: Console | None = None,
        use_json: bool = False,
    ):
        self.console = console
        self.err_console = err_console or Console(stderr=True, soft_wrap=True, highlight=False)
        self.use_json = use_json

    def flush(self):
        """Flush both streams before a child process writes to them directly."""
        self.console.file.flush()
        self.err_console.file.flush()

    def print_separator(self, path: Path):
        self.console.print(f"\n[bold cyan]---- {escape(str(path))} ----[/]")
        self.flush()

    def print_output(self, output: str):
        """Echo captured git output verbatim."""
        if output:
            self.console.out(output, end="", highlight=False)

    def print_result(self, result: OperationResult):
        self.print_output(result.output)
        if result.error:
            self.err_console.print(
                f"[red]error in {escape(str(result.path))}:[/] {escape(result.error)}"
            )
        self.flush()

    def print_skipped(self, count: int, budget: float):
        self.err_console.print(
            f"[yellow]deadline of {budget:g}s exceeded; "
            f"skipping {count} remaining repositor{'y' if count == 1 else 'ies'}[/]"
        )

    def print_summary(self, operation: str, summary: BatchSummary):
        """Print one line with per-status counts."""
        parts = [f"[green]{summary.ok} ok[/]"]
        parts.append(f"[red]{summary.failed} failed[/]" if summary.failed else "0 failed")
        parts.append(f"{summary.no_op} no-op")
        parts.append(
            f"[yellow]{summary.skipped} skipped[/]" if summary.skipped else "0 skipped"
        )
        self.console.print(f"\n[bold]{operation}:[/] " + ", ".join(parts))

    def confirm_push(self, count: int):
        self.console.print(
            f"About to push to {count} repositories. This will contact remotes and "
            "may change remote history. Continue? (y/N): ",
            end="",
            markup=False,
        )
        self.flush()

    def print_aborted(self):
        self.console.print("aborted")

    def print_fatal(self, error: Exception):
        self.err_console.print(f"[red]Error:[/] {escape(str(error))}")

    def print_repo_list(self, repos: list[GitRepository]):
        """Print resolved repositories, one path per line or as JSON."""
        if self.use_json:
            display_names = unique_display_names([r.path for r in repos])
            output = {
                "count": len(repos),
                "repositories": [
                    {
                        "path": str(r.path),
                        "name": display_names.get(r.path, r.name),
                    }
                    for r in repos
                ],
            }
            self.console.out(json.dumps(output, indent=2), highlight=False)
        else:
            for repo in repos:
                self.console.out(str(repo.path), highlight=False)
