"""Console output formatting utilities for prosit."""

from __future__ import annotations

import sys
from typing import Iterable, Optional

from ..model import Job, Project, Run


def _ts(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "-"


def _status(run: Run) -> str:
    if run.canceled:
        return "CANCELED"
    if run.end is None:
        return "RUNNING"
    return "SUCCESS" if run.success else "FAILED"


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_jobs(self, jobs: Iterable[Job]) -> None:
        self.print_header("JOBS")
        for job in jobs:
            where = f"  (in {job.workspace})" if job.workspace else ""
            print(f"  {job.id:>4}  {job.name or '-'}: {job.cmd}{where}")

    def print_job(self, job: Job) -> None:
        print(f"Job {job.id}: {job.name or '-'}")
        print(f"Cmd: {job.cmd}")
        print(f"Workspace: {job.workspace or '(current directory)'}")

    def print_projects(self, projects: Iterable[Project]) -> None:
        self.print_header("PROJECTS")
        for p in projects:
            pipeline = " -> ".join(str(j) for j in p.pipeline) or "(empty)"
            print(f"  {p.id:>4}  {p.name or '-'}: {pipeline}")
            if p.one_off_jobs:
                print(f"        one-off: {', '.join(str(j) for j in sorted(p.one_off_jobs))}")

    def print_run(self, job_id: int, run: Run) -> None:
        """Print the outcome of one run."""
        print(f"\nJOB {job_id} RUN {run.id}: {_status(run)}")
        if run.duration is not None:
            print(f"Duration: {run.duration:.1f}s")

    def print_runs(self, job_id: int, runs: Iterable[Run]) -> None:
        """Print run history, newest first."""
        self.print_header(f"RUNS FOR JOB {job_id}")
        for run in runs:
            print(f"  #{run.id:<4} {_status(run):<9} {_ts(run.start)}  {run.cmd}")

    def print_output(self, run: Run) -> None:
        print(run.output, end="" if run.output.endswith("\n") else "\n")

    def print_results(self, results: list[tuple[int, Run]]) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for job_id, run in results:
            print(f"  job {job_id} run {run.id}: {_status(run)}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
