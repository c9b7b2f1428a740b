"""
Error types raised by the runner and the stores.

Setup-phase failures are exceptions; a command that exits nonzero is not.
It is recorded on the Run (success=False) and is what stops a pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .model import Run


@dataclass(eq=False)
class ProsiError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - log lines without full tracebacks
    """
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class NotFound(ProsiError):
    """Referenced project, job or run does not exist. Never retried."""


class RunAllocationFailed(ProsiError):
    """The store could not assign the next run ID for a job."""


@dataclass(eq=False)
class PersistFailed(ProsiError):
    """
    The store could not save a finished run.

    The run did execute; it is attached as `run` so callers can still
    inspect it, but later queries may not see it.
    """
    run: Optional[Run] = None


class WorkspaceError(ProsiError):
    """The job workspace could not be created or is not a directory."""


class CaptureSetupFailed(ProsiError):
    """The output capture file could not be set up or read back."""
