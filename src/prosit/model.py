# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A named shell command with an optional working directory."""
    name: str = ""

    # The command to be run, through the configured shell (/bin/sh -c by default).
    cmd: str = ""

    # Where the command runs. If empty, it runs in the current working
    # directory of the process; otherwise the directory is created if missing.
    workspace: str = ""

    id: int = 0


@dataclass
class Project:
    """
    A software project: an ordered pipeline of jobs plus jobs that can be
    run on their own.

    `pipeline` may name the same job more than once.
    """
    name: str = ""
    pipeline: List[int] = field(default_factory=list)
    one_off_jobs: Set[int] = field(default_factory=set)

    id: int = 0


@dataclass
class Run:
    """One execution of a Job. IDs are 1-based and sequential per job."""
    id: int = 0
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    cmd: str = ""

    # The combined output to standard out and standard err.
    output: str = ""

    # A Run is successful if it was not canceled and the exit code is 0.
    success: bool = False
    canceled: bool = False

    @property
    def duration(self) -> Optional[float]:
        if self.start is None or self.end is None:
            return None
        return (self.end - self.start).total_seconds()
