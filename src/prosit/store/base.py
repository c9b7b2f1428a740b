from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from ..model import Job, Project, Run


class Store(ABC):
    """
    Persists and retrieves projects, jobs and their runs.

    The Runner only holds IDs; the store owns the canonical copies. Every
    getter returns a copy, and lookups of missing entities raise NotFound.
    Implementations must be safe to call from several threads at once.
    """

    # Project methods
    @abstractmethod
    def get_projects(self) -> List[Project]: ...

    @abstractmethod
    def get_project(self, project_id: int) -> Project: ...

    @abstractmethod
    def new_project(self, project: Project) -> Project:
        """Store a new project and return it with its assigned ID."""

    @abstractmethod
    def update_project(self, project: Project) -> None: ...

    @abstractmethod
    def delete_project(self, project_id: int) -> None: ...

    # Job methods
    @abstractmethod
    def get_jobs(self) -> List[Job]: ...

    @abstractmethod
    def get_job(self, job_id: int) -> Job: ...

    @abstractmethod
    def new_job(self, job: Job) -> Job:
        """Store a new job with an empty run history and return it with its ID."""

    @abstractmethod
    def update_job(self, job: Job) -> None: ...

    @abstractmethod
    def delete_job(self, job_id: int) -> None:
        """Delete a job together with its run history."""

    # Job run methods
    @abstractmethod
    def get_run_for_job(self, job_id: int, run_id: int) -> Run:
        """Return run `run_id` (1-based) of a job."""

    @abstractmethod
    def get_n_runs_for_job(self, job_id: int, n: int) -> List[Run]:
        """Return up to `n` most recent runs of a job, newest first."""

    @abstractmethod
    def new_run_for_job(self, job_id: int) -> Run:
        """Allocate the next run slot for a job, stamping its start time."""

    @abstractmethod
    def update_run_for_job(self, job_id: int, run: Run) -> None:
        """Overwrite an allocated run with its final state."""
