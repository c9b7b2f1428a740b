from __future__ import annotations

import copy
import itertools
import threading
from typing import Dict, List

from ..errors import NotFound
from ..model import Job, Project, Run, utcnow
from .base import Store


class MemoryStore(Store):
    """
    Thread-safe in-memory store.

    `_lock` guards the project/job maps. Each job's run history has its
    own lock so recording runs for different jobs never contends.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._projects: Dict[int, Project] = {}
        self._jobs: Dict[int, Job] = {}
        self._runs: Dict[int, List[Run]] = {}
        self._run_locks: Dict[int, threading.Lock] = {}
        self._project_ids = itertools.count(1)
        self._job_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_projects(self) -> List[Project]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._projects.values()]

    def get_project(self, project_id: int) -> Project:
        with self._lock:
            try:
                return copy.deepcopy(self._projects[project_id])
            except KeyError:
                raise NotFound("project not found", {"project": project_id}) from None

    def new_project(self, project: Project) -> Project:
        with self._lock:
            stored = copy.deepcopy(project)
            stored.id = next(self._project_ids)
            self._projects[stored.id] = stored
            return copy.deepcopy(stored)

    def update_project(self, project: Project) -> None:
        with self._lock:
            if project.id not in self._projects:
                raise NotFound("project not found", {"project": project.id})
            self._projects[project.id] = copy.deepcopy(project)

    def delete_project(self, project_id: int) -> None:
        with self._lock:
            if self._projects.pop(project_id, None) is None:
                raise NotFound("project not found", {"project": project_id})

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def get_jobs(self) -> List[Job]:
        with self._lock:
            return [copy.copy(j) for j in self._jobs.values()]

    def get_job(self, job_id: int) -> Job:
        with self._lock:
            try:
                return copy.copy(self._jobs[job_id])
            except KeyError:
                raise NotFound("job not found", {"job": job_id}) from None

    def new_job(self, job: Job) -> Job:
        with self._lock:
            stored = copy.copy(job)
            stored.id = next(self._job_ids)
            self._jobs[stored.id] = stored
            self._runs[stored.id] = []
            self._run_locks[stored.id] = threading.Lock()
            return copy.copy(stored)

    def update_job(self, job: Job) -> None:
        with self._lock:
            if job.id not in self._jobs:
                raise NotFound("job not found", {"job": job.id})
            self._jobs[job.id] = copy.copy(job)

    def delete_job(self, job_id: int) -> None:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise NotFound("job not found", {"job": job_id})
            self._runs.pop(job_id, None)
            self._run_locks.pop(job_id, None)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _history(self, job_id: int):
        """Return (lock, runs) for a job; raises NotFound for unknown jobs."""
        with self._lock:
            if job_id not in self._jobs:
                raise NotFound("job not found", {"job": job_id})
            return self._run_locks[job_id], self._runs[job_id]

    def get_run_for_job(self, job_id: int, run_id: int) -> Run:
        lock, runs = self._history(job_id)
        with lock:
            if not 1 <= run_id <= len(runs):
                raise NotFound("run not found", {"job": job_id, "run": run_id})
            return copy.copy(runs[run_id - 1])

    def get_n_runs_for_job(self, job_id: int, n: int) -> List[Run]:
        lock, runs = self._history(job_id)
        if n <= 0:
            return []
        with lock:
            return [copy.copy(r) for r in reversed(runs[-n:])]

    def new_run_for_job(self, job_id: int) -> Run:
        lock, runs = self._history(job_id)
        with lock:
            run = Run(id=len(runs) + 1, start=utcnow())
            runs.append(run)
            return copy.copy(run)

    def update_run_for_job(self, job_id: int, run: Run) -> None:
        lock, runs = self._history(job_id)
        with lock:
            if not 1 <= run.id <= len(runs):
                raise NotFound("run not found", {"job": job_id, "run": run.id})
            runs[run.id - 1] = copy.copy(run)
