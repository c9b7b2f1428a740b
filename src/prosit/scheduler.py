# scheduler.py
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set, Tuple

from .config import DEFAULT_KILL_GRACE_SECONDS, DEFAULT_SHELL, Settings
from .engine import execute_job
from .model import Run
from .pipeline import run_pipeline
from .store.base import Store

logger = logging.getLogger(__name__)

JOB = "job"
PROJECT = "project"


@dataclass(eq=False)
class Task:
    """A request to run a job or a project pipeline."""
    kind: str
    target: int
    future: Future = field(default_factory=Future)

    def __str__(self) -> str:
        return f"{self.kind} {self.target}"


class Runner:
    """
    Runs jobs and project pipelines with at most one execution in flight
    per job and per project.

    Requests for a target that is already running wait in a single FIFO
    queue. Each launch runs on its own thread; the lock is held only for
    admission bookkeeping, never while a command runs.
    """

    def __init__(
        self,
        store: Store,
        *,
        shell: str = DEFAULT_SHELL,
        kill_grace: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.store = store
        self.shell = shell
        self.kill_grace = kill_grace

        self._lock = threading.Lock()  # protects the following:
        self._changed = threading.Condition(self._lock)
        self._running_jobs: Set[int] = set()
        self._running_projects: Set[int] = set()
        self._scheduled: Deque[Task] = deque()
        self._cancel_events: Dict[int, threading.Event] = {}

    @classmethod
    def from_settings(cls, store: Store, settings: Settings) -> Runner:
        return cls(store, shell=settings.shell, kill_grace=settings.kill_grace_seconds)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def schedule_job(self, job_id: int) -> Future:
        """
        Start a job now if it is idle, otherwise queue it. Never waits for
        the job to run.

        Raises NotFound if the job does not exist. The returned future
        resolves to the Run, or to the setup error that aborted it.
        Cancelling the future while the request is still queued drops it.
        """
        self.store.get_job(job_id)
        return self._submit(Task(JOB, job_id))

    def schedule_project(self, project_id: int) -> Future:
        """Like schedule_job, for a project pipeline; resolves to its list of Runs."""
        self.store.get_project(project_id)
        return self._submit(Task(PROJECT, project_id))

    def execute_job(self, job_id: int) -> Run:
        """Run a job in the calling thread, waiting first if it is already running."""
        self._claim(self._running_jobs, job_id)
        return self._run_job(job_id, in_pipeline=False)

    def execute_pipeline(self, project_id: int) -> List[Run]:
        """Run a project pipeline in the calling thread, waiting first if it is already running."""
        self._claim(self._running_projects, project_id)
        return self._run_pipeline(project_id)

    def cancel_job(self, job_id: int) -> bool:
        """Terminate the running execution of a job. False if it is not running."""
        with self._lock:
            event = self._cancel_events.get(job_id)
            if event is None:
                return False
            event.set()
        logger.warning("job %d: cancel requested", job_id)
        return True

    def pending(self) -> List[Tuple[str, int]]:
        with self._lock:
            return [(t.kind, t.target) for t in self._scheduled if not t.future.cancelled()]

    def running_jobs(self) -> Set[int]:
        with self._lock:
            return set(self._running_jobs)

    def running_projects(self) -> Set[int]:
        with self._lock:
            return set(self._running_projects)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until nothing is running or queued. Returns False on timeout."""
        with self._changed:
            return self._changed.wait_for(self._idle, timeout)

    # ------------------------------------------------------------------
    # Admission (call with the lock held)
    # ------------------------------------------------------------------

    def _running_set(self, kind: str) -> Set[int]:
        return self._running_jobs if kind == JOB else self._running_projects

    def _has_pending(self, kind: str, target: int) -> bool:
        return any(
            t.kind == kind and t.target == target and not t.future.cancelled()
            for t in self._scheduled
        )

    def _idle(self) -> bool:
        return not (self._running_jobs or self._running_projects or self._has_live_tasks())

    def _has_live_tasks(self) -> bool:
        return any(not t.future.cancelled() for t in self._scheduled)

    def _admit(self, task: Task) -> None:
        running = self._running_set(task.kind)
        # an older queued request for the same target goes first
        if task.target in running or self._has_pending(task.kind, task.target):
            self._scheduled.append(task)
            logger.debug("%s busy, queued (%d pending)", task, len(self._scheduled))
            return
        running.add(task.target)
        self._launch(task)

    def _drain(self) -> None:
        """
        Launch queued requests in arrival order. Stops at the first request
        whose target is still running; its completion drains again.
        """
        while self._scheduled:
            head = self._scheduled[0]
            if head.future.cancelled():
                self._scheduled.popleft()
                logger.debug("%s dropped, request was cancelled", head)
                continue
            running = self._running_set(head.kind)
            if head.target in running:
                break
            self._scheduled.popleft()
            running.add(head.target)
            logger.debug("%s dequeued", head)
            self._launch(head)

    def _launch(self, task: Task) -> None:
        t = threading.Thread(
            target=self._work,
            args=(task,),
            name=f"prosit-{task.kind}-{task.target}",
            daemon=True,
        )
        t.start()

    def _claim(self, running: Set[int], target: int) -> None:
        with self._changed:
            while target in running:
                self._changed.wait()
            running.add(target)

    # ------------------------------------------------------------------
    # Execution (worker threads)
    # ------------------------------------------------------------------

    def _submit(self, task: Task) -> Future:
        with self._lock:
            self._admit(task)
        return task.future

    def _work(self, task: Task) -> None:
        if not task.future.set_running_or_notify_cancel():
            # cancelled between launch and start: give the target back
            if task.kind == JOB:
                self._job_done(task.target, in_pipeline=False)
            else:
                self._pipeline_done(task.target)
            return

        try:
            if task.kind == JOB:
                result = self._run_job(task.target, in_pipeline=False)
            else:
                result = self._run_pipeline(task.target)
        except Exception as e:
            logger.error("%s failed: %s", task, e)
            task.future.set_exception(e)
        else:
            task.future.set_result(result)

    def _run_job(self, job_id: int, *, in_pipeline: bool) -> Run:
        cancel = threading.Event()
        with self._lock:
            self._cancel_events[job_id] = cancel
        try:
            return execute_job(
                self.store,
                job_id,
                shell=self.shell,
                cancel=cancel,
                kill_grace=self.kill_grace,
            )
        finally:
            self._job_done(job_id, in_pipeline=in_pipeline)

    def _run_stage(self, job_id: int) -> Run:
        # a one-off execution of the same job may be in flight; wait for it
        self._claim(self._running_jobs, job_id)
        return self._run_job(job_id, in_pipeline=True)

    def _run_pipeline(self, project_id: int) -> List[Run]:
        logger.info("project %d: pipeline started", project_id)
        try:
            runs = run_pipeline(self.store, project_id, self._run_stage)
        finally:
            self._pipeline_done(project_id)
        logger.info("project %d: pipeline finished after %d run(s)", project_id, len(runs))
        return runs

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _job_done(self, job_id: int, *, in_pipeline: bool) -> None:
        with self._lock:
            self._running_jobs.discard(job_id)
            self._cancel_events.pop(job_id, None)
            # the pipeline's own completion advances the queue
            if not in_pipeline:
                self._drain()
            self._changed.notify_all()

    def _pipeline_done(self, project_id: int) -> None:
        with self._lock:
            self._running_projects.discard(project_id)
            self._drain()
            self._changed.notify_all()
