# pipeline.py
from __future__ import annotations

import logging
from typing import Callable, List

from .model import Run
from .store.base import Store

logger = logging.getLogger(__name__)


def run_pipeline(
    store: Store,
    project_id: int,
    run_stage: Callable[[int], Run],
) -> List[Run]:
    """
    Run a project's pipeline, one job after the other.

    `run_stage(job_id)` executes one stage synchronously; the scheduler
    passes a callable that claims the job before running it.

    - An error from a stage aborts the pipeline and propagates.
    - A stage whose run did not succeed (including a canceled run) stops
      the pipeline without raising.

    Returns the runs produced, in pipeline order. A job listed more than
    once runs each time it is reached.
    """
    project = store.get_project(project_id)
    runs: List[Run] = []

    for position, job_id in enumerate(project.pipeline, start=1):
        logger.debug("project %d: stage %d/%d -> job %d", project_id, position, len(project.pipeline), job_id)
        run = run_stage(job_id)
        runs.append(run)

        if not run.success:
            remaining = len(project.pipeline) - position
            logger.warning(
                "project %d: job %d run %d failed, skipping %d remaining stage(s)",
                project_id, job_id, run.id, remaining,
            )
            break

    return runs
