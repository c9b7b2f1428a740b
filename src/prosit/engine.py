# engine.py
from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import IO, Optional, Tuple

from .config import DEFAULT_KILL_GRACE_SECONDS, DEFAULT_SHELL
from .errors import CaptureSetupFailed, PersistFailed, RunAllocationFailed, WorkspaceError
from .model import Run, utcnow
from .store.base import Store

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.05


# ----------------------------------------------------------------------
# Workspace
# ----------------------------------------------------------------------

def prepare_workspace(workspace: str) -> Optional[Path]:
    """
    Resolve the directory a job runs in.

    Returns None for an empty workspace (run in the current directory).
    Otherwise the directory is created if missing and returned; it is
    handed to the child process as its cwd, never chdir'ed into.
    """
    if not workspace:
        return None

    path = Path(workspace).expanduser()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except FileExistsError as e:
        raise WorkspaceError("workspace is not a directory", {"workspace": str(path)}) from e
    except OSError as e:
        raise WorkspaceError(
            "failed to create workspace directory",
            {"workspace": str(path), "error": e.strerror or str(e)},
        ) from e

    if not path.is_dir():
        raise WorkspaceError("workspace is not a directory", {"workspace": str(path)})
    return path


# ----------------------------------------------------------------------
# Process primitives
# ----------------------------------------------------------------------

def describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"signal: {name}"
    return f"exit status {returncode}"


def _terminate(proc: subprocess.Popen, grace: float) -> None:
    """SIGTERM the job's process group, then SIGKILL it if it lingers."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


def _spawn_and_wait(
    cmd: str,
    *,
    shell: str,
    cwd: Optional[Path],
    out: IO[bytes],
    cancel: Optional[threading.Event],
    kill_grace: float,
) -> Tuple[bool, bool, str]:
    """
    Run `cmd` through the shell with stdout and stderr both going to `out`.

    Returns (success, canceled, note) where note is the failure text to
    append to the output, empty on success.
    """
    if cancel is not None and cancel.is_set():
        return False, True, "canceled"

    try:
        proc = subprocess.Popen(
            [shell, "-c", cmd],
            cwd=None if cwd is None else str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        return False, False, str(e)

    if cancel is None:
        returncode = proc.wait()
    else:
        while True:
            try:
                returncode = proc.wait(timeout=POLL_INTERVAL_S)
                break
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    _terminate(proc, kill_grace)
                    proc.wait()
                    return False, True, "canceled"

    if returncode != 0:
        return False, False, describe_exit(returncode)
    return True, False, ""


def _finalize_failed(store: Store, job_id: int, run: Run, output: str) -> None:
    """Record a run that never got to spawn, so the history has no blank slot."""
    run.end = utcnow()
    run.success = False
    run.output = output
    try:
        store.update_run_for_job(job_id, run)
    except Exception:
        logger.exception("failed to record aborted run %d for job %d", run.id, job_id)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute_job(
    store: Store,
    job_id: int,
    *,
    shell: str = DEFAULT_SHELL,
    cancel: Optional[threading.Event] = None,
    kill_grace: float = DEFAULT_KILL_GRACE_SECONDS,
) -> Run:
    """
    Run a job once and record the outcome as its next Run.

    A command that fails is not an error: the returned Run has
    success=False and the failure appended to its output. Errors are
    raised only for setup problems (NotFound, RunAllocationFailed,
    WorkspaceError, CaptureSetupFailed) or when the finished run
    cannot be saved (PersistFailed, carrying the run).

    Setting `cancel` terminates the running command; the run is then
    recorded with canceled=True.
    """
    job = store.get_job(job_id)

    try:
        run = store.new_run_for_job(job_id)
    except Exception as e:
        raise RunAllocationFailed("cannot assign run ID", {"job": job_id, "error": e}) from e

    run.cmd = job.cmd
    logger.info("job %d (%s): run %d started", job_id, job.name or "-", run.id)

    try:
        cwd = prepare_workspace(job.workspace)
    except WorkspaceError as e:
        _finalize_failed(store, job_id, run, e.message)
        raise

    try:
        out = tempfile.TemporaryFile(prefix="prosit-")
    except OSError as e:
        _finalize_failed(store, job_id, run, "")
        raise CaptureSetupFailed("failed to create run output file", {"job": job_id, "run": run.id}) from e

    with out:
        run.success, run.canceled, note = _spawn_and_wait(
            job.cmd,
            shell=shell,
            cwd=cwd,
            out=out,
            cancel=cancel,
            kill_grace=kill_grace,
        )
        run.end = utcnow()
        try:
            # the child advanced the shared file offset; append after its output
            out.seek(0, os.SEEK_END)
            if note:
                out.write(note.encode("utf-8"))
            out.flush()
            out.seek(0)
            raw = out.read()
        except OSError as e:
            _finalize_failed(store, job_id, run, "")
            raise CaptureSetupFailed(
                "failed to read run output", {"job": job_id, "run": run.id}
            ) from e

    run.output = raw.decode("utf-8", errors="replace")

    try:
        store.update_run_for_job(job_id, run)
    except Exception as e:
        raise PersistFailed(
            "failed to update run",
            {"job": job_id, "run": run.id, "error": e},
            run=run,
        ) from e

    if run.canceled:
        logger.warning("job %d: run %d canceled", job_id, run.id)
    else:
        logger.info(
            "job %d: run %d finished (%s)", job_id, run.id, "success" if run.success else "failed"
        )
    return run


__all__ = ["execute_job", "prepare_workspace", "describe_exit"]
