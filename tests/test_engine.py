"""Tests for executing a single job."""
from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from prosit.engine import describe_exit, execute_job, prepare_workspace
from prosit.errors import (
    CaptureSetupFailed,
    NotFound,
    PersistFailed,
    RunAllocationFailed,
    WorkspaceError,
)
from prosit.model import Job
from prosit.store import MemoryStore


def test_run_job_records_output_and_result(store, tmp_path):
    """Jobs are executed and their Run metadata stored."""
    cases = [
        ("echo 'hi' > delete_me.txt", "", True),
        ("cat delete_me.txt", "hi\n", True),
        ("rm delete_me.txt", "", True),
        ("cat delete_me.txt", "cat: delete_me.txt: No such file or directory\nexit status 1", False),
        ("printf 'one\\ntwo\\nthree\\n'; 2>&1 echo 'four';", "one\ntwo\nthree\nfour\n", True),
        ("echo 'I will fail'; exit 1", "I will fail\nexit status 1", False),
    ]

    for cmd, output, success in cases:
        job = store.new_job(Job(workspace=str(tmp_path), cmd=cmd))

        run = execute_job(store, job.id)

        runs = store.get_n_runs_for_job(job.id, 1)
        assert len(runs) == 1, "run metadata not stored"
        assert runs[0] == run
        assert run.end >= run.start
        assert run.success is success, cmd
        assert run.output == output, cmd
        assert run.cmd == cmd
        assert run.canceled is False


def test_write_then_read_in_one_command(mem_store, tmp_path):
    job = mem_store.new_job(Job(workspace=str(tmp_path), cmd="echo 'hi' > f; cat f"))

    run = execute_job(mem_store, job.id)

    assert run.output == "hi\n"
    assert run.success


def test_stderr_is_merged_into_output(mem_store, tmp_path):
    job = mem_store.new_job(Job(workspace=str(tmp_path), cmd="echo out; echo err >&2; exit 3"))

    run = execute_job(mem_store, job.id)

    assert run.output == "out\nerr\nexit status 3"
    assert not run.success


def test_run_ids_are_sequential(store):
    job = store.new_job(Job(cmd="true"))

    runs = [execute_job(store, job.id) for _ in range(5)]

    assert [r.id for r in runs] == [1, 2, 3, 4, 5]
    history = store.get_n_runs_for_job(job.id, 10)
    assert [r.id for r in history] == [5, 4, 3, 2, 1]
    for earlier, later in zip(runs, runs[1:]):
        assert earlier.end <= later.start


def test_missing_job_raises_not_found(mem_store):
    with pytest.raises(NotFound):
        execute_job(mem_store, 42)


def test_workspace_is_created(mem_store, tmp_path):
    ws = tmp_path / "a" / "b"
    job = mem_store.new_job(Job(workspace=str(ws), cmd="pwd"))
    cwd_before = os.getcwd()

    run = execute_job(mem_store, job.id)

    assert ws.is_dir()
    assert Path(run.output.strip()).resolve() == ws.resolve()
    assert os.getcwd() == cwd_before


def test_workspace_that_is_a_file_fails(mem_store, tmp_path):
    not_a_dir = tmp_path / "file"
    not_a_dir.write_text("x")
    job = mem_store.new_job(Job(workspace=str(not_a_dir), cmd="echo never"))

    with pytest.raises(WorkspaceError):
        execute_job(mem_store, job.id)

    recorded = mem_store.get_run_for_job(job.id, 1)
    assert recorded.success is False
    assert "never" not in recorded.output
    assert recorded.end >= recorded.start


def test_prepare_workspace_empty_means_current_directory():
    assert prepare_workspace("") is None


def test_shell_that_cannot_start_is_a_failed_run(mem_store):
    job = mem_store.new_job(Job(cmd="echo hi"))

    run = execute_job(mem_store, job.id, shell="/nonexistent/shell")

    assert run.success is False
    assert "No such file or directory" in run.output
    assert mem_store.get_run_for_job(job.id, 1) == run


def test_capture_setup_failure(mem_store, monkeypatch):
    def broken(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("prosit.engine.tempfile.TemporaryFile", broken)
    job = mem_store.new_job(Job(cmd="echo hi"))

    with pytest.raises(CaptureSetupFailed):
        execute_job(mem_store, job.id)

    recorded = mem_store.get_run_for_job(job.id, 1)
    assert recorded.success is False
    assert recorded.output == ""


class _FailingUpdates(MemoryStore):
    def update_run_for_job(self, job_id, run):
        raise RuntimeError("disk on fire")


class _FailingAllocation(MemoryStore):
    def new_run_for_job(self, job_id):
        raise RuntimeError("sequence exhausted")


def test_persist_failure_still_hands_back_the_run():
    store = _FailingUpdates()
    job = store.new_job(Job(cmd="echo done"))

    with pytest.raises(PersistFailed) as e:
        execute_job(store, job.id)

    assert e.value.run is not None
    assert e.value.run.success is True
    assert e.value.run.output == "done\n"
    assert isinstance(e.value.__cause__, RuntimeError)


def test_allocation_failure():
    store = _FailingAllocation()
    job = store.new_job(Job(cmd="echo done"))

    with pytest.raises(RunAllocationFailed):
        execute_job(store, job.id)


def test_run_keeps_the_command_it_ran(mem_store):
    job = mem_store.new_job(Job(cmd="echo first"))
    execute_job(mem_store, job.id)

    job.cmd = "echo second"
    mem_store.update_job(job)
    execute_job(mem_store, job.id)

    assert mem_store.get_run_for_job(job.id, 1).cmd == "echo first"
    assert mem_store.get_run_for_job(job.id, 2).output == "second\n"


def test_cancel_terminates_the_command(mem_store):
    job = mem_store.new_job(Job(cmd="echo started; sleep 30"))
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()

    t0 = time.monotonic()
    run = execute_job(mem_store, job.id, cancel=cancel, kill_grace=1)

    assert time.monotonic() - t0 < 10
    assert run.canceled is True
    assert run.success is False
    assert run.output.startswith("started\n")
    assert run.output.endswith("canceled")


def test_cancel_before_start_never_spawns(mem_store, tmp_path):
    marker = tmp_path / "ran"
    job = mem_store.new_job(Job(cmd=f"touch {marker}"))
    cancel = threading.Event()
    cancel.set()

    run = execute_job(mem_store, job.id, cancel=cancel)

    assert run.canceled
    assert not marker.exists()


@pytest.mark.parametrize(
    "returncode, text",
    [(1, "exit status 1"), (127, "exit status 127"), (-9, "signal: SIGKILL")],
)
def test_describe_exit(returncode, text):
    assert describe_exit(returncode) == text


def test_error_rendering():
    err = NotFound("job not found", {"job": 3})
    assert str(err) == "NotFound: job not found\njob=3"
    assert err.kind == "NotFound"
