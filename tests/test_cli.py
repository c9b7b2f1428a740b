from __future__ import annotations

import pytest
from click.testing import CliRunner

from prosit.cli import cli, parse_ids


@pytest.fixture
def invoke(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PROSIT_DATABASE_URL", raising=False)
    db = f"sqlite:///{tmp_path / 'cli.db'}"
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, ["--db", db, *args])
    return _invoke


def test_parse_ids():
    assert parse_ids("1, 2,3,") == [1, 2, 3]
    assert parse_ids("") == []


def test_add_and_list_jobs(invoke):
    result = invoke("job", "add", "greet", "echo hello")
    assert result.exit_code == 0, result.output
    assert "Created job 1" in result.output

    result = invoke("job", "list")
    assert result.exit_code == 0
    assert "greet: echo hello" in result.output


def test_run_job_and_read_history(invoke):
    invoke("job", "add", "greet", "echo hello")

    result = invoke("run", "job", "1")
    assert result.exit_code == 0, result.output
    assert "JOB 1 RUN 1: SUCCESS" in result.output
    assert "hello" in result.output

    invoke("run", "job", "1")
    result = invoke("history", "1", "-n", "1")
    assert result.exit_code == 0
    assert "#2" in result.output
    assert "#1 " not in result.output

    result = invoke("output", "1", "1")
    assert result.exit_code == 0
    assert "hello" in result.output


def test_failing_job_exits_nonzero(invoke):
    invoke("job", "add", "broken", "echo nope; exit 4")

    result = invoke("run", "job", "1")

    assert result.exit_code == 1
    assert "FAILED" in result.output
    assert "exit status 4" in result.output


def test_update_job_keeps_old_runs(invoke):
    invoke("job", "add", "j", "echo old")
    invoke("run", "job", "1")

    result = invoke("job", "update", "1", "--cmd", "echo new")
    assert result.exit_code == 0
    invoke("run", "job", "1")

    assert "old" in invoke("output", "1", "1").output
    assert "new" in invoke("output", "1", "2").output


def test_run_project(invoke):
    invoke("job", "add", "write", "echo hi > f")
    invoke("job", "add", "read", "cat f")
    invoke("job", "add", "never", "echo unreachable")

    result = invoke("project", "add", "ok", "--pipeline", "1,2")
    assert result.exit_code == 0, result.output
    result = invoke("run", "project", "1")
    assert result.exit_code == 0, result.output
    assert "job 2 run 1: SUCCESS" in result.output

    invoke("job", "rm", "1")
    invoke("job", "add", "fail", "false")
    invoke("project", "add", "stops", "--pipeline", "4,3")
    result = invoke("run", "project", "2")
    assert result.exit_code == 1
    assert "job 4 run 1: FAILED" in result.output
    assert "1 stage(s) not run" in result.output


def test_project_add_rejects_unknown_jobs(invoke):
    result = invoke("project", "add", "p", "--pipeline", "9")

    assert result.exit_code == 1
    assert "NotFound" in result.output
    assert "PROJECTS" in invoke("project", "list").output
    assert "p:" not in invoke("project", "list").output


def test_missing_job_is_reported(invoke):
    result = invoke("run", "job", "5")

    assert result.exit_code == 1
    assert "ERROR: NotFound" in result.output


def test_missing_run_is_reported(invoke):
    invoke("job", "add", "j", "true")

    result = invoke("output", "1", "3")

    assert result.exit_code == 1
    assert "NotFound" in result.output


def test_bad_configuration_exits_2(invoke, monkeypatch):
    monkeypatch.setenv("PROSIT_LOG_LEVEL", "chatty")

    result = invoke("job", "list")

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output
