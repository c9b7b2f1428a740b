# cli.py
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, List, Optional

import click

from prosit.config import ConfigError, Settings
from prosit.errors import ProsiError
from prosit.model import Job, Project
from prosit.scheduler import Runner
from prosit.store.sql import SQLStore
from prosit.ui.console import Console, get_console, set_console


def parse_ids(value: Optional[str]) -> List[int]:
    """Parse a comma separated list of IDs: "1,2,3" -> [1, 2, 3]."""
    if not value:
        return []
    ids = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise click.BadParameter(f"not a job ID: {part!r}")
    return ids


def _store(ctx: click.Context) -> SQLStore:
    obj = ctx.find_root().obj
    if "store" not in obj:
        store = SQLStore(obj["settings"].database_url)
        obj["store"] = store
        ctx.find_root().call_on_close(store.close)
    return obj["store"]


def _runner(ctx: click.Context) -> Runner:
    return Runner.from_settings(_store(ctx), ctx.find_root().obj["settings"])


@contextmanager
def _handle_errors() -> Iterator[None]:
    console = get_console()
    try:
        yield
    except ProsiError as e:
        console.print_error(
            e.kind,
            e.message,
            details=[f"{k}={v}" for k, v in e.details.items()] or None,
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and debug logging)",
)
@click.option("--db", "database_url", default=None, help="Database URL (defaults to $PROSIT_DATABASE_URL)")
@click.pass_context
def cli(ctx, debug, database_url):
    """prosit: run shell jobs and project pipelines, keeping a history of every run."""
    console = Console(debug=debug)
    set_console(console)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(2)
    if database_url:
        settings = replace(settings, database_url=database_url)

    logging.basicConfig(
        level=logging.DEBUG if debug else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

@cli.group()
def job():
    """Create, inspect and delete jobs."""


@job.command("add")
@click.argument("name")
@click.argument("cmd")
@click.option("--workspace", default="", help="Directory to run in (created if missing)")
@click.pass_context
def job_add(ctx, name, cmd, workspace):
    """Add a job running CMD through the shell."""
    with _handle_errors():
        created = _store(ctx).new_job(Job(name=name, cmd=cmd, workspace=workspace))
        get_console().print_info(f"Created job {created.id}")


@job.command("list")
@click.pass_context
def job_list(ctx):
    """List all jobs."""
    with _handle_errors():
        get_console().print_jobs(_store(ctx).get_jobs())


@job.command("show")
@click.argument("job_id", type=int)
@click.pass_context
def job_show(ctx, job_id):
    """Show a job."""
    with _handle_errors():
        get_console().print_job(_store(ctx).get_job(job_id))


@job.command("update")
@click.argument("job_id", type=int)
@click.option("--name", default=None)
@click.option("--cmd", default=None)
@click.option("--workspace", default=None)
@click.pass_context
def job_update(ctx, job_id, name, cmd, workspace):
    """Change a job. Runs already recorded keep the command they ran."""
    with _handle_errors():
        store = _store(ctx)
        current = store.get_job(job_id)
        if name is not None:
            current.name = name
        if cmd is not None:
            current.cmd = cmd
        if workspace is not None:
            current.workspace = workspace
        store.update_job(current)
        get_console().print_info(f"Updated job {job_id}")


@job.command("rm")
@click.argument("job_id", type=int)
@click.pass_context
def job_rm(ctx, job_id):
    """Delete a job and its run history."""
    with _handle_errors():
        _store(ctx).delete_job(job_id)
        get_console().print_info(f"Deleted job {job_id}")


# ----------------------------------------------------------------------
# Projects
# ----------------------------------------------------------------------

@cli.group()
def project():
    """Create, inspect and delete projects."""


@project.command("add")
@click.argument("name")
@click.option("--pipeline", default="", help="Comma separated job IDs, run in this order")
@click.option("--one-off", "one_off", default="", help="Comma separated job IDs runnable on their own")
@click.pass_context
def project_add(ctx, name, pipeline, one_off):
    """Add a project."""
    pipeline_ids = parse_ids(pipeline)
    one_off_ids = parse_ids(one_off)
    with _handle_errors():
        store = _store(ctx)
        for job_id in pipeline_ids + one_off_ids:
            store.get_job(job_id)
        created = store.new_project(
            Project(name=name, pipeline=pipeline_ids, one_off_jobs=set(one_off_ids))
        )
        get_console().print_info(f"Created project {created.id}")


@project.command("list")
@click.pass_context
def project_list(ctx):
    """List all projects."""
    with _handle_errors():
        get_console().print_projects(_store(ctx).get_projects())


@project.command("rm")
@click.argument("project_id", type=int)
@click.pass_context
def project_rm(ctx, project_id):
    """Delete a project. Its jobs are kept."""
    with _handle_errors():
        _store(ctx).delete_project(project_id)
        get_console().print_info(f"Deleted project {project_id}")


# ----------------------------------------------------------------------
# Running
# ----------------------------------------------------------------------

def _wait(runner: Runner, future):
    """Wait for a scheduled request; on Ctrl-C cancel what is running first."""
    try:
        return future.result()
    except KeyboardInterrupt:
        for job_id in runner.running_jobs():
            runner.cancel_job(job_id)
        runner.join(timeout=runner.kill_grace + 1)
        raise


@cli.group()
def run():
    """Run a job or a project pipeline and wait for it."""


@run.command("job")
@click.argument("job_id", type=int)
@click.pass_context
def run_job(ctx, job_id):
    """Run one job."""
    console = get_console()
    with _handle_errors():
        runner = _runner(ctx)
        result = _wait(runner, runner.schedule_job(job_id))
        console.print_run(job_id, result)
        console.print_output(result)
        if not result.success:
            sys.exit(1)


@run.command("project")
@click.argument("project_id", type=int)
@click.pass_context
def run_project(ctx, project_id):
    """Run a project's pipeline, stopping at the first failed job."""
    console = get_console()
    with _handle_errors():
        runner = _runner(ctx)
        proj = runner.store.get_project(project_id)
        console.print_info(f"Project {proj.id}: {proj.name or '-'} ({len(proj.pipeline)} stage(s))")
        runs = _wait(runner, runner.schedule_project(project_id))
        results = list(zip(proj.pipeline, runs))
        console.print_results(results)
        skipped = len(proj.pipeline) - len(runs)
        if skipped:
            console.print_info(f"  {skipped} stage(s) not run")
        if any(not r.success for r in runs):
            sys.exit(1)


# ----------------------------------------------------------------------
# History
# ----------------------------------------------------------------------

@cli.command()
@click.argument("job_id", type=int)
@click.option("-n", "limit", default=10, show_default=True, type=int, help="Number of runs to show")
@click.pass_context
def history(ctx, job_id, limit):
    """Show the most recent runs of a job, newest first."""
    with _handle_errors():
        get_console().print_runs(job_id, _store(ctx).get_n_runs_for_job(job_id, limit))


@cli.command()
@click.argument("job_id", type=int)
@click.argument("run_id", type=int)
@click.pass_context
def output(ctx, job_id, run_id):
    """Print the captured output of a run."""
    with _handle_errors():
        result = _store(ctx).get_run_for_job(job_id, run_id)
        console = get_console()
        console.print_run(job_id, result)
        console.print_output(result)


if __name__ == "__main__":
    cli()
