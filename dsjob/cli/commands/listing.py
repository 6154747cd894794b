"""
Listing commands: projects, jobs, stages, links and parameters.
"""

import click

from ...core.constants import (
    DSJE_NOERROR,
    DSJE_NOT_AVAILABLE,
    JobInfo,
    ProjectInfo,
    StageInfo,
)
from ...core.errors import DSJobError
from ..ui import show_error
from ..utils import CommandError, open_job, open_project, print_str_list


def _print_list(fetch, what: str) -> None:
    """Print the list returned by `fetch`, or `<none>` when the engine has none."""
    try:
        items = fetch()
    except DSJobError as e:
        if e.status != DSJE_NOT_AVAILABLE:
            show_error(f"Error {e.status} getting {what}")
            raise CommandError(e.status) from e
        click.echo("<none>")
        return
    print_str_list(items)


@click.command("lprojects")
@click.pass_obj
def lprojects_command(state) -> int:
    """List the projects known to the server."""
    engine = state.engine
    try:
        projects = engine.get_project_list()
    except DSJobError as e:
        return e.status

    print_str_list(projects)
    return DSJE_NOERROR


@click.command("ljobs")
@click.argument("project")
@click.pass_obj
def ljobs_command(state, project: str) -> int:
    """List the jobs of a project."""
    engine = state.engine
    try:
        with open_project(engine, project) as handle:
            _print_list(lambda: engine.get_project_info(handle, ProjectInfo.JOBLIST), "job list")
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("lstages")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def lstages_command(state, project: str, job: str) -> int:
    """List the stages of a job."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            _print_list(lambda: engine.get_job_info(handle, JobInfo.STAGELIST), "stage list")
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("llinks")
@click.argument("project")
@click.argument("job")
@click.argument("stage")
@click.pass_obj
def llinks_command(state, project: str, job: str, stage: str) -> int:
    """List the links of a stage."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            _print_list(lambda: engine.get_stage_info(handle, stage, StageInfo.LINKLIST), "link list")
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("lparams")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def lparams_command(state, project: str, job: str) -> int:
    """List the parameter names of a job."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            _print_list(lambda: engine.get_job_info(handle, JobInfo.PARAMLIST), "parameter list")
    except CommandError as e:
        return e.status

    return DSJE_NOERROR
