"""
Information commands: job, stage, link and parameter details.
"""

from collections.abc import Callable
from typing import Any

import click

from ...core.constants import (
    DSJE_NOERROR,
    DSJE_NOT_AVAILABLE,
    PARAM_TYPE_LABELS,
    JobInfo,
    LinkInfo,
    ParamType,
    StageInfo,
    job_status_label,
)
from ...core.errors import DSJobError
from ...core.models import ParamValue
from ..ui import show_error
from ..utils import CommandError, format_ctime, open_job, print_log_detail, print_str_list, reporting

FAILED = object()


class InfoQueries:
    """Runs independent info queries, remembering the last hard failure.

    A failed query is reported and the caller moves on to the next one.
    Optional queries return None when the engine says the value is not
    available.
    """

    def __init__(self):
        self.status = DSJE_NOERROR

    def get(self, fetch: Callable[[], Any], what: str, optional: bool = False) -> Any:
        try:
            return fetch()
        except DSJobError as e:
            if optional and e.status == DSJE_NOT_AVAILABLE:
                return None
            show_error(f"Error {e.status} getting {what}")
            self.status = e.status
            return FAILED


def _format_value(value: ParamValue | None) -> str:
    return "" if value is None else value.format()


@click.command("jobinfo")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def jobinfo_command(state, project: str, job: str) -> int:
    """Show the status and run details of a job."""
    engine = state.engine
    queries = InfoQueries()
    try:
        with open_job(engine, project, job) as handle:
            status = queries.get(lambda: engine.get_job_info(handle, JobInfo.JOBSTATUS), "job status")
            if status is not FAILED:
                click.echo(f"Job Status\t: {job_status_label(status)} ({status})")

            controller = queries.get(
                lambda: engine.get_job_info(handle, JobInfo.JOBCONTROLLER), "job controller", optional=True
            )
            if controller is not FAILED:
                click.echo(f"Job Controller\t: {controller if controller is not None else 'not available'}")

            started = queries.get(
                lambda: engine.get_job_info(handle, JobInfo.JOBSTARTTIMESTAMP), "job start time", optional=True
            )
            if started is not FAILED:
                click.echo(f"Job Start Time\t: {format_ctime(started) if started is not None else 'not available'}")

            wave = queries.get(lambda: engine.get_job_info(handle, JobInfo.JOBWAVENO), "job wave number")
            if wave is not FAILED:
                click.echo(f"Job Wave Number\t: {wave}")

            user_status = queries.get(
                lambda: engine.get_job_info(handle, JobInfo.USERSTATUS), "job user status", optional=True
            )
            if user_status is not FAILED:
                click.echo(f"User Status\t: {user_status if user_status is not None else 'not available'}")
    except CommandError as e:
        return e.status

    return queries.status


@click.command("stageinfo")
@click.argument("project")
@click.argument("job")
@click.argument("stage")
@click.pass_obj
def stageinfo_command(state, project: str, job: str, stage: str) -> int:
    """Show the type, row count and last error of a stage."""
    engine = state.engine
    queries = InfoQueries()
    try:
        with open_job(engine, project, job) as handle:
            type_name = queries.get(lambda: engine.get_stage_info(handle, stage, StageInfo.STAGETYPE), "stage type")
            if type_name is not FAILED:
                click.echo(f"Stage Type\t: {type_name}")

            rows = queries.get(
                lambda: engine.get_stage_info(handle, stage, StageInfo.STAGEINROWNUM), "stage row number"
            )
            if rows is not FAILED:
                click.echo(f"In Row Number\t: {rows}")

            last_error = queries.get(
                lambda: engine.get_stage_info(handle, stage, StageInfo.STAGELASTERR),
                "stage last error",
                optional=True,
            )
            if last_error is None:
                click.echo("Stage Last Error: <none>")
            elif last_error is not FAILED:
                click.echo("Stage Last Error:")
                print_log_detail(last_error, indent=1)
    except CommandError as e:
        return e.status

    return queries.status


@click.command("linkinfo")
@click.argument("project")
@click.argument("job")
@click.argument("stage")
@click.argument("link")
@click.pass_obj
def linkinfo_command(state, project: str, job: str, stage: str, link: str) -> int:
    """Show the row count and last error of a link."""
    engine = state.engine
    queries = InfoQueries()
    try:
        with open_job(engine, project, job) as handle:
            rows = queries.get(
                lambda: engine.get_link_info(handle, stage, link, LinkInfo.LINKROWCOUNT), "link row count"
            )
            if rows is not FAILED:
                click.echo(f"Link Row Count\t: {rows}")

            last_error = queries.get(
                lambda: engine.get_link_info(handle, stage, link, LinkInfo.LINKLASTERR),
                "link last error",
                optional=True,
            )
            if last_error is None:
                click.echo("Link Last Error\t: <none>")
            elif last_error is not FAILED:
                click.echo("Link Last Error\t:")
                print_log_detail(last_error, indent=1)
    except CommandError as e:
        return e.status

    return queries.status


@click.command("paraminfo")
@click.argument("project")
@click.argument("job")
@click.argument("param")
@click.pass_obj
def paraminfo_command(state, project: str, job: str, param: str) -> int:
    """Show the definition of a job parameter."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            with reporting("Error {status} getting info for parameter"):
                info = engine.get_param_info(handle, param)

            label = PARAM_TYPE_LABELS.get(info.param_type, "*** ERROR - UNKNOWN TYPE ***")
            click.echo(f"Type\t\t: {label} ({info.param_type})")
            click.echo(f"Help Text\t: {info.help_text}")
            click.echo(f"Prompt\t\t: {info.prompt}")
            click.echo(f"Prompt At Run\t: {int(info.prompt_at_run)}")
            click.echo(f"Default Value\t: {_format_value(info.default_value)}")
            click.echo(f"Original Default: {_format_value(info.design_default_value)}")
            if info.param_type == ParamType.LIST:
                click.echo("List Values\t:")
                print_str_list(info.list_values, indent=2)
                click.echo("Original List\t:")
                print_str_list(info.design_list_values, indent=2)
            click.echo()
    except CommandError as e:
        return e.status

    return DSJE_NOERROR
