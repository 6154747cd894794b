"""
Run and stop commands.
"""

import logging

import click

from ...core.constants import DSJE_NOERROR, LimitType, RunMode
from ...core.params import coerce_value, split_assignment
from ..ui import loading_indicator
from ..utils import CommandError, open_job, reporting

logger = logging.getLogger(__name__)


def _validate_params(ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> list[tuple[str, str]]:
    assignments = []
    for value in values:
        try:
            assignments.append(split_assignment(value))
        except ValueError as e:
            raise click.BadParameter(str(e), ctx=ctx, param=param) from None
    return assignments


def set_param(engine, job, name: str, text: str) -> None:
    """Set a job parameter, converting the value to the type the engine declares."""
    with reporting(f"Error {{status}} getting information for parameter '{name}'"):
        info = engine.get_param_info(job, name)
    with reporting(f"Error setting value of parameter '{name}'"):
        engine.set_param(job, name, coerce_value(info.param_type, text))


@click.command("run")
@click.option("-mode", "--mode", type=click.Choice([m.name for m in RunMode]), default=RunMode.NORMAL.name,
              show_default=True, help="Run mode")
@click.option("-param", "--param", "params", multiple=True, callback=_validate_params, metavar="NAME=VALUE",
              help="Job parameter value (repeatable)")
@click.option("-warn", "--warn", "warn_limit", type=int, default=-1, help="Abort the run after n warnings")
@click.option("-rows", "--rows", "row_limit", type=int, default=0, help="Limit the rows processed per link")
@click.option("-wait", "--wait", is_flag=True, help="Wait for the job to finish")
@click.option("--timeout", type=float, default=None, help="Give up waiting after this many seconds")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def run_command(
    state,
    mode: str,
    params: list[tuple[str, str]],
    warn_limit: int,
    row_limit: int,
    wait: bool,
    timeout: float | None,
    project: str,
    job: str,
) -> int:
    """Start a job run."""
    engine = state.engine
    try:
        with open_job(engine, project, job, lock=True) as handle:
            if warn_limit >= 0:
                with reporting("Error setting warning limit"):
                    engine.set_job_limit(handle, LimitType.WARN, warn_limit)
            if row_limit != 0:
                with reporting("Error setting row limit"):
                    engine.set_job_limit(handle, LimitType.ROWS, row_limit)

            for name, text in params:
                logger.debug(f"Setting parameter {name}")
                set_param(engine, handle, name, text)

            with reporting("Error running job"):
                engine.run_job(handle, RunMode[mode])

            if wait:
                click.echo("Waiting for job...")
                with reporting("Error waiting for job"), loading_indicator(f"Waiting for {project}/{job}..."):
                    engine.wait_for_job(handle, timeout)
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("stop")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def stop_command(state, project: str, job: str) -> int:
    """Request a running job to stop."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            with reporting("Error stopping job"):
                engine.stop_job(handle)
    except CommandError as e:
        return e.status

    return DSJE_NOERROR
