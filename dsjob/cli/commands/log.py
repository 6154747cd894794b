"""
Job log commands: add entries, summarise, show details and find the newest.
"""

from typing import TextIO

import click

from ...core.constants import DSJE_NOERROR, LOG_TYPE_NAMES, LogType, log_type_label
from ...core.errors import DSJobError
from ..ui import show_error
from ..utils import CommandError, format_ctime, open_job, print_log_detail, reporting

MAX_MESSAGE_LENGTH = 4096


def read_message(stream: TextIO, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Read a log message up to end of input or Ctrl-D, keeping printable characters and newlines."""
    chars = []
    while len(chars) < limit:
        ch = stream.read(1)
        if not ch or ch == "\x04":
            break
        if ch == "\n" or ch.isprintable():
            chars.append(ch)
    return "".join(chars)


@click.command("log")
@click.option("-info", "--info", "info", is_flag=True, help="Add an information entry (default)")
@click.option("-warn", "--warn", "warn", is_flag=True, help="Add a warning entry")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def log_command(state, info: bool, warn: bool, project: str, job: str) -> int:
    """Add a message read from stdin to the job log."""
    engine = state.engine
    event_type = LogType.WARNING if warn else LogType.INFO
    try:
        with open_job(engine, project, job) as handle:
            click.echo("Enter message text, terminating with Ctrl-d")
            message = read_message(click.get_text_stream("stdin"))
            click.echo("\nMessage read.")

            with reporting("Error adding log entry"):
                engine.log_event(handle, event_type, message)
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("logsum")
@click.option("-type", "--type", "event_type", type=click.Choice(LOG_TYPE_NAMES), default=None,
              help="Only show entries of this type")
@click.option("-max", "--max", "max_number", type=int, default=0, help="Show at most n entries (0 means all)")
@click.argument("project")
@click.argument("job")
@click.pass_obj
def logsum_command(state, event_type: str | None, max_number: int, project: str, job: str) -> int:
    """Summarise the job log, one entry per line."""
    engine = state.engine
    log_type = LogType[event_type] if event_type else LogType.ANY
    try:
        with open_job(engine, project, job) as handle:
            try:
                for event in engine.iter_log_entries(handle, log_type, max_number=max_number):
                    click.echo(f"{event.event_id}\t{log_type_label(event.type)}\t{format_ctime(event.timestamp)}")
                    click.echo(f"\t{event.message}")
            except DSJobError as e:
                show_error(f"Error {e.status} getting log summary")
                raise CommandError(e.status) from e
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("logdetail", context_settings={"ignore_unknown_options": True})
@click.argument("project")
@click.argument("job")
@click.argument("event_id", type=int)
@click.pass_obj
def logdetail_command(state, project: str, job: str, event_id: int) -> int:
    """Show a log entry in full."""
    engine = state.engine
    try:
        with open_job(engine, project, job) as handle:
            with reporting("Error {status} getting event details"):
                detail = engine.get_log_entry(handle, event_id)
            print_log_detail(detail)
    except CommandError as e:
        return e.status

    return DSJE_NOERROR


@click.command("lognewest")
@click.argument("project")
@click.argument("job")
@click.argument("event_type", type=click.Choice(LOG_TYPE_NAMES), required=False)
@click.pass_obj
def lognewest_command(state, project: str, job: str, event_type: str | None) -> int:
    """Show the id of the newest log entry, optionally of one type."""
    engine = state.engine
    log_type = LogType[event_type] if event_type else LogType.ANY
    try:
        with open_job(engine, project, job) as handle:
            with reporting("Error {status} getting event details"):
                newest = engine.get_newest_log_id(handle, log_type)
            click.echo(f"Newest id = {newest}")
    except CommandError as e:
        return e.status

    return DSJE_NOERROR
