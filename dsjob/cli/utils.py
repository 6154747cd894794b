"""
CLI utility functions shared by the command modules.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Any

import click

from ..core.constants import log_type_label
from ..core.engine import Engine
from ..core.errors import DSJobError
from ..core.models import LogDetail
from .ui import show_error

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"password"}


class CommandError(Exception):
    """An engine failure that has already been reported to the user."""

    def __init__(self, status: int):
        super().__init__(status)
        self.status = status


def mask_sensitive(params: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the parameters with sensitive values masked."""
    data = dict(params)
    for key in data:
        if key in SENSITIVE_KEYS and data[key]:
            data[key] = "****"
    return data


def format_ctime(timestamp: float) -> str:
    return time.ctime(timestamp)


def print_str_list(items: list[str], indent: int = 0) -> None:
    """Print one string per line, each prefixed by `indent` tabs."""
    prefix = "\t" * indent
    for item in items:
        click.echo(f"{prefix}{item}")


def print_log_detail(detail: LogDetail, indent: int = 0) -> None:
    """Print a full log entry, every line prefixed by `indent` tabs."""
    prefix = "\t" * indent
    event_id = "unknown" if detail.event_id < 0 else str(detail.event_id)
    click.echo(f"{prefix}Event Id: {event_id}")
    click.echo(f"{prefix}Time\t: {format_ctime(detail.timestamp)}")
    click.echo(f"{prefix}Type\t: {log_type_label(detail.type)}")
    click.echo(f"{prefix}Message\t:")
    print_str_list(detail.full_message, indent + 1)


@contextmanager
def reporting(message: str) -> Iterator[None]:
    """Report an engine failure inside the block with `message`.

    `{status}` in the message is replaced by the failing status code.
    """
    try:
        yield
    except DSJobError as e:
        show_error(message.format(status=e.status))
        logger.debug(f"{message.format(status=e.status)}: {e}")
        raise CommandError(e.status) from e


@contextmanager
def open_project(engine: Engine, name: str) -> Iterator[Any]:
    with ExitStack() as stack:
        with reporting("ERROR: Failed to open project"):
            handle = stack.enter_context(engine.project(name))
        yield handle


@contextmanager
def open_job(engine: Engine, project: str, job: str, lock: bool = False) -> Iterator[Any]:
    """Open project and job, optionally locking the job, and release them afterwards."""
    with ExitStack() as stack:
        with reporting("ERROR: Failed to open project"):
            project_handle = stack.enter_context(engine.project(project))
        with reporting("ERROR: Failed to open job"):
            job_handle = stack.enter_context(engine.job(project_handle, job))
        if lock:
            with reporting("ERROR: Failed to lock job"):
                stack.enter_context(engine.locked(job_handle))
        yield job_handle
