"""
Rich console helpers. Command data goes to stdout through click.echo; everything
meant for a person (errors, warnings, the wait spinner) goes to stderr here.
"""

from contextlib import contextmanager

from rich.console import Console
from rich.markup import escape
from rich.status import Status

console = Console()
err_console = Console(stderr=True)


class StatusIndicator:
    """Rich status indicator with animations."""

    def __init__(self, message: str = "Working..."):
        self.message = message
        self.status = None

    def __enter__(self):
        self.status = Status(self.message, spinner="dots", console=err_console)
        self.status.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.status:
            self.status.stop()


@contextmanager
def loading_indicator(message: str):
    """Context manager for loading indicators."""
    with StatusIndicator(message) as indicator:
        yield indicator


def show_message(message: str) -> None:
    """Print a plain diagnostic line on stderr."""
    err_console.print(escape(message), soft_wrap=True, highlight=False)


def show_error(message: str) -> None:
    err_console.print(f"[red]{escape(message)}[/red]", soft_wrap=True, highlight=False)
