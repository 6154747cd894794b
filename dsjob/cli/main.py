"""
Main CLI entry point: global connection options and command dispatch.
"""

import logging
import sys

import click
from rich.logging import RichHandler

from .. import __version__
from ..core.constants import DSJE_NOERROR
from ..core.engine import Engine, EngineBackend, EngineConfig, get_engine, load_engine_config
from ..core.errors import DSJobError
from ..utils.config import ConfigManager
from .commands import (
    import_catalog_command,
    jobinfo_command,
    linkinfo_command,
    ljobs_command,
    llinks_command,
    log_command,
    logdetail_command,
    lognewest_command,
    logsum_command,
    lparams_command,
    lprojects_command,
    lstages_command,
    paraminfo_command,
    run_command,
    stageinfo_command,
    stop_command,
)
from .ui import console, err_console, show_error, show_message
from .utils import mask_sensitive

logger = logging.getLogger(__name__)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

# Global options that come before the command, with and without a value
GLOBAL_VALUE_OPTIONS = {
    "-domain", "--domain",
    "-server", "--server",
    "-user", "--user",
    "-password", "--password",
    "--config",
    "--backend",
    "--library",
    "--local-db",
    "--log-file",
}
GLOBAL_FLAG_OPTIONS = {"--debug", "--version", "-h", "--help"}

# Commands of the local engine only, left out of the legacy syntax listing
LOCAL_COMMANDS = {"import-catalog"}


def configure_logging(level: int, log_file: str | None) -> None:
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
    else:
        handler = RichHandler(console=err_console, show_time=False, show_path=False)

    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


def normalize_command(args: list[str]) -> list[str]:
    """Accept `-run` and `/run` as spellings of the `run` command."""
    args = list(args)
    i = 0
    while i < len(args):
        token = args[i]
        name = token.split("=", 1)[0]
        if name in GLOBAL_VALUE_OPTIONS:
            i += 1 if "=" in token else 2
        elif name in GLOBAL_FLAG_OPTIONS:
            i += 1
        else:
            if token[:1] in ("-", "/") and token.lstrip("-/"):
                args[i] = token.lstrip("-/")
            break
    return args


def print_syntax(commands: list[str]) -> None:
    show_message("Command syntax:")
    show_message("\tdsjob [-domain <domain>][-server <server>][-user <user>][-password <password>]")
    show_message("\t\t\t<primary command> [<arguments>]")
    show_message("")
    show_message("Valid primary command options are:")
    for name in commands:
        if name not in LOCAL_COMMANDS:
            show_message(f"\t-{name}")


class CliState:
    """Objects shared by the commands of one invocation."""

    def __init__(self, engine_config: EngineConfig, server_params: dict[str, str | None]):
        self.engine_config = engine_config
        self.server_params = server_params
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        """The engine, created and given the connection details on first use."""
        if self._engine is None:
            self._engine = get_engine(self.engine_config)
            self._engine.set_server_params(**self.server_params)
        return self._engine

    def last_error_msg(self) -> list[str]:
        if self._engine is None:
            return []
        return self._engine.get_last_error_msg()

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close()
            self._engine = None


class DsjobGroup(click.Group):
    """Command group accepting the legacy `-command` syntax."""

    def list_commands(self, ctx: click.Context) -> list[str]:
        return list(self.commands)

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        return super().parse_args(ctx, normalize_command(args))

    def resolve_command(self, ctx: click.Context, args: list[str]):
        if args and self.get_command(ctx, args[0]) is None:
            show_message("Invalid/unknown primary command switch.")
            print_syntax(self.list_commands(ctx))
            ctx.exit(2)
        return super().resolve_command(ctx, args)

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except DSJobError as e:
            show_error(str(e))
            ctx.exit(1)
        except KeyboardInterrupt:
            show_message("Interrupted")
            ctx.exit(130)


@click.group(cls=DsjobGroup, invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.option("-domain", "--domain", help="Services tier as <host>[:<port>]")
@click.option("-server", "--server", help="Engine host name")
@click.option("-user", "--user", help="User name")
@click.option("-password", "--password", help="Password (prompted for when a user is given without one)")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--backend", type=click.Choice([b.value for b in EngineBackend]), help="Engine implementation")
@click.option("--library", "library_path", help="Path to the engine client library")
@click.option("--local-db", "local_db_path", help="Database file of the local engine")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write log messages to this file")
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def main(
    ctx: click.Context,
    domain: str | None,
    server: str | None,
    user: str | None,
    password: str | None,
    config_path: str | None,
    backend: str | None,
    library_path: str | None,
    local_db_path: str | None,
    debug: bool,
    log_file: str | None,
    version: bool,
) -> None:
    """Run, stop and inspect jobs on a DataStage job engine."""
    if version:
        console.print(f"[bold cyan]dsjob[/bold cyan] version [yellow]{__version__}[/yellow]")
        ctx.exit(0)

    config = ConfigManager(config_path)
    level = logging.DEBUG if debug else logging.getLevelName(str(config.get("logging.level", "WARNING")).upper())
    if not isinstance(level, int):
        level = logging.WARNING
    configure_logging(level, log_file or config.get("logging.file"))
    logger.debug(f"Global options: {mask_sensitive(ctx.params)}")

    if ctx.invoked_subcommand is None:
        print_syntax(ctx.command.list_commands(ctx))
        ctx.exit(2)

    try:
        engine_config = load_engine_config(config)
        server_config = config.get_server_config()
    except ValueError as e:
        raise click.UsageError(f"Invalid configuration in {config.config_path}: {e}") from None

    overrides = {
        "backend": EngineBackend(backend) if backend else None,
        "library_path": library_path,
        "local_db_path": local_db_path,
    }
    engine_config = engine_config.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    server_params = {
        "domain": domain or server_config.get("domain"),
        "user": user or server_config.get("user"),
        "password": password or server_config.get("password"),
        "server": server or server_config.get("host"),
    }
    if server_params["user"] and not server_params["password"] and sys.stdin.isatty():
        server_params["password"] = click.prompt("Password", hide_input=True, err=True)

    logger.debug(f"Engine configuration: {engine_config.model_dump(mode='json')}")
    ctx.obj = CliState(engine_config, server_params)
    ctx.call_on_close(ctx.obj.close)


@main.result_callback()
@click.pass_context
def report_status(ctx: click.Context, status: int | None, **kwargs) -> None:
    """Report the command's status code and the engine's last error message."""
    status = DSJE_NOERROR if status is None else status
    if status != DSJE_NOERROR:
        show_message(f"\nStatus code = {status}")

    lines = ctx.obj.last_error_msg() if ctx.obj else []
    if lines:
        show_message("\nLast recorded error message =")
        for line in lines:
            show_message(line)
        show_message("")

    ctx.exit(0 if status == DSJE_NOERROR else 1)


# Add all commands to the main group, in the order they are listed in help
main.add_command(run_command)
main.add_command(stop_command)
main.add_command(lprojects_command)
main.add_command(ljobs_command)
main.add_command(lstages_command)
main.add_command(llinks_command)
main.add_command(jobinfo_command)
main.add_command(stageinfo_command)
main.add_command(linkinfo_command)
main.add_command(lparams_command)
main.add_command(paraminfo_command)
main.add_command(log_command)
main.add_command(logsum_command)
main.add_command(logdetail_command)
main.add_command(lognewest_command)
main.add_command(import_catalog_command)


if __name__ == "__main__":
    main(prog_name="dsjob")
