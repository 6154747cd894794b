"""
Catalog import for the local engine.
"""

import click
from rich.table import Table

from ...core.catalog import load_catalog
from ...core.constants import DSJE_BADVALUE, DSJE_NOERROR
from ...core.engine import EngineBackend
from ..ui import console, loading_indicator, show_error


@click.command("import-catalog")
@click.argument("catalog_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def import_catalog_command(state, catalog_file: str) -> int:
    """Load projects and jobs from a JSON catalog into the local engine."""
    if state.engine_config.backend != EngineBackend.LOCAL:
        raise click.UsageError("import-catalog only works with the local backend (--backend local)")

    try:
        catalog = load_catalog(catalog_file)
    except (OSError, ValueError) as e:
        show_error(f"Invalid catalog {catalog_file}: {e}")
        return DSJE_BADVALUE

    with loading_indicator(f"Importing {catalog_file}..."):
        stats = state.engine.import_catalog(catalog)

    table = Table(title="Local Engine Catalog", show_header=False, min_width=40)
    table.add_column("Entity", style="cyan")
    table.add_column("Count", style="yellow")

    table.add_row("Projects", str(stats["projects"]))
    table.add_row("Jobs", str(stats["jobs"]))
    table.add_row("Stages", str(stats["stages"]))
    table.add_row("Links", str(stats["links"]))
    table.add_row("Parameters", str(stats["params"]))
    table.add_row("Log Entries", str(stats["log_entries"]))

    console.print(table)
    return DSJE_NOERROR
