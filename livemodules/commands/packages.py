"""Package listing command."""

from __future__ import annotations

import asyncio
import json

import click
from rich.table import Table

from ..console import console
from ..paths import create_module_system


@click.command("packages")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_obj
def packages_cmd(settings, as_json: bool):
    """Scan the configured package directories and list what was found."""
    system = create_module_system(settings)
    asyncio.run(system.registry.update())
    packages = system.list_packages()

    if as_json:
        click.echo(json.dumps(packages, indent=2))
        return

    if not packages:
        console.print("[dim]No packages found[/dim]")
        return

    table = Table(title="Registered Packages", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Version", style="yellow")
    table.add_column("Location", style="magenta")
    for package in packages:
        table.add_row(package["name"], package["version"] or "-", package["url"])
    console.print(table)
