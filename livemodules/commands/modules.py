"""Module commands: load a module and inspect its dependency graph."""

from __future__ import annotations

import asyncio
import sys

import click
from rich.table import Table
from rich.tree import Tree

from ..console import console
from ..console import error_console
from ..errors import LiveModulesError
from ..paths import create_module_system
from ..system import ModuleSystem
from ..utils.error_format import escape_markup
from ..utils.error_format import format_cause_chain


async def _load(system: ModuleSystem, spec: str):
    await system.registry.update()
    return await system.load(spec)


def _run_load(settings, spec: str) -> tuple[ModuleSystem, object]:
    system = create_module_system(settings)
    try:
        exports = asyncio.run(_load(system, spec))
    except LiveModulesError as e:
        for line in format_cause_chain(e):
            error_console.print(f"[red]Error:[/red] {escape_markup(line)}")
        sys.exit(1)
    return system, exports


def _short(value: object, width: int = 60) -> str:
    text = repr(value)
    return text if len(text) <= width else text[: width - 3] + "..."


@click.command("load")
@click.argument("spec")
@click.pass_obj
def load_cmd(settings, spec: str):
    """Load SPEC (a package name, module path or url) and show its exports."""
    system, exports = _run_load(settings, spec)
    module_id = system.resolve(spec)

    if not exports:
        console.print(f"[dim]{escape_markup(module_id)} has no exports[/dim]")
        return

    table = Table(title=f"Exports of {escape_markup(module_id)}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Type", style="yellow")
    table.add_column("Value")
    for name, value in exports.items():
        table.add_row(name, type(value).__name__, escape_markup(_short(value)))
    console.print(table)


@click.command("deps")
@click.argument("spec")
@click.option("--dependents", is_flag=True, help="Show modules importing SPEC instead of its requirements")
@click.pass_obj
def deps_cmd(settings, spec: str, dependents: bool):
    """List the modules SPEC requires, transitively."""
    system, _ = _run_load(settings, spec)
    ids = system.dependents_of(spec) if dependents else system.requirements_of(spec)
    if not ids:
        console.print("[dim]None[/dim]")
        return
    for module_id in ids:
        console.print(escape_markup(module_id))


@click.command("require-map")
@click.argument("spec")
@click.pass_obj
def require_map_cmd(settings, spec: str):
    """Load SPEC and print the dependency tree of every live module."""
    system, _ = _run_load(settings, spec)
    require_map = system.require_map()

    tree = Tree("[bold]Live modules[/bold]")
    for module_id, deps in sorted(require_map.items()):
        branch = tree.add(f"[green]{escape_markup(module_id)}[/green]")
        for dep in deps:
            branch.add(escape_markup(dep))
    console.print(tree)
