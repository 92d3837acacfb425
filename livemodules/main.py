"""livemodules command line interface."""

import click

from livemodules.commands.modules import deps_cmd
from livemodules.commands.modules import load_cmd
from livemodules.commands.modules import require_map_cmd
from livemodules.commands.packages import packages_cmd
from livemodules.logging_setup import init_json_logging
from livemodules.paths import load_cli_settings


@click.group(invoke_without_command=True)
@click.option(
    "--package-dir", "-p", "package_dirs", multiple=True, help="Package directory to register (repeatable)"
)
@click.option(
    "--collection-dir",
    "-c",
    "collection_dirs",
    multiple=True,
    help="Collection directory laid out as <name>/<version>/ (repeatable)",
)
@click.option("--base-url", default=None, help="Url or directory relative module ids resolve against")
@click.option("--log-level", default=None, help="Log level for the JSONL log")
@click.option("--log-file", default=None, help="Write JSONL logs to this file")
@click.pass_context
def cli(ctx, package_dirs, collection_dirs, base_url, log_level, log_file):
    """livemodules - live module graph with hot reloading."""
    try:
        settings = load_cli_settings(package_dirs, collection_dirs, base_url, log_level, log_file)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    if settings.log_path:
        init_json_logging(settings.log_path, settings.log_level)
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


cli.add_command(packages_cmd)
cli.add_command(load_cmd)
cli.add_command(deps_cmd)
cli.add_command(require_map_cmd)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
