"""Start command."""

import asyncio
import click

from . import cli
from .shared import console, load_accounts_or_exit


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Account config file (JSON)")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(config_path, debug):
    """Connect every enabled account and serve the agent."""
    from ircbridge.config import load_settings
    from ircbridge.main import run, setup_logging

    settings = load_settings()
    path = config_path or settings.config_path
    load_accounts_or_exit(path)

    setup_logging(settings.log_file, debug or settings.debug)
    console.print("[bold blue]Starting ircbridge...[/bold blue]")
    asyncio.run(run(config_path=path, settings=settings))
