"""Config check command."""

import click
from rich.table import Table

from . import cli
from .shared import console, load_accounts_or_exit


@cli.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Account config file (JSON)")
def check(config_path):
    """Validate the account config and show a summary."""
    from ircbridge.config import load_settings

    path = config_path or load_settings().config_path
    accounts = load_accounts_or_exit(path)

    table = Table(title=f"IRC accounts ({path})", padding=(0, 1))
    table.add_column("Account", style="bold")
    table.add_column("Server")
    table.add_column("TLS")
    table.add_column("Nickname")
    table.add_column("Auth")
    table.add_column("DMs")
    table.add_column("Groups")
    table.add_column("Channels")

    problems = 0
    for account_id, cfg in accounts.items():
        if not cfg.configured:
            server = "[red]not configured[/red]"
            if cfg.enabled:
                problems += 1
        else:
            server = f"{cfg.server}:{cfg.port}"
        if not cfg.enabled:
            account_id = f"{account_id} [dim](disabled)[/dim]"

        auth = cfg.auth_mode
        if cfg.nickserv_password and auth == "none":
            auth = "[yellow]none (nickserv not allowed)[/yellow]"
        elif auth == "sasl" and not cfg.tls:
            auth = "[yellow]sasl (no TLS)[/yellow]"

        table.add_row(
            account_id,
            server,
            "[green]yes[/green]" if cfg.tls else "[yellow]no[/yellow]",
            cfg.nickname,
            auth,
            cfg.dm.policy.value,
            cfg.group_policy.value,
            ", ".join(cfg.channels) or "[dim]-[/dim]",
        )

    console.print(table)
    if problems:
        console.print(f"[red]{problems} account(s) have no server configured.[/red]")
        raise click.exceptions.Exit(1)
    console.print("[green]Config OK.[/green]")
