"""Shared utilities for ircbridge CLI commands."""

import json

import click
from pydantic import ValidationError
from rich.console import Console

from ircbridge.config import AccountConfig, load_accounts

console = Console()


def load_accounts_or_exit(path: str) -> dict[str, AccountConfig]:
    """Load the account file, printing a readable error instead of a traceback."""
    try:
        return load_accounts(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
    except json.JSONDecodeError as e:
        console.print(f"[red]{path} is not valid JSON: {e}[/red]")
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid account config in {path}:[/red]\n{e}")
    raise click.exceptions.Exit(1)
