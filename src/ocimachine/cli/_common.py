"""Shared utilities for the CLI command modules.

Provides the Rich console instance, state formatting, and the error
wrapper every command uses.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.markup import escape

from ..errors import DriverError
from ..models import MachineState
from ..store import MachineStore

console = Console()


def state_label(state: MachineState) -> str:
    """Map a machine state to Rich markup.

    Args:
        state: Machine state.

    Returns:
        str: Rich markup string for the state.
    """
    return {
        MachineState.RUNNING: "[bold green]Running[/]",
        MachineState.STARTING: "[yellow]Starting[/]",
        MachineState.STOPPING: "[yellow]Stopping[/]",
        MachineState.STOPPED: "[red]Stopped[/]",
        MachineState.ERROR: "[bold red]Error[/]",
        MachineState.TIMEOUT: "[bold red]Timeout[/]",
    }.get(state, "[dim]Unknown[/]")


def get_home(ctx: click.Context) -> Path:
    """Machine store root chosen on the main group."""
    return ctx.find_root().obj["home"]


def get_store(ctx: click.Context) -> MachineStore:
    return MachineStore(get_home(ctx))


def driver_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Print driver errors in red and exit with status 1."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except DriverError as exc:
            console.print(f"[red]Error:[/] {escape(str(exc))}")
            raise SystemExit(1)

    return wrapper
