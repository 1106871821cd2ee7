"""Machine commands: create, start, stop, restart, kill, rm, ip, url, status, ls, flags."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import click
from click.core import ParameterSource
from rich.markup import escape
from rich.table import Table

from ..client import create_client
from ..config import CONFIG_FILE, load_config_file
from ..driver import OCIDriver
from ..errors import DriverError
from ..flags import CREATE_FLAGS
from ..models import MachineState
from ._common import console, driver_errors, get_store, state_label

logger = logging.getLogger(__name__)

_CLICK_TYPES = {"int": int, "string": str}


def _create_flag_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Attach one click option per create flag.

    Defaults are left unset on the click side so a YAML value can still
    fill in when neither the flag nor its env var was given.
    """
    for flag in reversed(CREATE_FLAGS):
        help_text = flag.usage
        if flag.default not in (None, ""):
            help_text += f" [default: {flag.default}]"
        if flag.kind == "bool":
            option = click.option(
                f"--{flag.name}", flag.dest, is_flag=True, default=None,
                envvar=flag.envvar, help=help_text,
            )
        else:
            option = click.option(
                f"--{flag.name}", flag.dest, type=_CLICK_TYPES[flag.kind],
                default=None, envvar=flag.envvar, help=help_text,
            )
        fn = option(fn)
    return fn


def _merge_options(
    ctx: click.Context, values: Dict[str, Any], file_options: Dict[str, Any],
) -> Dict[str, Any]:
    """Combine CLI and env values with the config file, keyed by flag name."""
    options: Dict[str, Any] = {}
    for flag in CREATE_FLAGS:
        value = values.get(flag.dest)
        source = ctx.get_parameter_source(flag.dest)
        if source in (None, ParameterSource.DEFAULT) and flag.name in file_options:
            value = file_options[flag.name]
        options[flag.name] = value
    return options


def _load(ctx: click.Context, name: str) -> OCIDriver:
    return get_store(ctx).load(name, client_factory=create_client)


def register_machine_commands(main: click.Group) -> None:
    """Register the machine lifecycle commands."""

    @main.command("create")
    @click.argument("name")
    @click.option(
        "--config", "config_file", type=click.Path(exists=True, dir_okay=False), default=None,
        help="YAML file with flag defaults (default: <home>/config/config.yaml).",
    )
    @_create_flag_options
    @click.pass_context
    @driver_errors
    def create(ctx: click.Context, name: str, config_file: Optional[str], **values: Any):
        """Create a machine on OCI.

        \b
        Example:

            ocimachine create node1 --oci-region us-phoenix-1 ...
        """
        store = get_store(ctx)
        if store.exists(name):
            raise DriverError(f"machine {name} already exists")

        config_path = Path(config_file) if config_file else store.home / CONFIG_FILE
        options = _merge_options(ctx, values, load_config_file(config_path))

        driver = OCIDriver(name, store.home, client_factory=create_client)
        driver.set_config_from_flags(options)
        driver.pre_create_check()

        console.print(f"\n[cyan]Creating machine {name}...[/]")
        try:
            driver.create()
        except DriverError:
            if driver.record.instance_id:
                store.save(driver)
                console.print(
                    f"[yellow]Instance {driver.record.instance_id} was launched; "
                    f"run 'ocimachine rm {name}' to remove it.[/]"
                )
            raise
        store.save(driver)

        console.print(f"[bold green]Machine {name} is running[/]")
        console.print(f"  Instance: [cyan]{driver.record.instance_id}[/]")
        console.print(f"  URL:      [cyan]{driver.get_url()}[/]\n")

    def _lifecycle_command(action: str, summary: str):
        @main.command(action, help=summary)
        @click.argument("name")
        @click.pass_context
        @driver_errors
        def command(ctx: click.Context, name: str):
            driver = _load(ctx, name)
            getattr(driver, action)()
            get_store(ctx).save(driver)
            console.print(f"[green]{action}: {name}[/]")

        return command

    _lifecycle_command("start", "Start a stopped machine.")
    _lifecycle_command("stop", "Stop a running machine.")
    _lifecycle_command("restart", "Stop and then start a machine.")
    _lifecycle_command("kill", "Terminate a machine's instance.")

    @main.command("rm")
    @click.argument("name")
    @click.option("-f", "--force", is_flag=True, help="Remove local state even if terminate fails.")
    @click.pass_context
    @driver_errors
    def rm(ctx: click.Context, name: str, force: bool):
        """Terminate a machine and delete its local state."""
        store = get_store(ctx)
        driver = _load(ctx, name)
        if driver.record.instance_id:
            try:
                driver.remove()
            except DriverError as exc:
                if not force:
                    raise
                console.print(f"[yellow]Terminate failed, removing anyway: {escape(str(exc))}[/]")
        store.remove(name)
        console.print(f"[green]Removed {name}[/]")

    @main.command("ip")
    @click.argument("name")
    @click.pass_context
    @driver_errors
    def ip(ctx: click.Context, name: str):
        """Print a machine's IP address."""
        driver = _load(ctx, name)
        address = driver.get_ip()
        get_store(ctx).save(driver)
        console.print(address)

    @main.command("url")
    @click.argument("name")
    @click.pass_context
    @driver_errors
    def url(ctx: click.Context, name: str):
        """Print a machine's Docker URL."""
        driver = _load(ctx, name)
        value = driver.get_url()
        get_store(ctx).save(driver)
        console.print(value)

    @main.command("status")
    @click.argument("name")
    @click.pass_context
    @driver_errors
    def status(ctx: click.Context, name: str):
        """Print a machine's state."""
        state = _load(ctx, name).get_state()
        console.print(state_label(state))

    @main.command("ls")
    @click.pass_context
    def ls(ctx: click.Context):
        """List machines and their state."""
        store = get_store(ctx)
        machines = store.list_machines()
        if not machines:
            console.print("\n  [dim]No machines found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Name", style="bold cyan")
        table.add_column("Driver")
        table.add_column("State")
        table.add_column("Instance", style="dim")

        for entry in machines:
            state = MachineState.NONE
            if entry.record.instance_id:
                try:
                    state = _load(ctx, entry.name).get_state()
                except DriverError as exc:
                    logger.warning("State of %s unavailable: %s", entry.name, exc)
                    state = MachineState.ERROR
            table.add_row(
                entry.name, entry.driver, state_label(state),
                entry.record.instance_id or "-",
            )

        console.print(table)

    @main.command("flags")
    def flags():
        """List the create flags with their env vars and defaults."""
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Flag", style="bold cyan")
        table.add_column("Env var")
        table.add_column("Default", style="dim")
        table.add_column("Description")

        for flag in CREATE_FLAGS:
            default = "" if flag.default in (None, "") else str(flag.default)
            table.add_row(f"--{flag.name}", flag.envvar, default, flag.usage)

        console.print(table)
