"""
ocimachine CLI — manage OCI machines from the command line.

The main Click group is defined here; command modules register their
commands on it via register functions.

Entry point: ocimachine.cli:main
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from .. import MACHINE_HOME, __version__

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="ocimachine")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.option(
    "--home", default=MACHINE_HOME, type=click.Path(),
    help="Machine store directory.",
)
@click.pass_context
def main(ctx: click.Context, debug: bool, home: str):
    """ocimachine — Oracle Cloud Infrastructure machines.

    \b
    Create:   ocimachine create <name> --oci-... flags
    Inspect:  ocimachine status <name>
    Remove:   ocimachine rm <name>
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
    )
    ctx.ensure_object(dict)
    ctx.obj["home"] = Path(home).expanduser()


# ---------------------------------------------------------------------------
# Register commands from modular files
# ---------------------------------------------------------------------------

from .machine import register_machine_commands

register_machine_commands(main)
