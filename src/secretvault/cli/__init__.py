"""
SecretVault CLI: lock, unlock and restore sensitive project files.

Each command group lives in its own module and is attached to the main
Click group through a register function.

Entry point: secretvault.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="secretvault")
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr.")
def main(verbose: bool):
    """SecretVault: keep secrets out of your working tree.

    Run every command from the project root.
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .vault import register_vault_commands
from .key import register_key_commands
from .remote import register_remote_commands

register_vault_commands(main)
register_key_commands(main)
register_remote_commands(main)
