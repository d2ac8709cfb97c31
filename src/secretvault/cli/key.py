"""Key commands: set, show, clear."""

from __future__ import annotations

import click
from rich.markup import escape

from ._common import CLI_NAME, console, current_project, fail


def register_key_commands(main: click.Group) -> None:
    """Register the key command group."""

    @main.group()
    def key():
        """Manage the project's encryption key."""

    @key.command("set")
    @click.option("--value", default=None, help="Passphrase to derive the key from.")
    @click.option("--generate", is_flag=True, help="Generate a random key (recommended).")
    def key_set(value: str, generate: bool):
        """Create or replace the key for this project."""
        from ..keystore import InvalidKeyError, fingerprint, key_from_input, save_project_key

        ctx = current_project()
        if not generate and value is None:
            value = click.prompt("Encryption key/passphrase", hide_input=True)
        try:
            new_key = key_from_input(value, generate=generate)
            save_project_key(ctx, new_key)
        except InvalidKeyError as exc:
            fail(str(exc))

        console.print(f"Stored encryption key for project [cyan]{ctx.project_path}[/]")
        console.print(f"Key fingerprint: [bold]{fingerprint(new_key)}[/]")

    @key.command("show")
    def key_show():
        """Show whether a key is configured and its fingerprint."""
        from ..keystore import (
            InvalidKeyError,
            KeyNotFoundError,
            fingerprint,
            load_key_metadata,
            load_project_key,
        )

        ctx = current_project()
        try:
            stored = load_project_key(ctx)
        except KeyNotFoundError:
            console.print("No key configured for this project.")
            console.print(f"Run: [cyan]{CLI_NAME} key set[/]")
            return
        except InvalidKeyError as exc:
            fail(str(exc))

        console.print(f"Key is configured for project [cyan]{ctx.project_path}[/]")
        console.print(f"Key fingerprint: [bold]{fingerprint(stored)}[/]")
        meta = load_key_metadata(ctx)
        if meta is not None:
            origin = " by ".join(p for p in (meta.machine, meta.user) if p) or "unknown host"
            console.print(f"Recorded {escape(meta.recorded_at)} on {escape(origin)}")

    @key.command("clear")
    def key_clear():
        """Remove the stored key for this project."""
        from ..keystore import KeyNotFoundError, clear_project_key

        ctx = current_project()
        try:
            clear_project_key(ctx)
        except KeyNotFoundError:
            console.print("No key configured for this project.")
            return
        console.print(f"Cleared key for project [cyan]{ctx.project_path}[/]")
