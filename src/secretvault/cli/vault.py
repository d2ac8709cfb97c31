"""Vault commands: scan, lock, unlock, restore, status, run."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from ._common import console, current_project, fail, require_key


def register_vault_commands(main: click.Group) -> None:
    """Register the core vault commands."""

    @main.command()
    @click.argument("paths", nargs=-1)
    def scan(paths: tuple[str, ...]):
        """List sensitive files under PATHS (default: current directory).

        Examples:

            secretvault scan

            secretvault scan infra/ .env.local
        """
        from ..config import load_rules
        from ..discovery import find_sensitive_files
        from ..project import normalize_roots

        try:
            targets = find_sensitive_files(normalize_roots(paths), rules=load_rules())
        except OSError as exc:
            fail(str(exc))

        if not targets:
            console.print("No sensitive files detected.")
            return
        for target in targets:
            console.print(escape(target))
        console.print(f"[bold]Detected {len(targets)} sensitive file(s).[/]")

    @main.command()
    @click.argument("paths", nargs=-1)
    @click.option("--dry-run", is_flag=True, help="Show files that would be encrypted.")
    def lock(paths: tuple[str, ...], dry_run: bool):
        """Encrypt sensitive files and track them in the vault.

        Previously tracked files whose plaintext has reappeared are
        locked again as well.
        """
        from ..config import load_rules
        from ..discovery import find_sensitive_files
        from ..operations import OperationError, lock_targets, merge_tracked_lock_targets
        from ..project import normalize_roots
        from ..vault_store import ManifestError

        ctx = current_project()
        key = require_key(ctx)
        try:
            discovered = find_sensitive_files(normalize_roots(paths), rules=load_rules())
            targets = merge_tracked_lock_targets(ctx, discovered)
        except (OSError, ManifestError) as exc:
            fail(str(exc))

        if not targets:
            console.print("No sensitive files detected to lock.")
            return

        try:
            result = lock_targets(ctx, key, targets, dry_run=dry_run)
        except OperationError as exc:
            fail(str(exc))

        for path in result.processed:
            prefix = "[dim][dry-run][/] " if dry_run else "[green]locked[/] "
            console.print(prefix + escape(path))
        verb = "Would lock" if dry_run else "Locked"
        console.print(f"[bold]{verb} {result.count} file(s).[/]")

    @main.command()
    @click.argument("paths", nargs=-1)
    @click.option("--dry-run", is_flag=True, help="Show files that would be decrypted.")
    @click.option("--force", is_flag=True, help="Overwrite plaintext that already exists.")
    def unlock(paths: tuple[str, ...], dry_run: bool, force: bool):
        """Decrypt .svault sidecars back into plaintext files."""
        from ..operations import OperationError, unlock_targets
        from ..project import normalize_roots

        ctx = current_project()
        key = require_key(ctx)
        try:
            result = unlock_targets(key, normalize_roots(paths), dry_run=dry_run, force=force)
        except (OperationError, OSError) as exc:
            fail(str(exc))

        if not result.processed:
            console.print("No encrypted files detected to unlock.")
            return
        for path in result.processed:
            prefix = "[dim][dry-run][/] " if dry_run else "[green]unlocked[/] "
            console.print(prefix + escape(path))
        verb = "Would unlock" if dry_run else "Unlocked"
        console.print(f"[bold]{verb} {result.count} file(s).[/]")

    @main.command()
    @click.argument("names", nargs=-1)
    @click.option("--all", "restore_all", is_flag=True,
                  help="Restore every tracked file (default: only missing ones).")
    @click.option("--force", is_flag=True, help="Overwrite plaintext files when restoring.")
    def restore(names: tuple[str, ...], restore_all: bool, force: bool):
        """Restore tracked files from the best available encrypted source.

        NAMES may be absolute paths, project-relative paths or basenames.

        Examples:

            secretvault restore

            secretvault restore .env --force
        """
        from ..crypto import EnvelopeError, TargetExistsError
        from ..onepassword import DocumentStoreError, OnePasswordStore
        from ..restore import NoSourceAvailableError, restore_entries
        from ..vault_store import ManifestError

        ctx = current_project()
        try:
            result = restore_entries(
                ctx,
                key_provider=lambda: require_key(ctx),
                names=list(names),
                restore_all=restore_all,
                force=force,
                document_store=OnePasswordStore(),
            )
        except (NoSourceAvailableError, TargetExistsError, EnvelopeError,
                DocumentStoreError, ManifestError, OSError) as exc:
            fail(str(exc))

        for path in result.skipped:
            console.print(f"[yellow]skip[/] {escape(path)} (already exists, use --force to overwrite)")
        if not result.restored and not result.skipped:
            console.print("No tracked files to restore.")
            return
        for target in result.sources:
            console.print(f"[green]restored[/] {escape(target)}")
        if not result.restored:
            console.print("Nothing restored.")
            return
        console.print(f"[bold]Restored {len(result.restored)} file(s).[/]")

    @main.command()
    def status():
        """Show tracked files and where their ciphertext lives."""
        from ..project import file_exists
        from ..restore import resolve_local_source, resolve_target_path
        from ..vault_store import ManifestError, load_manifest, sorted_entry_keys

        ctx = current_project()
        try:
            manifest, manifest_path = load_manifest(ctx)
        except ManifestError as exc:
            fail(str(exc))

        if not manifest.entries:
            console.print("No tracked files for this project.")
            return

        table = Table(title=f"Vault: {escape(str(ctx.project_path))}")
        table.add_column("File", style="cyan")
        table.add_column("Plaintext")
        table.add_column("Local source")
        table.add_column("1Password")
        table.add_column("Locked at", style="dim")

        try:
            for key in sorted_entry_keys(manifest):
                entry = manifest.entries[key]
                target = resolve_target_path(ctx, entry)
                source = resolve_local_source(ctx, entry, target)
                table.add_row(
                    escape(entry.display_name),
                    "yes" if file_exists(target) else "no",
                    escape(str(source)) if source else "[red]none[/]",
                    "yes" if entry.has_remote_document else "no",
                    entry.locked_at,
                )
        except ManifestError as exc:
            fail(str(exc))

        console.print(table)
        console.print(f"[dim]Manifest: {escape(str(manifest_path))}[/]")

    @main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
    @click.argument("command", nargs=-1, type=click.UNPROCESSED)
    def run(command: tuple[str, ...]):
        """Run COMMAND with tracked files restored, then lock them again.

        The command inherits the terminal and sees SECRETVAULT_RUNTIME=1.

        Examples:

            secretvault run -- terraform plan

            secretvault run -- docker compose up
        """
        from ..config import load_rules
        from ..crypto import EnvelopeError, TargetExistsError
        from ..onepassword import DocumentStoreError, OnePasswordStore
        from ..operations import run_with_secrets
        from ..restore import NoSourceAvailableError
        from ..vault_store import ManifestError

        if not command:
            fail("missing command. usage: secretvault run -- <command>")

        ctx = current_project()
        key = require_key(ctx)
        try:
            result = run_with_secrets(
                ctx, key, command, rules=load_rules(), document_store=OnePasswordStore(),
            )
        except (NoSourceAvailableError, TargetExistsError, EnvelopeError,
                DocumentStoreError, ManifestError, OSError) as exc:
            fail(f"prepare runtime secrets: {exc}")

        if result.run_error and result.lock_error:
            fail(f"wrapped command failed: {result.run_error}; re-lock failed: {result.lock_error}")
        if result.lock_error:
            fail(f"re-lock failed: {result.lock_error}")
        if result.run_error:
            if result.returncode is None:
                fail(f"wrapped command failed: {result.run_error}")
            raise SystemExit(result.returncode)
        console.print(f"[bold]Re-locked {len(result.locked)} file(s).[/]")
