"""1Password commands: absorb, cleanup."""

from __future__ import annotations

import click
from rich.markup import escape

from ._common import console, current_project, fail, require_key


def register_remote_commands(main: click.Group) -> None:
    """Register the document-store commands."""

    @main.command()
    @click.argument("paths", nargs=-1)
    @click.option("--vault", "vault_name", default=None, help="1Password vault (default from config).")
    @click.option("--dry-run", is_flag=True, help="Show files that would be absorbed.")
    def absorb(paths: tuple[str, ...], vault_name: str, dry_run: bool):
        """Upload sensitive files to 1Password, then lock them."""
        from ..config import load_config
        from ..discovery import find_sensitive_files
        from ..models import ClassifierRules
        from ..onepassword import DocumentStoreError, OnePasswordStore
        from ..operations import OperationError, absorb_targets
        from ..project import normalize_roots
        from ..vault_store import ManifestError

        ctx = current_project()
        key = require_key(ctx)
        config = load_config()
        vault_name = vault_name or config.op_vault

        try:
            targets = find_sensitive_files(
                normalize_roots(paths), rules=ClassifierRules.from_config(config),
            )
        except OSError as exc:
            fail(str(exc))
        if not targets:
            console.print("No sensitive files detected to absorb.")
            return

        try:
            result = absorb_targets(ctx, key, OnePasswordStore(), vault_name, targets, dry_run=dry_run)
        except (DocumentStoreError, OperationError, ManifestError, OSError) as exc:
            fail(str(exc))

        for path in result.processed:
            prefix = "[dim][dry-run][/] " if dry_run else "[green]absorbed[/] "
            console.print(prefix + escape(path))
        verb = "Would absorb" if dry_run else "Absorbed"
        console.print(f"[bold]{verb} {result.count} file(s) into {escape(vault_name)}.[/]")

    @main.command()
    @click.option("--dry-run", is_flag=True, help="Show what would be removed from 1Password.")
    @click.option("--yes", "assume_yes", is_flag=True, help="Skip the confirmation prompt.")
    def cleanup(dry_run: bool, assume_yes: bool):
        """Delete this project's absorbed documents from 1Password."""
        from ..onepassword import DocumentStoreError, OnePasswordStore
        from ..operations import cleanup_remote, collect_cleanup_targets
        from ..vault_store import ManifestError, load_manifest

        ctx = current_project()
        try:
            keys = collect_cleanup_targets(ctx)
            manifest, _ = load_manifest(ctx)
        except ManifestError as exc:
            fail(str(exc))
        if not keys:
            console.print("No absorbed 1Password documents found for this project.")
            return

        console.print("1Password documents queued for cleanup:")
        for key in keys:
            entry = manifest.entries[key]
            where = f" (vault: {escape(entry.onepassword_vault)})" if entry.onepassword_vault else ""
            console.print(f"- {escape(entry.display_name)} -> {escape(entry.onepassword_document)}{where}")

        if dry_run:
            console.print(f"Would remove {len(keys)} document(s) from 1Password.")
            return
        if not assume_yes and not click.confirm("Proceed with 1Password cleanup", default=False):
            console.print("Cancelled.")
            return

        try:
            result = cleanup_remote(ctx, OnePasswordStore(), keys=keys)
        except (DocumentStoreError, ManifestError) as exc:
            fail(str(exc))

        for key, error in result.failed.items():
            console.print(f"[red]failed[/] {escape(key)}: {escape(error)}")
        if result.failed:
            fail(f"cleanup removed {result.count} document(s), {len(result.failed)} failed")
        console.print(f"[bold]Cleaned up {result.count} document(s) from 1Password.[/]")
