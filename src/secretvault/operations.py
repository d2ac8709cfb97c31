"""
Lock, unlock, absorb, cleanup and run workflows.

These compose the classifier, codec and manifest store into the
sequences the CLI exposes. Files are processed one at a time; the first
failure stops the run and is re-raised with the path attached.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from .crypto import decrypt_file, encrypt_file
from .discovery import find_encrypted_files, find_sensitive_files
from .models import ENCRYPTED_EXT, ClassifierRules, ProjectContext
from .onepassword import (
    DocumentStoreError,
    OnePasswordStore,
    build_document_metadata,
    file_sha256,
    title_for_path,
)
from .project import file_exists
from .restore import DocumentStore, resolve_target_path, restore_entries
from .vault_store import (
    ManifestError,
    annotate_entry,
    clear_remote_metadata,
    load_manifest,
    sorted_entry_keys,
    upsert_entry,
)

logger = logging.getLogger("secretvault.operations")


class OperationError(Exception):
    """A per-file step failed; wraps the cause with the path involved."""

    def __init__(self, action: str, path: str, cause: BaseException) -> None:
        self.action = action
        self.path = path
        self.cause = cause
        super().__init__(f"{action} {path}: {cause}")


class OperationResult(BaseModel):
    """Paths acted on (or that would be, for a dry run)."""

    dry_run: bool = False
    processed: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.processed)


def merge_tracked_lock_targets(context: ProjectContext, discovered: Iterable[str]) -> list[str]:
    """Union of discovered files and tracked entries whose plaintext is back.

    Returns:
        Sorted absolute paths that currently exist.
    """
    targets: set[str] = set()
    for path in discovered:
        if not path.strip():
            continue
        abs_path = os.path.abspath(path)
        if file_exists(abs_path):
            targets.add(abs_path)

    manifest, _ = load_manifest(context)
    for key in sorted_entry_keys(manifest):
        target = resolve_target_path(context, manifest.entries[key])
        if file_exists(target):
            targets.add(str(target))
    return sorted(targets)


def lock_targets(
    context: ProjectContext,
    key: bytes,
    targets: Iterable[str],
    dry_run: bool = False,
) -> OperationResult:
    """Encrypt each target in place and record it in the manifest.

    Raises:
        OperationError: Encryption or tracking failed for a path.
    """
    result = OperationResult(dry_run=dry_run)
    for path in targets:
        if dry_run:
            logger.debug("[dry-run] %s -> %s%s", path, path, ENCRYPTED_EXT)
            result.processed.append(path)
            continue

        try:
            encrypted_path, original_mode = encrypt_file(path, key)
        except (OSError, ValueError) as exc:
            raise OperationError("encrypt", path, exc) from exc
        if not encrypted_path:
            continue
        try:
            upsert_entry(context, path, encrypted_path, original_mode)
        except (OSError, ValueError, ManifestError) as exc:
            raise OperationError("track vault entry", path, exc) from exc

        logger.info("Locked %s", path)
        result.processed.append(path)
    return result


def unlock_targets(
    key: bytes,
    roots: Iterable[str],
    dry_run: bool = False,
    force: bool = False,
) -> OperationResult:
    """Decrypt every sidecar found under ``roots`` back to plaintext.

    Raises:
        OperationError: A sidecar failed to decrypt or its plaintext exists.
    """
    result = OperationResult(dry_run=dry_run)
    for path in find_encrypted_files(roots):
        dst = path[: -len(ENCRYPTED_EXT)]
        if dry_run:
            logger.debug("[dry-run] %s -> %s", path, dst)
            result.processed.append(dst)
            continue
        try:
            decrypt_file(path, key, force=force)
        except (OSError, ValueError) as exc:
            raise OperationError("decrypt", path, exc) from exc
        logger.info("Unlocked %s", dst)
        result.processed.append(dst)
    return result


def absorb_targets(
    context: ProjectContext,
    key: bytes,
    store: OnePasswordStore,
    vault_name: str,
    targets: Iterable[str],
    dry_run: bool = False,
) -> OperationResult:
    """Upload each plaintext to the document store, then lock and annotate it.

    Raises:
        DocumentStoreError: ``op`` is unavailable or an upload failed.
        OperationError: Locking failed after a successful upload.
    """
    result = OperationResult(dry_run=dry_run)
    targets = list(targets)
    if dry_run:
        result.processed.extend(targets)
        return result

    store.ensure_ready()
    for path in targets:
        abs_path = os.path.abspath(path)
        checksum = file_sha256(abs_path)
        title = title_for_path(context, abs_path)
        document_id = store.upload(
            abs_path, vault_name, title, build_document_metadata(context, abs_path),
        )

        locked = lock_targets(context, key, [abs_path])
        if locked.count:
            annotate_entry(context, abs_path, vault_name, document_id, title, checksum)
        logger.info("Absorbed %s into %s as %s", abs_path, vault_name, document_id)
        result.processed.append(abs_path)
    return result


def collect_cleanup_targets(context: ProjectContext) -> list[str]:
    """Manifest keys of entries that have an absorbed remote document."""
    manifest, _ = load_manifest(context)
    return [
        key for key in sorted_entry_keys(manifest)
        if manifest.entries[key].has_remote_document
    ]


def cleanup_remote(
    context: ProjectContext,
    store: OnePasswordStore,
    dry_run: bool = False,
    keys: Optional[list[str]] = None,
) -> OperationResult:
    """Delete absorbed documents and clear their provenance.

    A failing deletion is recorded in ``failed`` and does not stop the
    remaining deletions.
    """
    keys = collect_cleanup_targets(context) if keys is None else keys
    result = OperationResult(dry_run=dry_run)
    if dry_run:
        result.processed.extend(keys)
        return result

    store.ensure_ready()
    manifest, _ = load_manifest(context)
    deleted: list[str] = []
    for key in keys:
        entry = manifest.entries.get(key)
        if entry is None or not entry.has_remote_document:
            continue
        try:
            store.delete_document(entry.onepassword_document, entry.onepassword_vault)
        except DocumentStoreError as exc:
            logger.warning("Failed to delete %s: %s", entry.onepassword_document, exc)
            result.failed[key] = str(exc)
            continue
        deleted.append(key)

    clear_remote_metadata(context, deleted)
    result.processed.extend(deleted)
    return result


# ---------------------------------------------------------------------------
# Runtime wrapper
# ---------------------------------------------------------------------------

RUNTIME_ENV_VAR = "SECRETVAULT_RUNTIME"

CommandRunner = Callable[[list[str], dict[str, str]], "subprocess.CompletedProcess"]


def _run_inherited(argv: list[str], env: dict[str, str]) -> subprocess.CompletedProcess:
    """Run a command attached to the caller's stdin, stdout and stderr."""
    return subprocess.run(argv, env=env, check=False)


class RunResult(BaseModel):
    """Outcome of running a command with the project's secrets in place."""

    returncode: Optional[int] = None
    restored: list[str] = Field(default_factory=list)
    locked: list[str] = Field(default_factory=list)
    run_error: str = ""
    lock_error: str = ""

    @property
    def ok(self) -> bool:
        return not self.run_error and not self.lock_error


def run_with_secrets(
    context: ProjectContext,
    key: bytes,
    command: Sequence[str],
    rules: Optional[ClassifierRules] = None,
    document_store: Optional[DocumentStore] = None,
    runner: Optional[CommandRunner] = None,
) -> RunResult:
    """Restore missing plaintext, run ``command``, then lock everything again.

    The command sees ``SECRETVAULT_RUNTIME=1`` in its environment. The
    re-lock runs whatever the command's outcome, and both failures are
    reported on the result rather than raised.

    Raises:
        ValueError: ``command`` is empty.
        NoSourceAvailableError, EnvelopeError, DocumentStoreError,
        ManifestError, OSError: Restoring before the run failed; the
            command was not started.
    """
    argv = list(command)
    if not argv:
        raise ValueError("missing command")
    runner = runner or _run_inherited

    restored = restore_entries(context, lambda: key, document_store=document_store)
    result = RunResult(restored=restored.restored)

    env = dict(os.environ)
    env[RUNTIME_ENV_VAR] = "1"
    logger.info("Running %s", " ".join(argv))
    try:
        completed = runner(argv, env)
    except OSError as exc:
        result.run_error = str(exc)
    else:
        result.returncode = completed.returncode
        if completed.returncode != 0:
            result.run_error = f"exit status {completed.returncode}"

    try:
        discovered = find_sensitive_files([str(context.project_path)], rules=rules)
        targets = merge_tracked_lock_targets(context, discovered)
        result.locked = lock_targets(context, key, targets).processed
    except (OperationError, ManifestError, OSError) as exc:
        logger.error("Re-lock after %s failed: %s", argv[0], exc)
        result.lock_error = str(exc)
    return result
