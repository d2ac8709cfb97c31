"""
Restore resolver: decide where a tracked file's plaintext comes from.

Sources are tried in order of locality:

    1. the sidecar next to the target (``<target>.svault``)
    2. the sidecar path recorded when the file was locked
    3. the content-addressed backup under the vault home
    4. the remote document store, when the entry was absorbed

The first three are decrypted locally with the project key. The fourth
is delegated to a DocumentStore collaborator.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from pydantic import BaseModel, Field

from .crypto import TargetExistsError, restore_plaintext_from_encrypted
from .models import ENCRYPTED_EXT, ProjectContext, VaultEntry, VaultManifest, utc_timestamp
from .project import file_exists
from .vault_store import entry_backup_path, load_manifest, record_restores, sorted_entry_keys

logger = logging.getLogger("secretvault.restore")


class NoSourceAvailableError(LookupError):
    """Raised when no local ciphertext or remote document exists for an entry."""

    def __init__(self, target: Path) -> None:
        self.target = target
        super().__init__(f"no encrypted source available for {target}")


class DocumentStore(Protocol):
    """Remote document collaborator used as the last restore source."""

    def restore_document(self, entry: VaultEntry, target: Path, mode: int, force: bool) -> None:
        ...


class RestoreResult(BaseModel):
    """Outcome of a batch restore."""

    restored: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    sources: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_target_path(context: ProjectContext, entry: VaultEntry) -> Path:
    """Where an entry's plaintext belongs in the current project."""
    if entry.relative_path.strip():
        return context.project_path / entry.relative_path
    if entry.absolute_path.strip():
        return Path(entry.absolute_path)
    return context.project_path / entry.filename


def resolve_local_source(
    context: ProjectContext,
    entry: VaultEntry,
    target: Path,
) -> Optional[Path]:
    """First existing local ciphertext for an entry, or None.

    Raises:
        MissingFileIDError: The backup slot cannot be computed.
    """
    candidates = [
        str(target) + ENCRYPTED_EXT,
        entry.project_encrypted_file,
        str(entry_backup_path(context, entry)),
    ]
    for candidate in candidates:
        if file_exists(candidate):
            return Path(candidate)
    return None


def select_entries(
    context: ProjectContext,
    manifest: VaultManifest,
    names: Optional[Iterable[str]] = None,
    restore_all: bool = False,
) -> list[VaultEntry]:
    """Pick the entries a restore should act on.

    Without names, every entry whose target is missing is selected (or
    every entry when ``restore_all``). With names, each is matched as an
    absolute manifest key first, then by relative path or basename.
    Duplicates are dropped; unmatched names contribute nothing.
    """
    if not manifest.entries:
        return []

    names = [n for n in (names or []) if n.strip()]
    if not names:
        selected = []
        for key in sorted_entry_keys(manifest):
            entry = manifest.entries[key]
            if restore_all or not file_exists(resolve_target_path(context, entry)):
                selected.append(entry)
        return selected

    seen: set[str] = set()
    selected = []
    for name in names:
        candidate = name.strip()
        entry = manifest.entries.get(os.path.abspath(candidate))
        if entry is not None:
            if entry.absolute_path not in seen:
                seen.add(entry.absolute_path)
                selected.append(entry)
            continue

        clean = os.path.normpath(candidate)
        for key in sorted_entry_keys(manifest):
            entry = manifest.entries[key]
            matches = (
                (entry.relative_path and os.path.normpath(entry.relative_path) == clean)
                or os.path.basename(entry.absolute_path) == clean
            )
            if matches and entry.absolute_path not in seen:
                seen.add(entry.absolute_path)
                selected.append(entry)
    return selected


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


def restore_entry(
    context: ProjectContext,
    entry: VaultEntry,
    key_provider: Callable[[], bytes],
    force: bool = False,
    document_store: Optional[DocumentStore] = None,
) -> str:
    """Reconstruct one entry's plaintext at its target path.

    Args:
        context: Current project.
        entry: Tracked entry to restore.
        key_provider: Called only when a local ciphertext is found.
        force: Overwrite an existing plaintext.
        document_store: Fallback when no local ciphertext exists.

    Returns:
        Description of the source used (a path, or ``remote:<document>``).

    Raises:
        TargetExistsError: Target exists and ``force`` unset.
        NoSourceAvailableError: Nothing local and no remote document.
    """
    target = resolve_target_path(context, entry)
    if file_exists(target) and not force:
        raise TargetExistsError(target)

    source = resolve_local_source(context, entry, target)
    if source is not None:
        restore_plaintext_from_encrypted(source, target, key_provider(), entry.original_mode, force)
        logger.info("Restored %s from %s", target, source)
        return str(source)

    if entry.has_remote_document and document_store is not None:
        document_store.restore_document(entry, target, entry.original_mode, force)
        logger.info("Restored %s from remote document %s", target, entry.onepassword_document)
        return f"remote:{entry.onepassword_document}"

    raise NoSourceAvailableError(target)


def restore_entries(
    context: ProjectContext,
    key_provider: Callable[[], bytes],
    names: Optional[Iterable[str]] = None,
    restore_all: bool = False,
    force: bool = False,
    document_store: Optional[DocumentStore] = None,
) -> RestoreResult:
    """Restore the selected entries and stamp them in the manifest.

    Existing targets are skipped rather than failing the batch when
    ``force`` is unset. The key is fetched at most once.
    """
    manifest, _ = load_manifest(context)
    entries = select_entries(context, manifest, names, restore_all)
    result = RestoreResult()

    cached: list[bytes] = []

    def cached_key() -> bytes:
        if not cached:
            cached.append(key_provider())
        return cached[0]

    for entry in entries:
        target = resolve_target_path(context, entry)
        if file_exists(target) and not force:
            logger.info("Skipping %s (already exists)", target)
            result.skipped.append(str(target))
            continue
        source = restore_entry(context, entry, cached_key, force, document_store)
        result.restored.append(entry.absolute_path)
        result.sources[str(target)] = source

    if result.restored:
        record_restores(context, result.restored, utc_timestamp())
    return result
