"""
Vault manifest store.

Each project gets a directory under the vault home:

    ~/.secretvault/
    ├── config.yaml                       # optional user configuration
    └── projects/<project-id>/
        ├── manifest.json                 # VaultManifest (0600)
        ├── manifest.lock                 # advisory lock for read-modify-write
        └── files/<id[:2]>/<id>.svault    # content-addressed ciphertext backups

The manifest is always rewritten in full through the atomic writer.
Mutations hold an exclusive flock on ``manifest.lock`` for the whole
load-mutate-save sequence so concurrent invocations cannot lose updates.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from .atomic import write_atomic
from .models import (
    ENCRYPTED_EXT,
    MANIFEST_VERSION,
    ProjectContext,
    VaultEntry,
    VaultManifest,
    utc_timestamp,
)
from .project import PathLike, hash_path_id, project_relative_path

logger = logging.getLogger("secretvault.vault_store")

MANIFEST_NAME = "manifest.json"
LOCK_NAME = "manifest.lock"

_held_locks: dict[str, list[int]] = {}


class ManifestError(Exception):
    """Raised when a manifest cannot be parsed or a lookup fails."""


class EntryNotFoundError(ManifestError, KeyError):
    """Raised when a path is not tracked in the manifest."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class MissingFileIDError(ManifestError):
    """Raised when an entry has neither a backup path nor a file id."""


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def vault_home_dir() -> Path:
    """Resolve the vault home, honouring ``SECRETVAULT_HOME`` at call time."""
    env_home = os.environ.get("SECRETVAULT_HOME", "").strip()
    if env_home:
        return Path(os.path.abspath(os.path.expanduser(env_home)))
    return Path.home() / ".secretvault"


def vault_project_path(context: ProjectContext) -> Path:
    """Directory holding one project's manifest and backups."""
    return vault_home_dir() / "projects" / context.project_id


def vault_manifest_path(context: ProjectContext) -> Path:
    return vault_project_path(context) / MANIFEST_NAME


def absolute_vault_file_path(context: ProjectContext, rel: PathLike) -> Path:
    """Join a manifest-relative path onto the project's vault directory."""
    return vault_project_path(context) / rel


def backup_relative_path(file_id: str) -> str:
    """Sharded backup location for a file id: ``files/<id[:2]>/<id>.svault``."""
    return os.path.join("files", file_id[:2], file_id + ENCRYPTED_EXT)


def entry_backup_path(context: ProjectContext, entry: VaultEntry) -> Path:
    """Absolute vault-home backup path for an entry.

    Raises:
        MissingFileIDError: The entry records neither a backup path nor an id.
    """
    if entry.vault_file.strip():
        return absolute_vault_file_path(context, entry.vault_file)
    if not entry.file_id.strip():
        raise MissingFileIDError("vault entry missing file id")
    return absolute_vault_file_path(context, backup_relative_path(entry.file_id))


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def manifest_lock(context: ProjectContext) -> Iterator[Path]:
    """Hold an exclusive advisory lock on the project's manifest.

    Re-entrant within one process, so helpers that lock can be composed.

    Yields:
        Path of the lock file.
    """
    project_dir = vault_project_path(context)
    project_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    lock_path = project_dir / LOCK_NAME
    key = str(lock_path)

    held = _held_locks.get(key)
    if held is not None:
        held[1] += 1
        try:
            yield lock_path
        finally:
            held[1] -= 1
        return

    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        _held_locks[key] = [fd, 1]
        try:
            yield lock_path
        finally:
            del _held_locks[key]
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def new_manifest(context: ProjectContext) -> VaultManifest:
    """A fresh, empty manifest for the project (not yet on disk)."""
    return VaultManifest(
        version=MANIFEST_VERSION,
        project_id=context.project_id,
        project_path=str(context.project_path),
        updated_at=utc_timestamp(),
        entries={},
    )


def load_manifest(context: ProjectContext) -> tuple[VaultManifest, Path]:
    """Load the project's manifest, or synthesize an empty one.

    Older manifests missing the version, project id or project path are
    back-filled from ``context``.

    Returns:
        Tuple of (manifest, manifest path).

    Raises:
        ManifestError: The file exists but is not a valid manifest.
    """
    manifest_path = vault_manifest_path(context)
    try:
        raw = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return new_manifest(context), manifest_path

    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("manifest root must be an object")
        if data.get("entries") is None:
            data["entries"] = {}
        manifest = VaultManifest.model_validate(data)
    except (ValueError, ValidationError) as exc:
        raise ManifestError(f"malformed manifest {manifest_path}: {exc}") from exc

    if manifest.version == 0:
        manifest.version = MANIFEST_VERSION
    if not manifest.project_id.strip():
        manifest.project_id = context.project_id
    if not manifest.project_path.strip():
        manifest.project_path = str(context.project_path)
    return manifest, manifest_path


def save_manifest(path: PathLike, manifest: VaultManifest) -> None:
    """Persist the full manifest atomically (0600, directory 0700)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    data = manifest.model_dump_json(indent=2)
    write_atomic(path, data.encode("utf-8"), 0o600)


def sorted_entry_keys(manifest: VaultManifest) -> list[str]:
    """Manifest keys in deterministic order."""
    return sorted(manifest.entries)


def get_entry(manifest: VaultManifest, original_path: PathLike) -> VaultEntry:
    """Look up an entry by original path.

    Raises:
        EntryNotFoundError: The path is not tracked.
    """
    abs_path = os.path.abspath(original_path)
    try:
        return manifest.entries[abs_path]
    except KeyError:
        raise EntryNotFoundError(f"vault entry not found for {abs_path}") from None


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def upsert_entry(
    context: ProjectContext,
    original_path: PathLike,
    encrypted_path: PathLike,
    original_mode: int,
) -> VaultEntry:
    """Record a freshly locked file and back up its ciphertext.

    The backup slot is addressed by the hash of the absolute original
    path, so re-locking the same path overwrites the same slot and the
    same manifest entry. Locally tracked fields are fully replaced.

    Args:
        context: Current project.
        original_path: Plaintext path that was locked.
        encrypted_path: Sidecar written by the codec.
        original_mode: Permission bits of the plaintext.

    Returns:
        The stored VaultEntry.
    """
    abs_original = os.path.abspath(original_path)
    abs_encrypted = os.path.abspath(encrypted_path)

    with manifest_lock(context):
        manifest, manifest_path = load_manifest(context)

        file_id = hash_path_id(abs_original)
        vault_rel = backup_relative_path(file_id)
        vault_abs = absolute_vault_file_path(context, vault_rel)
        vault_abs.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        with open(abs_encrypted, "rb") as f:
            payload = f.read()
        write_atomic(vault_abs, payload, 0o600)

        now = utc_timestamp()
        entry = VaultEntry(
            file_id=file_id,
            absolute_path=abs_original,
            relative_path=project_relative_path(context.project_path, abs_original) or "",
            directory=os.path.dirname(abs_original),
            filename=os.path.basename(abs_original),
            vault_file=vault_rel,
            project_encrypted_file=abs_encrypted,
            locked_at=now,
            original_mode=original_mode & 0o777,
        )
        manifest.entries[abs_original] = entry
        manifest.updated_at = now
        save_manifest(manifest_path, manifest)

    logger.info("Tracked %s as %s", abs_original, file_id[:12])
    return entry


def annotate_entry(
    context: ProjectContext,
    original_path: PathLike,
    store_name: str,
    document_id: str,
    title: str,
    checksum: str,
) -> VaultEntry:
    """Attach remote-document provenance to a tracked entry.

    Raises:
        EntryNotFoundError: The path is not tracked.
    """
    with manifest_lock(context):
        manifest, manifest_path = load_manifest(context)
        entry = get_entry(manifest, original_path)

        now = utc_timestamp()
        entry = entry.model_copy(update={
            "onepassword_vault": store_name,
            "onepassword_document": document_id,
            "onepassword_title": title,
            "checksum_sha256": checksum,
            "absorbed_at": now,
        })
        manifest.entries[entry.absolute_path] = entry
        manifest.updated_at = now
        save_manifest(manifest_path, manifest)
    return entry


def clear_remote_metadata(context: ProjectContext, keys: list[str]) -> int:
    """Drop remote-document provenance from the given manifest keys.

    Returns:
        Number of entries changed.
    """
    changed = 0
    with manifest_lock(context):
        manifest, manifest_path = load_manifest(context)
        for key in keys:
            entry = manifest.entries.get(key)
            if entry is None:
                continue
            manifest.entries[key] = entry.model_copy(update={
                "onepassword_vault": "",
                "onepassword_document": "",
                "onepassword_title": "",
                "checksum_sha256": "",
                "absorbed_at": "",
            })
            changed += 1
        if changed:
            manifest.updated_at = utc_timestamp()
            save_manifest(manifest_path, manifest)
    return changed


def record_restores(context: ProjectContext, keys: list[str], restored_at: Optional[str] = None) -> None:
    """Stamp ``last_restored_at`` on restored entries and persist once."""
    if not keys:
        return
    now = restored_at or utc_timestamp()
    with manifest_lock(context):
        manifest, manifest_path = load_manifest(context)
        for key in keys:
            entry = manifest.entries.get(key)
            if entry is not None:
                manifest.entries[key] = entry.model_copy(update={"last_restored_at": now})
        manifest.updated_at = now
        save_manifest(manifest_path, manifest)
