"""Tests for the restore resolver."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from secretvault.crypto import TargetExistsError, encrypt_file
from secretvault.models import ProjectContext, VaultEntry
from secretvault.restore import (
    NoSourceAvailableError,
    resolve_local_source,
    resolve_target_path,
    restore_entries,
    restore_entry,
    select_entries,
)
from secretvault.vault_store import (
    annotate_entry,
    entry_backup_path,
    load_manifest,
    upsert_entry,
)


def _lock(context: ProjectContext, path: Path, key: bytes, content: bytes = b"SECRET=1\n") -> VaultEntry:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    os.chmod(path, 0o640)
    dst, mode = encrypt_file(path, key)
    return upsert_entry(context, path, dst, mode)


class FakeDocumentStore:
    """Stands in for 1Password; writes a fixed payload."""

    def __init__(self, payload: bytes = b"FROM_REMOTE=1\n") -> None:
        self.payload = payload
        self.calls: list[tuple[str, Path, int, bool]] = []

    def restore_document(self, entry: VaultEntry, target: Path, mode: int, force: bool) -> None:
        self.calls.append((entry.onepassword_document, target, mode, force))
        Path(target).write_bytes(self.payload)
        os.chmod(target, mode or 0o600)


class KeyCounter:
    """Key provider that records how often it is consulted."""

    def __init__(self, key: bytes) -> None:
        self.key = key
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        return self.key


# ---------------------------------------------------------------------------
# Target resolution
# ---------------------------------------------------------------------------


class TestResolveTargetPath:
    """Relative path, then absolute path, then bare filename."""

    def test_relative_wins(self, context: ProjectContext) -> None:
        entry = VaultEntry(relative_path="conf/.env", absolute_path="/old/root/conf/.env", filename=".env")
        assert resolve_target_path(context, entry) == context.project_path / "conf" / ".env"

    def test_absolute_when_outside_project(self, context: ProjectContext) -> None:
        entry = VaultEntry(absolute_path="/home/me/.ssh/id_rsa", filename="id_rsa")
        assert resolve_target_path(context, entry) == Path("/home/me/.ssh/id_rsa")

    def test_filename_fallback(self, context: ProjectContext) -> None:
        entry = VaultEntry(filename="orphan.pem")
        assert resolve_target_path(context, entry) == context.project_path / "orphan.pem"


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectEntries:
    """Which entries a restore acts on."""

    @pytest.fixture
    def tracked(self, context: ProjectContext, key: bytes, project_dir: Path) -> tuple[Path, Path]:
        """Two tracked files: one restored to plaintext, one still locked."""
        present = project_dir / "a" / ".env"
        missing = project_dir / "b" / "prod.tfvars"
        _lock(context, present, key)
        _lock(context, missing, key)
        present.write_bytes(b"SECRET=1\n")
        return present, missing

    def test_default_selects_missing_only(self, context: ProjectContext, tracked: tuple[Path, Path]) -> None:
        present, missing = tracked
        manifest, _ = load_manifest(context)
        selected = select_entries(context, manifest, None, restore_all=False)
        assert [e.absolute_path for e in selected] == [str(missing)]

    def test_restore_all_selects_everything(self, context: ProjectContext, tracked: tuple[Path, Path]) -> None:
        manifest, _ = load_manifest(context)
        selected = select_entries(context, manifest, [], restore_all=True)
        assert [e.absolute_path for e in selected] == sorted(str(p) for p in tracked)

    def test_names_are_deduplicated(self, context: ProjectContext, tracked: tuple[Path, Path]) -> None:
        """Relative names, with a repeat, give each entry once."""
        manifest, _ = load_manifest(context)
        names = [os.path.join("a", ".env"), os.path.join("b", "prod.tfvars"), os.path.join("a", ".env")]
        selected = select_entries(context, manifest, names)
        assert [e.absolute_path for e in selected] == [str(p) for p in tracked]

    def test_absolute_key_and_basename(self, context: ProjectContext, tracked: tuple[Path, Path]) -> None:
        present, missing = tracked
        manifest, _ = load_manifest(context)
        selected = select_entries(context, manifest, [str(missing), ".env", "prod.tfvars"])
        assert [e.absolute_path for e in selected] == [str(missing), str(present)]

    def test_unmatched_names_select_nothing(self, context: ProjectContext, tracked: tuple[Path, Path]) -> None:
        manifest, _ = load_manifest(context)
        assert select_entries(context, manifest, ["nope.txt", "  "]) == []

    def test_empty_manifest(self, context: ProjectContext) -> None:
        manifest, _ = load_manifest(context)
        assert select_entries(context, manifest, None, restore_all=True) == []


# ---------------------------------------------------------------------------
# Source resolution
# ---------------------------------------------------------------------------


class TestResolveLocalSource:
    """Sidecar, then recorded sidecar, then vault-home backup."""

    def test_sidecar_first(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        entry = _lock(context, project_dir / ".env", key)
        target = resolve_target_path(context, entry)
        assert resolve_local_source(context, entry, target) == Path(str(target) + ".svault")

    def test_recorded_sidecar_second(self, context: ProjectContext, key: bytes, project_dir: Path, tmp_path: Path) -> None:
        entry = _lock(context, project_dir / ".env", key)
        moved = tmp_path / "moved.svault"
        os.replace(entry.project_encrypted_file, moved)
        entry = entry.model_copy(update={"project_encrypted_file": str(moved)})
        target = resolve_target_path(context, entry)
        assert resolve_local_source(context, entry, target) == moved

    def test_falls_back_to_vault_backup(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        """With the project sidecar deleted, the vault-home copy is used."""
        entry = _lock(context, project_dir / ".env", key)
        os.remove(entry.project_encrypted_file)
        target = resolve_target_path(context, entry)
        assert resolve_local_source(context, entry, target) == entry_backup_path(context, entry)

    def test_nothing_local(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        entry = _lock(context, project_dir / ".env", key)
        os.remove(entry.project_encrypted_file)
        os.remove(entry_backup_path(context, entry))
        assert resolve_local_source(context, entry, resolve_target_path(context, entry)) is None


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


class TestRestoreEntry:
    """Single-entry restoration."""

    def test_restores_from_backup(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        entry = _lock(context, project_dir / ".env", key, b"A=1\n")
        os.remove(entry.project_encrypted_file)

        source = restore_entry(context, entry, lambda: key)

        assert source == str(entry_backup_path(context, entry))
        assert (project_dir / ".env").read_bytes() == b"A=1\n"
        assert (project_dir / ".env").stat().st_mode & 0o777 == 0o640

    def test_overwrite_protection(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        """Existing target errors without force and is overwritten with it."""
        entry = _lock(context, project_dir / ".env", key, b"LOCKED=1\n")
        (project_dir / ".env").write_bytes(b"EDITED=1\n")
        keys = KeyCounter(key)

        with pytest.raises(TargetExistsError):
            restore_entry(context, entry, keys)
        assert keys.calls == 0
        assert (project_dir / ".env").read_bytes() == b"EDITED=1\n"

        restore_entry(context, entry, keys, force=True)
        assert (project_dir / ".env").read_bytes() == b"LOCKED=1\n"

    def test_remote_fallback(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        entry = _lock(context, project_dir / ".env", key)
        entry = annotate_entry(context, project_dir / ".env", "Private", "doc-9", "t", "c")
        os.remove(entry.project_encrypted_file)
        os.remove(entry_backup_path(context, entry))
        store = FakeDocumentStore()
        keys = KeyCounter(key)

        source = restore_entry(context, entry, keys, document_store=store)

        assert source == "remote:doc-9"
        assert keys.calls == 0
        assert store.calls == [("doc-9", project_dir / ".env", 0o640, False)]
        assert (project_dir / ".env").read_bytes() == b"FROM_REMOTE=1\n"

    def test_no_source(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        entry = _lock(context, project_dir / ".env", key)
        os.remove(entry.project_encrypted_file)
        os.remove(entry_backup_path(context, entry))
        with pytest.raises(NoSourceAvailableError):
            restore_entry(context, entry, lambda: key, document_store=FakeDocumentStore())


class TestRestoreEntries:
    """Batch restore and manifest stamping."""

    def test_restores_missing_and_stamps(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        _lock(context, project_dir / ".env", key, b"A=1\n")
        _lock(context, project_dir / "prod.pem", key, b"PEM\n")
        keys = KeyCounter(key)

        result = restore_entries(context, keys)

        assert sorted(result.restored) == [str(project_dir / ".env"), str(project_dir / "prod.pem")]
        assert keys.calls == 1
        manifest, _ = load_manifest(context)
        assert all(e.last_restored_at for e in manifest.entries.values())

    def test_skips_existing_without_force(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        _lock(context, project_dir / ".env", key, b"A=1\n")
        (project_dir / ".env").write_bytes(b"LOCAL=1\n")

        result = restore_entries(context, lambda: key, names=[".env"])

        assert result.restored == []
        assert result.skipped == [str(project_dir / ".env")]
        assert (project_dir / ".env").read_bytes() == b"LOCAL=1\n"
        manifest, _ = load_manifest(context)
        assert manifest.entries[str(project_dir / ".env")].last_restored_at == ""

    def test_force_overwrites(self, context: ProjectContext, key: bytes, project_dir: Path) -> None:
        _lock(context, project_dir / ".env", key, b"A=1\n")
        (project_dir / ".env").write_bytes(b"LOCAL=1\n")

        result = restore_entries(context, lambda: key, restore_all=True, force=True)

        assert result.restored == [str(project_dir / ".env")]
        assert (project_dir / ".env").read_bytes() == b"A=1\n"

    def test_nothing_to_do(self, context: ProjectContext, key: bytes) -> None:
        keys = KeyCounter(key)
        result = restore_entries(context, keys)
        assert result.restored == [] and result.skipped == []
        assert keys.calls == 0
