"""Tests for project identity helpers and the manifest models."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest

from secretvault.models import ProjectContext, VaultEntry, VaultManifest
from secretvault.project import (
    file_exists,
    hash_path_id,
    load_project_context,
    normalize_roots,
    project_relative_path,
)


class TestProjectContext:
    """Identity derived from the project root."""

    def test_id_from_absolute_root(self, tmp_path: Path) -> None:
        ctx = load_project_context(tmp_path)
        digest = hashlib.sha256(str(tmp_path).encode()).hexdigest()
        assert ctx.project_path == tmp_path
        assert ctx.project_id == digest[:16]
        assert ctx.key_id == f"project-{digest[:16]}"

    def test_defaults_to_cwd(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_project_context().project_path == Path(os.getcwd())

    def test_relative_root_is_made_absolute(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_project_context(".") == load_project_context(tmp_path)

    def test_distinct_roots_distinct_ids(self, tmp_path: Path) -> None:
        assert load_project_context(tmp_path / "a").project_id != load_project_context(tmp_path / "b").project_id


class TestPathHelpers:
    """Small path utilities."""

    def test_normalize_roots(self) -> None:
        assert normalize_roots([]) == ["."]
        assert normalize_roots(["", "  "]) == ["."]
        assert normalize_roots(["src", "", ".env"]) == ["src", ".env"]

    def test_hash_path_id(self) -> None:
        assert hash_path_id("/p/.env") == hashlib.sha256(b"/p/.env").hexdigest()
        assert len(hash_path_id("/p/.env")) == 64

    @pytest.mark.parametrize("target,expected", [
        ("/proj/.env", ".env"),
        ("/proj/a/../b/key.pem", os.path.join("b", "key.pem")),
        ("/proj", "."),
        ("/other/.env", None),
        ("/project-two/.env", None),
    ])
    def test_project_relative_path(self, target: str, expected) -> None:
        assert project_relative_path("/proj", target) == expected

    def test_file_exists(self, tmp_path: Path) -> None:
        (tmp_path / "f").write_text("x")
        assert file_exists(tmp_path / "f")
        assert not file_exists(tmp_path / "missing")
        assert not file_exists("")
        assert not file_exists("   ")
        assert not file_exists(None)


class TestModels:
    """Manifest model behaviour."""

    def test_entry_defaults(self) -> None:
        entry = VaultEntry()
        assert entry.original_mode == 0
        assert not entry.has_remote_document

    def test_display_name(self) -> None:
        assert VaultEntry(relative_path="a/.env", absolute_path="/p/a/.env").display_name == "a/.env"
        assert VaultEntry(absolute_path="/home/me/.ssh/id_rsa").display_name == "id_rsa"

    def test_manifest_json_round_trip(self) -> None:
        manifest = VaultManifest(
            project_id="abc",
            entries={"/p/.env": VaultEntry(file_id="f" * 64, original_mode=0o600)},
        )
        restored = VaultManifest.model_validate_json(manifest.model_dump_json())
        assert restored == manifest

    def test_unknown_fields_ignored(self) -> None:
        manifest = VaultManifest.model_validate({"version": 1, "future_field": True, "entries": {}})
        assert manifest.version == 1

    def test_context_is_plain_data(self, tmp_path: Path) -> None:
        ctx = ProjectContext(project_path=tmp_path, project_id="0" * 16, key_id="project-" + "0" * 16)
        assert ctx.model_dump()["project_id"] == "0" * 16
