"""Shared test fixtures for secretvault."""

from __future__ import annotations

from pathlib import Path

import pytest

from secretvault.models import ProjectContext
from secretvault.project import load_project_context


@pytest.fixture
def vault_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the vault home at a temporary directory."""
    home = tmp_path / ".secretvault"
    monkeypatch.setenv("SECRETVAULT_HOME", str(home))
    monkeypatch.delenv("SECRETVAULT_OP_VAULT", raising=False)
    return home


@pytest.fixture
def project_dir(tmp_path: Path, vault_home: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A project root that is also the working directory."""
    root = tmp_path / "project"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def context(project_dir: Path) -> ProjectContext:
    """Project context for the temporary project."""
    return load_project_context(project_dir)


@pytest.fixture
def key() -> bytes:
    """A deterministic 32-byte key."""
    return bytes(range(32))


@pytest.fixture
def other_key() -> bytes:
    """A second key that must not open envelopes sealed with ``key``."""
    return bytes(range(1, 33))
